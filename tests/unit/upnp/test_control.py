"""Tests for control URL resolution (igdp/control.py)."""

from __future__ import annotations

import ipaddress
from urllib.parse import urlsplit

import pytest

from igdp.control import extract_control_url, find_control_path, resolve_control
from igdp.exceptions import (
    DecodeError,
    MissingControlUrlError,
    TransportError,
    UnexpectedStatusError,
    XmlParseError,
)
from igdp.http import parse_response
from igdp.models import Discovered, HTTPConfig, SocketAddress

pytestmark = [pytest.mark.unit, pytest.mark.network]

WANIP2 = "urn:schemas-upnp-org:service:WANIPConnection:2"


def _description(*services: tuple[str, str | None]) -> str:
    entries = []
    for service_type, control_url in services:
        control = f"<controlURL>{control_url}</controlURL>" if control_url is not None else ""
        entries.append(f"<service><serviceType>{service_type}</serviceType>{control}</service>")
    return (
        '<root xmlns="urn:schemas-upnp-org:device-1-0"><device><serviceList>'
        + "".join(entries)
        + "</serviceList></device></root>"
    )


def _discovered(url: str = "http://192.168.1.1:5000/rootDesc.xml") -> Discovered:
    split = urlsplit(url)
    return Discovered(url=split, address=SocketAddress(ipaddress.ip_address(split.hostname), split.port))


def _ok(body: str):
    data = f"HTTP/1.1 200 OK\r\nContent-Length: {len(body)}\r\n\r\n{body}".encode()
    response = parse_response(data)
    return response, response.body(data)


class TestFindControlPath:
    """Tests for find_control_path."""

    def test_matching_service(self):
        """Test the control URL of the WANIPConnection:2 service is returned."""
        description = _description(
            ("urn:schemas-upnp-org:service:Layer3Forwarding:1", "/ctl/L3F"),
            (WANIP2, "/ctl/IPConn"),
        )

        assert find_control_path(description) == "/ctl/IPConn"

    def test_case_insensitive_service_type(self):
        """Test the service type comparison ignores case and surrounding space."""
        description = _description((f"  {WANIP2.upper()}\n", "/upnp/control/WANIPConn1"))

        assert find_control_path(description) == "/upnp/control/WANIPConn1"

    def test_no_matching_service(self):
        """Test a description with only other services."""
        description = _description(
            ("urn:schemas-upnp-org:service:WANIPConnection:1", "/ctl/v1"),
            ("urn:schemas-upnp-org:service:WANPPPConnection:1", "/ctl/ppp"),
        )

        with pytest.raises(MissingControlUrlError) as exc_info:
            find_control_path(description)
        assert str(exc_info.value) == "missing control url"

    def test_matching_service_without_control_url(self):
        """Test a matching service that lacks a controlURL."""
        with pytest.raises(MissingControlUrlError):
            find_control_path(_description((WANIP2, None)))

    def test_later_service_with_control_url(self):
        """Test a later matching service is used when an earlier one has no controlURL."""
        description = _description((WANIP2, None), (WANIP2, "/ctl/second"))

        assert find_control_path(description) == "/ctl/second"

    def test_malformed_description(self):
        """Test malformed XML."""
        with pytest.raises(XmlParseError):
            find_control_path("<root><service>")


class TestExtractControlUrl:
    """Tests for extract_control_url."""

    def test_path_replaces_description_path(self):
        """Test scheme, host and port are kept and the path is replaced."""
        discovered = _discovered()
        controlled = extract_control_url(discovered, *_ok(_description((WANIP2, "/ctl/IPConn"))))

        assert str(controlled) == "http://192.168.1.1:5000/ctl/IPConn"
        assert controlled.address == discovered.address
        assert controlled.target == "/ctl/IPConn"

    def test_relative_path_gets_leading_slash(self):
        """Test a relative controlURL is rooted."""
        controlled = extract_control_url(
            _discovered(), *_ok(_description((WANIP2, "ctl/IPConn")))
        )

        assert controlled.target == "/ctl/IPConn"

    def test_absolute_control_url_keeps_discovered_address(self):
        """Test an absolute controlURL contributes only path and query."""
        controlled = extract_control_url(
            _discovered(),
            *_ok(_description((WANIP2, "http://10.9.9.9:1234/ctl?svc=1"))),
        )

        assert controlled.target == "/ctl?svc=1"
        assert controlled.address.ip == ipaddress.ip_address("192.168.1.1")
        assert controlled.address.port == 5000

    def test_unexpected_status(self):
        """Test a non-200 description response."""
        data = b"HTTP/1.1 500 Internal Server Error\r\nContent-Length: 0\r\n\r\n"
        response = parse_response(data)

        with pytest.raises(UnexpectedStatusError) as exc_info:
            extract_control_url(_discovered(), response, b"")
        assert exc_info.value.status == 500

    def test_body_not_utf8(self):
        """Test a description that is not UTF-8."""
        response = parse_response(b"HTTP/1.1 200 OK\r\nContent-Length: 2\r\n\r\n")

        with pytest.raises(DecodeError):
            extract_control_url(_discovered(), response, b"\xff\xfe")


class TestResolveControl:
    """Tests for resolve_control against a loopback HTTP server."""

    @pytest.mark.asyncio
    async def test_resolve(self, fake_gateway):
        """Test the description is fetched and the control URL resolved."""
        async with fake_gateway() as gateway:
            controlled = await resolve_control(
                _discovered(gateway.location), HTTPConfig(request_timeout=2.0)
            )

        assert controlled.target == "/ctl/IPConn"
        head, _body = gateway.requests[0]
        assert head.startswith(b"GET /rootDesc.xml HTTP/1.1\r\n")
        assert f"Host: 127.0.0.1:{gateway.http_port}".encode() in head

    @pytest.mark.asyncio
    async def test_missing_description(self, fake_gateway):
        """Test a 404 for the description document."""
        async with fake_gateway() as gateway:
            discovered = _discovered(f"http://127.0.0.1:{gateway.http_port}/missing.xml")
            with pytest.raises(UnexpectedStatusError) as exc_info:
                await resolve_control(discovered, HTTPConfig(request_timeout=2.0))

        assert exc_info.value.status == 404

    @pytest.mark.asyncio
    async def test_no_wanip2_service(self, fake_gateway):
        """Test a gateway that only offers WANIPConnection:1."""
        async with fake_gateway(
            service_type="urn:schemas-upnp-org:service:WANIPConnection:1"
        ) as gateway:
            with pytest.raises(MissingControlUrlError):
                await resolve_control(
                    _discovered(gateway.location), HTTPConfig(request_timeout=2.0)
                )

    @pytest.mark.asyncio
    async def test_connection_refused(self, fake_gateway):
        """Test a closed port surfaces as a transport error."""
        async with fake_gateway() as gateway:
            location = gateway.location
        # Server is stopped once the context exits

        with pytest.raises(TransportError):
            await resolve_control(_discovered(location), HTTPConfig(request_timeout=2.0))
