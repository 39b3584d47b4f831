"""Pytest configuration and shared fixtures for igdp tests."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os

import pytest

from igdp.models import WANIP_CONNECTION_2, Config, DiscoveryConfig, HTTPConfig

DESCRIPTION_PATH = "/rootDesc.xml"
CONTROL_PATH = "/ctl/IPConn"

DEVICE_DESCRIPTION = """<?xml version="1.0"?>
<root xmlns="urn:schemas-upnp-org:device-1-0">
  <specVersion><major>1</major><minor>0</minor></specVersion>
  <device>
    <deviceType>urn:schemas-upnp-org:device:InternetGatewayDevice:2</deviceType>
    <serviceList>
      <service>
        <serviceType>urn:schemas-upnp-org:service:Layer3Forwarding:1</serviceType>
        <controlURL>/ctl/L3F</controlURL>
      </service>
    </serviceList>
    <deviceList>
      <device>
        <deviceType>urn:schemas-upnp-org:device:WANConnectionDevice:2</deviceType>
        <serviceList>
          <service>
            <serviceType>{service_type}</serviceType>
            <serviceId>urn:upnp-org:serviceId:WANIPConn1</serviceId>
            <controlURL>{control_path}</controlURL>
          </service>
        </serviceList>
      </device>
    </deviceList>
  </device>
</root>
"""


def pytest_configure(config):
    """Register all project markers to avoid warnings when ini isn't loaded."""
    markers = [
        ("asyncio", "marks tests as async (deselect with '-m \"not asyncio\"')"),
        ("unit", "marks tests as unit tests"),
        ("integration", "marks tests as integration tests"),
        ("network", "marks tests as network tests"),
        ("cli", "marks tests as CLI tests"),
        ("config", "marks tests as configuration tests"),
    ]
    for name, desc in markers:
        config.addinivalue_line("markers", f"{name}: {desc}")


@pytest.fixture(autouse=True)
def cleanup_logging():
    """Clean up logging handlers after each test to prevent closed file errors."""
    yield
    for logger_name in list(logging.Logger.manager.loggerDict.keys()):
        logger = logging.getLogger(logger_name)
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)


@pytest.fixture(autouse=True)
def _clear_igdp_env(monkeypatch):
    """Keep IGDP_* variables from the developer's shell out of the tests."""
    for name in list(os.environ):
        if name.startswith("IGDP_"):
            monkeypatch.delenv(name)


def http_response(
    status: int,
    body: bytes | str = b"",
    headers: dict[str, str] | None = None,
    reason: str = "OK",
) -> bytes:
    """Render a raw HTTP/1.1 response with a Content-Length body."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    lines = [f"HTTP/1.1 {status} {reason}", f"Content-Length: {len(body)}"]
    lines.extend(f"{name}: {value}" for name, value in (headers or {}).items())
    return ("\r\n".join(lines) + "\r\n\r\n").encode("ascii") + body


def soap_response(action: str, fields: dict[str, str]) -> bytes:
    """Render a successful SOAP action response."""
    inner = "".join(f"<{name}>{value}</{name}>" for name, value in fields.items())
    body = (
        '<?xml version="1.0"?>'
        '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/" '
        's:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">'
        f'<s:Body><u:{action}Response xmlns:u="{WANIP_CONNECTION_2}">{inner}'
        f"</u:{action}Response></s:Body></s:Envelope>"
    )
    return http_response(200, body, {"Content-Type": 'text/xml; charset="utf-8"'})


def soap_fault(error_code: int, description: str) -> bytes:
    """Render a UPnP SOAP fault with HTTP status 500."""
    body = (
        '<?xml version="1.0"?>'
        '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/">'
        "<s:Body><s:Fault><faultcode>s:Client</faultcode><faultstring>UPnPError</faultstring>"
        '<detail><UPnPError xmlns="urn:schemas-upnp-org:control-1-0">'
        f"<errorCode>{error_code}</errorCode><errorDescription>{description}</errorDescription>"
        "</UPnPError></detail></s:Fault></s:Body></s:Envelope>"
    )
    return http_response(500, body, reason="Internal Server Error")


class FakeSSDPResponder(asyncio.DatagramProtocol):
    """Answers M-SEARCH datagrams once ``reply_on`` requests have arrived."""

    def __init__(self, reply_on: int | None = 1):
        self.reply_on = reply_on
        self.reply: bytes | None = None
        self.requests: list[bytes] = []
        self.transport: asyncio.DatagramTransport | None = None

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data, addr):
        self.requests.append(data)
        if self.reply_on is None or self.reply is None:
            return
        if len(self.requests) >= self.reply_on:
            self.transport.sendto(self.reply, addr)


class FakeGateway:
    """Loopback UPnP gateway: SSDP responder plus HTTP description/control server."""

    def __init__(
        self,
        *,
        reply_on: int | None = 1,
        service_type: str = WANIP_CONNECTION_2,
        control_path: str = CONTROL_PATH,
    ):
        self.responder = FakeSSDPResponder(reply_on)
        self.service_type = service_type
        self.control_path = control_path
        self.routes: dict[str, bytes] = {}
        self.actions: dict[str, bytes] = {}
        self.requests: list[tuple[bytes, bytes]] = []
        self.http_port = 0
        self.ssdp_port = 0
        self._server: asyncio.Server | None = None
        self._udp: asyncio.DatagramTransport | None = None

    @property
    def location(self) -> str:
        return f"http://127.0.0.1:{self.http_port}{DESCRIPTION_PATH}"

    def ssdp_reply(self, location: str | None = None, status: int = 200) -> bytes:
        """Raw M-SEARCH reply pointing at ``location``."""
        lines = [
            f"HTTP/1.1 {status} OK",
            "CACHE-CONTROL: max-age=120",
            f"ST: {WANIP_CONNECTION_2}",
            f"LOCATION: {location or self.location}",
            "SERVER: FakeOS/1.0 UPnP/2.0 FakeIGD/1.0",
        ]
        return ("\r\n".join(lines) + "\r\n\r\n").encode("ascii")

    def config(self, **discovery) -> Config:
        """Configuration pointing discovery at this gateway."""
        discovery.setdefault("attempt_timeout", 0.2)
        return Config(
            bind_addresses=["127.0.0.1:0"],
            discovery=DiscoveryConfig(
                multicast_address="127.0.0.1",
                multicast_port=self.ssdp_port,
                **discovery,
            ),
            http=HTTPConfig(request_timeout=2.0),
        )

    async def __aenter__(self) -> FakeGateway:
        loop = asyncio.get_running_loop()
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.http_port = self._server.sockets[0].getsockname()[1]
        self._udp, _ = await loop.create_datagram_endpoint(
            lambda: self.responder,
            local_addr=("127.0.0.1", 0),
        )
        self.ssdp_port = self._udp.get_extra_info("sockname")[1]
        self.responder.reply = self.ssdp_reply()
        self.routes[DESCRIPTION_PATH] = http_response(
            200,
            DEVICE_DESCRIPTION.format(
                service_type=self.service_type,
                control_path=self.control_path,
            ),
            {"Content-Type": "text/xml"},
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._udp is not None:
            self._udp.close()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            head = await reader.readuntil(b"\r\n\r\n")
            length = 0
            soap_action = None
            for line in head.split(b"\r\n")[1:]:
                name, _, value = line.partition(b":")
                if name.strip().lower() == b"content-length":
                    length = int(value.strip())
                elif name.strip().lower() == b"soapaction":
                    soap_action = value.strip().strip(b'"').decode().rpartition("#")[2]
            body = await reader.readexactly(length) if length else b""
            self.requests.append((head, body))

            path = head.split(b" ", 2)[1].decode()
            if path == self.control_path and soap_action is not None:
                response = self.actions.get(soap_action, soap_fault(401, "Invalid Action"))
            else:
                response = self.routes.get(path, http_response(404, reason="Not Found"))
            writer.write(response)
            await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()
            with contextlib.suppress(ConnectionError):
                await writer.wait_closed()


@pytest.fixture
def fake_gateway():
    """Factory for :class:`FakeGateway` instances (use with ``async with``)."""
    return FakeGateway


@pytest.fixture
def responses():
    """Raw response builders shared by the protocol tests."""

    class _Responses:
        http = staticmethod(http_response)
        soap = staticmethod(soap_response)
        fault = staticmethod(soap_fault)

    return _Responses
