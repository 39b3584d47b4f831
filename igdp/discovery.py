"""SSDP discovery of a WANIPConnection:2 service."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from urllib.parse import SplitResult, urlsplit

from igdp.exceptions import (
    HttpParseError,
    IGDTimeoutError,
    MissingHostPortError,
    MissingLocationError,
    TimerError,
    TransportError,
    UnexpectedStatusError,
)
from igdp.http import parse_response
from igdp.models import WANIP_CONNECTION_2, Discovered, DiscoveryConfig, SocketAddress

logger = logging.getLogger(__name__)

# SSDP constants
SSDP_MULTICAST_IP = "239.255.255.250"
SSDP_MULTICAST_PORT = 1900
SSDP_MX = 1
VENDOR_HEADER = "CPFN.UPNP.ORG: igdp"

_DEFAULT_PORTS = {"http": 80}


def build_msearch_request() -> bytes:
    """Build the SSDP M-SEARCH request for a WANIPConnection:2 service."""
    msg = (
        "M-SEARCH * HTTP/1.1\r\n"
        f"HOST: {SSDP_MULTICAST_IP}:{SSDP_MULTICAST_PORT}\r\n"
        'MAN: "ssdp:discover"\r\n'
        f"MX: {SSDP_MX}\r\n"
        f"ST: {WANIP_CONNECTION_2}\r\n"
        f"{VENDOR_HEADER}\r\n"
        "\r\n"
    )
    return msg.encode("utf-8")


def url_to_address(url: SplitResult) -> SocketAddress:
    """Resolve the host and port of ``url`` without DNS.

    Only literal IPv4/IPv6 hosts are accepted. A missing port falls back to
    the scheme's default.

    Raises:
        MissingHostPortError: If the host is symbolic or the port is unusable

    """
    try:
        host = url.hostname
        port = url.port
    except ValueError as e:
        msg = "missing host/port information in url"
        raise MissingHostPortError(msg, {"url": url.geturl()}) from e
    if port is None:
        port = _DEFAULT_PORTS.get(url.scheme.lower())
    if not host or port is None:
        msg = "missing host/port information in url"
        raise MissingHostPortError(msg, {"url": url.geturl()})
    try:
        ip = ipaddress.ip_address(host)
    except ValueError as e:
        msg = "missing host/port information in url"
        raise MissingHostPortError(msg, {"url": url.geturl()}) from e
    return SocketAddress(ip, port)


def parse_discovery_response(data: bytes) -> Discovered:
    """Interpret an M-SEARCH reply datagram.

    Raises:
        UnexpectedStatusError: If the status is not 200 (or unparsable)
        MissingLocationError: If no usable ``Location`` header is present
        MissingHostPortError: If the location host is not a literal IP
        HttpParseError: If the headers are malformed

    """
    response = parse_response(data, eof=True)
    if response is None:
        msg = "Empty M-SEARCH response"
        raise HttpParseError(msg)
    if response.status != 200:
        logger.debug("M-SEARCH response code = %s", response.status)
        raise UnexpectedStatusError(response.status)

    raw_location = response.header("Location")
    if raw_location is None:
        msg = "missing Location header"
        raise MissingLocationError(msg)
    try:
        location = raw_location.decode("utf-8")
        url = urlsplit(location)
    except (UnicodeDecodeError, ValueError) as e:
        msg = "missing Location header"
        raise MissingLocationError(msg, {"location": repr(raw_location)}) from e
    if not url.scheme or not url.netloc:
        msg = "missing Location header"
        raise MissingLocationError(msg, {"location": location})

    logger.debug("Discovered location: %s", location)
    return Discovered(url=url, address=url_to_address(url))


async def _receive_or_timeout(
    sock: socket.socket,
    buffer: bytearray,
    timeout: float,
) -> tuple[int, object] | None:
    """Race a receive into ``buffer`` against a timer.

    The first to finish wins; the other is cancelled and left alone.

    Returns:
        ``(nbytes, sender)`` if a datagram arrived first, None on timeout

    """
    loop = asyncio.get_running_loop()
    receive = asyncio.ensure_future(loop.sock_recvfrom_into(sock, buffer))
    timer = asyncio.ensure_future(asyncio.sleep(timeout))
    try:
        done, _pending = await asyncio.wait(
            {receive, timer},
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        for task in (receive, timer):
            if not task.done():
                task.cancel()

    if receive in done:
        try:
            return receive.result()
        except OSError as e:
            msg = f"i/o error: {e}"
            raise TransportError(msg) from e

    error = timer.exception()
    if error is not None:
        msg = "timer error"
        raise TimerError(msg) from error
    return None


async def search(
    sock: socket.socket,
    buffer: bytearray,
    config: DiscoveryConfig,
) -> bytes:
    """Send M-SEARCH requests until one reply arrives.

    Silence is retried up to ``config.attempts`` sends; the first datagram
    received ends the search, whatever its content.

    Returns:
        The received datagram

    Raises:
        IGDTimeoutError: If no reply arrived after all attempts
        TransportError: If sending or receiving fails

    """
    loop = asyncio.get_running_loop()
    target = (config.multicast_address, config.multicast_port)
    request = build_msearch_request()

    for attempt in range(1, config.attempts + 1):
        try:
            await loop.sock_sendto(sock, request, target)
        except OSError as e:
            msg = f"i/o error: {e}"
            raise TransportError(msg, {"target": f"{target[0]}:{target[1]}"}) from e
        logger.debug(
            "Sent M-SEARCH request (attempt %d/%d) to %s:%d",
            attempt,
            config.attempts,
            target[0],
            target[1],
        )

        received = await _receive_or_timeout(sock, buffer, config.attempt_timeout)
        if received is not None:
            nbytes, sender = received
            logger.debug("Received M-SEARCH response from %s (%d bytes)", sender, nbytes)
            return bytes(buffer[:nbytes])

        logger.debug(
            "No M-SEARCH response in attempt %d/%d (timeout: %.1fs)",
            attempt,
            config.attempts,
            config.attempt_timeout,
        )

    msg = "timeout"
    raise IGDTimeoutError(msg, {"attempts": config.attempts})


async def discover(
    sock: socket.socket,
    buffer: bytearray,
    config: DiscoveryConfig,
) -> Discovered:
    """Find a WANIPConnection:2 service and resolve its description location."""
    datagram = await search(sock, buffer, config)
    return parse_discovery_response(datagram)
