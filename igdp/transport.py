"""Socket helpers: UDP binding and one-shot HTTP exchanges over TCP."""

from __future__ import annotations

import asyncio
import contextlib
import ipaddress
import logging
import socket
from collections.abc import Iterable

from igdp.exceptions import BindError, IGDTimeoutError, TransportError
from igdp.http import HttpResponse, ResponseAssembler
from igdp.models import IPAddress, SocketAddress

logger = logging.getLogger(__name__)

BindAddress = str | tuple[str, int]

READ_CHUNK_SIZE = 16 * 1024


def parse_bind_address(value: BindAddress) -> tuple[IPAddress, int]:
    """Parse a local address given as ``(host, port)``, ``"host:port"`` or ``"[v6]:port"``.

    Only literal IP addresses are accepted. A missing port means 0.

    Raises:
        ValueError: If the host is not a literal IP or the port is invalid

    """
    if isinstance(value, tuple):
        host, port = value[0], int(value[1])
    elif value.startswith("["):
        host, sep, rest = value[1:].partition("]")
        if not sep:
            msg = f"Unterminated IPv6 literal: {value!r}"
            raise ValueError(msg)
        port = int(rest[1:]) if rest.startswith(":") else 0
    elif value.count(":") == 1:
        host, _, port_str = value.partition(":")
        port = int(port_str)
    else:
        # Bare IPv4, or bare IPv6 without brackets
        host, port = value, 0
    if not 0 <= port <= 65535:
        msg = f"Port out of range: {port}"
        raise ValueError(msg)
    return ipaddress.ip_address(host), port


def bind_udp(addresses: Iterable[BindAddress]) -> socket.socket:
    """Bind a non-blocking UDP socket to the first usable local address.

    Raises:
        BindError: If none of ``addresses`` could be bound

    """
    tried: list[str] = []
    for address in addresses:
        tried.append(str(address))
        try:
            ip, port = parse_bind_address(address)
        except ValueError as e:
            logger.debug("Skipping bind address %r: %s", address, e)
            continue

        family = socket.AF_INET6 if ip.version == 6 else socket.AF_INET
        try:
            sock = socket.socket(family, socket.SOCK_DGRAM)
        except OSError as e:
            logger.debug("Cannot create socket for %s: %s", ip, e)
            continue
        try:
            sock.setblocking(False)
            sock.bind((str(ip), port))
        except OSError as e:
            logger.debug("Failed to bind %s:%d: %s", ip, port, e)
            sock.close()
            continue
        logger.debug("Bound UDP socket to %s", sock.getsockname()[:2])
        return sock

    msg = "error binding UDP socket"
    raise BindError(msg, {"addresses": tried})


async def fetch(
    address: SocketAddress,
    request: bytes,
    *,
    timeout: float,
    max_size: int,
) -> tuple[HttpResponse, bytes]:
    """Send ``request`` over a fresh TCP connection and read the full response.

    The connection is closed once the response is complete. If the call is
    cancelled or fails midway the connection is aborted without draining.

    Returns:
        Tuple of (response head, decoded body)

    Raises:
        TransportError: On connection or I/O failure
        IGDTimeoutError: If the exchange takes longer than ``timeout``
        DecodeError: If the response is malformed or too large

    """
    try:
        async with asyncio.timeout(timeout):
            return await _exchange(address, request, max_size)
    except TimeoutError as e:
        msg = f"timeout talking to {address}"
        raise IGDTimeoutError(msg, {"timeout": timeout}) from e


async def _exchange(
    address: SocketAddress,
    request: bytes,
    max_size: int,
) -> tuple[HttpResponse, bytes]:
    logger.debug("Connecting to %s", address)
    try:
        reader, writer = await asyncio.open_connection(address.host, address.port)
    except OSError as e:
        msg = f"i/o error: {e}"
        raise TransportError(msg, {"address": str(address)}) from e

    completed = False
    try:
        logger.debug("Sending %d byte request to %s", len(request), address)
        writer.write(request)
        await writer.drain()

        assembler = ResponseAssembler(max_size)
        while True:
            chunk = await reader.read(READ_CHUNK_SIZE)
            if not chunk or assembler.feed(chunk):
                break
        logger.debug("Read %d byte response from %s", len(assembler), address)
        result = assembler.finish()
        completed = True
        return result
    except OSError as e:
        msg = f"i/o error: {e}"
        raise TransportError(msg, {"address": str(address)}) from e
    finally:
        if completed:
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()
        else:
            writer.transport.abort()


def source_address_for(address: SocketAddress) -> IPAddress:
    """Local IP the OS would use to reach ``address``.

    Connecting a UDP socket selects a route without sending anything.

    Raises:
        TransportError: If no route exists

    """
    family = socket.AF_INET6 if address.ip.version == 6 else socket.AF_INET
    with socket.socket(family, socket.SOCK_DGRAM) as sock:
        try:
            sock.connect((address.host, address.port))
        except OSError as e:
            msg = f"i/o error: {e}"
            raise TransportError(msg, {"address": str(address)}) from e
        return ipaddress.ip_address(sock.getsockname()[0])
