"""IGD session: bind, discover, resolve control URL, invoke actions.

A session moves through its phases in one direction only::

    Unbound --discover--> Discovered --control--> Controlled --action--> Controlled

Actions may be repeated against the same controlled session without
discovering again.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
from collections.abc import Iterable

from igdp import actions
from igdp.control import resolve_control
from igdp.discovery import discover
from igdp.exceptions import PhaseError
from igdp.models import (
    MAX_DATAGRAM_SIZE,
    Config,
    Controlled,
    Discovered,
    IPAddress,
    PortMappingRequest,
    Protocol,
)
from igdp.transport import BindAddress, bind_udp, source_address_for

logger = logging.getLogger(__name__)


class IGDSession:
    """Async UPnP IGD session owning one UDP socket and one receive buffer."""

    def __init__(self, sock: socket.socket, config: Config | None = None):
        """Initialize session around an already bound UDP socket.

        Args:
            sock: Bound, non-blocking UDP socket
            config: Configuration (defaults if None)

        """
        self.config = config or Config()
        self._socket: socket.socket | None = sock
        self.local_ip: IPAddress = _local_ip(sock)
        self._buffer = bytearray(MAX_DATAGRAM_SIZE)
        self.state: Discovered | Controlled | None = None

    @classmethod
    def bind(
        cls,
        addresses: Iterable[BindAddress] | None = None,
        config: Config | None = None,
    ) -> IGDSession:
        """Create a session bound to the first usable local address.

        Args:
            addresses: Local addresses to try; ``config.bind_addresses`` if None
            config: Configuration (defaults if None)

        Raises:
            BindError: If no address could be bound

        """
        config = config or Config()
        if addresses is None:
            addresses = config.bind_addresses
        sock = bind_udp(addresses)
        session = cls(sock, config)
        logger.debug("New IGD session bound to %s", session.local_ip)
        return session

    @property
    def phase(self) -> str:
        """Current phase name."""
        if self._socket is None:
            return "closed"
        if self.state is None:
            return "unbound"
        return type(self.state).__name__.lower()

    @property
    def closed(self) -> bool:
        return self._socket is None

    def _require_socket(self) -> socket.socket:
        if self._socket is None:
            msg = "session is closed"
            raise PhaseError(msg)
        return self._socket

    def _require_controlled(self) -> Controlled:
        self._require_socket()
        if not isinstance(self.state, Controlled):
            msg = "control URL not resolved"
            raise PhaseError(msg, {"phase": self.phase})
        return self.state

    async def discover(self) -> Discovered:
        """Locate the gateway's WANIPConnection:2 description via SSDP."""
        sock = self._require_socket()
        if self.state is not None:
            msg = "discovery already done"
            raise PhaseError(msg, {"phase": self.phase})
        discovered = await discover(sock, self._buffer, self.config.discovery)
        self.state = discovered
        logger.info("Found UPnP IGD at %s", discovered)
        return discovered

    async def control(self) -> Controlled:
        """Resolve the control URL from the discovered device description."""
        self._require_socket()
        if not isinstance(self.state, Discovered):
            msg = "control resolution requires a discovered gateway"
            raise PhaseError(msg, {"phase": self.phase})
        controlled = await resolve_control(self.state, self.config.http)
        self.state = controlled
        return controlled

    async def external_ip(self) -> IPAddress | None:
        """Get the gateway's external IP address (None if it reported none)."""
        controlled = self._require_controlled()
        return await actions.get_external_ip(controlled, self.config.http)

    def _internal_client(self, controlled: Controlled) -> IPAddress:
        if not self.local_ip.is_unspecified:
            return self.local_ip
        # Bound to a wildcard address: use the source address the gateway sees
        return source_address_for(controlled.address)

    async def add_any_port_mapping(
        self,
        protocol: Protocol | str,
        port: int,
        duration: int,
        description: str,
    ) -> int | None:
        """Map an external port chosen by the gateway to ``port`` on this host.

        Args:
            protocol: "TCP" or "UDP"
            port: Internal port
            duration: Lease duration in seconds
            description: Free-text mapping description

        Returns:
            External port reserved by the gateway, or None if not reported

        Raises:
            ValueError: If ``protocol`` is not TCP or UDP
            PhaseError: If the control URL has not been resolved

        """
        protocol = Protocol.parse(protocol)
        controlled = self._require_controlled()
        request = PortMappingRequest(
            protocol=protocol,
            internal_client=self._internal_client(controlled),
            internal_port=port,
            lease_duration=duration,
            description=description,
        )
        external_port = await actions.add_any_port_mapping(
            controlled, request, self.config.http
        )
        logger.info(
            "Mapped %s port %s -> %s (duration: %s s, internal IP: %s)",
            request.protocol,
            external_port if external_port is not None else "?",
            port,
            duration,
            request.internal_client,
        )
        return external_port

    async def delete_port_mapping(self, protocol: Protocol | str, external_port: int) -> None:
        """Remove a previously created mapping."""
        protocol = Protocol.parse(protocol)
        controlled = self._require_controlled()
        await actions.delete_port_mapping(
            controlled, protocol, external_port, self.config.http
        )
        logger.info("Deleted %s port mapping for port %s", protocol, external_port)

    def close(self) -> None:
        """Release the UDP socket."""
        if self._socket is not None:
            self._socket.close()
            self._socket = None

    async def __aenter__(self) -> IGDSession:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def _local_ip(sock: socket.socket) -> IPAddress:
    return ipaddress.ip_address(sock.getsockname()[0])


async def open_controlled_session(
    addresses: Iterable[BindAddress] | None = None,
    config: Config | None = None,
) -> IGDSession:
    """Bind, discover and resolve control; the caller closes the session."""
    session = IGDSession.bind(addresses, config)
    try:
        await session.discover()
        await session.control()
    except BaseException:
        session.close()
        raise
    return session


async def get_external_ip(
    addresses: Iterable[BindAddress] | None = None,
    config: Config | None = None,
) -> IPAddress | None:
    """Discover the gateway and return its external IP address."""
    async with await open_controlled_session(addresses, config) as session:
        return await session.external_ip()


async def request_port_mapping(
    addresses: Iterable[BindAddress] | None,
    protocol: Protocol | str,
    internal_port: int,
    lease_duration: int,
    description: str,
    config: Config | None = None,
) -> int | None:
    """Discover the gateway and request a port mapping to ``internal_port``.

    Returns:
        External port chosen by the gateway, or None if not reported

    Raises:
        ValueError: If ``protocol`` is not TCP or UDP, before any network I/O

    """
    protocol = Protocol.parse(protocol)
    async with await open_controlled_session(addresses, config) as session:
        return await session.add_any_port_mapping(
            protocol, internal_port, lease_duration, description
        )
