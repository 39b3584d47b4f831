"""Data models for igdp.

Plain dataclasses describe protocol values; pydantic models describe the
validated runtime configuration.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from enum import Enum
from urllib.parse import SplitResult

from pydantic import BaseModel, Field, field_validator

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address

WANIP_CONNECTION_2 = "urn:schemas-upnp-org:service:WANIPConnection:2"

# Largest possible UDP payload
MAX_DATAGRAM_SIZE = 65527


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Protocol(str, Enum):
    """Transport protocol of a port mapping."""

    TCP = "TCP"
    UDP = "UDP"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: str | Protocol) -> Protocol:
        """Parse a protocol name, accepting any case."""
        if isinstance(value, Protocol):
            return value
        try:
            return cls(value.upper())
        except ValueError:
            msg = f"Unsupported protocol: {value!r} (expected TCP or UDP)"
            raise ValueError(msg) from None


@dataclass(frozen=True)
class SocketAddress:
    """A literal IP address and port."""

    ip: IPAddress
    port: int

    @property
    def host(self) -> str:
        """Host string suitable for connecting."""
        return str(self.ip)

    def __str__(self) -> str:
        if self.ip.version == 6:
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"


@dataclass(frozen=True)
class PortMappingRequest:
    """Arguments of an AddAnyPortMapping request.

    The external port is always requested as 0 ("any"); the gateway picks
    the actual port and reports it back.
    """

    protocol: Protocol
    internal_client: IPAddress
    internal_port: int
    lease_duration: int  # seconds
    description: str
    external_port: int = 0


class DiscoveryConfig(BaseModel):
    """SSDP discovery configuration."""

    multicast_address: str = Field(
        default="239.255.255.250",
        description="SSDP multicast group address",
    )
    multicast_port: int = Field(
        default=1900,
        ge=1,
        le=65535,
        description="SSDP multicast port",
    )
    attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Number of M-SEARCH transmissions before giving up",
    )
    attempt_timeout: float = Field(
        default=1.0,
        gt=0.0,
        le=60.0,
        description="Seconds to wait for a reply after each M-SEARCH",
    )

    @field_validator("multicast_address")
    @classmethod
    def _validate_multicast_address(cls, v: str) -> str:
        ipaddress.ip_address(v)
        return v


class HTTPConfig(BaseModel):
    """HTTP request configuration for description fetch and SOAP actions."""

    request_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=300.0,
        description="Total time allowed for one HTTP exchange in seconds",
    )
    max_response_size: int = Field(
        default=1024 * 1024,
        ge=1024,
        le=64 * 1024 * 1024,
        description="Maximum accepted HTTP response size in bytes",
    )


class ObservabilityConfig(BaseModel):
    """Logging configuration."""

    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Log level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path",
    )
    structured_logging: bool = Field(
        default=False,
        description="Use JSON structured logging",
    )
    log_correlation_id: bool = Field(
        default=True,
        description="Attach a correlation ID to log records",
    )


class Config(BaseModel):
    """Top-level igdp configuration."""

    bind_addresses: list[str] = Field(
        default_factory=lambda: ["0.0.0.0:0"],  # nosec B104 - SSDP replies arrive on any interface
        min_length=1,
        description="Local UDP addresses to try binding, in order",
    )
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    http: HTTPConfig = Field(default_factory=HTTPConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    @field_validator("bind_addresses", mode="before")
    @classmethod
    def _split_bind_addresses(cls, v: object) -> object:
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v


@dataclass(frozen=True)
class Endpoint:
    """A URL paired with the literal address it was resolved to.

    Requests always go to ``address``; the URL only supplies the path.
    """

    url: SplitResult
    address: SocketAddress

    @property
    def target(self) -> str:
        """Request target (path and query) for the HTTP request line."""
        path = self.url.path or "/"
        if self.url.query:
            return f"{path}?{self.url.query}"
        return path

    def __str__(self) -> str:
        return self.url.geturl()


class Discovered(Endpoint):
    """Session state after discovery: the device description location."""


class Controlled(Endpoint):
    """Session state after control resolution: the WANIPConnection control URL."""
