"""igdp - asyncio client for UPnP Internet Gateway Devices (WANIPConnection:2)."""

from __future__ import annotations

__version__ = "0.1.0"

from igdp.exceptions import (
    BindError,
    ConfigurationError,
    DecodeError,
    HttpParseError,
    IGDError,
    IGDTimeoutError,
    MissingControlUrlError,
    MissingHostPortError,
    MissingLocationError,
    PhaseError,
    ProtocolFieldError,
    ResponseTooLargeError,
    TimerError,
    TransportError,
    UnexpectedStatusError,
    XmlParseError,
)
from igdp.models import Config, Protocol
from igdp.session import IGDSession, get_external_ip, request_port_mapping

__all__ = [
    "BindError",
    "Config",
    "ConfigurationError",
    "DecodeError",
    "HttpParseError",
    "IGDError",
    "IGDSession",
    "IGDTimeoutError",
    "MissingControlUrlError",
    "MissingHostPortError",
    "MissingLocationError",
    "PhaseError",
    "Protocol",
    "ProtocolFieldError",
    "ResponseTooLargeError",
    "TimerError",
    "TransportError",
    "UnexpectedStatusError",
    "XmlParseError",
    "__version__",
    "get_external_ip",
    "request_port_mapping",
]
