"""Exception hierarchy for igdp.

Every failure surfaced by discovery, control resolution or action
invocation derives from :class:`IGDError`, so callers can catch a single
type while still distinguishing the concrete reason.
"""

from __future__ import annotations

from typing import Any


class IGDError(Exception):
    """Base exception for all igdp errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize IGD error."""
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class BindError(IGDError):
    """No local address could be bound."""


class IGDTimeoutError(IGDError):
    """The gateway did not answer in time."""


class ProtocolFieldError(IGDError):
    """A required protocol field is absent or unusable."""


class MissingLocationError(ProtocolFieldError):
    """Missing or invalid ``Location`` header in the discovery reply."""


class MissingControlUrlError(ProtocolFieldError):
    """No WANIPConnection control URL in the device description."""


class MissingHostPortError(ProtocolFieldError):
    """URL does not carry a literal IP host and a port."""


class UnexpectedStatusError(IGDError):
    """HTTP response with a status other than 200."""

    def __init__(self, status: int | None, details: dict[str, Any] | None = None):
        """Initialize with the received status code (None if unparsable)."""
        if status is None:
            message = "missing http status code"
        else:
            message = f"unexpected status code: {status}"
        super().__init__(message, details)
        self.status = status


class TransportError(IGDError):
    """Socket or connection level I/O failure."""


class DecodeError(IGDError):
    """Received bytes could not be decoded."""


class HttpParseError(DecodeError):
    """Malformed HTTP response."""


class XmlParseError(DecodeError):
    """Malformed XML document."""


class ResponseTooLargeError(DecodeError):
    """Response exceeded the configured maximum size."""


class TimerError(IGDError):
    """The attempt timer failed."""


class PhaseError(IGDError):
    """Operation invoked in the wrong session phase."""


class ConfigurationError(IGDError):
    """Configuration validation errors."""
