"""Minimal HTTP/1.1 response handling.

Gateways answer with small, plain HTTP messages, so only what is needed to
interpret them is implemented: status line, header pairs, and a body that is
either ``Content-Length`` delimited, chunked, or terminated by connection
close.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from igdp.exceptions import HttpParseError, ResponseTooLargeError
from igdp.models import SocketAddress

_HEAD_END = re.compile(rb"\r?\n\r?\n")
_LINE_SPLIT = re.compile(rb"\r?\n")
_STATUS_LINE = re.compile(rb"^HTTP/(\d)\.(\d) (\d{3})(?: (.*))?$")
_TOKEN = re.compile(rb"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
_CHUNK_SIZE = re.compile(rb"[0-9A-Fa-f]+")


@dataclass(frozen=True)
class HttpResponse:
    """Parsed response head.

    ``status`` is None when the status line could not be parsed.
    ``body_offset`` is the index in the raw data where the body starts.
    """

    status: int | None
    headers: tuple[tuple[str, bytes], ...]
    body_offset: int

    def header(self, name: str) -> bytes | None:
        """Return the first value of header ``name`` (case-insensitive)."""
        wanted = name.lower()
        for key, value in self.headers:
            if key.lower() == wanted:
                return value
        return None

    @property
    def content_length(self) -> int | None:
        """Declared body length, or None if not declared."""
        value = self.header("Content-Length")
        if value is None:
            return None
        value = value.strip()
        if not value.isdigit():
            msg = f"Invalid Content-Length: {value!r}"
            raise HttpParseError(msg)
        return int(value)

    @property
    def is_chunked(self) -> bool:
        """Whether the body uses chunked transfer encoding."""
        value = self.header("Transfer-Encoding")
        return value is not None and b"chunked" in value.lower()

    def body(self, data: bytes) -> bytes:
        """Slice the raw body out of ``data``."""
        return data[self.body_offset :]


def parse_response(data: bytes, eof: bool = False) -> HttpResponse | None:
    """Parse the head of an HTTP response.

    Args:
        data: Raw response bytes, possibly incomplete
        eof: Whether ``data`` is everything that will arrive. When set, the
            end of data terminates the header block.

    Returns:
        Parsed head, or None if the header block is still incomplete

    Raises:
        HttpParseError: If a header line is malformed

    """
    match = _HEAD_END.search(data)
    if match is not None:
        head, body_offset = data[: match.start()], match.end()
    elif eof:
        head, body_offset = data, len(data)
    else:
        return None

    lines = _LINE_SPLIT.split(head)
    status_match = _STATUS_LINE.match(lines[0])
    if status_match is None:
        # Headers after an unintelligible status line are meaningless
        return HttpResponse(status=None, headers=(), body_offset=body_offset)

    headers: list[tuple[str, bytes]] = []
    for line in lines[1:]:
        if not line:
            continue
        name, sep, value = line.partition(b":")
        if not sep or not _TOKEN.match(name):
            msg = f"Malformed header line: {line[:80]!r}"
            raise HttpParseError(msg)
        headers.append((name.decode("ascii"), value.strip()))

    return HttpResponse(
        status=int(status_match.group(3)),
        headers=tuple(headers),
        body_offset=body_offset,
    )


def decode_chunked(body: bytes) -> bytes | None:
    """Decode a chunked body.

    Returns:
        Decoded payload, or None if the terminating chunk has not arrived yet

    Raises:
        HttpParseError: If the chunk framing is malformed

    """
    payload = bytearray()
    pos = 0
    while True:
        eol = body.find(b"\r\n", pos)
        if eol < 0:
            return None
        size_field = body[pos:eol].split(b";", 1)[0].strip()
        if _CHUNK_SIZE.fullmatch(size_field) is None:
            msg = f"Invalid chunk size: {size_field[:20]!r}"
            raise HttpParseError(msg)
        size = int(size_field, 16)
        pos = eol + 2
        if size == 0:
            # Optional trailers, then an empty line
            if body[pos : pos + 2] == b"\r\n":
                return bytes(payload)
            if body.find(b"\r\n\r\n", pos) < 0:
                return None
            return bytes(payload)
        if len(body) < pos + size + 2:
            return None
        if body[pos + size : pos + size + 2] != b"\r\n":
            msg = "Chunk not terminated by CRLF"
            raise HttpParseError(msg)
        payload += body[pos : pos + size]
        pos += size + 2


class ResponseAssembler:
    """Accumulate reads until a complete HTTP response is buffered."""

    def __init__(self, max_size: int):
        """Initialize assembler.

        Args:
            max_size: Maximum number of bytes accepted for one response

        """
        self.max_size = max_size
        self._buffer = bytearray()
        self._head: HttpResponse | None = None

    def __len__(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> bool:
        """Append received bytes.

        Returns:
            True once the response is complete

        Raises:
            ResponseTooLargeError: If the response exceeds ``max_size``

        """
        self._buffer += data
        if len(self._buffer) > self.max_size:
            msg = f"HTTP response exceeds {self.max_size} bytes"
            raise ResponseTooLargeError(msg, {"received": len(self._buffer)})
        if self._head is None:
            self._head = parse_response(bytes(self._buffer))
            if self._head is None:
                return False
        return self._body_complete(self._head)

    def _body_complete(self, head: HttpResponse) -> bool:
        body = bytes(self._buffer[head.body_offset :])
        if head.is_chunked:
            return decode_chunked(body) is not None
        length = head.content_length
        if length is not None:
            return len(body) >= length
        # Delimited by connection close
        return False

    def finish(self) -> tuple[HttpResponse, bytes]:
        """Return the head and decoded body of the buffered response.

        Must be called once the response is complete or the peer closed
        the connection.

        Raises:
            HttpParseError: If the response is truncated

        """
        data = bytes(self._buffer)
        head = self._head or parse_response(data, eof=True)
        if head is None:
            msg = "Incomplete response head"
            raise HttpParseError(msg)
        body = head.body(data)
        if head.status is None:
            return head, body
        if head.is_chunked:
            decoded = decode_chunked(body)
            if decoded is None:
                msg = "Truncated chunked body"
                raise HttpParseError(msg)
            return head, decoded
        length = head.content_length
        if length is not None:
            if len(body) < length:
                msg = f"Truncated body: expected {length} bytes, got {len(body)}"
                raise HttpParseError(msg)
            body = body[:length]
        return head, body


def format_get_request(address: SocketAddress, path: str) -> bytes:
    """Build a ``GET`` request that asks the server to close afterwards."""
    return (
        f"GET {path} HTTP/1.1\r\n"
        f"Host: {address}\r\n"
        "Connection: close\r\n"
        "\r\n"
    ).encode("utf-8")


def format_post_request(
    address: SocketAddress,
    path: str,
    body: bytes,
    headers: dict[str, str],
) -> bytes:
    """Build a ``POST`` request carrying ``body``.

    ``Host``, ``Content-Length`` and ``Connection: close`` are always sent;
    ``headers`` are inserted between them.
    """
    lines = [
        f"POST {path} HTTP/1.1",
        f"Host: {address}",
        f"Content-Length: {len(body)}",
    ]
    lines.extend(f"{name}: {value}" for name, value in headers.items())
    lines.append("Connection: close")
    head = "\r\n".join(lines) + "\r\n\r\n"
    return head.encode("utf-8") + body
