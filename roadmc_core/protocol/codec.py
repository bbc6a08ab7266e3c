"""RoadMC Codec - Text Protocol Framing and Response Classification.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.

The codec works against any object with the small stream interface of
PooledConnection: write(bytes), read_until(b"\\n") and read_exact(n).
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Protocol, Tuple

from roadmc_core.protocol.commands import CRLF, CacheItem, ResultStatus
from roadmc_core.protocol.errors import (
    ClientError,
    ProtocolError,
    ServerError,
    UnsupportedCommandError,
)

logger = logging.getLogger(__name__)

GENERIC_ERROR = b"ERROR"
CLIENT_ERROR_PREFIX = b"CLIENT_ERROR "
SERVER_ERROR_PREFIX = b"SERVER_ERROR "
ERROR_PREFIX_LENGTH = 13

END = b"END"

STORE_STATUSES = {
    b"STORED": ResultStatus.STORED,
    b"NOT_STORED": ResultStatus.NOT_STORED,
    b"EXISTS": ResultStatus.EXISTS,
    b"NOT_FOUND": ResultStatus.NOT_FOUND,
}

DELETE_STATUSES = {
    b"DELETED": ResultStatus.DELETED,
    b"NOT_FOUND": ResultStatus.NOT_FOUND,
}


class Stream(Protocol):
    """What the codec needs from a connection."""

    address: str

    def write(self, data: bytes) -> None: ...

    def read_until(self, delimiter: bytes) -> bytes: ...

    def read_exact(self, size: int) -> bytes: ...


def _text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def send_command(stream: Stream, request: bytes) -> None:
    """Send a fully encoded request in one write."""
    if logger.isEnabledFor(logging.DEBUG):
        header = request.split(CRLF, 1)[0]
        logger.debug(f"SendCommand to {stream.address}: {_text(header)}")
    stream.write(request)


def read_line(stream: Stream) -> bytes:
    """Read one response line.

    The line ends at the first LF. A CR directly before that LF is part of
    the terminator; any other CR is content and is kept.

    Args:
        stream: Connection to read from

    Returns:
        Line without its terminator
    """
    raw = stream.read_until(b"\n")
    line = raw[:-1]
    if line.endswith(b"\r"):
        line = line[:-1]
    return line


def classify(line: bytes, node: Optional[str] = None) -> bytes:
    """Raise for error lines, return every other line unchanged.

    Args:
        line: Response line without terminator
        node: Address for error context

    Returns:
        The line, for command-specific parsing

    Raises:
        ProtocolError: Empty line
        UnsupportedCommandError: Bare ERROR
        ClientError: CLIENT_ERROR <message>
        ServerError: SERVER_ERROR <message>
    """
    if not line:
        raise ProtocolError("Empty response received.", node)

    if line == GENERIC_ERROR:
        raise UnsupportedCommandError(node=node)

    if len(line) >= ERROR_PREFIX_LENGTH:
        head = line[:ERROR_PREFIX_LENGTH]
        if head == CLIENT_ERROR_PREFIX:
            raise ClientError(_text(line[ERROR_PREFIX_LENGTH:]), node)
        if head == SERVER_ERROR_PREFIX:
            raise ServerError(_text(line[ERROR_PREFIX_LENGTH:]), node)

    return line


def read_response(stream: Stream) -> bytes:
    """Read and classify the next response line."""
    line = read_line(stream)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"Received response from {stream.address}: {_text(line)}")
    return classify(line, stream.address)


def _unexpected(stream: Stream, line: bytes, command: str) -> ProtocolError:
    return ProtocolError(
        f"Unexpected response to {command}: {_text(line[:64])!r}",
        stream.address,
    )


def read_store_response(stream: Stream, command: str = "store") -> ResultStatus:
    line = read_response(stream)
    status = STORE_STATUSES.get(line)
    if status is None:
        raise _unexpected(stream, line, command)
    return status


def read_delete_response(stream: Stream) -> ResultStatus:
    line = read_response(stream)
    status = DELETE_STATUSES.get(line)
    if status is None:
        raise _unexpected(stream, line, "delete")
    return status


def read_counter_response(stream: Stream, command: str = "incr") -> Optional[int]:
    """Read an incr/decr reply.

    Returns:
        New counter value, or None when the key does not exist
    """
    line = read_response(stream)
    if line == b"NOT_FOUND":
        return None
    # Some servers pad decremented values with trailing spaces.
    digits = line.rstrip(b" ")
    if not digits.isdigit():
        raise _unexpected(stream, line, command)
    return int(digits)


def read_ok(stream: Stream, command: str) -> None:
    line = read_response(stream)
    if line != b"OK":
        raise _unexpected(stream, line, command)


def read_value_block(stream: Stream, size: int) -> bytes:
    """Read a payload of exactly size bytes plus its CRLF."""
    block = stream.read_exact(size + 2)
    if block[-2:] != CRLF:
        raise ProtocolError(
            f"Payload of {size} bytes not terminated by CRLF", stream.address
        )
    return block[:-2]


def read_values(stream: Stream) -> Dict[bytes, Tuple[CacheItem, int]]:
    """Read VALUE blocks up to END.

    Returns:
        Wire key -> (item, cas token); cas is 0 when the server sent none
    """
    values: Dict[bytes, Tuple[CacheItem, int]] = {}

    while True:
        line = read_response(stream)
        if line == END:
            return values

        parts = line.split(b" ")
        if parts[0] != b"VALUE" or len(parts) not in (4, 5):
            raise _unexpected(stream, line, "get")

        try:
            flags = int(parts[2])
            size = int(parts[3])
            cas = int(parts[4]) if len(parts) == 5 else 0
        except ValueError:
            raise _unexpected(stream, line, "get") from None

        data = read_value_block(stream, size)
        values[parts[1]] = (CacheItem(data=data, flags=flags), cas)


def read_stats(stream: Stream) -> Dict[str, str]:
    """Read STAT lines up to END."""
    stats: Dict[str, str] = {}

    while True:
        line = read_response(stream)
        if line == END:
            return stats

        parts = line.split(b" ", 2)
        if parts[0] != b"STAT" or len(parts) < 2:
            raise _unexpected(stream, line, "stats")
        stats[_text(parts[1])] = _text(parts[2]) if len(parts) == 3 else ""


def read_version(stream: Stream) -> str:
    line = read_response(stream)
    if not line.startswith(b"VERSION "):
        raise _unexpected(stream, line, "version")
    return _text(line[len(b"VERSION "):])


__all__ = [
    "Stream",
    "send_command",
    "read_line",
    "classify",
    "read_response",
    "read_store_response",
    "read_delete_response",
    "read_counter_response",
    "read_ok",
    "read_value_block",
    "read_values",
    "read_stats",
    "read_version",
]
