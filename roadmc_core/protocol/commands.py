"""RoadMC Commands - Text Protocol Request Encoding.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.

Every encoder returns the complete request (command line plus payload) as
one buffer so it goes out in a single write.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, List, Optional, Union

from roadmc_core.protocol.errors import IllegalKeyError, IllegalValueError

CRLF = b"\r\n"

MAX_KEY_LENGTH = 250
MAX_FLAGS = 0xFFFFFFFF
MAX_COUNTER = 0xFFFFFFFFFFFFFFFF

# Relative expirations above this are read by the server as unix timestamps.
MAX_RELATIVE_EXPIRATION = 60 * 60 * 24 * 30

Expiration = Union[None, int, float, timedelta, datetime]


class StoreMode(Enum):
    """Storage semantics for store() and cas()."""

    ADD = "add"          # Store only if the key is absent
    REPLACE = "replace"  # Store only if the key is present
    SET = "set"          # Store unconditionally


class ResultStatus(Enum):
    """Outcome of a single operation."""

    STORED = "STORED"
    NOT_STORED = "NOT_STORED"
    EXISTS = "EXISTS"
    NOT_FOUND = "NOT_FOUND"
    DELETED = "DELETED"
    OK = "OK"
    FAILED = "FAILED"


@dataclass(frozen=True)
class CacheItem:
    """Opaque payload as it travels on the wire.

    Attributes:
        data: Raw value bytes
        flags: Caller-defined type tag stored next to the value
    """

    data: bytes
    flags: int = 0


def validate_key(key: str) -> bytes:
    """Check a key and return its wire form.

    Args:
        key: Cache key

    Returns:
        UTF-8 encoded key

    Raises:
        IllegalKeyError: If the key is not usable on the text protocol
    """
    if not isinstance(key, str):
        raise IllegalKeyError(f"Key must be str, not {type(key).__name__}")
    if not key:
        raise IllegalKeyError("Key must not be empty")

    encoded = key.encode("utf-8")
    if len(encoded) > MAX_KEY_LENGTH:
        raise IllegalKeyError(
            f"Key is {len(encoded)} bytes, limit is {MAX_KEY_LENGTH}"
        )
    for byte in encoded:
        if byte <= 32 or byte == 127:
            raise IllegalKeyError(f"Key contains whitespace or control characters: {key!r}")
    return encoded


def expiration_to_seconds(expires: Expiration, now: Optional[float] = None) -> int:
    """Convert an expiration to the exptime field.

    Args:
        expires: None/0 for never, seconds, timedelta or absolute datetime
        now: Current unix time (for tests)

    Returns:
        Relative seconds, or a unix timestamp past the 30 day limit
    """
    if expires is None:
        return 0

    now = time.time() if now is None else now

    if isinstance(expires, datetime):
        return max(int(expires.timestamp()), 1)

    if isinstance(expires, timedelta):
        seconds = expires.total_seconds()
    else:
        seconds = float(expires)

    if seconds < 0:
        raise IllegalValueError(f"Expiration must not be negative: {expires!r}")
    if seconds == 0:
        return 0
    if seconds > MAX_RELATIVE_EXPIRATION:
        return int(now + seconds)
    return max(int(seconds), 1)


def _field(value: int) -> bytes:
    return str(value).encode("ascii")


def encode_storage(
    verb: str,
    key: bytes,
    item: CacheItem,
    exptime: int = 0,
    cas: Optional[int] = None,
) -> bytes:
    """Encode set/add/replace/append/prepend/cas.

    Args:
        verb: Storage command name
        key: Validated key
        item: Payload and flags
        exptime: Expiration field
        cas: Token for the cas command

    Returns:
        Header line, payload and trailer in one buffer
    """
    if not isinstance(item.data, (bytes, bytearray, memoryview)):
        raise IllegalValueError(
            f"Payload must be bytes, not {type(item.data).__name__}"
        )
    if not 0 <= item.flags <= MAX_FLAGS:
        raise IllegalValueError(f"Flags out of range: {item.flags}")

    data = bytes(item.data)
    parts: List[bytes] = [
        verb.encode("ascii"),
        key,
        _field(item.flags),
        _field(exptime),
        _field(len(data)),
    ]
    if cas is not None:
        parts.append(_field(cas))

    return b" ".join(parts) + CRLF + data + CRLF


def encode_retrieval(verb: str, keys: Iterable[bytes]) -> bytes:
    """Encode get/gets for one or more keys."""
    return verb.encode("ascii") + b" " + b" ".join(keys) + CRLF


def encode_delete(key: bytes) -> bytes:
    return b"delete " + key + CRLF


def encode_counter(verb: str, key: bytes, delta: int) -> bytes:
    """Encode incr/decr."""
    if not 0 <= delta <= MAX_COUNTER:
        raise IllegalValueError(f"Delta out of range: {delta}")
    return verb.encode("ascii") + b" " + key + b" " + _field(delta) + CRLF


def encode_flush(delay: int = 0) -> bytes:
    if delay:
        return b"flush_all " + _field(delay) + CRLF
    return b"flush_all" + CRLF


def encode_stats(stat_type: Optional[str] = None) -> bytes:
    if stat_type:
        return b"stats " + stat_type.encode("ascii") + CRLF
    return b"stats" + CRLF


def encode_version() -> bytes:
    return b"version" + CRLF


__all__ = [
    "CRLF",
    "MAX_KEY_LENGTH",
    "MAX_COUNTER",
    "Expiration",
    "StoreMode",
    "ResultStatus",
    "CacheItem",
    "validate_key",
    "expiration_to_seconds",
    "encode_storage",
    "encode_retrieval",
    "encode_delete",
    "encode_counter",
    "encode_flush",
    "encode_stats",
    "encode_version",
]
