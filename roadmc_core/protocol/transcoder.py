"""RoadMC Transcoder - Value Serialization.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.

The core only ever moves CacheItem(data, flags). A Transcoder turns Python
values into items and back; the flags field carries the type tag.
"""

from __future__ import annotations

import gzip
import json
import logging
import pickle
import zlib
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict

import msgpack

from roadmc_core.protocol.commands import CacheItem
from roadmc_core.protocol.errors import IllegalValueError

logger = logging.getLogger(__name__)


class TypeFlag:
    """Type tags stored in the low byte of flags."""

    BYTES = 0
    STR = 1
    INT = 2
    BOOL = 3
    FLOAT = 4
    PICKLE = 5
    JSON = 6
    MSGPACK = 7

    MASK = 0xFF


class CompressionType(Enum):
    """Compression types, stored as flag bits."""

    NONE = 0
    ZLIB = 0x100
    GZIP = 0x200


COMPRESSION_MASK = CompressionType.ZLIB.value | CompressionType.GZIP.value


class Transcoder(ABC):
    """Abstract value transcoder.

    Implementations decide how a value becomes bytes and which flags
    describe it.
    """

    @property
    @abstractmethod
    def format_name(self) -> str:
        """Get format name."""
        pass

    @abstractmethod
    def serialize(self, value: Any) -> CacheItem:
        """Serialize value to an item.

        Args:
            value: Value to serialize

        Returns:
            Wire item
        """
        pass

    @abstractmethod
    def deserialize(self, item: CacheItem) -> Any:
        """Deserialize an item to a value.

        Args:
            item: Wire item

        Returns:
            Deserialized value
        """
        pass


class RawTranscoder(Transcoder):
    """Bytes in, bytes out. Flags are left at zero."""

    @property
    def format_name(self) -> str:
        return "raw"

    def serialize(self, value: Any) -> CacheItem:
        if isinstance(value, CacheItem):
            return value
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise IllegalValueError(
                f"RawTranscoder stores bytes only, got {type(value).__name__}"
            )
        return CacheItem(data=bytes(value), flags=TypeFlag.BYTES)

    def deserialize(self, item: CacheItem) -> Any:
        return item.data


class DefaultTranscoder(Transcoder):
    """Type-tagged transcoder with optional compression.

    Primitive values are stored in their natural text/bytes form so other
    clients can read them; anything else is pickled. Counters written by
    increment()/decrement() come back as int.

    Example:
        transcoder = DefaultTranscoder(compression=CompressionType.ZLIB)
        item = transcoder.serialize({"name": "John"})
        value = transcoder.deserialize(item)
    """

    def __init__(
        self,
        compression: CompressionType = CompressionType.NONE,
        compression_threshold: int = 1024,
        pickle_protocol: int = pickle.HIGHEST_PROTOCOL,
    ):
        """Initialize transcoder.

        Args:
            compression: Compression applied to large payloads
            compression_threshold: Size threshold for compression
            pickle_protocol: Pickle protocol version
        """
        self.compression = compression
        self.compression_threshold = compression_threshold
        self.pickle_protocol = pickle_protocol

    @property
    def format_name(self) -> str:
        return "default"

    def serialize(self, value: Any) -> CacheItem:
        if isinstance(value, CacheItem):
            return value

        if isinstance(value, (bytes, bytearray, memoryview)):
            data, flags = bytes(value), TypeFlag.BYTES
        elif isinstance(value, str):
            data, flags = value.encode("utf-8"), TypeFlag.STR
        elif isinstance(value, bool):
            data, flags = (b"1" if value else b"0"), TypeFlag.BOOL
        elif isinstance(value, int):
            data, flags = str(value).encode("ascii"), TypeFlag.INT
        elif isinstance(value, float):
            data, flags = repr(value).encode("ascii"), TypeFlag.FLOAT
        else:
            data, flags = pickle.dumps(value, protocol=self.pickle_protocol), TypeFlag.PICKLE

        return self._compress(data, flags)

    def deserialize(self, item: CacheItem) -> Any:
        data = _decompress(item)
        flag = item.flags & TypeFlag.MASK

        if flag == TypeFlag.BYTES:
            return data
        if flag == TypeFlag.STR:
            return data.decode("utf-8")
        if flag == TypeFlag.INT:
            return int(data.strip())
        if flag == TypeFlag.BOOL:
            return data == b"1"
        if flag == TypeFlag.FLOAT:
            return float(data)
        if flag == TypeFlag.PICKLE:
            return pickle.loads(data)
        if flag == TypeFlag.JSON:
            return json.loads(data.decode("utf-8"))
        if flag == TypeFlag.MSGPACK:
            return msgpack.unpackb(data, raw=False)

        logger.warning(f"Unknown type flag {flag}, returning raw bytes")
        return data

    def _compress(self, data: bytes, flags: int) -> CacheItem:
        if self.compression == CompressionType.NONE or len(data) < self.compression_threshold:
            return CacheItem(data=data, flags=flags)

        if self.compression == CompressionType.GZIP:
            compressed = gzip.compress(data)
        else:
            compressed = zlib.compress(data)

        if len(compressed) < len(data):
            return CacheItem(data=compressed, flags=flags | self.compression.value)
        return CacheItem(data=data, flags=flags)


def _decompress(item: CacheItem) -> bytes:
    if item.flags & CompressionType.GZIP.value:
        return gzip.decompress(item.data)
    if item.flags & CompressionType.ZLIB.value:
        return zlib.decompress(item.data)
    return item.data


class JSONTranscoder(Transcoder):
    """JSON transcoder.

    Good for human-readable data and interoperability.
    Limited to JSON-compatible types.
    """

    @property
    def format_name(self) -> str:
        return "json"

    def serialize(self, value: Any) -> CacheItem:
        return CacheItem(
            data=json.dumps(value, default=str).encode("utf-8"),
            flags=TypeFlag.JSON,
        )

    def deserialize(self, item: CacheItem) -> Any:
        return json.loads(_decompress(item).decode("utf-8"))


class PickleTranscoder(Transcoder):
    """Pickle transcoder.

    Supports any Python object.
    Not safe for untrusted data.
    """

    def __init__(self, protocol: int = pickle.HIGHEST_PROTOCOL):
        self.protocol = protocol

    @property
    def format_name(self) -> str:
        return "pickle"

    def serialize(self, value: Any) -> CacheItem:
        return CacheItem(
            data=pickle.dumps(value, protocol=self.protocol),
            flags=TypeFlag.PICKLE,
        )

    def deserialize(self, item: CacheItem) -> Any:
        return pickle.loads(_decompress(item))


class MsgPackTranscoder(Transcoder):
    """MessagePack transcoder.

    Compact binary format, faster than JSON.
    """

    @property
    def format_name(self) -> str:
        return "msgpack"

    def serialize(self, value: Any) -> CacheItem:
        return CacheItem(
            data=msgpack.packb(value, use_bin_type=True),
            flags=TypeFlag.MSGPACK,
        )

    def deserialize(self, item: CacheItem) -> Any:
        return msgpack.unpackb(_decompress(item), raw=False)


_TRANSCODERS: Dict[str, type] = {
    "raw": RawTranscoder,
    "default": DefaultTranscoder,
    "json": JSONTranscoder,
    "pickle": PickleTranscoder,
    "msgpack": MsgPackTranscoder,
}


def get_transcoder(format_name: str = "default") -> Transcoder:
    """Create a transcoder by format name.

    Args:
        format_name: One of raw, default, json, pickle, msgpack

    Returns:
        Transcoder instance

    Raises:
        KeyError: If format not found
    """
    if format_name not in _TRANSCODERS:
        raise KeyError(f"Unknown transcoder format: {format_name}")
    return _TRANSCODERS[format_name]()


__all__ = [
    "Transcoder",
    "TypeFlag",
    "CompressionType",
    "RawTranscoder",
    "DefaultTranscoder",
    "JSONTranscoder",
    "PickleTranscoder",
    "MsgPackTranscoder",
    "get_transcoder",
]
