"""Protocol module - Text protocol codec, errors and transcoders."""

from roadmc_core.protocol.commands import (
    CacheItem,
    ResultStatus,
    StoreMode,
)
from roadmc_core.protocol.errors import (
    ClientError,
    FlushError,
    MemcachedError,
    NoAvailableNodeError,
    ProtocolError,
    ServerError,
    TransportError,
)
from roadmc_core.protocol.transcoder import (
    DefaultTranscoder,
    JSONTranscoder,
    MsgPackTranscoder,
    PickleTranscoder,
    RawTranscoder,
    Transcoder,
)

__all__ = [
    "CacheItem",
    "ResultStatus",
    "StoreMode",
    "MemcachedError",
    "ProtocolError",
    "ClientError",
    "ServerError",
    "TransportError",
    "NoAvailableNodeError",
    "FlushError",
    "Transcoder",
    "DefaultTranscoder",
    "RawTranscoder",
    "JSONTranscoder",
    "PickleTranscoder",
    "MsgPackTranscoder",
]
