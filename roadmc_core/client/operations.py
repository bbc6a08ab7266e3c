"""RoadMC Operations - Request/Response Exchanges on One Connection.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.

Each function drives the codec for one logical operation over a connection
the executor already acquired. They raise on protocol/transport problems
and report soft outcomes through ResultStatus.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from roadmc_core.connection.pooled import PooledConnection
from roadmc_core.protocol import codec
from roadmc_core.protocol.commands import (
    MAX_COUNTER,
    CacheItem,
    ResultStatus,
    encode_counter,
    encode_delete,
    encode_flush,
    encode_retrieval,
    encode_stats,
    encode_storage,
    encode_version,
)
from roadmc_core.protocol.errors import ClientError
from roadmc_core.protocol.transcoder import TypeFlag
from roadmc_core.client.results import OperationResult

Fetched = Dict[bytes, Tuple[CacheItem, int]]


def counter_item(value: int) -> CacheItem:
    """Wire form of a counter: ASCII decimal tagged as int."""
    return CacheItem(data=str(value).encode("ascii"), flags=TypeFlag.INT)


def fetch(conn: PooledConnection, keys: List[bytes], with_cas: bool = False) -> Fetched:
    """get/gets for one or more keys on the same node."""
    codec.send_command(conn, encode_retrieval("gets" if with_cas else "get", keys))
    return codec.read_values(conn)


def read_cas(conn: PooledConnection, key: bytes) -> int:
    """Current CAS token of a key, 0 if it vanished meanwhile."""
    values = fetch(conn, [key], with_cas=True)
    return values[key][1] if key in values else 0


def store(
    conn: PooledConnection,
    verb: str,
    key: bytes,
    item: CacheItem,
    exptime: int = 0,
    cas: Optional[int] = None,
) -> ResultStatus:
    """set/add/replace/append/prepend/cas."""
    codec.send_command(conn, encode_storage(verb, key, item, exptime, cas))
    return codec.read_store_response(conn, verb)


def store_reporting_cas(
    conn: PooledConnection,
    verb: str,
    key: bytes,
    item: CacheItem,
    exptime: int = 0,
    cas: Optional[int] = None,
) -> OperationResult[bool]:
    """Store and, on success, read back the token of the stored value.

    The text protocol does not return the token with STORED, so it is
    fetched with gets on the same connection.
    """
    status = store(conn, verb, key, item, exptime, cas)
    if status == ResultStatus.STORED:
        return OperationResult.ok(status, True, cas=read_cas(conn, key), node=conn.address)
    return OperationResult.fail(status, node=conn.address)


def delete(conn: PooledConnection, key: bytes) -> ResultStatus:
    codec.send_command(conn, encode_delete(key))
    return codec.read_delete_response(conn)


def mutate(
    conn: PooledConnection,
    verb: str,
    key: bytes,
    delta: int,
    default: int,
    exptime: int = 0,
) -> OperationResult[int]:
    """incr/decr, creating the counter with its default when absent.

    A missing key is created with `default` and the delta is not applied
    on creation. If another client creates the key between our incr and
    add, the incr is sent once more.
    """
    for _ in range(2):
        codec.send_command(conn, encode_counter(verb, key, delta))
        value = codec.read_counter_response(conn, verb)
        if value is not None:
            return OperationResult.ok(ResultStatus.OK, value, node=conn.address)

        status = store(conn, "add", key, counter_item(default), exptime)
        if status == ResultStatus.STORED:
            return OperationResult.ok(status, default, node=conn.address)
        if status != ResultStatus.NOT_STORED:
            return OperationResult.fail(status, node=conn.address)

    return OperationResult.fail(
        ResultStatus.NOT_STORED,
        message="Counter was created and removed concurrently",
        node=conn.address,
    )


def _apply_delta(verb: str, current: int, delta: int) -> int:
    if verb == "incr":
        return (current + delta) & MAX_COUNTER
    return max(current - delta, 0)


def mutate_cas(
    conn: PooledConnection,
    verb: str,
    key: bytes,
    delta: int,
    default: int,
    cas: int,
    exptime: int = 0,
) -> OperationResult[int]:
    """incr/decr guarded by a CAS token.

    Reads the value with gets, compares tokens, then writes the new value
    with cas. A token of 0 skips the comparison but still protects the
    read-modify-write against concurrent writers.
    """
    values = fetch(conn, [key], with_cas=True)

    if key not in values:
        status = store(conn, "add", key, counter_item(default), exptime)
        if status == ResultStatus.STORED:
            return OperationResult.ok(
                status, default, cas=read_cas(conn, key), node=conn.address
            )
        return OperationResult.fail(status, node=conn.address)

    item, current_cas = values[key]
    if cas and cas != current_cas:
        return OperationResult.fail(ResultStatus.EXISTS, node=conn.address, cas=current_cas)

    digits = item.data.strip()
    if not digits.isdigit():
        raise ClientError(
            "cannot increment or decrement non-numeric value", conn.address
        )

    new_value = _apply_delta(verb, int(digits), delta)
    new_item = CacheItem(data=str(new_value).encode("ascii"), flags=item.flags)
    status = store(conn, "cas", key, new_item, exptime, current_cas)
    if status == ResultStatus.STORED:
        return OperationResult.ok(
            status, new_value, cas=read_cas(conn, key), node=conn.address
        )
    return OperationResult.fail(status, node=conn.address)


def flush(conn: PooledConnection, delay: int = 0) -> None:
    codec.send_command(conn, encode_flush(delay))
    codec.read_ok(conn, "flush_all")


def stats(conn: PooledConnection, stat_type: Optional[str] = None) -> Dict[str, str]:
    codec.send_command(conn, encode_stats(stat_type))
    return codec.read_stats(conn)


def version(conn: PooledConnection) -> str:
    codec.send_command(conn, encode_version())
    return codec.read_version(conn)


__all__ = [
    "counter_item",
    "fetch",
    "read_cas",
    "store",
    "store_reporting_cas",
    "delete",
    "mutate",
    "mutate_cas",
    "flush",
    "stats",
    "version",
]
