"""RoadMC Client - Memcached Cluster Client.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from roadmc_core.client import operations as ops
from roadmc_core.client.config import ClientConfig
from roadmc_core.client.executor import OperationExecutor
from roadmc_core.client.results import OperationResult, ServerStats
from roadmc_core.cluster.cluster import ConnectorFactory, MemcachedCluster
from roadmc_core.cluster.events import NodeEvent, NodeEventDispatcher, NodeListener
from roadmc_core.cluster.node import MemcachedNode
from roadmc_core.connection.pooled import PooledConnection
from roadmc_core.metrics.collector import MetricsCollector
from roadmc_core.protocol.commands import (
    CacheItem,
    Expiration,
    ResultStatus,
    StoreMode,
    expiration_to_seconds,
    validate_key,
)
from roadmc_core.protocol.errors import FlushError, IllegalValueError
from roadmc_core.protocol.transcoder import DefaultTranscoder, Transcoder

logger = logging.getLogger(__name__)


def _check_delta(delta: int) -> int:
    if isinstance(delta, bool) or not isinstance(delta, int) or delta < 0:
        raise IllegalValueError(f"Delta must be a non-negative int, got {delta!r}")
    return delta


def _check_counter(value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise IllegalValueError(f"Counter default must be a non-negative int, got {value!r}")
    return value


def _raw_payload(data: Union[bytes, bytearray, str]) -> CacheItem:
    if isinstance(data, str):
        return CacheItem(data=data.encode("utf-8"))
    if isinstance(data, (bytes, bytearray, memoryview)):
        return CacheItem(data=bytes(data))
    raise IllegalValueError(f"Append/prepend data must be bytes or str, got {type(data).__name__}")


class MemcachedClient:
    """Client for a cluster of memcached servers.

    Keys are spread over the servers with consistent hashing. Every
    operation borrows a pooled connection to the owning server; reads
    fail over to the next server once, writes never leave the owner.

    Expected negative outcomes (missing key, CAS conflict, not stored)
    are reported through return values; errors raise MemcachedError
    subclasses.

    Example:
        config = ClientConfig(servers=("cache-1.local:11211", "cache-2.local:11211"))
        with MemcachedClient(config) as client:
            client.set("user:1", {"name": "John"}, expires=300)
            user = client.get("user:1")

            result = client.get_with_cas("user:1")
            client.cas("user:1", {"name": "Jane"}, cas=result.cas)

            client.increment("visits", default=1, delta=1)

            @client.on_node_failed
            def alert(node):
                print(f"{node.address} is down")
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        transcoder: Optional[Transcoder] = None,
        metrics: Optional[MetricsCollector] = None,
        connector_factory: Optional[ConnectorFactory] = None,
    ):
        """Initialize client and start background maintenance.

        Args:
            config: Client configuration
            transcoder: Value (de)serializer
            metrics: Metrics collector
            connector_factory: Per-node connection factory (for tests)
        """
        self.config = config or ClientConfig()
        self.transcoder = transcoder or DefaultTranscoder()
        self.metrics = metrics or MetricsCollector()

        self._events = NodeEventDispatcher()
        self._events.subscribe(NodeEvent.FAILED, self.metrics.record_node_failure)
        self._events.subscribe(NodeEvent.RECOVERED, self.metrics.record_node_recovery)

        self._cluster = MemcachedCluster(
            self.config.nodes,
            config=self.config.to_cluster_config(),
            pool_config=self.config.to_pool_config(),
            events=self._events,
            connector_factory=connector_factory,
        )
        self._executor = OperationExecutor(
            self._cluster,
            self.metrics,
            pool_timeout=self.config.pool_timeout,
        )
        self._closed = False

        self._cluster.start()
        logger.info(
            f"Client {self.config.name} created for {len(self._cluster)} server(s)"
        )

    @property
    def cluster(self) -> MemcachedCluster:
        return self._cluster

    @property
    def nodes(self) -> List[MemcachedNode]:
        return self._cluster.nodes

    @property
    def events(self) -> NodeEventDispatcher:
        return self._events

    @property
    def closed(self) -> bool:
        return self._closed

    # Retrieval

    def execute_get(self, key: str) -> OperationResult[Any]:
        """Get a value with its full result.

        Args:
            key: Cache key

        Returns:
            Result with status OK or NOT_FOUND
        """
        return self._fetch_one(key, with_cas=False)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value.

        Args:
            key: Cache key
            default: Returned when the key is absent

        Returns:
            Cached value or default
        """
        result = self._fetch_one(key, with_cas=False)
        return result.value if result.success else default

    def try_get(self, key: str) -> Tuple[bool, Any]:
        """Get a value, telling a stored None apart from a miss.

        Returns:
            (found, value)
        """
        result = self._fetch_one(key, with_cas=False)
        return result.success, result.value

    def get_with_cas(self, key: str) -> OperationResult[Any]:
        """Get a value and its CAS token (result.cas)."""
        return self._fetch_one(key, with_cas=True)

    def try_get_with_cas(self, key: str) -> Tuple[bool, OperationResult[Any]]:
        result = self._fetch_one(key, with_cas=True)
        return result.success, result

    def _fetch_one(self, key: str, with_cas: bool) -> OperationResult[Any]:
        encoded = validate_key(key)

        def operation(conn: PooledConnection) -> OperationResult[Any]:
            values = ops.fetch(conn, [encoded], with_cas)
            if encoded not in values:
                return OperationResult.fail(ResultStatus.NOT_FOUND, node=conn.address)
            item, cas = values[encoded]
            return OperationResult.ok(
                ResultStatus.OK, self.transcoder.deserialize(item), cas=cas, node=conn.address
            )

        result = self._executor.execute(key, operation, idempotent=True)
        if result.success:
            self.metrics.record_hit()
        else:
            self.metrics.record_miss()
        return result

    def get_many(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Get several values, one request per server.

        Args:
            keys: Cache keys

        Returns:
            Found keys mapped to values; missing keys are left out
        """
        return {key: result.value for key, result in self._fetch_many(keys, False).items()}

    def get_many_with_cas(self, keys: Iterable[str]) -> Dict[str, OperationResult[Any]]:
        """Get several values with their CAS tokens.

        Returns:
            Found keys mapped to results
        """
        return self._fetch_many(keys, True)

    def _fetch_many(
        self, keys: Iterable[str], with_cas: bool
    ) -> Dict[str, OperationResult[Any]]:
        keys = list(dict.fromkeys(keys))
        encoded = {key: validate_key(key) for key in keys}
        if not keys:
            return {}

        def operation(conn: PooledConnection, group: List[str]) -> Dict[str, OperationResult[Any]]:
            values = ops.fetch(conn, [encoded[k] for k in group], with_cas)
            found: Dict[str, OperationResult[Any]] = {}
            for key in group:
                if encoded[key] in values:
                    item, cas = values[encoded[key]]
                    found[key] = OperationResult.ok(
                        ResultStatus.OK,
                        self.transcoder.deserialize(item),
                        cas=cas,
                        node=conn.address,
                    )
            return found

        results = self._executor.execute_many(keys, operation)
        if results:
            self.metrics.record_hit(len(results))
        if len(keys) > len(results):
            self.metrics.record_miss(len(keys) - len(results))
        return results

    # Storage

    def execute_store(
        self,
        mode: StoreMode,
        key: str,
        value: Any,
        expires: Expiration = None,
    ) -> OperationResult[bool]:
        """Store a value and report the full result.

        Args:
            mode: ADD, REPLACE or SET
            key: Cache key
            value: Value to store
            expires: None/0 for never, seconds, timedelta or datetime

        Returns:
            Result with status STORED or NOT_STORED
        """
        encoded = validate_key(key)
        item = self.transcoder.serialize(value)
        exptime = expiration_to_seconds(expires)

        def operation(conn: PooledConnection) -> OperationResult[bool]:
            status = ops.store(conn, mode.value, encoded, item, exptime)
            if status == ResultStatus.STORED:
                return OperationResult.ok(status, True, node=conn.address)
            return OperationResult.fail(status, node=conn.address)

        result = self._executor.execute(key, operation)
        self.metrics.record_store(result.success)
        return result

    def store(
        self,
        mode: StoreMode,
        key: str,
        value: Any,
        expires: Expiration = None,
    ) -> bool:
        return self.execute_store(mode, key, value, expires).success

    def set(self, key: str, value: Any, expires: Expiration = None) -> bool:
        """Store a value unconditionally."""
        return self.store(StoreMode.SET, key, value, expires)

    def add(self, key: str, value: Any, expires: Expiration = None) -> bool:
        """Store a value only if the key is absent."""
        return self.store(StoreMode.ADD, key, value, expires)

    def replace(self, key: str, value: Any, expires: Expiration = None) -> bool:
        """Store a value only if the key exists."""
        return self.store(StoreMode.REPLACE, key, value, expires)

    def cas(
        self,
        key: str,
        value: Any,
        cas: int = 0,
        expires: Expiration = None,
        mode: StoreMode = StoreMode.SET,
    ) -> OperationResult[bool]:
        """Store a value if it was not modified since it was read.

        With a token of 0 this is a plain store using `mode`; otherwise the
        cas command is used and `mode` is ignored.

        Args:
            key: Cache key
            value: Value to store
            cas: Token from get_with_cas()
            expires: Expiration
            mode: Store mode used when no token is given

        Returns:
            Result with the new token on success, EXISTS on conflict,
            NOT_FOUND if the key vanished
        """
        encoded = validate_key(key)
        item = self.transcoder.serialize(value)
        exptime = expiration_to_seconds(expires)
        verb = "cas" if cas else mode.value

        result = self._executor.execute(
            key,
            partial(ops.store_reporting_cas, verb=verb, key=encoded, item=item,
                    exptime=exptime, cas=cas or None),
        )
        self.metrics.record_store(result.success)
        return result

    def _concatenate(
        self, verb: str, key: str, data: Union[bytes, str], cas: Optional[int]
    ) -> OperationResult[bool]:
        encoded = validate_key(key)
        item = _raw_payload(data)

        def operation(conn: PooledConnection) -> OperationResult[bool]:
            status = ops.store(conn, verb, encoded, item)
            if status == ResultStatus.STORED:
                return OperationResult.ok(status, True, node=conn.address)
            return OperationResult.fail(status, node=conn.address)

        def guarded(conn: PooledConnection) -> OperationResult[bool]:
            # Read, splice and write back with cas so the token is honoured.
            values = ops.fetch(conn, [encoded], with_cas=True)
            if encoded not in values:
                return OperationResult.fail(ResultStatus.NOT_STORED, node=conn.address)
            current, current_cas = values[encoded]
            if current_cas != cas:
                return OperationResult.fail(
                    ResultStatus.EXISTS, node=conn.address, cas=current_cas
                )
            if verb == "append":
                spliced = current.data + item.data
            else:
                spliced = item.data + current.data
            return ops.store_reporting_cas(
                conn, "cas", encoded, CacheItem(spliced, current.flags), 0, current_cas
            )

        if cas is None:
            chosen = operation
        elif cas:
            chosen = guarded
        else:
            chosen = partial(ops.store_reporting_cas, verb=verb, key=encoded, item=item)

        result = self._executor.execute(key, chosen)
        self.metrics.record_store(result.success)
        return result

    def append(self, key: str, data: Union[bytes, str]) -> bool:
        """Append raw bytes to an existing value.

        Returns:
            False if the key does not exist
        """
        return self._concatenate("append", key, data, None).success

    def prepend(self, key: str, data: Union[bytes, str]) -> bool:
        """Prepend raw bytes to an existing value.

        Returns:
            False if the key does not exist
        """
        return self._concatenate("prepend", key, data, None).success

    def append_with_cas(
        self, key: str, data: Union[bytes, str], cas: int = 0
    ) -> OperationResult[bool]:
        return self._concatenate("append", key, data, cas)

    def prepend_with_cas(
        self, key: str, data: Union[bytes, str], cas: int = 0
    ) -> OperationResult[bool]:
        return self._concatenate("prepend", key, data, cas)

    # Counters

    def _mutate(
        self,
        verb: str,
        key: str,
        default: int,
        delta: int,
        expires: Expiration,
        cas: Optional[int],
    ) -> OperationResult[int]:
        encoded = validate_key(key)
        _check_counter(default)
        _check_delta(delta)
        exptime = expiration_to_seconds(expires)

        if cas is None:
            operation = partial(ops.mutate, verb=verb, key=encoded, delta=delta,
                                default=default, exptime=exptime)
        else:
            operation = partial(ops.mutate_cas, verb=verb, key=encoded, delta=delta,
                                default=default, cas=cas, exptime=exptime)

        result = self._executor.execute(key, operation)
        self.metrics.record_counter()
        return result

    def increment(
        self,
        key: str,
        default: int = 0,
        delta: int = 1,
        expires: Expiration = None,
    ) -> Optional[int]:
        """Increment a counter, creating it with `default` if absent.

        The delta is not applied when the counter is created. Values wrap
        at 2**64.

        Args:
            key: Counter key
            default: Initial value for a missing counter
            delta: Amount to add
            expires: Expiration used when creating the counter

        Returns:
            New counter value, None if it could not be created
        """
        return self._mutate("incr", key, default, delta, expires, None).value

    def decrement(
        self,
        key: str,
        default: int = 0,
        delta: int = 1,
        expires: Expiration = None,
    ) -> Optional[int]:
        """Decrement a counter (never below 0), creating it if absent."""
        return self._mutate("decr", key, default, delta, expires, None).value

    def increment_with_cas(
        self,
        key: str,
        default: int = 0,
        delta: int = 1,
        cas: int = 0,
        expires: Expiration = None,
    ) -> OperationResult[int]:
        """Increment only if the counter still has token `cas` (0 = any).

        Returns:
            Result with the new value and token, EXISTS on conflict
        """
        return self._mutate("incr", key, default, delta, expires, cas)

    def decrement_with_cas(
        self,
        key: str,
        default: int = 0,
        delta: int = 1,
        cas: int = 0,
        expires: Expiration = None,
    ) -> OperationResult[int]:
        return self._mutate("decr", key, default, delta, expires, cas)

    # Removal

    def execute_remove(self, key: str) -> OperationResult[bool]:
        encoded = validate_key(key)

        def operation(conn: PooledConnection) -> OperationResult[bool]:
            status = ops.delete(conn, encoded)
            if status == ResultStatus.DELETED:
                return OperationResult.ok(status, True, node=conn.address)
            return OperationResult.fail(status, node=conn.address)

        result = self._executor.execute(key, operation)
        if result.success:
            self.metrics.record_delete()
        return result

    def remove(self, key: str) -> bool:
        """Delete a key.

        Returns:
            False if the key did not exist
        """
        return self.execute_remove(key).success

    # Server-wide

    def flush_all(self, delay: int = 0) -> None:
        """Invalidate every item on every server.

        Every server is attempted even if some fail.

        Args:
            delay: Seconds before the flush takes effect

        Raises:
            FlushError: Carrying the error of each failed server
        """
        _, errors = self._executor.execute_all(partial(ops.flush, delay=delay))
        if errors:
            raise FlushError(errors)
        logger.info(f"Flushed {len(self._cluster)} server(s)")

    def stats(self, stat_type: Optional[str] = None) -> ServerStats:
        """Collect statistics from every reachable server.

        Args:
            stat_type: Stats group (items, slabs, settings, ...) or None

        Returns:
            ServerStats; unreachable servers are left out
        """
        results, errors = self._executor.execute_all(partial(ops.stats, stat_type=stat_type))
        for address, error in errors.items():
            logger.warning(f"Stats unavailable from {address}: {error}")
        return ServerStats(results)

    def version(self) -> Dict[str, str]:
        """Get the version string of every reachable server."""
        results, errors = self._executor.execute_all(ops.version)
        for address, error in errors.items():
            logger.warning(f"Version unavailable from {address}: {error}")
        return results

    # Node events

    def on_node_failed(self, listener: NodeListener) -> NodeListener:
        """Register a callback for degraded nodes.

        Usable as a decorator. The callback receives the node and runs on
        the event thread.
        """
        self._events.subscribe(NodeEvent.FAILED, listener)
        return listener

    def on_node_recovered(self, listener: NodeListener) -> NodeListener:
        """Register a callback for nodes back to alive."""
        self._events.subscribe(NodeEvent.RECOVERED, listener)
        return listener

    def remove_listener(self, listener: Callable[..., Any]) -> bool:
        return self._events.unsubscribe(listener)

    # Lifecycle

    def topology(self) -> Dict[str, Any]:
        return self._cluster.get_topology()

    def close(self) -> None:
        """Stop maintenance, close every connection and the event thread."""
        if self._closed:
            return
        self._closed = True
        self._cluster.stop()
        self._events.close()
        logger.info(f"Client {self.config.name} closed")

    def __enter__(self) -> "MemcachedClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"MemcachedClient(name={self.config.name!r}, servers={len(self._cluster)})"


__all__ = ["MemcachedClient"]
