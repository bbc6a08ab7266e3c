"""RoadMC Executor - Routing, Connection Handling and Failover.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple, TypeVar

from roadmc_core.cluster.cluster import MemcachedCluster
from roadmc_core.cluster.node import MemcachedNode
from roadmc_core.connection.pooled import PooledConnection
from roadmc_core.metrics.collector import MetricsCollector, Timer
from roadmc_core.protocol.errors import (
    ClientError,
    MemcachedError,
    NoAvailableNodeError,
    NodeUnavailableError,
    PoolClosedError,
    PoolTimeoutError,
    ProtocolError,
    ServerError,
    TransportError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
V = TypeVar("V")

Operation = Callable[[PooledConnection], T]


class OperationExecutor:
    """Runs operations against the node that owns their key.

    Failure policy:
    - Transport errors mark the node failed and destroy the connection.
      Idempotent operations (reads) are retried once on the next node
      in ring order; writes surface the error.
    - Protocol errors destroy the connection and mark the node failed.
    - Client and server errors keep the connection and the node healthy.
    - Pool timeouts are raised without touching node health.

    Writes are only ever sent to the key's owner. A dead owner fails the
    write with NodeUnavailableError until its probe is due.

    Example:
        executor = OperationExecutor(cluster, metrics)
        value = executor.execute("user:1", lambda conn: ops.fetch(conn, [b"user:1"]),
                                 idempotent=True)
    """

    def __init__(
        self,
        cluster: MemcachedCluster,
        metrics: Optional[MetricsCollector] = None,
        pool_timeout: Optional[float] = None,
    ):
        """Initialize executor.

        Args:
            cluster: Cluster to route against
            metrics: Collector for latency, retries and errors
            pool_timeout: Connection acquire timeout (pool default if None)
        """
        self.cluster = cluster
        self.metrics = metrics or MetricsCollector()
        self.pool_timeout = pool_timeout

    def _route(self, key: str, idempotent: bool) -> List[MemcachedNode]:
        if idempotent:
            nodes = self.cluster.candidates(key, count=2)
            if not nodes:
                raise NoAvailableNodeError()
            return nodes

        owner = self.cluster.owner_of(key)
        if owner is None or not self.cluster.has_available_node():
            raise NoAvailableNodeError()
        if not owner.is_available:
            raise NodeUnavailableError("Node owning the key is dead", owner.address)
        return [owner]

    def execute(self, key: str, operation: Operation, idempotent: bool = False) -> T:
        """Run a single-key operation.

        Args:
            key: Cache key (selects the node)
            operation: Callable receiving an acquired connection
            idempotent: Allow one retry on the next node

        Returns:
            Whatever the operation returns

        Raises:
            MemcachedError: When the operation (and its retry) failed
        """
        try:
            nodes = self._route(key, idempotent)
        except MemcachedError as e:
            self.metrics.record_error(e)
            raise

        last_error: Optional[TransportError] = None
        for attempt, node in enumerate(nodes):
            if attempt:
                self.metrics.record_retry()
                logger.info(f"Retrying on {node.address} after: {last_error}")
            try:
                return self.execute_on(node, operation)
            except TransportError as e:
                if not e.retryable or isinstance(e, PoolTimeoutError):
                    raise
                last_error = e

        if last_error is None:
            raise NoAvailableNodeError()
        raise last_error

    def execute_on(self, node: MemcachedNode, operation: Operation) -> T:
        """Run an operation on one specific node.

        Args:
            node: Target node
            operation: Callable receiving an acquired connection

        Returns:
            Whatever the operation returns
        """
        with Timer(self.metrics):
            try:
                conn = node.acquire(self.pool_timeout)
            except PoolTimeoutError as e:
                logger.warning(f"Pool exhausted on {node.address}: {e}")
                self.metrics.record_error(e)
                raise
            except TransportError as e:
                self.metrics.record_error(e)
                if not isinstance(e, PoolClosedError):
                    node.mark_failure(e, fatal=e.fatal)
                raise

            try:
                result = operation(conn)
            except TransportError as e:
                node.release(conn, healthy=False)
                node.mark_failure(e, fatal=e.fatal)
                self.metrics.record_error(e)
                raise
            except ProtocolError as e:
                node.release(conn, healthy=False)
                node.mark_failure(e)
                self.metrics.record_error(e)
                raise
            except (ClientError, ServerError) as e:
                node.release(conn)
                node.mark_success()
                self.metrics.record_error(e)
                raise
            except BaseException:
                node.release(conn, healthy=False)
                raise

            node.release(conn)
            node.mark_success()
            return result

    def _group(
        self, keys: Sequence[str], exclude: Set[MemcachedNode]
    ) -> Tuple[Dict[MemcachedNode, List[str]], List[str]]:
        groups: Dict[MemcachedNode, List[str]] = {}
        unrouted: List[str] = []
        for key in keys:
            nodes = self.cluster.candidates(key, count=1, exclude=exclude)
            if nodes:
                groups.setdefault(nodes[0], []).append(key)
            else:
                unrouted.append(key)
        return groups, unrouted

    def execute_many(
        self,
        keys: Sequence[str],
        operation: Callable[[PooledConnection, List[str]], Dict[str, V]],
    ) -> Dict[str, V]:
        """Run a multi-key read, one request per node.

        Keys are grouped by node. A group whose node fails is regrouped
        once over the remaining nodes.

        Args:
            keys: Cache keys
            operation: Callable receiving a connection and that node's keys

        Returns:
            Merged per-key results
        """
        pending = list(dict.fromkeys(keys))
        results: Dict[str, V] = {}
        excluded: Set[MemcachedNode] = set()
        last_error: Optional[MemcachedError] = None

        for attempt in range(2):
            if not pending:
                break
            if attempt:
                self.metrics.record_retry()
                logger.info(f"Regrouping {len(pending)} key(s) after: {last_error}")

            groups, unrouted = self._group(pending, excluded)
            if unrouted:
                error = last_error or NoAvailableNodeError()
                self.metrics.record_error(error)
                raise error

            failed: List[str] = []
            for node, group in groups.items():
                try:
                    results.update(
                        self.execute_on(node, lambda conn, group=group: operation(conn, group))
                    )
                except TransportError as e:
                    if not e.retryable or isinstance(e, PoolTimeoutError):
                        raise
                    excluded.add(node)
                    failed.extend(group)
                    last_error = e
            pending = failed

        if pending:
            if last_error is None:
                raise NoAvailableNodeError()
            raise last_error
        return results

    def execute_all(
        self, operation: Operation
    ) -> Tuple[Dict[str, T], Dict[str, Exception]]:
        """Run an operation on every node.

        Dead nodes not yet due for a probe are reported as failures
        without being contacted.

        Args:
            operation: Callable receiving an acquired connection

        Returns:
            (address -> result, address -> error)
        """
        results: Dict[str, T] = {}
        errors: Dict[str, Exception] = {}

        for node in self.cluster.nodes:
            if not node.is_available:
                errors[node.address] = NodeUnavailableError("Node is dead", node.address)
                continue
            try:
                results[node.address] = self.execute_on(node, operation)
            except MemcachedError as e:
                errors[node.address] = e

        return results, errors


__all__ = ["OperationExecutor", "Operation"]
