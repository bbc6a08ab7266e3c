"""RoadMC Node - One Memcached Server.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Callable, Dict, Optional

from roadmc_core.cluster.events import NodeEvent, NodeTransition
from roadmc_core.connection.pool import ConnectionPool, PoolConfig
from roadmc_core.connection.pooled import PooledConnection
from roadmc_core.protocol import codec
from roadmc_core.protocol.commands import encode_version
from roadmc_core.protocol.errors import MemcachedError

logger = logging.getLogger(__name__)


class NodeState(Enum):
    """Node health states."""

    ALIVE = auto()    # Normal operation
    SUSPECT = auto()  # Recent transport failure, still routed to
    DEAD = auto()     # Skipped by routing until a probe succeeds


@dataclass
class NodeInfo:
    """Information about a memcached server.

    Attributes:
        host: Server hostname or IP
        port: Server port
        weight: Relative share of ring points (100 = default)
    """

    host: str
    port: int = 11211
    weight: int = 100

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass
class NodeStats:
    """Node health statistics.

    Attributes:
        failures: Total transport/protocol failures
        consecutive_failures: Failures since the last success
        last_error: Message of the most recent failure
        last_failure_at: When it happened
        last_success_at: Last successful operation
    """

    failures: int = 0
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    last_failure_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None


class MemcachedNode:
    """A server in the cluster: its address, pool and health state.

    Health transitions:
        ALIVE -> SUSPECT   one transport failure
        SUSPECT -> DEAD    failure_threshold consecutive failures
        any -> DEAD        fatal failure (server unreachable)
        * -> ALIVE         successful operation or probe

    Only leaving ALIVE publishes FAILED; SUSPECT -> DEAD is logged only.

    Example:
        node = MemcachedNode(NodeInfo(host="cache-1.local", port=11211))
        conn = node.acquire()
        ...
        node.release(conn)
        node.mark_success()
    """

    def __init__(
        self,
        info: NodeInfo,
        pool_config: Optional[PoolConfig] = None,
        failure_threshold: int = 2,
        dead_timeout: float = 10.0,
        listener: Optional[Callable[[NodeTransition], None]] = None,
        connector: Optional[Callable[[int], PooledConnection]] = None,
    ):
        """Initialize node.

        Args:
            info: Server information
            pool_config: Connection pool configuration
            failure_threshold: Consecutive failures before DEAD
            dead_timeout: Seconds before a DEAD node is probed again
            listener: Receives every state transition
            connector: Connection factory passed to the pool (for tests)
        """
        self.info = info
        self.failure_threshold = max(failure_threshold, 1)
        self.dead_timeout = dead_timeout
        self.pool = ConnectionPool(info.host, info.port, pool_config, connector)

        self._state = NodeState.ALIVE
        self._stats = NodeStats()
        self._dead_since: Optional[float] = None
        self._listener = listener
        self._lock = threading.Lock()

    @property
    def address(self) -> str:
        return self.info.address

    @property
    def state(self) -> NodeState:
        return self._state

    @property
    def is_alive(self) -> bool:
        return self._state != NodeState.DEAD

    @property
    def probe_due(self) -> bool:
        """Dead long enough that the next request may try it."""
        if self._state != NodeState.DEAD:
            return False
        dead_since = self._dead_since
        return dead_since is not None and time.monotonic() - dead_since >= self.dead_timeout

    @property
    def is_available(self) -> bool:
        """Check if routing may send requests here."""
        return self.is_alive or self.probe_due

    def set_listener(self, listener: Optional[Callable[[NodeTransition], None]]) -> None:
        self._listener = listener

    def acquire(self, timeout: Optional[float] = None) -> PooledConnection:
        return self.pool.acquire(timeout)

    def release(self, conn: PooledConnection, healthy: bool = True) -> None:
        self.pool.release(conn, healthy)

    def mark_failure(
        self,
        error: Optional[BaseException] = None,
        fatal: bool = False,
    ) -> NodeState:
        """Record a failure and advance the health state.

        Args:
            error: The failure
            fatal: Declare the node dead immediately

        Returns:
            State after the failure
        """
        with self._lock:
            previous = self._state
            self._stats.failures += 1
            self._stats.consecutive_failures += 1
            self._stats.last_error = str(error) if error else None
            self._stats.last_failure_at = datetime.now()

            if (
                fatal
                or previous == NodeState.DEAD
                or self._stats.consecutive_failures >= self.failure_threshold
            ):
                current = NodeState.DEAD
                # A failed attempt on a dead node restarts its cool-down.
                self._dead_since = time.monotonic()
            else:
                current = NodeState.SUSPECT
            self._state = current

        # Sibling sockets to a failing server are most likely stale too.
        self.pool.purge()

        if current != previous:
            logger.warning(
                f"Node {self.address} {previous.name} -> {current.name} "
                f"after {self._stats.consecutive_failures} failure(s): {error}"
            )
            if previous == NodeState.ALIVE:
                self._notify(NodeTransition(self, previous, current, NodeEvent.FAILED, error))
        return current

    def mark_success(self) -> None:
        """Record a success; any degraded state goes back to ALIVE."""
        with self._lock:
            previous = self._state
            self._stats.consecutive_failures = 0
            self._stats.last_success_at = datetime.now()
            self._state = NodeState.ALIVE
            self._dead_since = None

        if previous != NodeState.ALIVE:
            logger.info(f"Node {self.address} {previous.name} -> ALIVE")
            self._notify(
                NodeTransition(self, previous, NodeState.ALIVE, NodeEvent.RECOVERED)
            )

    def _notify(self, transition: NodeTransition) -> None:
        if self._listener is None:
            return
        try:
            self._listener(transition)
        except Exception as e:
            logger.error(f"Transition listener error for {self.address}: {e}")

    def probe(self, timeout: Optional[float] = None) -> bool:
        """Check the server with a version command.

        Returns:
            True if it answered
        """
        try:
            conn = self.pool.acquire(timeout)
        except MemcachedError as e:
            self.mark_failure(e, fatal=True)
            return False

        try:
            codec.send_command(conn, encode_version())
            version = codec.read_version(conn)
        except MemcachedError as e:
            self.pool.release(conn, healthy=False)
            self.mark_failure(e, fatal=True)
            return False
        except BaseException:
            self.pool.release(conn, healthy=False)
            raise

        self.pool.release(conn)
        logger.debug(f"Probe of {self.address} succeeded (version {version})")
        self.mark_success()
        return True

    def close(self) -> None:
        """Close the node's pool."""
        self.pool.close()

    def get_stats(self) -> NodeStats:
        return self._stats

    def get_info(self) -> Dict[str, Any]:
        """Get node information.

        Returns:
            Node info dict
        """
        pool_stats = self.pool.stats()
        return {
            "address": self.address,
            "host": self.info.host,
            "port": self.info.port,
            "weight": self.info.weight,
            "state": self._state.name,
            "failures": self._stats.failures,
            "consecutive_failures": self._stats.consecutive_failures,
            "last_error": self._stats.last_error,
            "pool": {
                "capacity": pool_stats.capacity,
                "in_use": pool_stats.in_use,
                "idle": pool_stats.idle,
            },
        }

    def __repr__(self) -> str:
        return f"MemcachedNode(address={self.address}, state={self._state.name})"

    def __hash__(self) -> int:
        return hash(self.address)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, MemcachedNode):
            return self.address == other.address
        return False


__all__ = ["MemcachedNode", "NodeState", "NodeInfo", "NodeStats"]
