"""RoadMC Connection Pool - Bounded Connection Slots per Server.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from roadmc_core.connection.pooled import PooledConnection
from roadmc_core.protocol.errors import PoolClosedError, PoolTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class PoolConfig:
    """Connection pool configuration.

    Attributes:
        min_size: Idle connections kept when evicting
        max_size: Maximum concurrent connections
        acquire_timeout: Seconds to wait for a free slot
        idle_timeout: Seconds of inactivity before eviction
        connect_timeout: Seconds allowed for connecting
        operation_timeout: Seconds allowed per socket read/write
    """

    min_size: int = 0
    max_size: int = 10
    acquire_timeout: float = 5.0
    idle_timeout: float = 60.0
    connect_timeout: float = 2.0
    operation_timeout: float = 2.0


@dataclass
class PoolStats:
    """Connection pool statistics."""

    capacity: int = 0
    in_use: int = 0
    idle: int = 0
    created: int = 0
    destroyed: int = 0
    timeouts: int = 0


class ConnectionPool:
    """Bounded pool of connections to one server.

    Slots are addressed by index. A slot is either free (no socket),
    idle (socket parked in the pool) or busy (socket owned by one
    caller). Every state change happens under one condition variable.

    Example:
        pool = ConnectionPool("cache-1.local", 11211, PoolConfig(max_size=4))
        conn = pool.acquire(timeout=1.0)
        try:
            conn.write(b"version\\r\\n")
            conn.read_until(b"\\n")
        except Exception:
            pool.release(conn, healthy=False)
            raise
        pool.release(conn)
    """

    def __init__(
        self,
        host: str,
        port: int,
        config: Optional[PoolConfig] = None,
        connector: Optional[Callable[[int], PooledConnection]] = None,
    ):
        """Initialize pool.

        Args:
            host: Server host
            port: Server port
            config: Pool configuration
            connector: Opens a connection for a slot index (for tests)
        """
        self.host = host
        self.port = port
        self.address = f"{host}:{port}"
        self.config = config or PoolConfig()
        self._connector = connector or self._connect

        size = self.config.max_size
        self._slots: List[Optional[PooledConnection]] = [None] * size
        self._free: List[int] = list(reversed(range(size)))
        self._idle: List[int] = []

        self._cond = threading.Condition(threading.Lock())
        self._closed = False
        self._stats = PoolStats(capacity=size)

    def _connect(self, slot: int) -> PooledConnection:
        return PooledConnection.connect(
            self.host,
            self.port,
            slot=slot,
            connect_timeout=self.config.connect_timeout,
            operation_timeout=self.config.operation_timeout,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def in_use(self) -> int:
        """Slots currently owned by callers (including ones connecting)."""
        with self._cond:
            return self._in_use_locked()

    def _in_use_locked(self) -> int:
        return self.config.max_size - len(self._free) - len(self._idle)

    def acquire(self, timeout: Optional[float] = None) -> PooledConnection:
        """Take a connection out of the pool.

        Args:
            timeout: Seconds to wait for a slot, default from config

        Returns:
            Connection owned by the caller until release()

        Raises:
            PoolTimeoutError: No slot freed up in time
            PoolClosedError: Pool was closed
            NodeConnectError: Opening a new connection failed
        """
        timeout = self.config.acquire_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout

        with self._cond:
            while True:
                if self._closed:
                    raise PoolClosedError("Pool is closed", self.address)

                while self._idle:
                    slot = self._idle.pop()
                    conn = self._slots[slot]
                    if conn is not None and conn.is_alive:
                        conn.busy = True
                        return conn
                    self._destroy_locked(slot)

                if self._free:
                    slot = self._free.pop()
                    break

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._stats.timeouts += 1
                    raise PoolTimeoutError(
                        f"No free connection after {timeout:.2f}s "
                        f"({self.config.max_size} in use)",
                        self.address,
                    )
                self._cond.wait(remaining)

        # The reserved slot counts as in use while connecting.
        try:
            conn = self._connector(slot)
        except BaseException:
            with self._cond:
                self._free.append(slot)
                self._cond.notify()
            raise

        conn.busy = True
        with self._cond:
            if self._closed:
                conn.close()
                self._free.append(slot)
                raise PoolClosedError("Pool is closed", self.address)
            self._slots[slot] = conn
            self._stats.created += 1
        return conn

    def release(self, conn: PooledConnection, healthy: bool = True) -> None:
        """Give a connection back.

        Args:
            conn: Connection obtained from acquire()
            healthy: False if the operation on it failed; the socket is
                then closed instead of being reused
        """
        with self._cond:
            slot = conn.slot
            if slot >= len(self._slots) or self._slots[slot] is not conn or not conn.busy:
                logger.warning(f"Ignoring release of unknown connection {conn!r}")
                return

            conn.busy = False
            if healthy and conn.is_alive and not conn.has_pending_data and not self._closed:
                self._idle.append(slot)
            else:
                self._destroy_locked(slot)

            self._evict_locked()
            self._cond.notify()

    def evict_idle(self) -> int:
        """Close idle connections past the idle timeout.

        Returns:
            Number of connections closed
        """
        with self._cond:
            evicted = self._evict_locked()
            if evicted:
                self._cond.notify_all()
            return evicted

    def _evict_locked(self) -> int:
        evicted = 0
        live = self.config.max_size - len(self._free)

        # Bottom of the idle stack holds the least recently used slots.
        while self._idle and live > self.config.min_size:
            slot = self._idle[0]
            conn = self._slots[slot]
            if conn is not None and conn.idle_seconds < self.config.idle_timeout:
                break
            self._idle.pop(0)
            self._destroy_locked(slot)
            live -= 1
            evicted += 1

        if evicted:
            logger.debug(f"Evicted {evicted} idle connection(s) to {self.address}")
        return evicted

    def purge(self) -> int:
        """Close every idle connection.

        Returns:
            Number of connections closed
        """
        with self._cond:
            count = len(self._idle)
            while self._idle:
                self._destroy_locked(self._idle.pop())
            self._cond.notify_all()
            return count

    def _destroy_locked(self, slot: int) -> None:
        conn = self._slots[slot]
        self._slots[slot] = None
        self._free.append(slot)
        if conn is not None:
            conn.close()
            self._stats.destroyed += 1

    def close(self) -> None:
        """Close the pool. Busy connections are closed on release."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            while self._idle:
                self._destroy_locked(self._idle.pop())
            self._cond.notify_all()
        logger.debug(f"Closed pool for {self.address}")

    def stats(self) -> PoolStats:
        """Get pool statistics.

        Returns:
            PoolStats snapshot
        """
        with self._cond:
            return PoolStats(
                capacity=self.config.max_size,
                in_use=self._in_use_locked(),
                idle=len(self._idle),
                created=self._stats.created,
                destroyed=self._stats.destroyed,
                timeouts=self._stats.timeouts,
            )

    def __repr__(self) -> str:
        stats = self.stats()
        return (
            f"ConnectionPool(address={self.address}, "
            f"in_use={stats.in_use}, idle={stats.idle}, capacity={stats.capacity})"
        )


__all__ = ["ConnectionPool", "PoolConfig", "PoolStats"]
