"""Tests for ConnectionPool.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

import threading
import time

import pytest

from roadmc_core.connection.pool import ConnectionPool, PoolConfig
from roadmc_core.connection.pooled import PooledConnection
from roadmc_core.protocol.errors import (
    NodeConnectError,
    PoolClosedError,
    PoolTimeoutError,
)
from tests.conftest import MockSocket


def fake_connector(opened):
    def connect(slot):
        conn = PooledConnection(MockSocket([]), "fake:11211", slot)
        opened.append(conn)
        return conn
    return connect


def make_pool(max_size=2, **kwargs):
    opened = []
    pool = ConnectionPool(
        "fake", 11211,
        PoolConfig(max_size=max_size, acquire_timeout=0.2, **kwargs),
        connector=fake_connector(opened),
    )
    return pool, opened


class TestConnectionPool:
    """Tests for ConnectionPool."""

    def test_reuses_idle_connection(self):
        """Test a released connection is handed out again."""
        pool, opened = make_pool()

        conn = pool.acquire()
        pool.release(conn)
        again = pool.acquire()

        assert again is conn
        assert len(opened) == 1

    def test_capacity_and_timeout(self):
        """Test the pool never exceeds capacity and times out."""
        pool, _ = make_pool(max_size=2)

        a = pool.acquire()
        b = pool.acquire()
        assert pool.in_use == 2

        start = time.monotonic()
        with pytest.raises(PoolTimeoutError):
            pool.acquire(timeout=0.1)
        assert time.monotonic() - start >= 0.1
        assert pool.stats().timeouts == 1

        pool.release(a)
        pool.release(b)
        assert pool.in_use == 0

    def test_waiter_wakes_on_release(self):
        """Test a blocked acquire gets the released slot."""
        pool, _ = make_pool(max_size=1)
        conn = pool.acquire()
        result = []

        def waiter():
            result.append(pool.acquire(timeout=2.0))

        thread = threading.Thread(target=waiter)
        thread.start()
        time.sleep(0.05)
        pool.release(conn)
        thread.join(timeout=2.0)

        assert result == [conn]

    def test_unhealthy_release_destroys(self):
        """Test a failed connection is closed, not reused."""
        pool, opened = make_pool()

        conn = pool.acquire()
        pool.release(conn, healthy=False)

        assert not conn.is_alive
        assert pool.acquire() is not conn
        assert len(opened) == 2
        assert pool.stats().destroyed == 1

    def test_pending_data_destroys(self):
        """Test a connection with unread bytes is not reused."""
        opened = []

        def connect(slot):
            conn = PooledConnection(MockSocket([b"END\r\nEXTRA"]), "fake:11211", slot)
            opened.append(conn)
            return conn

        pool = ConnectionPool("fake", 11211, PoolConfig(max_size=1), connector=connect)
        conn = pool.acquire()
        conn.read_until(b"\n")
        pool.release(conn)

        assert not conn.is_alive

    def test_connect_failure_frees_slot(self):
        """Test a failed connect does not leak the reserved slot."""
        def refuse(slot):
            raise NodeConnectError("refused", "fake:11211")

        pool = ConnectionPool("fake", 11211, PoolConfig(max_size=1), connector=refuse)
        for _ in range(3):
            with pytest.raises(NodeConnectError):
                pool.acquire(timeout=0.1)
        assert pool.in_use == 0

    def test_evict_idle(self):
        """Test idle connections past the timeout are closed."""
        pool, _ = make_pool(max_size=3, idle_timeout=0.05, min_size=1)
        conns = [pool.acquire() for _ in range(3)]
        for conn in conns:
            pool.release(conn)

        time.sleep(0.1)
        evicted = pool.evict_idle()

        assert evicted == 2
        assert pool.stats().idle == 1

    def test_purge(self):
        """Test purge closes every idle connection."""
        pool, _ = make_pool()
        a, b = pool.acquire(), pool.acquire()
        pool.release(a)

        assert pool.purge() == 1
        assert not a.is_alive
        assert b.is_alive
        pool.release(b)

    def test_close(self):
        """Test acquire after close."""
        pool, _ = make_pool()
        conn = pool.acquire()
        pool.close()
        pool.release(conn)

        assert not conn.is_alive
        with pytest.raises(PoolClosedError):
            pool.acquire()

    def test_concurrent_bound(self):
        """Test many threads never hold more than capacity."""
        pool, _ = make_pool(max_size=3)
        peak = []
        lock = threading.Lock()
        active = [0]

        def worker():
            for _ in range(20):
                conn = pool.acquire(timeout=2.0)
                with lock:
                    active[0] += 1
                    peak.append(active[0])
                time.sleep(0.001)
                with lock:
                    active[0] -= 1
                pool.release(conn)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert max(peak) <= 3
        assert pool.in_use == 0
