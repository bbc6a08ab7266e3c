"""Tests for MemcachedClient against a fake server.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

import threading

import pytest

from roadmc_core.client.client import MemcachedClient
from roadmc_core.protocol.commands import ResultStatus, StoreMode
from roadmc_core.protocol.errors import (
    ClientError,
    FlushError,
    IllegalKeyError,
    ProtocolError,
    ServerError,
    UnsupportedCommandError,
)
from roadmc_core.protocol.transcoder import JSONTranscoder
from tests.conftest import client_config


class TestBasicOperations:
    """Tests for get/store/remove."""

    def test_set_get(self, client):
        """Test values come back with their type."""
        assert client.set("str", "hello")
        assert client.set("dict", {"name": "John", "tags": [1, 2]})
        assert client.set("bytes", b"\x00\x01")

        assert client.get("str") == "hello"
        assert client.get("dict") == {"name": "John", "tags": [1, 2]}
        assert client.get("bytes") == b"\x00\x01"

    def test_get_missing(self, client):
        """Test misses return the default."""
        assert client.get("missing") is None
        assert client.get("missing", default=5) == 5

        result = client.execute_get("missing")
        assert not result.success
        assert result.status == ResultStatus.NOT_FOUND

    def test_try_get_none_value(self, client):
        """Test a stored None is distinguishable from a miss."""
        client.set("none", None)
        assert client.try_get("none") == (True, None)
        assert client.try_get("missing") == (False, None)

    def test_add_replace(self, client):
        """Test add/replace conditions."""
        assert client.add("k", 1)
        assert not client.add("k", 2)
        assert client.get("k") == 1

        assert not client.replace("other", 1)
        assert client.replace("k", 3)
        assert client.get("k") == 3

        result = client.execute_store(StoreMode.ADD, "k", 4)
        assert result.status == ResultStatus.NOT_STORED

    def test_remove(self, client):
        """Test delete."""
        client.set("k", "v")
        assert client.remove("k")
        assert not client.remove("k")
        assert client.get("k") is None

    def test_expiration_sent(self, client, memcached):
        """Test expiration reaches the wire as seconds."""
        client.set("k", "v", expires=300)
        assert memcached.commands[-1] == b"set k 1 300 1"

    def test_illegal_key_before_io(self, client, memcached):
        """Test bad keys fail without contacting the server."""
        with pytest.raises(IllegalKeyError):
            client.get("has space")
        with pytest.raises(IllegalKeyError):
            client.set("k" * 251, "v")
        assert memcached.commands == []

    def test_custom_transcoder(self, memcached):
        """Test a client with the JSON transcoder."""
        with MemcachedClient(client_config([memcached]), transcoder=JSONTranscoder()) as c:
            c.set("j", {"a": 1})
            assert c.get("j") == {"a": 1}
        assert memcached.items[b"j"][1] == b'{"a": 1}'


class TestCas:
    """Tests for CAS operations."""

    def test_cas_success(self, client):
        """Test cas with the current token stores and returns a new token."""
        client.set("k", "v1")
        read = client.get_with_cas("k")
        assert read.success and read.cas

        result = client.cas("k", "v2", cas=read.cas)
        assert result.success
        assert result.status == ResultStatus.STORED
        assert result.cas and result.cas != read.cas
        assert client.get("k") == "v2"

    def test_token_changes_on_write(self, client):
        """Test every successful write produces a new token."""
        client.set("k", "v1")
        tokens = [client.get_with_cas("k").cas]
        for value in ("v2", "v3"):
            client.set("k", value)
            tokens.append(client.get_with_cas("k").cas)

        assert all(tokens)
        assert len(set(tokens)) == 3
        assert client.get_with_cas("k").value == "v3"

    def test_cas_conflict(self, client):
        """Test a stale token gives EXISTS."""
        client.set("k", "v1")
        read = client.get_with_cas("k")
        client.set("k", "other")

        result = client.cas("k", "v2", cas=read.cas)
        assert not result.success
        assert result.status == ResultStatus.EXISTS
        assert client.get("k") == "other"

    def test_cas_missing(self, client):
        """Test cas on a removed key gives NOT_FOUND."""
        client.set("k", "v1")
        read = client.get_with_cas("k")
        client.remove("k")

        result = client.cas("k", "v2", cas=read.cas)
        assert result.status == ResultStatus.NOT_FOUND

    def test_cas_without_token(self, client):
        """Test token 0 stores with the given mode and reports a token."""
        result = client.cas("k", "v", mode=StoreMode.ADD)
        assert result.success and result.cas
        assert not client.cas("k", "v", mode=StoreMode.ADD).success

    def test_try_get_with_cas(self, client):
        """Test try_get_with_cas."""
        client.set("k", 1)
        found, result = client.try_get_with_cas("k")
        assert found and result.value == 1 and result.cas

    def test_concurrent_cas_one_winner(self, client):
        """Test only one of several writers with the same token wins."""
        client.set("k", 0)
        token = client.get_with_cas("k").cas
        results = []

        def writer(i):
            results.append(client.cas("k", i, cas=token).success)

        threads = [threading.Thread(target=writer, args=(i,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1


class TestConcatenation:
    """Tests for append/prepend."""

    def test_append_prepend(self, client):
        """Test raw bytes are concatenated."""
        client.set("k", b"mid")
        assert client.append("k", b"-end")
        assert client.prepend("k", "start-")
        assert client.get("k") == b"start-mid-end"

    def test_append_missing(self, client):
        """Test append to a missing key is NOT_STORED."""
        assert not client.append("missing", b"x")
        result = client.append_with_cas("missing", b"x")
        assert result.status == ResultStatus.NOT_STORED

    def test_append_with_cas(self, client):
        """Test guarded append honours the token."""
        client.set("k", b"a")
        token = client.get_with_cas("k").cas

        result = client.append_with_cas("k", b"b", cas=token)
        assert result.success and result.cas
        stale = client.prepend_with_cas("k", b"z", cas=token)
        assert stale.status == ResultStatus.EXISTS
        assert client.get("k") == b"ab"


class TestCounters:
    """Tests for increment/decrement."""

    def test_increment_creates_with_default(self, client):
        """Test a missing counter is created and the delta ignored."""
        assert client.increment("n", default=10, delta=5) == 10
        assert client.increment("n", default=10, delta=5) == 15
        assert client.get("n") == 15

    def test_decrement_floor(self, client):
        """Test decrement never goes below zero."""
        client.increment("n", default=3)
        assert client.decrement("n", delta=10) == 0

    def test_increment_wraps(self, client):
        """Test incr wraps at 2**64."""
        client.increment("n", default=2 ** 64 - 1)
        assert client.increment("n", delta=2) == 1

    def test_increment_non_numeric(self, client):
        """Test incr on text raises ClientError."""
        client.set("k", "abc")
        with pytest.raises(ClientError):
            client.increment("k")

    def test_increment_with_cas(self, client):
        """Test guarded counters."""
        created = client.increment_with_cas("n", default=7, delta=1)
        assert created.success and created.value == 7 and created.cas

        bumped = client.increment_with_cas("n", delta=3, cas=created.cas)
        assert bumped.value == 10

        stale = client.decrement_with_cas("n", delta=1, cas=created.cas)
        assert stale.status == ResultStatus.EXISTS
        assert client.get("n") == 10

    def test_bad_delta(self, client):
        """Test negative deltas are rejected."""
        with pytest.raises(ClientError):
            client.increment("n", delta=-1)


class TestMultiGet:
    """Tests for get_many."""

    def test_get_many(self, cluster_client):
        """Test keys spread over nodes come back together."""
        data = {f"user:{i}": i for i in range(30)}
        for key, value in data.items():
            cluster_client.set(key, value)

        found = cluster_client.get_many(list(data) + ["missing"])
        assert found == data

    def test_get_many_with_cas(self, client):
        """Test tokens are returned per key."""
        client.set("a", 1)
        client.set("b", 2)
        results = client.get_many_with_cas(["a", "b", "c"])

        assert set(results) == {"a", "b"}
        assert all(r.cas for r in results.values())

    def test_get_many_empty(self, client):
        """Test an empty key list."""
        assert client.get_many([]) == {}


class TestServerErrors:
    """Tests for error replies."""

    def test_server_error_keeps_node(self, client, memcached):
        """Test SERVER_ERROR raises but leaves node and connection healthy."""
        client.set("k", "v")
        memcached.inject(b"SERVER_ERROR out of memory")

        with pytest.raises(ServerError):
            client.set("k", "v2")

        node = client.nodes[0]
        assert node.state.name == "ALIVE"
        assert client.get("k") == "v"

    def test_generic_error(self, client, memcached):
        """Test bare ERROR."""
        memcached.inject(b"ERROR")
        with pytest.raises(UnsupportedCommandError):
            client.get("k")

    def test_protocol_error_marks_node(self, client, memcached):
        """Test a garbage reply destroys the connection and marks the node."""
        memcached.inject(b"WHAT")
        with pytest.raises(ProtocolError):
            client.remove("k")

        assert client.nodes[0].get_stats().failures == 1
        assert client.set("k", "v")
        assert client.nodes[0].state.name == "ALIVE"


class TestServerWide:
    """Tests for flush_all, stats and version."""

    def test_flush_all(self, cluster_client, memcached_trio):
        """Test every node is flushed."""
        for i in range(10):
            cluster_client.set(f"k{i}", i)
        cluster_client.flush_all()

        assert all(not s.items for s in memcached_trio)
        assert cluster_client.get_many([f"k{i}" for i in range(10)]) == {}

    def test_flush_partial_failure(self, cluster_client, memcached_trio):
        """Test FlushError lists the failing node."""
        memcached_trio[1].inject(b"SERVER_ERROR busy")

        with pytest.raises(FlushError) as exc_info:
            cluster_client.flush_all()

        assert set(exc_info.value.failures) == {memcached_trio[1].address}
        assert isinstance(exc_info.value.failures[memcached_trio[1].address], ServerError)

    def test_stats(self, cluster_client, memcached_trio):
        """Test stats from every node and aggregation."""
        for i in range(6):
            cluster_client.set(f"k{i}", i)

        stats = cluster_client.stats()
        assert len(stats) == 3
        assert stats.aggregate("curr_items") == 6
        assert stats.get(memcached_trio[0].address, "version") == "1.6.21"

    def test_version(self, client, memcached):
        """Test version per node."""
        assert client.version() == {memcached.address: "1.6.21"}


class TestLifecycle:
    """Tests for client lifecycle and metrics."""

    def test_metrics(self, client):
        """Test operations are counted."""
        client.set("k", "v")
        client.get("k")
        client.get("missing")

        metrics = client.metrics.get_metrics()
        assert metrics.hits == 1
        assert metrics.misses == 1
        assert metrics.stores == 1

    def test_connection_reuse(self, client, memcached):
        """Test sequential operations share one connection."""
        for i in range(10):
            client.set(f"k{i}", i)
        assert memcached.connections_opened == 1

    def test_context_manager(self, memcached):
        """Test close via with."""
        with MemcachedClient(client_config([memcached])) as c:
            c.set("k", "v")
        assert c.closed
