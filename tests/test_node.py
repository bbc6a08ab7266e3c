"""Tests for node health and events.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

import threading

from roadmc_core.cluster.events import NodeEvent, NodeEventDispatcher
from roadmc_core.cluster.node import MemcachedNode, NodeInfo, NodeState
from roadmc_core.protocol.errors import ConnectionLostError


def make_node(memcached=None, **kwargs):
    info = NodeInfo(host="127.0.0.1", port=memcached.port) if memcached else NodeInfo("10.0.0.1")
    events = NodeEventDispatcher()
    transitions = []
    node = MemcachedNode(info, listener=lambda t: (transitions.append(t), events.publish(t)), **kwargs)
    return node, events, transitions


class TestNodeHealth:
    """Tests for MemcachedNode state transitions."""

    def test_suspect_then_dead(self):
        """Test threshold failures walk ALIVE -> SUSPECT -> DEAD with one FAILED."""
        node, _, transitions = make_node(failure_threshold=2)

        assert node.mark_failure(ConnectionLostError("reset")) == NodeState.SUSPECT
        assert node.is_available
        assert node.mark_failure(ConnectionLostError("reset")) == NodeState.DEAD
        assert not node.is_available

        assert [(t.previous, t.current, t.event) for t in transitions] == [
            (NodeState.ALIVE, NodeState.SUSPECT, NodeEvent.FAILED),
        ]

    def test_suspect_recovery_pairs_events(self):
        """Test a SUSPECT node that recovers emits one FAILED and one RECOVERED."""
        node, _, transitions = make_node(failure_threshold=3)
        node.mark_failure(ConnectionLostError("reset"))
        node.mark_failure(ConnectionLostError("reset"))
        node.mark_success()

        assert [t.event for t in transitions] == [NodeEvent.FAILED, NodeEvent.RECOVERED]

    def test_identity_is_address(self):
        """Test nodes are identified and compared by address."""
        node, _, _ = make_node()
        twin = MemcachedNode(NodeInfo("10.0.0.1"))

        assert node.address == "10.0.0.1:11211"
        assert node == twin and hash(node) == hash(twin)
        assert len({node, twin}) == 1

    def test_fatal_goes_dead(self):
        """Test a fatal failure skips SUSPECT."""
        node, _, transitions = make_node(failure_threshold=5)

        assert node.mark_failure(fatal=True) == NodeState.DEAD
        assert len(transitions) == 1

    def test_repeated_failures_emit_once(self):
        """Test failures on a dead node emit no further events."""
        node, _, transitions = make_node(failure_threshold=1)

        for _ in range(5):
            node.mark_failure(ConnectionLostError("reset"))

        assert node.state == NodeState.DEAD
        assert len(transitions) == 1
        assert node.get_stats().failures == 5

    def test_success_recovers(self):
        """Test success returns the node to ALIVE with a RECOVERED event."""
        node, _, transitions = make_node(failure_threshold=1)
        node.mark_failure(fatal=True)
        node.mark_success()

        assert node.state == NodeState.ALIVE
        assert transitions[-1].event == NodeEvent.RECOVERED
        node.mark_success()
        assert len(transitions) == 2

    def test_probe_due_after_timeout(self):
        """Test a dead node becomes available once its cool-down passes."""
        node, _, _ = make_node(dead_timeout=0.0)
        node.mark_failure(fatal=True)

        assert node.state == NodeState.DEAD
        assert node.probe_due
        assert node.is_available

    def test_probe(self, memcached):
        """Test probe revives a node whose server answers."""
        node, _, transitions = make_node(memcached)
        node.mark_failure(fatal=True)

        assert node.probe(timeout=1.0)
        assert node.state == NodeState.ALIVE
        node.close()

    def test_probe_unreachable(self, memcached):
        """Test probe keeps an unreachable node dead."""
        node, _, _ = make_node(memcached)
        memcached.stop()

        assert not node.probe(timeout=1.0)
        assert node.state == NodeState.DEAD
        node.close()


class TestNodeEventDispatcher:
    """Tests for NodeEventDispatcher."""

    def test_listeners_receive_node(self):
        """Test subscribed listeners are called with the node once."""
        node, events, _ = make_node(failure_threshold=1)
        failed, recovered = [], []
        events.subscribe(NodeEvent.FAILED, failed.append)
        events.subscribe(NodeEvent.RECOVERED, recovered.append)

        node.mark_failure(fatal=True)
        node.mark_failure(fatal=True)
        node.mark_success()
        events.flush(timeout=2.0)

        assert failed == [node]
        assert recovered == [node]
        events.close()

    def test_unsubscribe(self):
        """Test removed listeners are not called."""
        node, events, _ = make_node()
        calls = []
        events.subscribe(NodeEvent.FAILED, calls.append)

        assert events.unsubscribe(calls.append)
        assert not events.unsubscribe(calls.append)
        node.mark_failure(fatal=True)
        events.flush(timeout=2.0)

        assert calls == []
        events.close()

    def test_listener_errors_isolated(self):
        """Test a failing listener does not stop the others."""
        node, events, _ = make_node()
        calls = []

        def broken(n):
            raise RuntimeError("boom")

        events.subscribe(NodeEvent.FAILED, broken)
        events.subscribe(NodeEvent.FAILED, calls.append)
        node.mark_failure(fatal=True)
        events.flush(timeout=2.0)

        assert calls == [node]
        events.close()

    def test_delivered_off_thread(self):
        """Test listeners run on the dispatcher thread."""
        node, events, _ = make_node()
        threads = []
        events.subscribe(NodeEvent.FAILED, lambda n: threads.append(threading.current_thread()))

        node.mark_failure(fatal=True)
        events.flush(timeout=2.0)

        assert threads and threads[0] is not threading.current_thread()
        events.close()
