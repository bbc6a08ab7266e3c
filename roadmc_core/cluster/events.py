"""RoadMC Node Events - Node Health Notifications.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

if TYPE_CHECKING:
    from roadmc_core.cluster.node import MemcachedNode, NodeState

logger = logging.getLogger(__name__)

NodeListener = Callable[["MemcachedNode"], Any]


class NodeEvent(Enum):
    """Kinds of node notifications."""

    FAILED = auto()     # Node left ALIVE (to SUSPECT or DEAD)
    RECOVERED = auto()  # Node back to alive


@dataclass(frozen=True)
class NodeTransition:
    """One health state change of a node.

    Attributes:
        node: Node that changed
        previous: State before
        current: State after
        event: FAILED or RECOVERED
        error: Failure that caused it, if any
    """

    node: "MemcachedNode"
    previous: "NodeState"
    current: "NodeState"
    event: NodeEvent
    error: Optional[BaseException] = field(default=None, compare=False)


class NodeEventDispatcher:
    """Delivers node transitions to registered listeners.

    Delivery runs on one background thread, so listeners see transitions
    in the order they happened and never block the operation that caused
    them. Each transition is delivered once to every listener registered
    at publish time.

    Example:
        dispatcher = NodeEventDispatcher()
        dispatcher.subscribe(NodeEvent.FAILED, lambda node: print(node))
        ...
        dispatcher.close()
    """

    def __init__(self):
        self._listeners: Dict[NodeEvent, List[NodeListener]] = {
            event: [] for event in NodeEvent
        }
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="roadmc-node-events",
        )
        self._closed = False

    def subscribe(self, event: NodeEvent, listener: NodeListener) -> None:
        """Register a listener.

        Args:
            event: Event kind
            listener: Called with the node
        """
        with self._lock:
            self._listeners[event].append(listener)

    def unsubscribe(self, listener: NodeListener) -> bool:
        """Remove a listener from every event.

        Returns:
            True if it was registered
        """
        removed = False
        with self._lock:
            for listeners in self._listeners.values():
                while listener in listeners:
                    listeners.remove(listener)
                    removed = True
        return removed

    def publish(self, transition: NodeTransition) -> None:
        """Queue a transition for delivery."""
        with self._lock:
            if self._closed:
                return
            listeners = list(self._listeners[transition.event])
            if not listeners:
                return
            self._executor.submit(self._deliver, listeners, transition)

    def _deliver(self, listeners: List[NodeListener], transition: NodeTransition) -> None:
        for listener in listeners:
            try:
                listener(transition.node)
            except Exception as e:
                logger.error(
                    f"Node listener error for {transition.node.address} "
                    f"({transition.event.name}): {e}"
                )

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every queued transition has been delivered."""
        with self._lock:
            if self._closed:
                return
            future = self._executor.submit(lambda: None)
        future.result(timeout=timeout)

    def close(self) -> None:
        """Deliver what is queued and stop the dispatcher thread."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=True)


__all__ = [
    "NodeEvent",
    "NodeTransition",
    "NodeEventDispatcher",
    "NodeListener",
]
