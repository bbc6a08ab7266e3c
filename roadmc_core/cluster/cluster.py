"""RoadMC Cluster - Node Membership and Maintenance.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from roadmc_core.cluster.events import NodeEventDispatcher, NodeTransition
from roadmc_core.cluster.node import MemcachedNode, NodeInfo, NodeState
from roadmc_core.cluster.ring import HashRing
from roadmc_core.connection.pool import PoolConfig
from roadmc_core.connection.pooled import PooledConnection

logger = logging.getLogger(__name__)

ConnectorFactory = Callable[[NodeInfo], Callable[[int], PooledConnection]]


@dataclass
class ClusterConfig:
    """Cluster configuration.

    Attributes:
        name: Cluster name (thread names, logs)
        replicas: Virtual nodes per node
        hash_function: Ring hash function
        failure_threshold: Consecutive failures before a node is dead
        dead_timeout: Seconds before a dead node is probed again
        maintenance_interval: Seconds between maintenance runs (0 = off)
    """

    name: str = "roadmc"
    replicas: int = 100
    hash_function: str = "md5"
    failure_threshold: int = 2
    dead_timeout: float = 10.0
    maintenance_interval: float = 30.0


@dataclass
class ClusterStats:
    """Cluster statistics."""

    total_nodes: int = 0
    alive_nodes: int = 0
    suspect_nodes: int = 0
    dead_nodes: int = 0


class MemcachedCluster:
    """The set of memcached servers a client talks to.

    Owns the nodes and the hash ring. Membership changes rebuild the
    ring; the maintenance thread probes dead nodes once their cool-down
    has passed and evicts idle connections.

    Example:
        cluster = MemcachedCluster(
            [NodeInfo("cache-1.local"), NodeInfo("cache-2.local")],
            ClusterConfig(replicas=100),
        )
        cluster.start()
        node = cluster.node_for("user:1")
        cluster.update_servers([NodeInfo("cache-1.local"), NodeInfo("cache-3.local")])
        cluster.stop()
    """

    def __init__(
        self,
        servers: Iterable[NodeInfo],
        config: Optional[ClusterConfig] = None,
        pool_config: Optional[PoolConfig] = None,
        events: Optional[NodeEventDispatcher] = None,
        connector_factory: Optional[ConnectorFactory] = None,
    ):
        """Initialize cluster.

        Args:
            servers: Initial servers
            config: Cluster configuration
            pool_config: Pool configuration for every node
            events: Dispatcher for node transitions
            connector_factory: Builds a per-node connection factory (for tests)
        """
        self.config = config or ClusterConfig()
        self.pool_config = pool_config or PoolConfig()
        self.events = events or NodeEventDispatcher()
        self._connector_factory = connector_factory

        self._ring = HashRing(
            replicas=self.config.replicas,
            hash_function=self.config.hash_function,
        )
        self._nodes: Dict[str, MemcachedNode] = {}
        self._lock = threading.RLock()

        self._maintenance_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

        self.update_servers(servers)

    @property
    def ring(self) -> HashRing:
        return self._ring

    @property
    def nodes(self) -> List[MemcachedNode]:
        return self._ring.get_all_nodes()

    def _create_node(self, info: NodeInfo) -> MemcachedNode:
        connector = self._connector_factory(info) if self._connector_factory else None
        return MemcachedNode(
            info,
            pool_config=self.pool_config,
            failure_threshold=self.config.failure_threshold,
            dead_timeout=self.config.dead_timeout,
            listener=self._on_transition,
            connector=connector,
        )

    def _on_transition(self, transition: NodeTransition) -> None:
        self.events.publish(transition)

    def update_servers(self, servers: Iterable[NodeInfo]) -> None:
        """Apply a new server list.

        Nodes already present keep their pools and health state; removed
        nodes are closed. The ring is rebuilt once.

        Args:
            servers: Complete new server list
        """
        wanted: Dict[str, NodeInfo] = {}
        for info in servers:
            wanted.setdefault(info.address, info)

        with self._lock:
            removed = [n for a, n in self._nodes.items() if a not in wanted]
            for address, info in wanted.items():
                if address not in self._nodes:
                    self._nodes[address] = self._create_node(info)
                    logger.info(f"Added node {address} to cluster {self.config.name}")
            for node in removed:
                del self._nodes[node.address]

            self._ring.rebuild(self._nodes[a] for a in wanted)

        for node in removed:
            node.set_listener(None)
            node.close()
            logger.info(f"Removed node {node.address} from cluster {self.config.name}")

    def add_node(self, info: NodeInfo) -> MemcachedNode:
        """Add one server.

        Args:
            info: Server to add

        Returns:
            The node (existing one if already present)
        """
        with self._lock:
            infos = [n.info for n in self.nodes]
            if info.address not in self._nodes:
                infos.append(info)
                self.update_servers(infos)
            return self._nodes[info.address]

    def remove_node(self, address: str) -> None:
        """Remove one server.

        Args:
            address: host:port to remove
        """
        with self._lock:
            self.update_servers(n.info for n in self.nodes if n.address != address)

    def get_node(self, address: str) -> Optional[MemcachedNode]:
        return self._nodes.get(address)

    def node_for(self, key: str) -> Optional[MemcachedNode]:
        return self._ring.node_for(key)

    def owner_of(self, key: str) -> Optional[MemcachedNode]:
        return self._ring.owner_of(key)

    def candidates(
        self,
        key: str,
        count: Optional[int] = None,
        exclude: Optional[Set[MemcachedNode]] = None,
    ) -> List[MemcachedNode]:
        return self._ring.candidates(key, count=count, exclude=exclude)

    def has_available_node(self) -> bool:
        return any(n.is_available for n in self.nodes)

    def start(self) -> None:
        """Start background maintenance."""
        if self._maintenance_thread is not None or self.config.maintenance_interval <= 0:
            return

        self._stop_event.clear()
        self._maintenance_thread = threading.Thread(
            target=self._maintenance_loop,
            daemon=True,
            name=f"Cluster-{self.config.name}-maintenance",
        )
        self._maintenance_thread.start()

        logger.info(f"Cluster {self.config.name} started")

    def stop(self) -> None:
        """Stop maintenance and close every node."""
        self._stop_event.set()

        if self._maintenance_thread:
            self._maintenance_thread.join(timeout=5.0)
            self._maintenance_thread = None

        for node in self.nodes:
            node.close()

        logger.info(f"Cluster {self.config.name} stopped")

    def _maintenance_loop(self) -> None:
        """Background maintenance loop."""
        while not self._stop_event.wait(self.config.maintenance_interval):
            try:
                self.run_maintenance()
            except Exception as e:
                logger.error(f"Maintenance error: {e}")

    def run_maintenance(self) -> None:
        """Probe dead nodes past their cool-down and evict idle connections."""
        for node in self.nodes:
            if node.probe_due:
                if node.probe():
                    logger.info(f"Node {node.address} is available again")
                else:
                    logger.debug(f"Node {node.address} still unavailable")
            node.pool.evict_idle()

    def get_stats(self) -> ClusterStats:
        """Get cluster statistics.

        Returns:
            ClusterStats instance
        """
        nodes = self.nodes
        return ClusterStats(
            total_nodes=len(nodes),
            alive_nodes=sum(1 for n in nodes if n.state == NodeState.ALIVE),
            suspect_nodes=sum(1 for n in nodes if n.state == NodeState.SUSPECT),
            dead_nodes=sum(1 for n in nodes if n.state == NodeState.DEAD),
        )

    def get_topology(self) -> Dict[str, Any]:
        """Get cluster topology.

        Returns:
            Topology information
        """
        return {
            "name": self.config.name,
            "replicas": self.config.replicas,
            "nodes": [n.get_info() for n in self.nodes],
            "ring_size": self._ring.get_ring_size(),
        }

    def __len__(self) -> int:
        """Get node count."""
        return len(self._ring)

    def __repr__(self) -> str:
        stats = self.get_stats()
        return (
            f"MemcachedCluster(name={self.config.name!r}, "
            f"nodes={stats.total_nodes}, alive={stats.alive_nodes})"
        )

    def __enter__(self) -> "MemcachedCluster":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()


__all__ = ["MemcachedCluster", "ClusterConfig", "ClusterStats"]
