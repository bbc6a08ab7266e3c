"""RoadMC Hash Ring - Consistent Hashing Node Locator.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import bisect
import hashlib
import logging
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple

from roadmc_core.cluster.node import MemcachedNode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RingSnapshot:
    """Immutable ring contents.

    Attributes:
        points: Sorted hash positions
        owners: Node owning each position (same index as points)
        nodes: Distinct nodes in insertion order
    """

    points: Tuple[int, ...] = ()
    owners: Tuple[MemcachedNode, ...] = ()
    nodes: Tuple[MemcachedNode, ...] = ()


class HashRing:
    """Consistent hash ring for locating the node of a key.

    Maps keys to nodes using consistent hashing with virtual nodes.
    The ring is rebuilt only when membership changes; each rebuild
    produces a new RingSnapshot that replaces the old one in a single
    assignment, so lookups never lock and never see a partial ring.

    Properties:
    - Minimal key redistribution on node changes
    - Even load distribution with virtual nodes
    - Support for weighted nodes
    - Deterministic placement for a fixed membership

    Example:
        ring = HashRing(replicas=100)
        ring.add_node(node1)
        ring.add_node(node2)

        node = ring.node_for("my-key")
        fallbacks = ring.candidates("my-key")
    """

    def __init__(
        self,
        replicas: int = 100,
        hash_function: str = "md5",
        nodes: Optional[Iterable[MemcachedNode]] = None,
    ):
        """Initialize hash ring.

        Args:
            replicas: Virtual nodes per node at weight 100
            hash_function: md5 or sha1
            nodes: Initial nodes
        """
        if hash_function not in ("md5", "sha1"):
            raise ValueError(f"Unsupported hash function: {hash_function}")

        self.replicas = replicas
        self.hash_function = hash_function

        self._snapshot = RingSnapshot()
        self._lock = threading.Lock()

        if nodes:
            self.rebuild(nodes)

    def _hash(self, key: str) -> int:
        """Hash a key into the 32-bit ring space.

        Args:
            key: Key to hash

        Returns:
            Hash value
        """
        if self.hash_function == "sha1":
            digest = hashlib.sha1(key.encode("utf-8")).digest()
        else:
            digest = hashlib.md5(key.encode("utf-8")).digest()
        return int.from_bytes(digest[:4], "little")

    def _vnode_count(self, node: MemcachedNode) -> int:
        return max(self.replicas * node.info.weight // 100, 1)

    def _build(self, nodes: Iterable[MemcachedNode]) -> RingSnapshot:
        unique: Dict[str, MemcachedNode] = {}
        for node in nodes:
            unique.setdefault(node.address, node)

        positions: Dict[int, MemcachedNode] = {}
        # Sorted addresses so point collisions resolve the same way everywhere.
        for address in sorted(unique):
            node = unique[address]
            for i in range(self._vnode_count(node)):
                positions.setdefault(self._hash(f"{address}-{i}"), node)

        points = tuple(sorted(positions))
        return RingSnapshot(
            points=points,
            owners=tuple(positions[p] for p in points),
            nodes=tuple(unique.values()),
        )

    def rebuild(self, nodes: Iterable[MemcachedNode]) -> None:
        """Replace the ring membership.

        Args:
            nodes: Complete new node list
        """
        with self._lock:
            snapshot = self._build(nodes)
            self._snapshot = snapshot

        logger.info(
            f"Ring rebuilt with {len(snapshot.nodes)} node(s), "
            f"{len(snapshot.points)} virtual nodes"
        )

    def add_node(self, node: MemcachedNode) -> None:
        """Add node to ring.

        Args:
            node: Node to add
        """
        with self._lock:
            current = self._snapshot
            if node in current.nodes:
                return
            self._snapshot = self._build(current.nodes + (node,))

        logger.info(f"Added node {node.address} with {self._vnode_count(node)} virtual nodes")

    def remove_node(self, address: str) -> Optional[MemcachedNode]:
        """Remove node from ring.

        Args:
            address: host:port of the node

        Returns:
            Removed node, or None if absent
        """
        with self._lock:
            current = self._snapshot
            removed = next((n for n in current.nodes if n.address == address), None)
            if removed is None:
                return None
            self._snapshot = self._build(n for n in current.nodes if n is not removed)

        logger.info(f"Removed node {address}")
        return removed

    def _walk(self, snapshot: RingSnapshot, key: str):
        if not snapshot.points:
            return
        start = bisect.bisect(snapshot.points, self._hash(key))
        count = len(snapshot.points)
        for i in range(count):
            yield snapshot.owners[(start + i) % count]

    def owner_of(self, key: str) -> Optional[MemcachedNode]:
        """Get the node the key hashes to, ignoring health.

        Args:
            key: Cache key

        Returns:
            Owning node or None for an empty ring
        """
        return next(self._walk(self._snapshot, key), None)

    def node_for(self, key: str) -> Optional[MemcachedNode]:
        """Get node for key, skipping unavailable nodes.

        Args:
            key: Cache key

        Returns:
            Responsible node or None
        """
        for node in self._walk(self._snapshot, key):
            if node.is_available:
                return node
        return None

    def candidates(
        self,
        key: str,
        count: Optional[int] = None,
        exclude: Optional[Set[MemcachedNode]] = None,
    ) -> List[MemcachedNode]:
        """Get distinct available nodes in ring order for a key.

        Args:
            key: Cache key
            count: Maximum nodes to return
            exclude: Nodes to skip

        Returns:
            List of nodes, primary first
        """
        snapshot = self._snapshot
        limit = len(snapshot.nodes) if count is None else count
        seen: Set[str] = set()
        nodes: List[MemcachedNode] = []

        for node in self._walk(snapshot, key):
            if len(nodes) >= limit or len(seen) >= len(snapshot.nodes):
                break
            if node.address in seen:
                continue
            seen.add(node.address)
            if exclude and node in exclude:
                continue
            if node.is_available:
                nodes.append(node)

        return nodes

    def get_all_nodes(self) -> List[MemcachedNode]:
        """Get all nodes.

        Returns:
            List of all nodes
        """
        return list(self._snapshot.nodes)

    def get_ring_size(self) -> int:
        """Get ring size (total virtual nodes)."""
        return len(self._snapshot.points)

    def get_key_distribution(self, keys: Iterable[str]) -> Dict[str, int]:
        """Get distribution of keys across nodes.

        Args:
            keys: Keys to check

        Returns:
            Dict of address -> key count
        """
        distribution: Dict[str, int] = {}

        for key in keys:
            node = self.owner_of(key)
            if node:
                distribution[node.address] = distribution.get(node.address, 0) + 1

        return distribution

    def __len__(self) -> int:
        """Get node count."""
        return len(self._snapshot.nodes)

    def __contains__(self, address: str) -> bool:
        """Check if node in ring."""
        return any(n.address == address for n in self._snapshot.nodes)

    def __repr__(self) -> str:
        snapshot = self._snapshot
        return f"HashRing(nodes={len(snapshot.nodes)}, vnodes={len(snapshot.points)})"


__all__ = ["HashRing", "RingSnapshot"]
