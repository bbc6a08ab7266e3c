"""Cluster module - Nodes, consistent hashing and health events."""

from roadmc_core.cluster.node import MemcachedNode, NodeInfo, NodeState
from roadmc_core.cluster.ring import HashRing
from roadmc_core.cluster.events import NodeEvent, NodeEventDispatcher, NodeTransition
from roadmc_core.cluster.cluster import MemcachedCluster, ClusterConfig, ClusterStats

__all__ = [
    "MemcachedNode",
    "NodeInfo",
    "NodeState",
    "HashRing",
    "NodeEvent",
    "NodeEventDispatcher",
    "NodeTransition",
    "MemcachedCluster",
    "ClusterConfig",
    "ClusterStats",
]
