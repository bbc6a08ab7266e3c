"""RoadMC - Memcached Cluster Client.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.

A client for clusters of memcached servers speaking the text protocol:
- Consistent hashing with weighted virtual nodes
- Bounded per-server connection pools
- Node health tracking with automatic revival
- Read failover to the next server on the ring
- CAS operations, counters, append/prepend
- Pluggable value transcoders (pickle, JSON, msgpack)
- Sync and asyncio facades

Architecture:
    ┌─────────────────────────────────────────────────────────────────┐
    │                         RoadMC Client                           │
    ├─────────────────────────────────────────────────────────────────┤
    │  ┌─────────────────┐  ┌──────────────────────┐                  │
    │  │ MemcachedClient │  │ AsyncMemcachedClient │        FACADE    │
    │  └────────┬────────┘  └──────────┬───────────┘                  │
    │           └───────────┬──────────┘                              │
    │  ┌────────────────────┴──────────────────────┐                  │
    │  │            OperationExecutor              │        EXECUTOR  │
    │  │     routing / failover / result mapping   │                  │
    │  └────────────────────┬──────────────────────┘                  │
    │  ┌────────────────────┴──────────────────────┐                  │
    │  │   HashRing  →  MemcachedNode  →  Events   │        CLUSTER   │
    │  └────────────────────┬──────────────────────┘                  │
    │  ┌────────────────────┴──────────────────────┐                  │
    │  │   ConnectionPool  →  PooledConnection     │        TRANSPORT │
    │  └────────────────────┬──────────────────────┘                  │
    │  ┌────────────────────┴──────────────────────┐                  │
    │  │   Text protocol codec  +  Transcoders     │        PROTOCOL  │
    │  └───────────────────────────────────────────┘                  │
    └─────────────────────────────────────────────────────────────────┘

Example Usage:
    from roadmc_core import ClientConfig, MemcachedClient

    config = ClientConfig(servers=("cache-1.local:11211", "cache-2.local:11211"))
    with MemcachedClient(config) as client:
        client.set("user:1", {"name": "John"}, expires=300)
        user = client.get("user:1")

        # Optimistic concurrency
        result = client.get_with_cas("user:1")
        client.cas("user:1", {"name": "Jane"}, cas=result.cas)

        # Counters
        client.increment("visits", default=1, delta=1)

    # asyncio
    from roadmc_core import AsyncMemcachedClient

    async with AsyncMemcachedClient(config) as client:
        await client.set("greeting", "hello")
"""

__version__ = "1.0.0"
__author__ = "BlackRoad OS"

from roadmc_core.protocol.commands import (
    CacheItem,
    ResultStatus,
    StoreMode,
)
from roadmc_core.protocol.errors import (
    MemcachedError,
    ProtocolError,
    ClientError,
    UnsupportedCommandError,
    IllegalKeyError,
    IllegalValueError,
    ServerError,
    TransportError,
    NodeConnectError,
    SocketTimeoutError,
    ConnectionLostError,
    PoolTimeoutError,
    PoolClosedError,
    NodeUnavailableError,
    NoAvailableNodeError,
    FlushError,
)
from roadmc_core.protocol.transcoder import (
    Transcoder,
    DefaultTranscoder,
    RawTranscoder,
    JSONTranscoder,
    PickleTranscoder,
    MsgPackTranscoder,
    CompressionType,
)
from roadmc_core.connection.pool import ConnectionPool, PoolConfig
from roadmc_core.cluster.node import MemcachedNode, NodeInfo, NodeState
from roadmc_core.cluster.ring import HashRing
from roadmc_core.cluster.events import NodeEvent
from roadmc_core.cluster.cluster import MemcachedCluster, ClusterConfig
from roadmc_core.metrics.collector import MetricsCollector, ClientMetrics
from roadmc_core.client.config import ClientConfig
from roadmc_core.client.results import OperationResult, ServerStats
from roadmc_core.client.client import MemcachedClient
from roadmc_core.client.aio import AsyncMemcachedClient
from roadmc_core.client.warmup import startup_probe, async_startup_probe

__all__ = [
    # Client
    "MemcachedClient",
    "AsyncMemcachedClient",
    "ClientConfig",
    "OperationResult",
    "ServerStats",
    "startup_probe",
    "async_startup_probe",
    # Protocol
    "CacheItem",
    "ResultStatus",
    "StoreMode",
    "Transcoder",
    "DefaultTranscoder",
    "RawTranscoder",
    "JSONTranscoder",
    "PickleTranscoder",
    "MsgPackTranscoder",
    "CompressionType",
    # Errors
    "MemcachedError",
    "ProtocolError",
    "ClientError",
    "UnsupportedCommandError",
    "IllegalKeyError",
    "IllegalValueError",
    "ServerError",
    "TransportError",
    "NodeConnectError",
    "SocketTimeoutError",
    "ConnectionLostError",
    "PoolTimeoutError",
    "PoolClosedError",
    "NodeUnavailableError",
    "NoAvailableNodeError",
    "FlushError",
    # Cluster
    "MemcachedCluster",
    "ClusterConfig",
    "MemcachedNode",
    "NodeInfo",
    "NodeState",
    "NodeEvent",
    "HashRing",
    "ConnectionPool",
    "PoolConfig",
    # Metrics
    "MetricsCollector",
    "ClientMetrics",
]
