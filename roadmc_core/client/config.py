"""RoadMC Client Config - Immutable Client Configuration.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any, List, Mapping, Optional, Tuple, Union

from roadmc_core.cluster.cluster import ClusterConfig
from roadmc_core.cluster.node import NodeInfo
from roadmc_core.connection.pool import PoolConfig

DEFAULT_PORT = 11211

ServerSpec = Union[str, Tuple[str, int], NodeInfo]


def parse_server(server: ServerSpec) -> NodeInfo:
    """Normalize a server address.

    Args:
        server: "host", "host:port", "[v6]:port", (host, port) or NodeInfo

    Returns:
        NodeInfo

    Raises:
        ValueError: If the address cannot be parsed
    """
    if isinstance(server, NodeInfo):
        return server
    if isinstance(server, tuple):
        host, port = server
        return NodeInfo(host=host, port=int(port))

    text = server.strip()
    if not text:
        raise ValueError("Empty server address")

    if text.startswith("["):
        host, _, rest = text[1:].partition("]")
        port = rest[1:] if rest.startswith(":") else ""
    elif text.count(":") == 1:
        host, port = text.split(":")
    else:
        host, port = text, ""

    try:
        return NodeInfo(host=host, port=int(port) if port else DEFAULT_PORT)
    except ValueError:
        raise ValueError(f"Invalid server address: {server!r}") from None


@dataclass(frozen=True)
class ClientConfig:
    """Client configuration.

    Attributes:
        servers: Server addresses
        min_pool_size: Idle connections kept per node when evicting
        max_pool_size: Maximum connections per node
        connect_timeout: Seconds allowed for connecting
        operation_timeout: Seconds allowed per socket read/write
        pool_timeout: Seconds to wait for a free connection
        idle_timeout: Seconds before idle connections are evicted
        replicas: Virtual nodes per server on the hash ring
        hash_function: Ring hash function (md5 or sha1)
        failure_threshold: Consecutive failures before a node is dead
        dead_timeout: Seconds before a dead node is tried again
        maintenance_interval: Seconds between background maintenance runs
        async_workers: Threads serving the async client
        name: Client name (logs and thread names)
    """

    servers: Tuple[str, ...] = ("127.0.0.1:11211",)
    min_pool_size: int = 0
    max_pool_size: int = 10
    connect_timeout: float = 2.0
    operation_timeout: float = 2.0
    pool_timeout: float = 5.0
    idle_timeout: float = 60.0
    replicas: int = 100
    hash_function: str = "md5"
    failure_threshold: int = 2
    dead_timeout: float = 10.0
    maintenance_interval: float = 30.0
    async_workers: int = 16
    name: str = "roadmc"

    def __post_init__(self):
        servers = self.servers
        if isinstance(servers, str):
            servers = tuple(s for s in servers.split(",") if s.strip())
        object.__setattr__(self, "servers", tuple(servers))

        if not self.servers:
            raise ValueError("At least one server is required")
        for server in self.servers:
            parse_server(server)

        if self.max_pool_size < 1:
            raise ValueError("max_pool_size must be at least 1")
        if not 0 <= self.min_pool_size <= self.max_pool_size:
            raise ValueError("min_pool_size must be between 0 and max_pool_size")
        if self.replicas < 1:
            raise ValueError("replicas must be at least 1")
        if self.hash_function not in ("md5", "sha1"):
            raise ValueError(f"Unsupported hash function: {self.hash_function}")
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.async_workers < 1:
            raise ValueError("async_workers must be at least 1")
        for name in ("connect_timeout", "operation_timeout", "pool_timeout", "idle_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.dead_timeout < 0 or self.maintenance_interval < 0:
            raise ValueError("dead_timeout and maintenance_interval must not be negative")

    @property
    def nodes(self) -> List[NodeInfo]:
        return [parse_server(s) for s in self.servers]

    def to_pool_config(self) -> PoolConfig:
        return PoolConfig(
            min_size=self.min_pool_size,
            max_size=self.max_pool_size,
            acquire_timeout=self.pool_timeout,
            idle_timeout=self.idle_timeout,
            connect_timeout=self.connect_timeout,
            operation_timeout=self.operation_timeout,
        )

    def to_cluster_config(self) -> ClusterConfig:
        return ClusterConfig(
            name=self.name,
            replicas=self.replicas,
            hash_function=self.hash_function,
            failure_threshold=self.failure_threshold,
            dead_timeout=self.dead_timeout,
            maintenance_interval=self.maintenance_interval,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ClientConfig":
        """Build a config from a mapping, ignoring unknown keys.

        Args:
            data: Configuration values

        Returns:
            ClientConfig
        """
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        if "servers" in values and not isinstance(values["servers"], str):
            values["servers"] = tuple(_server_text(s) for s in values["servers"])
        return cls(**values)

    @classmethod
    def from_env(
        cls,
        prefix: str = "ROADMC_",
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ClientConfig":
        """Build a config from environment variables.

        ROADMC_SERVERS is a comma separated address list; every other
        field maps to ROADMC_<FIELD_NAME>.

        Args:
            prefix: Variable name prefix
            environ: Environment mapping (defaults to os.environ)

        Returns:
            ClientConfig
        """
        environ = os.environ if environ is None else environ
        values: dict = {}

        for f in fields(cls):
            raw = environ.get(f"{prefix}{f.name.upper()}")
            if raw is None:
                continue
            if f.name in ("servers", "hash_function", "name"):
                values[f.name] = raw
            elif f.name in ("connect_timeout", "operation_timeout", "pool_timeout",
                            "idle_timeout", "dead_timeout", "maintenance_interval"):
                values[f.name] = float(raw)
            else:
                values[f.name] = int(raw)

        return cls(**values)


def _server_text(server: ServerSpec) -> str:
    info = parse_server(server)
    if ":" in info.host:
        return f"[{info.host}]:{info.port}"
    return info.address


__all__ = ["ClientConfig", "parse_server", "DEFAULT_PORT"]
