"""Connection module - Pooled sockets to cache servers."""

from roadmc_core.connection.pooled import PooledConnection
from roadmc_core.connection.pool import ConnectionPool, PoolConfig, PoolStats

__all__ = [
    "PooledConnection",
    "ConnectionPool",
    "PoolConfig",
    "PoolStats",
]
