"""Client module - Sync and async facades, configuration and results."""

from roadmc_core.client.aio import AsyncMemcachedClient
from roadmc_core.client.client import MemcachedClient
from roadmc_core.client.config import ClientConfig, parse_server
from roadmc_core.client.executor import OperationExecutor
from roadmc_core.client.results import OperationResult, ServerStats
from roadmc_core.client.warmup import async_startup_probe, startup_probe

__all__ = [
    "MemcachedClient",
    "AsyncMemcachedClient",
    "ClientConfig",
    "parse_server",
    "OperationExecutor",
    "OperationResult",
    "ServerStats",
    "startup_probe",
    "async_startup_probe",
]
