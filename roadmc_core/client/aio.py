"""RoadMC Async Client - asyncio Facade.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, Optional, Tuple, TypeVar, Union

from roadmc_core.client.client import MemcachedClient
from roadmc_core.client.config import ClientConfig
from roadmc_core.client.results import OperationResult, ServerStats
from roadmc_core.cluster.cluster import ConnectorFactory
from roadmc_core.cluster.events import NodeListener
from roadmc_core.metrics.collector import MetricsCollector
from roadmc_core.protocol.commands import Expiration, StoreMode
from roadmc_core.protocol.transcoder import Transcoder

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AsyncMemcachedClient:
    """asyncio client with the same semantics as MemcachedClient.

    Each call runs the blocking client on a bounded thread pool, so
    connection pooling, routing and failover are shared with the sync
    client. Cancelling an awaiting task does not interrupt the request;
    it finishes in its thread and returns the connection to the pool.

    Example:
        async with AsyncMemcachedClient(ClientConfig(servers="cache-1.local")) as client:
            await client.set("user:1", {"name": "John"})
            user = await client.get("user:1")
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        transcoder: Optional[Transcoder] = None,
        metrics: Optional[MetricsCollector] = None,
        connector_factory: Optional[ConnectorFactory] = None,
        client: Optional[MemcachedClient] = None,
    ):
        """Initialize async client.

        Args:
            config: Client configuration
            transcoder: Value (de)serializer
            metrics: Metrics collector
            connector_factory: Per-node connection factory (for tests)
            client: Existing sync client to wrap instead of creating one
        """
        self._client = client or MemcachedClient(
            config, transcoder=transcoder, metrics=metrics,
            connector_factory=connector_factory,
        )
        self._pool = ThreadPoolExecutor(
            max_workers=self._client.config.async_workers,
            thread_name_prefix=f"{self._client.config.name}-async",
        )
        self._closed = False

    @property
    def client(self) -> MemcachedClient:
        """The wrapped blocking client."""
        return self._client

    @property
    def config(self) -> ClientConfig:
        return self._client.config

    @property
    def metrics(self) -> MetricsCollector:
        return self._client.metrics

    async def _run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._pool, functools.partial(func, *args, **kwargs))

    async def get(self, key: str, default: Any = None) -> Any:
        return await self._run(self._client.get, key, default)

    async def try_get(self, key: str) -> Tuple[bool, Any]:
        return await self._run(self._client.try_get, key)

    async def execute_get(self, key: str) -> OperationResult[Any]:
        return await self._run(self._client.execute_get, key)

    async def get_with_cas(self, key: str) -> OperationResult[Any]:
        return await self._run(self._client.get_with_cas, key)

    async def try_get_with_cas(self, key: str) -> Tuple[bool, OperationResult[Any]]:
        return await self._run(self._client.try_get_with_cas, key)

    async def get_many(self, keys: Iterable[str]) -> Dict[str, Any]:
        return await self._run(self._client.get_many, list(keys))

    async def get_many_with_cas(self, keys: Iterable[str]) -> Dict[str, OperationResult[Any]]:
        return await self._run(self._client.get_many_with_cas, list(keys))

    async def execute_store(
        self, mode: StoreMode, key: str, value: Any, expires: Expiration = None
    ) -> OperationResult[bool]:
        return await self._run(self._client.execute_store, mode, key, value, expires)

    async def store(
        self, mode: StoreMode, key: str, value: Any, expires: Expiration = None
    ) -> bool:
        return await self._run(self._client.store, mode, key, value, expires)

    async def set(self, key: str, value: Any, expires: Expiration = None) -> bool:
        return await self._run(self._client.set, key, value, expires)

    async def add(self, key: str, value: Any, expires: Expiration = None) -> bool:
        return await self._run(self._client.add, key, value, expires)

    async def replace(self, key: str, value: Any, expires: Expiration = None) -> bool:
        return await self._run(self._client.replace, key, value, expires)

    async def cas(
        self,
        key: str,
        value: Any,
        cas: int = 0,
        expires: Expiration = None,
        mode: StoreMode = StoreMode.SET,
    ) -> OperationResult[bool]:
        return await self._run(self._client.cas, key, value, cas, expires, mode)

    async def append(self, key: str, data: Union[bytes, str]) -> bool:
        return await self._run(self._client.append, key, data)

    async def prepend(self, key: str, data: Union[bytes, str]) -> bool:
        return await self._run(self._client.prepend, key, data)

    async def append_with_cas(
        self, key: str, data: Union[bytes, str], cas: int = 0
    ) -> OperationResult[bool]:
        return await self._run(self._client.append_with_cas, key, data, cas)

    async def prepend_with_cas(
        self, key: str, data: Union[bytes, str], cas: int = 0
    ) -> OperationResult[bool]:
        return await self._run(self._client.prepend_with_cas, key, data, cas)

    async def increment(
        self, key: str, default: int = 0, delta: int = 1, expires: Expiration = None
    ) -> Optional[int]:
        return await self._run(self._client.increment, key, default, delta, expires)

    async def decrement(
        self, key: str, default: int = 0, delta: int = 1, expires: Expiration = None
    ) -> Optional[int]:
        return await self._run(self._client.decrement, key, default, delta, expires)

    async def increment_with_cas(
        self,
        key: str,
        default: int = 0,
        delta: int = 1,
        cas: int = 0,
        expires: Expiration = None,
    ) -> OperationResult[int]:
        return await self._run(self._client.increment_with_cas, key, default, delta, cas, expires)

    async def decrement_with_cas(
        self,
        key: str,
        default: int = 0,
        delta: int = 1,
        cas: int = 0,
        expires: Expiration = None,
    ) -> OperationResult[int]:
        return await self._run(self._client.decrement_with_cas, key, default, delta, cas, expires)

    async def execute_remove(self, key: str) -> OperationResult[bool]:
        return await self._run(self._client.execute_remove, key)

    async def remove(self, key: str) -> bool:
        return await self._run(self._client.remove, key)

    async def flush_all(self, delay: int = 0) -> None:
        await self._run(self._client.flush_all, delay)

    async def stats(self, stat_type: Optional[str] = None) -> ServerStats:
        return await self._run(self._client.stats, stat_type)

    async def version(self) -> Dict[str, str]:
        return await self._run(self._client.version)

    def on_node_failed(self, listener: NodeListener) -> NodeListener:
        return self._client.on_node_failed(listener)

    def on_node_recovered(self, listener: NodeListener) -> NodeListener:
        return self._client.on_node_recovered(listener)

    def remove_listener(self, listener: Callable[..., Any]) -> bool:
        return self._client.remove_listener(listener)

    async def close(self) -> None:
        """Close the wrapped client and the worker threads."""
        if self._closed:
            return
        self._closed = True
        await self._run(self._client.close)
        self._pool.shutdown(wait=False)
        logger.debug(f"Async client {self.config.name} closed")

    async def __aenter__(self) -> "AsyncMemcachedClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"AsyncMemcachedClient({self._client!r})"


__all__ = ["AsyncMemcachedClient"]
