"""RoadMC Warmup - Startup Probe for Host Applications.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from roadmc_core.client.aio import AsyncMemcachedClient
    from roadmc_core.client.client import MemcachedClient

logger = logging.getLogger(__name__)

SENTINEL_KEY = "RoadMC"


def startup_probe(client: "MemcachedClient", sentinel_key: str = SENTINEL_KEY) -> "MemcachedClient":
    """Issue one read so configuration and connectivity problems show up at startup.

    A miss is fine; any error propagates unchanged.

    Args:
        client: Client to check
        sentinel_key: Key to read

    Returns:
        The same client
    """
    client.get(sentinel_key)
    logger.info("RoadMC started")
    return client


async def async_startup_probe(
    client: "AsyncMemcachedClient", sentinel_key: str = SENTINEL_KEY
) -> "AsyncMemcachedClient":
    """Async form of startup_probe."""
    await client.get(sentinel_key)
    logger.info("RoadMC started")
    return client


__all__ = ["startup_probe", "async_startup_probe", "SENTINEL_KEY"]
