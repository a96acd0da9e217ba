"""Shared HTTP client management for connection pooling.

One ``httpx.AsyncClient`` is created during the application lifespan and
reused for every outbound provider call.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx

from fusion.app.core.config import Settings


def build_timeout(cfg: Settings) -> httpx.Timeout:
    return httpx.Timeout(
        connect=cfg.httpx_connect_timeout,
        read=cfg.httpx_read_timeout,
        write=cfg.httpx_write_timeout,
        pool=cfg.httpx_pool_timeout,
    )


def build_limits(cfg: Settings) -> httpx.Limits:
    return httpx.Limits(
        max_connections=cfg.httpx_max_connections,
        max_keepalive_connections=cfg.httpx_max_keepalive_connections,
        keepalive_expiry=cfg.httpx_keepalive_expiry,
    )


@asynccontextmanager
async def init_http_client(cfg: Settings) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Create the shared HTTP client from ``cfg`` and close it on exit.

    Used from the FastAPI lifespan:

        async with init_http_client(cfg) as client:
            yield
    """
    client = httpx.AsyncClient(timeout=build_timeout(cfg), limits=build_limits(cfg))
    try:
        yield client
    finally:
        await client.aclose()
