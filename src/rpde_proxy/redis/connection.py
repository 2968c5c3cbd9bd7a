"""Redis clients for arq and for the lifecycle delay queues.

Both read the same connection resilience knobs from ``Settings``.
"""

from __future__ import annotations

from typing import Any

import redis.asyncio as aioredis
from arq.connections import RedisSettings

from rpde_proxy.main.config import Settings, get_settings


def build_arq_redis_settings(settings: Settings | None = None) -> RedisSettings:
    settings = settings or get_settings()
    return RedisSettings(
        host=settings.redis_host,
        port=settings.redis_port,
        database=settings.redis_db or 0,
        conn_timeout=settings.redis_conn_timeout,
        conn_retries=settings.redis_conn_retries,
        conn_retry_delay=settings.redis_conn_retry_delay,
        retry_on_timeout=settings.redis_retry_on_timeout,
        max_connections=settings.redis_max_connections,
    )


def queue_client_kwargs(settings: Settings) -> dict[str, Any]:
    """Pool options for the queue client. Message bodies are bytes, never decoded."""
    kwargs: dict[str, Any] = {
        "host": settings.redis_host,
        "port": settings.redis_port,
        "db": settings.redis_db or 0,
        "decode_responses": False,
        "socket_connect_timeout": settings.redis_conn_timeout,
        "retry_on_timeout": settings.redis_retry_on_timeout,
        "socket_keepalive": settings.redis_socket_keepalive,
        "health_check_interval": settings.redis_health_check_interval,
    }
    if settings.redis_max_connections is not None:
        kwargs["max_connections"] = settings.redis_max_connections
    return kwargs


def create_redis_client(settings: Settings | None = None) -> aioredis.Redis:
    return aioredis.Redis(**queue_client_kwargs(settings or get_settings()))
