import contextlib
from typing import AsyncIterator

from rpde_proxy.database.database import sessionmanager
from rpde_proxy.feeds.origin_client import OriginClient
from rpde_proxy.feeds.store import CacheStore
from rpde_proxy.lifecycle.context import LifecycleContext
from rpde_proxy.main.config import get_settings
from rpde_proxy.queues.broker import QueueBroker
from rpde_proxy.redis.connection import create_redis_client


@contextlib.asynccontextmanager
async def lifecycle_context() -> AsyncIterator[LifecycleContext]:
    """Short-lived lifecycle context for one-off commands."""
    settings = get_settings()
    sessionmanager.init(settings.database_url)
    redis = create_redis_client(settings)
    origin = OriginClient(settings)
    try:
        yield LifecycleContext(
            broker=QueueBroker.from_redis(redis, settings),
            store=CacheStore(sessionmanager, settings.store_retry_after_seconds),
            origin=origin,
            settings=settings,
        )
    finally:
        await origin.aclose()
        await redis.aclose()
        await sessionmanager.close()
