from __future__ import annotations

import asyncio
from functools import wraps

from arq.cron import cron

from rpde_proxy.database.database import sessionmanager
from rpde_proxy.feeds.origin_client import OriginClient
from rpde_proxy.feeds.store import CacheStore
from rpde_proxy.lifecycle.context import LifecycleContext
from rpde_proxy.main.config import get_settings
from rpde_proxy.main.logging import get_logger
from rpde_proxy.queues.broker import QueueBroker
from rpde_proxy.redis.connection import build_arq_redis_settings, create_redis_client
from rpde_proxy.worker.consumer import QueueConsumer

logger = get_logger(__name__)


class Worker:
    """
    Hosts the feed lifecycle inside an arq worker process.

    Attributes:
        functions (list): Registered arq functions.
        cron_jobs (list): Registered cron jobs.
        redis_settings (RedisSettings): Redis settings for arq itself.
        on_startup (callable): Builds the lifecycle context and starts one
            consumer per queue.
        on_shutdown (callable): Stops the consumers and closes connections.

    Methods:
        cron_job(**decorator_kwargs):
            Decorator registering a cron job that receives the lifecycle context.

        include_subworker(sub_worker: Worker):
            Includes functions and cron jobs from a sub-worker.
    """

    def __init__(self):
        settings = get_settings()
        self.functions = []
        self.cron_jobs = []
        self.redis_settings = build_arq_redis_settings(settings)
        self.on_startup = self.startup
        self.on_shutdown = self.shutdown
        self.retry_jobs = False
        self.job_timeout = settings.worker_job_timeout_seconds
        self.max_jobs = settings.worker_max_jobs

        # health_check_interval: How often to update worker health key in Redis
        self.health_check_interval = 60  # seconds (default is 3600)

        # job_completion_wait: Time to wait for jobs to complete on shutdown
        self.job_completion_wait = 60  # seconds

    async def startup(self, ctx):
        settings = get_settings()
        sessionmanager.init(settings.database_url)

        queue_redis = create_redis_client(settings)
        lifecycle = LifecycleContext(
            broker=QueueBroker.from_redis(queue_redis, settings),
            store=CacheStore(sessionmanager, settings.store_retry_after_seconds),
            origin=OriginClient(settings),
            settings=settings,
        )

        # One semaphore per process bounds transitions across all queues
        semaphore = asyncio.Semaphore(settings.consumer_concurrency)
        consumers = [
            QueueConsumer(
                lifecycle,
                name,
                semaphore,
                idle_sleep_seconds=settings.consumer_idle_sleep_seconds,
            )
            for name in lifecycle.broker.names
        ]

        ctx["lifecycle"] = lifecycle
        ctx["queue_redis"] = queue_redis
        ctx["consumers"] = consumers
        ctx["consumer_tasks"] = [
            asyncio.create_task(consumer.run_forever()) for consumer in consumers
        ]

        logger.info(
            "Started queue consumers",
            extra={
                "queues": [consumer.queue_name.value for consumer in consumers],
                "concurrency": settings.consumer_concurrency,
            },
        )

    async def shutdown(self, ctx):
        for consumer in ctx.get("consumers", []):
            await consumer.stop()

        for task in ctx.get("consumer_tasks", []):
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass  # Expected on cancellation

        lifecycle: LifecycleContext | None = ctx.get("lifecycle")
        if lifecycle is not None:
            await lifecycle.origin.aclose()

        queue_redis = ctx.get("queue_redis")
        if queue_redis is not None:
            await queue_redis.aclose()

        await sessionmanager.close()

    def cron_job(self, **decorator_kwargs):
        def decorator(func):
            @wraps(func)
            async def wrapper(ctx):
                logger.debug(f"Executing {func.__name__}")
                return await func(ctx["lifecycle"])

            self.cron_jobs.append(cron(wrapper, **decorator_kwargs))
            return wrapper

        return decorator

    def include_subworker(self, sub_worker: Worker):
        self.functions.extend(sub_worker.functions)
        self.cron_jobs.extend(sub_worker.cron_jobs)

        logger.debug(
            "Including cron jobs from subworker: %s",
            sub_worker.cron_jobs,
        )
