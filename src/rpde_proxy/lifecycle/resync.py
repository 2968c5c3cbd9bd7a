"""Re-inject feeds whose message has been lost from every queue."""

import asyncio
from typing import TYPE_CHECKING

from rpde_proxy.feeds.feed_state import FeedLifecycleStage, FeedState
from rpde_proxy.main.logging import get_logger
from rpde_proxy.queues.names import QueueName

if TYPE_CHECKING:
    from rpde_proxy.lifecycle.context import LifecycleContext

logger = get_logger(__name__)


async def sample_queued_feed_names(ctx: "LifecycleContext") -> set[str]:
    """Union of feed names seen across several snapshots of every queue.

    A feed's message is briefly absent while a worker moves it between
    queues, so a single snapshot is not enough.
    """
    settings = ctx.settings
    seen: set[str] = set()
    for sample in range(settings.resync_sample_count):
        if sample:
            await asyncio.sleep(settings.resync_sample_interval_seconds)
        seen.update(queued.state.name for queued in await ctx.broker.peek_feed_states())
    return seen


async def resync_dropped_feeds(ctx: "LifecycleContext") -> list[str]:
    """Enqueue one purge for every registered feed absent from all queues.

    Returns the names of the feeds re-injected.
    """
    if ctx.clear_cache_requested():
        logger.info("Skipping resync while proxy cache clear is requested")
        return []

    records = await ctx.store.query_feed_records()
    if not records:
        return []

    queued_names = await sample_queued_feed_names(ctx)

    reinjected = []
    for record in records:
        if record.name in queued_names:
            continue

        state = FeedState.model_validate(record.initial_feed_state)
        state.reset_counters()
        state.with_stage(FeedLifecycleStage.PURGING)
        await ctx.broker.enqueue(QueueName.PURGE, state)
        reinjected.append(record.name)
        logger.warning(
            "Feed missing from all queues, re-injected with a purge",
            extra={"feed_name": record.name, "source_url": record.url},
        )

    return reinjected
