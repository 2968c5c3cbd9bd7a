"""Purge stage: delete a feed's cached rows in batches, then hand over to registration."""

from typing import TYPE_CHECKING

from rpde_proxy.feeds.errors import FeedLifecycleError
from rpde_proxy.feeds.feed_state import FeedLifecycleStage, FeedState
from rpde_proxy.feeds.retry_policy import purge_retry_delay
from rpde_proxy.lifecycle.commit import commit_transition
from rpde_proxy.main.logging import get_logger
from rpde_proxy.queues.names import QueueName

if TYPE_CHECKING:
    from rpde_proxy.lifecycle.context import LifecycleContext
    from rpde_proxy.queues.delay_queue import Delivery

logger = get_logger(__name__)


async def handle_purge(ctx: "LifecycleContext", delivery: "Delivery", state: FeedState) -> bool:
    settings = ctx.settings

    try:
        deleted = await ctx.store.delete_items_batch(state.name, settings.purge_batch_size)
    except FeedLifecycleError as exc:
        state.purge_retries += 1
        delay = purge_retry_delay(state.purge_retries, settings)
        state.last_error_text = str(exc)
        logger.warning(
            f"Purge batch failed: {exc}",
            extra={"purge_retries": state.purge_retries, "delay_seconds": delay},
        )
        return await commit_transition(
            ctx, delivery, QueueName.PURGE, state, delay_seconds=delay
        )

    state.purged_items += deleted

    if deleted >= settings.purge_batch_size:
        return await commit_transition(
            ctx,
            delivery,
            QueueName.PURGE,
            state,
            delay_seconds=settings.purge_continuation_delay_seconds,
        )

    if ctx.clear_cache_requested():
        logger.info(
            "Purge complete, feed removed while proxy cache clear is requested",
            extra={"purged_items": state.purged_items},
        )
        return await commit_transition(ctx, delivery)

    logger.info(
        "Purge complete, re-registering feed",
        extra={"purged_items": state.purged_items, "purge_cycle": state.purge_cycle_count + 1},
    )
    state.reset_counters()
    state.purge_cycle_count += 1
    state.with_stage(FeedLifecycleStage.REGISTERING)
    return await commit_transition(ctx, delivery, QueueName.REGISTRATION, state)
