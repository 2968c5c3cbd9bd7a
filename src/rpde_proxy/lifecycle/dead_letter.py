"""Dead-lettered feeds always restart with a purge."""

from typing import TYPE_CHECKING

from rpde_proxy.feeds.feed_state import FeedLifecycleStage, FeedState
from rpde_proxy.lifecycle.commit import commit_transition
from rpde_proxy.main.logging import get_logger
from rpde_proxy.queues.names import QueueName

if TYPE_CHECKING:
    from rpde_proxy.lifecycle.context import LifecycleContext
    from rpde_proxy.queues.delay_queue import Delivery

logger = get_logger(__name__)


async def handle_dead_letter(
    ctx: "LifecycleContext", delivery: "Delivery", state: FeedState
) -> bool:
    logger.info(
        "Restarting dead-lettered feed with a purge",
        extra={
            "last_error": state.last_error_text,
            "error_count": state.error_count,
            "delivery_count": delivery.delivery_count,
        },
    )
    state.reset_counters()
    state.with_stage(FeedLifecycleStage.PURGING)
    return await commit_transition(ctx, delivery, QueueName.PURGE, state)
