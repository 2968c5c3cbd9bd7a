"""Finalizing a transition: lock renewal, completion and the follow-up message.

The queue and the store cannot share a transaction. A transition is therefore
committed in a fixed order: renew the lock (abandon if lost), complete the
current message, then enqueue the follow-up. A crash between the last two
steps loses the feed's message; the resync reconciler restores it.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from rpde_proxy.feeds.feed_state import FeedState
from rpde_proxy.main.logging import get_logger
from rpde_proxy.queues.names import QueueName

if TYPE_CHECKING:
    from rpde_proxy.lifecycle.context import LifecycleContext
    from rpde_proxy.queues.delay_queue import Delivery

logger = get_logger(__name__)


async def commit_transition(
    ctx: "LifecycleContext",
    delivery: "Delivery",
    next_queue: Optional[QueueName] = None,
    state: Optional[FeedState] = None,
    *,
    delay_seconds: float = 0,
    visible_at: Optional[datetime] = None,
) -> bool:
    """Complete ``delivery`` and, if ``next_queue`` is given, schedule ``state`` on it.

    Returns False when the lock was lost and nothing was written.
    """
    queue = ctx.broker.get(QueueName(delivery.queue))

    if not await queue.renew_lock(delivery.lock_token):
        logger.warning(
            "Lock lost before commit, abandoning transition",
            extra={"message_id": delivery.message_id},
        )
        return False

    if not await queue.complete(delivery.lock_token):
        logger.warning(
            "Lock lost while completing, abandoning transition",
            extra={"message_id": delivery.message_id},
        )
        return False

    if next_queue is not None and state is not None:
        state.touch()
        await ctx.broker.enqueue(
            next_queue, state, delay_seconds=delay_seconds, visible_at=visible_at
        )
    return True


async def dead_letter_transition(
    ctx: "LifecycleContext",
    delivery: "Delivery",
    state: FeedState,
) -> bool:
    """Move the delivery to the dead-letter queue carrying the updated ``state``."""
    queue = ctx.broker.get(QueueName(delivery.queue))

    if not await queue.renew_lock(delivery.lock_token):
        logger.warning(
            "Lock lost before dead-lettering, abandoning transition",
            extra={"message_id": delivery.message_id},
        )
        return False

    state.touch()
    moved = await queue.dead_letter(delivery.lock_token, state.encode())
    if moved:
        logger.warning(
            "Feed dead-lettered",
            extra={
                "message_id": delivery.message_id,
                "last_error": state.last_error_text,
            },
        )
    return moved
