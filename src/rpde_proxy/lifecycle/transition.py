"""Single entry point for every received lifecycle message."""

from typing import TYPE_CHECKING, Awaitable, Callable

from pydantic import ValidationError

from rpde_proxy.feeds.feed_state import FeedLifecycleStage, FeedState
from rpde_proxy.lifecycle.dead_letter import handle_dead_letter
from rpde_proxy.lifecycle.poll import handle_poll
from rpde_proxy.lifecycle.purge import handle_purge
from rpde_proxy.lifecycle.registration import handle_registration
from rpde_proxy.main.log_context import bind_delivery, bind_feed, clear_log_context
from rpde_proxy.main.logging import get_logger
from rpde_proxy.queues.names import QueueName

if TYPE_CHECKING:
    from rpde_proxy.lifecycle.context import LifecycleContext
    from rpde_proxy.queues.delay_queue import Delivery

logger = get_logger(__name__)

Handler = Callable[["LifecycleContext", "Delivery", FeedState], Awaitable[bool]]

STAGE_HANDLERS: dict[FeedLifecycleStage, Handler] = {
    FeedLifecycleStage.REGISTERING: handle_registration,
    FeedLifecycleStage.POLLING: handle_poll,
    FeedLifecycleStage.PURGING: handle_purge,
}


def resolve_handler(queue: str, state: FeedState) -> Handler:
    if queue == QueueName.POLL_DEAD_LETTER.value:
        return handle_dead_letter
    return STAGE_HANDLERS[state.stage]


async def run_transition(ctx: "LifecycleContext", delivery: "Delivery") -> bool:
    """Run the handler for one delivery.

    Returns True when the transition was committed. Never raises: an
    unexpected failure leaves the message locked, and the transport delivers
    it again once the lock expires.
    """
    bind_delivery(delivery.queue, delivery.message_id)
    try:
        try:
            state = FeedState.decode(delivery.body)
        except ValidationError as exc:
            logger.error(
                "Discarding undecodable message",
                extra={"error": str(exc), "delivery_count": delivery.delivery_count},
            )
            await ctx.broker.get(QueueName(delivery.queue)).complete(delivery.lock_token)
            return False

        bind_feed(state)
        handler = resolve_handler(delivery.queue, state)
        return await handler(ctx, delivery, state)
    except Exception as exc:
        logger.error(
            f"Transition failed, message will be redelivered: {exc}",
            exc_info=exc,
            extra={"delivery_count": delivery.delivery_count},
        )
        return False
    finally:
        clear_log_context()
