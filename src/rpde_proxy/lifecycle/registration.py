"""Registration stage: validate a purged feed against its origin and start polling it."""

from typing import TYPE_CHECKING, Optional

from rpde_proxy.feeds.errors import (
    FeedLifecycleError,
    FetchError,
    InvalidPageError,
    NameConflictError,
    StoreTransientError,
    StoreWriteError,
    UnauthorizedError,
)
from rpde_proxy.feeds.feed_repo import RegisteredFeed
from rpde_proxy.feeds.feed_state import FeedLifecycleStage, FeedState
from rpde_proxy.feeds.retry_policy import decide_for_exception
from rpde_proxy.feeds.rpde import parse_page
from rpde_proxy.lifecycle.commit import commit_transition, dead_letter_transition
from rpde_proxy.main.logging import get_logger
from rpde_proxy.queues.names import QueueName

if TYPE_CHECKING:
    from rpde_proxy.lifecycle.context import LifecycleContext
    from rpde_proxy.queues.delay_queue import Delivery

logger = get_logger(__name__)


async def find_queued_duplicate(
    ctx: "LifecycleContext", delivery: "Delivery", state: FeedState
) -> Optional[str]:
    """Return why this registration should be dropped, or None if it may proceed.

    Raises:
        NameConflictError: the name is queued with a different url.
    """
    for queued in await ctx.broker.peek_feed_states():
        if queued.message.message_id == delivery.message_id:
            continue
        if queued.state.name != state.name:
            continue

        if queued.queue == QueueName.REGISTRATION.value:
            # Two registrations in flight: the one with the lower message id survives
            if delivery.message_id < queued.message.message_id:
                continue

        if queued.state.source_url != state.source_url:
            raise NameConflictError(state.name, queued.state.source_url, state.source_url)
        return f"already queued on '{queued.queue}'"
    return None


async def handle_registration(
    ctx: "LifecycleContext", delivery: "Delivery", state: FeedState
) -> bool:
    settings = ctx.settings

    if ctx.clear_cache_requested():
        logger.info("Dropping registration while proxy cache clear is requested")
        return await commit_transition(ctx, delivery)

    try:
        duplicate = await find_queued_duplicate(ctx, delivery, state)
    except NameConflictError as exc:
        logger.warning(str(exc), extra={"requested_url": state.source_url})
        return await commit_transition(ctx, delivery)
    if duplicate is not None:
        logger.info(f"Dropping duplicate registration, feed {duplicate}")
        return await commit_transition(ctx, delivery)

    try:
        response = await ctx.origin.fetch(state.source_url)
        response.raise_for_status()
        parse_page(response.body, settings.rpde_license)
    except (UnauthorizedError, InvalidPageError) as exc:
        logger.warning(f"Registration rejected, feed removed: {exc}")
        return await _remove_feed(ctx, delivery, state)
    except FetchError as exc:
        state.registration_attempts += 1
        state.last_error_text = str(exc)
        if state.registration_attempts >= settings.registration_max_attempts:
            logger.warning(
                f"Registration failed after {state.registration_attempts} attempts, "
                f"feed removed: {exc}"
            )
            return await _remove_feed(ctx, delivery, state)

        logger.info(
            f"Registration fetch failed, retrying: {exc}",
            extra={"registration_attempts": state.registration_attempts},
        )
        return await commit_transition(
            ctx,
            delivery,
            QueueName.REGISTRATION,
            state,
            delay_seconds=settings.registration_retry_delay_seconds,
        )

    try:
        await ctx.store.save_feed_record(
            RegisteredFeed(
                name=state.name,
                url=state.source_url,
                dataset_url=state.dataset_url,
                initial_feed_state=state.model_dump(mode="json", by_alias=True),
            )
        )
    except (StoreTransientError, StoreWriteError) as exc:
        return await _retry_after_store_error(ctx, delivery, state, exc)

    state.restart_from_source()
    state.reset_counters()
    state.with_stage(FeedLifecycleStage.POLLING)
    logger.info("Feed registered, polling from source", extra={"source_url": state.source_url})
    return await commit_transition(ctx, delivery, QueueName.POLL, state)


async def _remove_feed(ctx: "LifecycleContext", delivery: "Delivery", state: FeedState) -> bool:
    try:
        await ctx.store.delete_feed_record(state.name)
    except (StoreTransientError, StoreWriteError) as exc:
        return await _retry_after_store_error(ctx, delivery, state, exc)
    return await commit_transition(ctx, delivery)


async def _retry_after_store_error(
    ctx: "LifecycleContext",
    delivery: "Delivery",
    state: FeedState,
    exc: FeedLifecycleError,
) -> bool:
    """Try the whole registration again once the store recovers."""
    decision = decide_for_exception(exc, state.retry_state, ctx.settings)
    state.record_failure(decision, exc)
    if decision.dead_letter:
        logger.warning(f"Registration store writes keep failing: {exc}")
        return await dead_letter_transition(ctx, delivery, state)

    logger.warning(
        f"Registration store write failed, retrying: {exc}",
        extra={"category": decision.category.value, "delay_seconds": decision.delay_seconds},
    )
    return await commit_transition(
        ctx, delivery, QueueName.REGISTRATION, state, delay_seconds=decision.delay_seconds
    )
