"""Poll stage: fetch the page at the cursor, store its items, schedule the next fetch."""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from rpde_proxy.feeds.errors import DuplicateWriteError, ErrorCategory, ForcedClearError
from rpde_proxy.feeds.expiry import CacheSignals
from rpde_proxy.feeds.feed_state import FeedState
from rpde_proxy.feeds.retry_policy import decide_for_exception
from rpde_proxy.feeds.rpde import CachedItem, parse_page
from rpde_proxy.lifecycle.commit import commit_transition, dead_letter_transition
from rpde_proxy.main.logging import get_logger
from rpde_proxy.queues.names import QueueName

if TYPE_CHECKING:
    from rpde_proxy.lifecycle.context import LifecycleContext
    from rpde_proxy.queues.delay_queue import Delivery

logger = get_logger(__name__)


async def handle_poll(ctx: "LifecycleContext", delivery: "Delivery", state: FeedState) -> bool:
    settings = ctx.settings

    try:
        if ctx.clear_cache_requested():
            raise ForcedClearError()

        state.poll_attempts += 1
        response = await ctx.origin.fetch(state.cursor_url)
        response.raise_for_status()

        page = parse_page(response.body, settings.rpde_license)
        signals = CacheSignals.from_response(response, settings)
        items = page.items or []
        is_last_page = not items and page.next == state.cursor_url

        rows = [
            CachedItem.from_rpde(
                item, state.name, response.received_at, state.deleted_item_retention_days
            )
            for item in items
        ]
        if is_last_page and state.consecutive_empty_last_page_reads == 0:
            rows.append(CachedItem.last_page_sentinel(state.name, signals.to_payload()))

        affected = await ctx.store.batch_upsert_items(rows) if rows else 0
        if rows and affected == 0 and not is_last_page:
            raise DuplicateWriteError(state.name, len(rows))
    except Exception as exc:
        return await _handle_failure(ctx, delivery, state, exc)

    state.pages_read += 1
    state.items_read += len(items)
    state.advance_cursor(page.next)
    next_poll_at: Optional[datetime] = None
    if is_last_page:
        state.consecutive_empty_last_page_reads += 1
        next_poll_at = signals.next_poll_at(ctx.clock(), settings.default_poll_interval_seconds)
    else:
        state.consecutive_empty_last_page_reads = 0
    state.clear_failure()

    logger.debug(
        "Page stored",
        extra={
            "items": len(items),
            "rows_affected": affected,
            "last_page": is_last_page,
            "next_poll_at": next_poll_at.isoformat() if next_poll_at else None,
        },
    )
    return await commit_transition(
        ctx, delivery, QueueName.POLL, state, visible_at=next_poll_at
    )


async def _handle_failure(
    ctx: "LifecycleContext",
    delivery: "Delivery",
    state: FeedState,
    exc: Exception,
) -> bool:
    decision = decide_for_exception(exc, state.retry_state, ctx.settings)
    state.record_failure(decision, exc)

    log_extra = {
        "category": decision.category.value,
        "retry_count": decision.retry_count,
        "delay_seconds": decision.delay_seconds,
        "cursor_url": state.cursor_url,
    }
    if decision.category == ErrorCategory.UNEXPECTED:
        logger.error(f"Unexpected error polling feed: {exc}", exc_info=exc, extra=log_extra)
    else:
        logger.warning(f"Poll failed: {exc}", extra=log_extra)

    if decision.drop_immediately:
        return await commit_transition(ctx, delivery)
    if decision.dead_letter:
        return await dead_letter_transition(ctx, delivery, state)
    return await commit_transition(
        ctx, delivery, QueueName.POLL, state, delay_seconds=decision.delay_seconds
    )
