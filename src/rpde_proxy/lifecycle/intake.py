"""Accepting new feeds into the lifecycle."""

import re
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from rpde_proxy.feeds.errors import FeedLifecycleError, NameConflictError
from rpde_proxy.feeds.feed_state import FeedState
from rpde_proxy.feeds.rpde import parse_page
from rpde_proxy.main.logging import get_logger
from rpde_proxy.queues.names import QueueName

if TYPE_CHECKING:
    from rpde_proxy.lifecycle.context import LifecycleContext

logger = get_logger(__name__)

_FEED_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class RegistrationRejected(Exception):
    """The first page of the requested feed could not be validated."""


class RegistrationRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    url: str
    dataset_url: Optional[str] = None
    deleted_item_retention_days: int = Field(default=7, ge=0)


class RegistrationReceipt(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    context: str = Field(default="https://schema.org/", alias="@context")
    type: str = Field(default="DataFeed", alias="@type")
    name: str
    url: str
    date_created: datetime
    date_modified: datetime
    already_registered: bool = False


async def request_registration(
    ctx: "LifecycleContext", request: RegistrationRequest
) -> RegistrationReceipt:
    """Validate a feed and queue it for registration.

    The feed enters the lifecycle with a purge, clearing any rows left under
    its name, which then cascades into registration.

    Raises:
        RegistrationRejected: invalid name, or the first page failed validation.
        NameConflictError: the name is already queued with a different url.
    """
    if not _FEED_NAME_PATTERN.match(request.name):
        raise RegistrationRejected(f"Invalid feed name '{request.name}'")

    try:
        response = await ctx.origin.fetch(request.url)
        response.raise_for_status()
        parse_page(response.body, ctx.settings.rpde_license)
    except FeedLifecycleError as exc:
        raise RegistrationRejected(
            f"Registration error while validating first page of '{request.url}': {exc}"
        ) from exc

    existing = [
        queued.state
        for queued in await ctx.broker.peek_feed_states()
        if queued.state.name == request.name
    ]
    if existing:
        first = existing[0]
        if first.source_url != request.url:
            raise NameConflictError(request.name, first.source_url, request.url)
        return RegistrationReceipt(
            name=request.name,
            url=ctx.settings.feed_url(request.name),
            date_created=first.created_at,
            date_modified=first.modified_at,
            already_registered=True,
        )

    state = FeedState.for_registration(
        request.name,
        request.url,
        dataset_url=request.dataset_url,
        deleted_item_retention_days=request.deleted_item_retention_days,
    )
    await ctx.broker.enqueue(QueueName.PURGE, state)
    logger.info(
        "Feed queued for registration",
        extra={"feed_name": request.name, "source_url": request.url},
    )
    return RegistrationReceipt(
        name=request.name,
        url=ctx.settings.feed_url(request.name),
        date_created=state.created_at,
        date_modified=state.modified_at,
    )
