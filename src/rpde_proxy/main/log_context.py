"""Delivery and feed identifiers attached to every log record of a transition.

A transition binds its delivery as soon as it is received, and binds the feed
once the payload has decoded. The context lives in a contextvar, so concurrent
transitions in one worker never see each other's identifiers.
"""

from __future__ import annotations

from contextvars import ContextVar
from dataclasses import asdict, dataclass, replace
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from rpde_proxy.feeds.feed_state import FeedState


@dataclass(frozen=True)
class TransitionLogContext:
    queue: Optional[str] = None
    message_id: Optional[str] = None
    feed_name: Optional[str] = None
    instance_id: Optional[str] = None
    stage: Optional[str] = None

    def as_fields(self) -> dict[str, str]:
        return {key: value for key, value in asdict(self).items() if value is not None}


_EMPTY = TransitionLogContext()
_transition_context: ContextVar[TransitionLogContext] = ContextVar(
    "transition_log_context", default=_EMPTY
)


def bind_delivery(queue: str, message_id: str) -> None:
    _transition_context.set(
        replace(_transition_context.get(), queue=queue, message_id=message_id)
    )


def bind_feed(state: "FeedState") -> None:
    _transition_context.set(
        replace(
            _transition_context.get(),
            feed_name=state.name,
            instance_id=str(state.instance_id),
            stage=state.stage.value,
        )
    )


def get_log_context() -> dict[str, str]:
    """Bound identifiers as log fields, unset ones omitted."""
    return _transition_context.get().as_fields()


def clear_log_context() -> None:
    _transition_context.set(_EMPTY)
