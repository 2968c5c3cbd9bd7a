from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from rpde_proxy.feeds.feed_state import FeedState

if TYPE_CHECKING:
    from rpde_proxy.queues.broker import QueueBroker


class QueueStatusEntry(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    queue: str
    message_id: str
    feed_state: FeedState
    visible_at: Optional[datetime] = None
    locked_until: Optional[datetime] = None
    delivery_count: int = 0

    @property
    def is_locked(self) -> bool:
        return self.locked_until is not None

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


async def collect_queue_status(
    broker: "QueueBroker", name: Optional[str] = None
) -> list[QueueStatusEntry]:
    """Every message of every queue, sorted by feed name. Optionally one feed only."""
    entries = [
        QueueStatusEntry(
            queue=queued.queue,
            message_id=queued.message.message_id,
            feed_state=queued.state,
            visible_at=queued.message.visible_at,
            locked_until=queued.message.locked_until,
            delivery_count=queued.message.delivery_count,
        )
        for queued in await broker.peek_feed_states()
        if name is None or queued.state.name == name
    ]
    return sorted(entries, key=lambda entry: (entry.feed_state.name, entry.queue))
