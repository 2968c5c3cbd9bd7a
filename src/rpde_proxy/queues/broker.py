from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Mapping, Optional

from pydantic import ValidationError

from rpde_proxy.feeds.feed_state import FeedState, utcnow
from rpde_proxy.main.logging import get_logger
from rpde_proxy.queues.delay_queue import DelayQueue, PeekedMessage, RedisDelayQueue
from rpde_proxy.queues.names import QueueName

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from rpde_proxy.main.config import Settings

logger = get_logger(__name__)


@dataclass
class QueuedFeedState:
    message: PeekedMessage
    state: FeedState

    @property
    def queue(self) -> str:
        return self.message.queue


class QueueBroker:
    """The four lifecycle queues, addressed by ``QueueName``."""

    def __init__(
        self,
        queues: Mapping[QueueName, DelayQueue],
        clock: Callable[[], datetime] = utcnow,
    ):
        self._queues = dict(queues)
        self._clock = clock

    @classmethod
    def from_redis(cls, redis: "Redis", settings: "Settings") -> "QueueBroker":
        def build(name: QueueName, dead_letter: Optional[QueueName]) -> RedisDelayQueue:
            return RedisDelayQueue(
                redis,
                name.value,
                lock_duration_seconds=settings.queue_lock_duration_seconds,
                max_delivery_count=settings.queue_max_delivery_count,
                dead_letter_name=dead_letter.value if dead_letter else None,
            )

        return cls(
            {
                QueueName.POLL: build(QueueName.POLL, QueueName.POLL_DEAD_LETTER),
                QueueName.POLL_DEAD_LETTER: build(QueueName.POLL_DEAD_LETTER, None),
                QueueName.PURGE: build(QueueName.PURGE, QueueName.POLL_DEAD_LETTER),
                QueueName.REGISTRATION: build(QueueName.REGISTRATION, QueueName.POLL_DEAD_LETTER),
            }
        )

    @property
    def names(self) -> list[QueueName]:
        return list(self._queues)

    def get(self, name: QueueName) -> DelayQueue:
        return self._queues[name]

    async def enqueue(
        self,
        name: QueueName,
        state: FeedState,
        *,
        delay_seconds: float = 0,
        visible_at: Optional[datetime] = None,
    ) -> str:
        when = visible_at or self._clock() + timedelta(seconds=delay_seconds)
        return await self.get(name).enqueue(state.encode(), when)

    async def peek_all(self, name: QueueName) -> list[PeekedMessage]:
        return await self.get(name).peek_all()

    async def peek_feed_states(self) -> list[QueuedFeedState]:
        """Decoded states of every message in every queue; undecodable ones are skipped."""
        queued = []
        for name in self._queues:
            for message in await self.peek_all(name):
                try:
                    state = FeedState.decode(message.body)
                except ValidationError:
                    logger.warning(
                        "Skipping undecodable message while peeking",
                        extra={"queue": message.queue, "message_id": message.message_id},
                    )
                    continue
                queued.append(QueuedFeedState(message=message, state=state))
        return queued
