"""Delay queue transport with per-message locks, backed by Redis.

A message is invisible until its scheduled time. ``receive`` hands out at
most one holder per message through a lock token; the lock expires after the
visibility timeout, after which the message is delivered again (or moved to
the dead-letter queue once the delivery limit is reached). Only the current
token can complete, renew or dead-letter the message.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional, Protocol
from uuid import uuid4

from rpde_proxy.main.logging import get_logger
from rpde_proxy.queues.lua_scripts import LuaScripts

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = get_logger(__name__)

KEY_PREFIX = "rpde:queue"


@dataclass
class Delivery:
    queue: str
    message_id: str
    lock_token: str
    body: bytes
    delivery_count: int


@dataclass
class PeekedMessage:
    message_id: str
    body: bytes
    queue: str
    visible_at: Optional[datetime] = None
    locked_until: Optional[datetime] = None
    delivery_count: int = 0


class DelayQueue(Protocol):
    name: str

    async def enqueue(self, body: bytes, visible_at: datetime) -> str: ...

    async def receive(self) -> Optional[Delivery]: ...

    async def complete(self, lock_token: str) -> bool: ...

    async def dead_letter(self, lock_token: str, body: Optional[bytes] = None) -> bool: ...

    async def renew_lock(self, lock_token: str) -> bool: ...

    async def peek_all(self) -> list[PeekedMessage]: ...


def message_id_from_token(lock_token: str) -> str:
    return lock_token.rsplit(":", 1)[0]


def _to_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def _from_ms(value: float) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def _text(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


class QueueKeys:
    def __init__(self, name: str):
        base = f"{KEY_PREFIX}:{name}"
        self.scheduled = f"{base}:scheduled"
        self.inflight = f"{base}:inflight"
        self.messages = f"{base}:messages"
        self.tokens = f"{base}:tokens"
        self.deliveries = f"{base}:deliveries"


class RedisDelayQueue:
    def __init__(
        self,
        redis: "Redis",
        name: str,
        *,
        lock_duration_seconds: int,
        max_delivery_count: int,
        dead_letter_name: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.keys = QueueKeys(name)
        # Without a dead-letter target, expired locks are always requeued
        self.dead_letter_keys = QueueKeys(dead_letter_name) if dead_letter_name else None
        self._redis = redis
        self._lock_ms = lock_duration_seconds * 1000
        self._max_delivery_count = max_delivery_count if dead_letter_name else 0
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def enqueue(self, body: bytes, visible_at: datetime) -> str:
        message_id = uuid4().hex
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hset(self.keys.messages, message_id, body)
            pipe.zadd(self.keys.scheduled, {message_id: _to_ms(visible_at)})
            await pipe.execute()
        return message_id

    async def receive(self) -> Optional[Delivery]:
        dead_letter_keys = self.dead_letter_keys or self.keys
        result = await LuaScripts.run(
            self._redis,
            LuaScripts.RECEIVE,
            [
                self.keys.scheduled,
                self.keys.inflight,
                self.keys.messages,
                self.keys.tokens,
                self.keys.deliveries,
                dead_letter_keys.scheduled,
                dead_letter_keys.messages,
            ],
            [self._now_ms(), self._lock_ms, uuid4().hex, self._max_delivery_count],
        )
        if not result:
            return None

        message_id, body, delivery_count, lock_token = result
        return Delivery(
            queue=self.name,
            message_id=_text(message_id),
            lock_token=_text(lock_token),
            body=body if isinstance(body, bytes) else body.encode(),
            delivery_count=LuaScripts.as_int(delivery_count),
        )

    async def complete(self, lock_token: str) -> bool:
        result = await LuaScripts.run(
            self._redis,
            LuaScripts.COMPLETE,
            [self.keys.inflight, self.keys.messages, self.keys.tokens, self.keys.deliveries],
            [lock_token, self._now_ms()],
        )
        completed = LuaScripts.as_int(result) == 1
        if not completed:
            logger.debug(
                "Complete rejected, lock no longer held",
                extra={"queue": self.name, "message_id": message_id_from_token(lock_token)},
            )
        return completed

    async def renew_lock(self, lock_token: str) -> bool:
        result = await LuaScripts.run(
            self._redis,
            LuaScripts.RENEW,
            [self.keys.inflight, self.keys.tokens],
            [lock_token, self._now_ms(), self._lock_ms],
        )
        return LuaScripts.as_int(result) == 1

    async def dead_letter(self, lock_token: str, body: Optional[bytes] = None) -> bool:
        """Move the locked message to the dead-letter queue.

        ``body`` replaces the stored payload, so the failure that caused the
        dead-lettering travels with it.
        """
        if self.dead_letter_keys is None:
            raise ValueError(f"Queue '{self.name}' has no dead-letter queue")

        result = await LuaScripts.run(
            self._redis,
            LuaScripts.DEAD_LETTER,
            [
                self.keys.inflight,
                self.keys.messages,
                self.keys.tokens,
                self.keys.deliveries,
                self.dead_letter_keys.scheduled,
                self.dead_letter_keys.messages,
            ],
            [lock_token, self._now_ms(), _text(body) if body else ""],
        )
        return LuaScripts.as_int(result) == 1

    async def peek_all(self) -> list[PeekedMessage]:
        """Non-destructive snapshot of every message, scheduled or locked."""
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hgetall(self.keys.messages)
            pipe.zrange(self.keys.scheduled, 0, -1, withscores=True)
            pipe.zrange(self.keys.inflight, 0, -1, withscores=True)
            pipe.hgetall(self.keys.deliveries)
            bodies, scheduled, inflight, deliveries = await pipe.execute()

        visible = {_text(member): score for member, score in scheduled}
        locked = {_text(member): score for member, score in inflight}
        counts = {_text(key): LuaScripts.as_int(value) for key, value in deliveries.items()}

        peeked = []
        for raw_id, body in bodies.items():
            message_id = _text(raw_id)
            peeked.append(
                PeekedMessage(
                    message_id=message_id,
                    body=body if isinstance(body, bytes) else body.encode(),
                    queue=self.name,
                    visible_at=_from_ms(visible[message_id]) if message_id in visible else None,
                    locked_until=_from_ms(locked[message_id]) if message_id in locked else None,
                    delivery_count=counts.get(message_id, 0),
                )
            )
        return peeked
