import json
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

import httpx
import pytest

from rpde_proxy.feeds.feed_repo import RegisteredFeed
from rpde_proxy.feeds.origin_client import OriginResponse
from rpde_proxy.feeds.rpde import LAST_PAGE_ITEM_ID
from rpde_proxy.lifecycle.context import LifecycleContext
from rpde_proxy.main.config import CC_BY_LICENSE, OperatorControls, Settings, reset_settings
from rpde_proxy.queues.broker import QueueBroker
from rpde_proxy.queues.delay_queue import Delivery, PeekedMessage
from rpde_proxy.queues.names import QueueName

NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings with explicit values for unit tests.

    Provides a clean, isolated configuration that doesn't depend on .env file
    or environment variables.
    """
    return Settings(
        # Minimal database settings (not used in unit tests)
        postgres_user="unit_test_user",
        postgres_host="localhost",
        postgres_password="unit_test_password",
        postgres_port=5432,
        postgres_db="unit_test_db",

        # Redis settings (not used in unit tests)
        redis_host="localhost",
        redis_port=6379,

        feed_base_url="https://proxy.example.com/",
        rpde_license=CC_BY_LICENSE,

        # Testing mode
        testing=True,
        dev=True,
    )


@pytest.fixture(autouse=True)
def reset_settings_after_test():
    """Reset settings after each test to prevent state leakage."""
    yield
    reset_settings()


class InMemoryDelayQueue:
    """Delay queue stub with the lock semantics of the Redis transport."""

    def __init__(self, name: str, clock, dead_letter: Optional["InMemoryDelayQueue"] = None):
        self.name = name
        self._clock = clock
        self.dead_letter_queue = dead_letter
        self.messages: dict[str, dict] = {}
        self.lock_lost = False
        self.completed: list[str] = []

    async def enqueue(self, body: bytes, visible_at: datetime) -> str:
        message_id = uuid4().hex
        self.messages[message_id] = {
            "body": body,
            "visible_at": visible_at,
            "token": None,
            "deliveries": 0,
        }
        return message_id

    def put_locked(self, body: bytes, message_id: Optional[str] = None) -> Delivery:
        """Place a message that is already held by the caller."""
        message_id = message_id or uuid4().hex
        token = f"{message_id}:{uuid4().hex}"
        self.messages[message_id] = {
            "body": body,
            "visible_at": self._clock(),
            "token": token,
            "deliveries": 1,
        }
        return Delivery(
            queue=self.name,
            message_id=message_id,
            lock_token=token,
            body=body,
            delivery_count=1,
        )

    async def receive(self) -> Optional[Delivery]:
        now = self._clock()
        ready = sorted(
            (
                (message["visible_at"], message_id)
                for message_id, message in self.messages.items()
                if message["token"] is None and message["visible_at"] <= now
            ),
        )
        if not ready:
            return None
        message_id = ready[0][1]
        message = self.messages[message_id]
        message["token"] = f"{message_id}:{uuid4().hex}"
        message["deliveries"] += 1
        return Delivery(
            queue=self.name,
            message_id=message_id,
            lock_token=message["token"],
            body=message["body"],
            delivery_count=message["deliveries"],
        )

    def _held(self, lock_token: str) -> Optional[str]:
        message_id = lock_token.rsplit(":", 1)[0]
        message = self.messages.get(message_id)
        if self.lock_lost or message is None or message["token"] != lock_token:
            return None
        return message_id

    async def complete(self, lock_token: str) -> bool:
        message_id = self._held(lock_token)
        if message_id is None:
            return False
        del self.messages[message_id]
        self.completed.append(message_id)
        return True

    async def renew_lock(self, lock_token: str) -> bool:
        return self._held(lock_token) is not None

    async def dead_letter(self, lock_token: str, body: Optional[bytes] = None) -> bool:
        message_id = self._held(lock_token)
        if message_id is None:
            return False
        message = self.messages.pop(message_id)
        self.dead_letter_queue.messages[message_id] = {
            "body": body or message["body"],
            "visible_at": self._clock(),
            "token": None,
            "deliveries": 0,
        }
        return True

    async def peek_all(self) -> list[PeekedMessage]:
        return [
            PeekedMessage(
                message_id=message_id,
                body=message["body"],
                queue=self.name,
                visible_at=message["visible_at"],
                locked_until=(
                    message["visible_at"] + timedelta(seconds=60)
                    if message["token"]
                    else None
                ),
                delivery_count=message["deliveries"],
            )
            for message_id, message in self.messages.items()
        ]

    def bodies(self) -> list[bytes]:
        return [message["body"] for message in self.messages.values()]


class FakeCacheStore:
    """Item and feed tables in dictionaries, with the upsert rules of the real store."""

    def __init__(self):
        self.items: dict[tuple[str, str], dict] = {}
        self.feeds: dict[str, RegisteredFeed] = {}
        self.upsert_calls: list[list] = []
        self.fail_with: Optional[Exception] = None

    def _maybe_fail(self):
        if self.fail_with is not None:
            raise self.fail_with

    async def batch_upsert_items(self, rows) -> int:
        self._maybe_fail()
        self.upsert_calls.append(list(rows))
        affected = 0
        for row in rows:
            key = (row.source, row.id)
            existing = self.items.get(key)
            if existing is None or existing["modified"] < row.modified or row.id == LAST_PAGE_ITEM_ID:
                self.items[key] = row.model_dump()
                affected += 1
        return affected

    async def delete_items_batch(self, source: str, limit: int) -> int:
        self._maybe_fail()
        keys = [key for key in self.items if key[0] == source][:limit]
        for key in keys:
            del self.items[key]
        return len(keys)

    async def prune_expired_items(self, now: datetime) -> int:
        expired = [
            key
            for key, row in self.items.items()
            if row["expiry"] is not None and row["expiry"] < now
        ]
        for key in expired:
            del self.items[key]
        return len(expired)

    async def save_feed_record(self, record: RegisteredFeed) -> None:
        self._maybe_fail()
        self.feeds[record.name] = record

    async def delete_feed_record(self, name: str) -> None:
        self._maybe_fail()
        self.feeds.pop(name, None)

    async def query_feed_records(self) -> list[RegisteredFeed]:
        return list(self.feeds.values())

    def rows_for(self, source: str) -> dict[str, dict]:
        return {key[1]: row for key, row in self.items.items() if key[0] == source}


class FakeOrigin:
    def __init__(self):
        self.responses: dict[str, list] = {}
        self.requested: list[str] = []

    def add(self, url: str, response_or_error) -> None:
        self.responses.setdefault(url, []).append(response_or_error)

    async def fetch(self, url: str) -> OriginResponse:
        self.requested.append(url)
        queued = self.responses.get(url)
        if not queued:
            raise AssertionError(f"Unexpected fetch of {url}")
        result = queued.pop(0) if len(queued) > 1 else queued[0]
        if isinstance(result, Exception):
            raise result
        return result

    async def aclose(self) -> None:
        pass


def rpde_page(
    next_url: str,
    items: Optional[list] = None,
    license: str = CC_BY_LICENSE,
    status_code: int = 200,
    headers: Optional[dict] = None,
    received_at: datetime = NOW,
    url: str = "",
) -> OriginResponse:
    body = {"next": next_url, "items": items if items is not None else [], "license": license}
    return OriginResponse(
        url=url or next_url,
        status_code=status_code,
        body=json.dumps(body).encode(),
        received_at=received_at,
        headers=httpx.Headers(headers or {}),
    )


def rpde_item(id, modified: int, state: str = "updated", kind: str = "SessionSeries") -> dict:
    item = {"id": id, "modified": modified, "state": state, "kind": kind}
    if state == "updated":
        item["data"] = {"@type": kind, "name": f"item {id}"}
    return item


class Clock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def queues(clock) -> dict[QueueName, InMemoryDelayQueue]:
    dead_letter = InMemoryDelayQueue(QueueName.POLL_DEAD_LETTER.value, clock)
    return {
        QueueName.POLL: InMemoryDelayQueue(QueueName.POLL.value, clock, dead_letter),
        QueueName.POLL_DEAD_LETTER: dead_letter,
        QueueName.PURGE: InMemoryDelayQueue(QueueName.PURGE.value, clock, dead_letter),
        QueueName.REGISTRATION: InMemoryDelayQueue(
            QueueName.REGISTRATION.value, clock, dead_letter
        ),
    }


@pytest.fixture
def broker(queues, clock) -> QueueBroker:
    return QueueBroker(queues, clock=clock)


@pytest.fixture
def store() -> FakeCacheStore:
    return FakeCacheStore()


@pytest.fixture
def origin() -> FakeOrigin:
    return FakeOrigin()


@pytest.fixture
def operator_controls() -> OperatorControls:
    return OperatorControls(clear_proxy_cache=False)


@pytest.fixture
def lifecycle(broker, store, origin, test_settings, operator_controls, clock) -> LifecycleContext:
    return LifecycleContext(
        broker=broker,
        store=store,
        origin=origin,
        settings=test_settings,
        controls=lambda: operator_controls,
        clock=clock,
    )


@pytest.fixture
def make_page():
    return rpde_page


@pytest.fixture
def make_item():
    return rpde_item
