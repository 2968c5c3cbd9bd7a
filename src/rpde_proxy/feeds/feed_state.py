"""Per-feed progress record carried as the payload of every queue message.

A ``FeedState`` is only ever mutated by the worker that currently holds the
lock on the message carrying it; there is no shared copy anywhere else.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from rpde_proxy.feeds.retry_policy import RetryDecision


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FeedLifecycleStage(str, Enum):
    REGISTERING = "registering"
    POLLING = "polling"
    PURGING = "purging"


class FeedState(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    source_url: str
    cursor_url: str
    dataset_url: Optional[str] = None
    stage: FeedLifecycleStage = FeedLifecycleStage.PURGING

    created_at: datetime = Field(default_factory=utcnow)
    modified_at: datetime = Field(default_factory=utcnow)

    pages_read: int = 0
    items_read: int = 0
    poll_attempts: int = 0
    error_count: int = 0
    purged_items: int = 0
    purge_cycle_count: int = -1  # first purge before registration brings this to 0
    consecutive_empty_last_page_reads: int = 0
    registration_attempts: int = 0
    purge_retries: int = 0

    deleted_item_retention_days: int = 7
    retry_state: Optional[RetryDecision] = None
    last_error_text: Optional[str] = None

    instance_id: UUID = Field(default_factory=uuid4)

    @classmethod
    def for_registration(
        cls,
        name: str,
        url: str,
        dataset_url: str | None = None,
        deleted_item_retention_days: int = 7,
    ) -> "FeedState":
        """New feed state, starting with a purge of anything left under ``name``."""
        return cls(
            name=name,
            source_url=url,
            cursor_url=url,
            dataset_url=dataset_url,
            stage=FeedLifecycleStage.PURGING,
            deleted_item_retention_days=deleted_item_retention_days,
        )

    @classmethod
    def decode(cls, body: bytes | str) -> "FeedState":
        return cls.model_validate_json(body)

    def encode(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode()

    def with_stage(self, stage: FeedLifecycleStage) -> "FeedState":
        self.stage = stage
        self.touch()
        return self

    def touch(self) -> None:
        self.modified_at = utcnow()

    def advance_cursor(self, next_url: str) -> None:
        self.cursor_url = next_url

    def restart_from_source(self) -> None:
        self.cursor_url = self.source_url

    def record_failure(self, decision: RetryDecision, error: BaseException) -> None:
        self.retry_state = decision
        self.last_error_text = str(error) or type(error).__name__
        self.error_count += 1

    def clear_failure(self) -> None:
        self.retry_state = None
        self.last_error_text = None

    def reset_counters(self) -> None:
        self.pages_read = 0
        self.items_read = 0
        self.poll_attempts = 0
        self.error_count = 0
        self.purged_items = 0
        self.consecutive_empty_last_page_reads = 0
        self.registration_attempts = 0
        self.purge_retries = 0
        self.retry_state = None
