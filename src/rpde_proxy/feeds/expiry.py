"""Re-poll timing derived from origin cache headers.

The ``Expires`` sent by an origin may be wildly inaccurate when the origin
does not synchronize its clock. Its ``Date`` header is compared with its
``Expires`` to discern the intended validity window, which is then applied to
the local receive time and bounded to sane limits.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any, Mapping

if TYPE_CHECKING:
    from rpde_proxy.feeds.origin_client import OriginResponse
    from rpde_proxy.main.config import Settings

_MAX_AGE_PATTERN = re.compile(r"(?:^|,)\s*max-age\s*=\s*\"?(\d+)\"?", re.IGNORECASE)

# Headroom above the recommended interval, so a proxy that drifted out of sync can catch up
MAX_INTERVAL_HEADROOM = 1.5


def adjust_expires(
    expires: datetime | None,
    origin_date: datetime | None,
    received_at: datetime,
    recommended_interval: int | None = None,
    *,
    min_interval: int,
    max_interval: int,
) -> datetime | None:
    """Translate an origin ``Expires`` into local time, bounded to [min, max].

    Args:
        expires: Origin ``Expires`` header.
        origin_date: Origin ``Date`` header (when the origin believed it responded).
        received_at: Local time the response arrived.
        recommended_interval: Origin's recommended poll interval in seconds, if any.
        min_interval: Lower bound in seconds, protects the origin from excess polling.
        max_interval: Used in place of a missing recommendation for the upper bound.

    Returns:
        The adjusted expiry, or None when there is no usable caching signal.
    """
    if expires is None or origin_date is None:
        return None

    validity = expires - origin_date
    seconds_from_now = validity.total_seconds()
    upper = (recommended_interval or max_interval) * MAX_INTERVAL_HEADROOM

    if seconds_from_now < 0:
        # Already expired even after adjustment
        return None
    if seconds_from_now > upper:
        return received_at + timedelta(seconds=upper)
    if seconds_from_now < min_interval:
        return received_at + timedelta(seconds=min_interval)
    return received_at + validity


def project_expiry_forward(expiry: datetime, interval: int, now: datetime) -> datetime:
    """Move a passed expiry forward by whole poll intervals until it is >= now."""
    elapsed = (now - expiry).total_seconds()
    if elapsed <= 0:
        return expiry
    intervals = math.ceil(elapsed / interval)
    return expiry + timedelta(seconds=intervals * interval)


def parse_http_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_max_age(cache_control: str | None) -> int | None:
    if not cache_control:
        return None
    match = _MAX_AGE_PATTERN.search(cache_control)
    return int(match.group(1)) if match else None


def parse_interval(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        interval = int(value.strip())
    except ValueError:
        return None
    return interval if interval > 0 else None


@dataclass
class CacheSignals:
    expires: datetime | None = None
    max_age: int | None = None
    recommended_poll_interval: int | None = None

    @classmethod
    def from_headers(
        cls,
        headers: Mapping[str, str],
        received_at: datetime,
        settings: "Settings",
    ) -> "CacheSignals":
        recommended = parse_interval(headers.get(settings.recommended_poll_interval_header))
        expires = adjust_expires(
            parse_http_date(headers.get("expires")),
            parse_http_date(headers.get("date")),
            received_at,
            recommended,
            min_interval=settings.min_poll_interval_seconds,
            max_interval=settings.max_poll_interval_seconds,
        )
        return cls(
            expires=expires,
            max_age=parse_max_age(headers.get("cache-control")),
            recommended_poll_interval=recommended,
        )

    @classmethod
    def from_response(cls, response: "OriginResponse", settings: "Settings") -> "CacheSignals":
        return cls.from_headers(response.headers, response.received_at, settings)

    def next_poll_at(self, now: datetime, default_interval: int) -> datetime:
        """When to fetch the last page again."""
        if self.expires is not None:
            return max(self.expires, now)
        if self.max_age is not None:
            return now + timedelta(seconds=self.max_age)
        return now + timedelta(seconds=default_interval)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.expires is not None:
            payload["expires"] = self.expires.isoformat()
        if self.max_age is not None:
            payload["maxAge"] = self.max_age
        if self.recommended_poll_interval is not None:
            payload["recommendedPollInterval"] = self.recommended_poll_interval
        return payload
