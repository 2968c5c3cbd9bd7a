"""Failure taxonomy for the feed lifecycle.

Every failure raised while fetching, validating or storing a page is mapped to
exactly one ``ErrorCategory``. The category alone decides the recovery policy
(see ``rpde_proxy.feeds.retry_policy``).
"""

from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    UNAUTHORIZED = "unauthorized"
    DUPLICATE_WRITE = "duplicate-write"
    INVALID_PAGE = "invalid-page"
    FETCH_ERROR = "fetch-error"
    STORE_TRANSIENT = "store-transient"
    STORE_WRITE_ERROR = "store-write-error"
    FORCED_CLEAR = "forced-clear"
    NAME_CONFLICT = "name-conflict"
    UNEXPECTED = "unexpected"


class FeedLifecycleError(Exception):
    """Base class for classified lifecycle failures."""

    category: ErrorCategory = ErrorCategory.UNEXPECTED


class UnauthorizedError(FeedLifecycleError):
    """Origin answered 401, usually because an API key was rotated."""

    category = ErrorCategory.UNAUTHORIZED

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Origin returned 401 for '{url}'")


class DuplicateWriteError(FeedLifecycleError):
    """Batch upsert changed nothing: another delivery already applied the page."""

    category = ErrorCategory.DUPLICATE_WRITE

    def __init__(self, name: str, item_count: int):
        self.name = name
        self.item_count = item_count
        super().__init__(
            f"No rows affected writing {item_count} items for '{name}', duplicate delivery"
        )


class InvalidPageError(FeedLifecycleError):
    category = ErrorCategory.INVALID_PAGE


class FetchError(FeedLifecycleError):
    category = ErrorCategory.FETCH_ERROR


class StoreTransientError(FeedLifecycleError):
    """The store is throttling or briefly unavailable."""

    category = ErrorCategory.STORE_TRANSIENT

    def __init__(self, message: str, retry_after_seconds: int | None = None):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message)


class StoreWriteError(FeedLifecycleError):
    category = ErrorCategory.STORE_WRITE_ERROR


class ForcedClearError(FeedLifecycleError):
    category = ErrorCategory.FORCED_CLEAR

    def __init__(self):
        super().__init__("Proxy cache clear requested by operator")


class NameConflictError(FeedLifecycleError):
    """A feed with the same name is already registered from another url."""

    category = ErrorCategory.NAME_CONFLICT

    def __init__(self, name: str, existing_url: str, requested_url: str):
        self.name = name
        self.existing_url = existing_url
        self.requested_url = requested_url
        super().__init__(
            f"Conflicting feed already registered with same name '{name}' "
            f"using different url '{existing_url}'"
        )
