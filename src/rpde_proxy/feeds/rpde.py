"""RPDE page model, item id canonicalization and cached item rows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional, Union
from urllib.parse import quote_plus

from pydantic import BaseModel, ConfigDict, StrictInt, StrictStr, ValidationError

from rpde_proxy.feeds.errors import InvalidPageError

# "$" is always percent-encoded in text ids and never appears in numeric ones,
# so the reserved id cannot collide with a real item.
LAST_PAGE_ITEM_ID = "$last-page$"
LAST_PAGE_ITEM_MODIFIED = 2**63 - 1
NUMERIC_ID_WIDTH = 20


@dataclass(frozen=True)
class NumericId:
    value: int

    def canonical(self) -> str:
        # Zero-padded so numeric ids sort lexically in the same order as numerically
        return f"{self.value:0{NUMERIC_ID_WIDTH}d}"


@dataclass(frozen=True)
class TextId:
    value: str

    def canonical(self) -> str:
        encoded = quote_plus(self.value)
        if encoded.isascii() and encoded.isdigit():
            # Digit-only text would otherwise equal a padded numeric id
            return f"%{ord(encoded[0]):02X}{encoded[1:]}"
        return encoded


ItemId = Union[NumericId, TextId]


def parse_item_id(raw: int | str) -> ItemId:
    if isinstance(raw, bool):
        raise InvalidPageError(f"Item id must be a number or string, got {raw!r}")
    if isinstance(raw, int):
        if raw < 0:
            raise InvalidPageError(f"Numeric item id must not be negative, got {raw}")
        return NumericId(raw)
    return TextId(raw)


class RpdeItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Union[StrictInt, StrictStr]
    modified: int
    kind: Optional[str] = None
    state: str
    data: Optional[Any] = None

    @property
    def is_deleted(self) -> bool:
        return self.state == "deleted"


class RpdePage(BaseModel):
    model_config = ConfigDict(extra="allow")

    next: Optional[str] = None
    items: Optional[list[RpdeItem]] = None
    license: Optional[str] = None


def parse_page(body: bytes | str, expected_license: str) -> RpdePage:
    """Parse and validate an origin page.

    Raises:
        InvalidPageError: body is not an RPDE page, the license does not match,
            or ``next``/``items`` is missing.
    """
    try:
        page = RpdePage.model_validate_json(body)
    except ValidationError as exc:
        raise InvalidPageError(f"Page is not a valid RPDE page: {exc}") from exc

    if page.license != expected_license:
        raise InvalidPageError(
            f"Page license '{page.license}' does not match '{expected_license}'"
        )
    if page.next is None:
        raise InvalidPageError("Page is missing 'next'")
    if page.items is None:
        raise InvalidPageError("Page is missing 'items'")
    return page


class CachedItem(BaseModel):
    source: str
    id: str
    modified: int
    kind: str = ""
    deleted: bool = False
    data: Optional[Any] = None
    expiry: Optional[datetime] = None

    @classmethod
    def from_rpde(
        cls,
        item: RpdeItem,
        source: str,
        received_at: datetime,
        deleted_item_retention_days: int,
    ) -> "CachedItem":
        item_id = parse_item_id(item.id).canonical()
        return cls(
            source=source,
            id=item_id,
            modified=item.modified,
            kind=item.kind or "",
            deleted=item.is_deleted,
            data={**item.model_dump(mode="json", exclude_none=True), "id": item_id},
            expiry=(
                received_at + timedelta(days=deleted_item_retention_days)
                if item.is_deleted
                else None
            ),
        )

    @classmethod
    def last_page_sentinel(cls, source: str, signals: dict[str, Any]) -> "CachedItem":
        """Marker row carrying the re-poll signals so the read path skips a lookup."""
        return cls(
            source=source,
            id=LAST_PAGE_ITEM_ID,
            modified=LAST_PAGE_ITEM_MODIFIED,
            kind="",
            deleted=False,
            data=signals,
        )
