"""HTTP client for origin RPDE feeds."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

import httpx

from rpde_proxy.feeds.errors import FetchError, UnauthorizedError
from rpde_proxy.feeds.feed_state import utcnow
from rpde_proxy.main.config import Settings
from rpde_proxy.main.logging import get_logger

logger = get_logger(__name__)


@dataclass
class OriginResponse:
    url: str
    status_code: int
    body: bytes
    received_at: datetime
    headers: httpx.Headers = field(default_factory=httpx.Headers)

    @property
    def is_unauthorized(self) -> bool:
        return self.status_code == 401

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400

    def raise_for_status(self) -> None:
        """Raise the classified error for an unsuccessful response.

        Raises:
            UnauthorizedError: origin answered 401.
            FetchError: any other status >= 400.
        """
        if self.is_unauthorized:
            raise UnauthorizedError(self.url)
        if self.is_error:
            raise FetchError(f"Origin returned {self.status_code} for '{self.url}'")


class OriginClient:
    def __init__(
        self,
        settings: Settings,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._client = client or httpx.AsyncClient(
            timeout=settings.origin_timeout_seconds,
            follow_redirects=True,
            headers={"User-Agent": settings.origin_user_agent},
        )
        self._clock = clock

    async def fetch(self, url: str) -> OriginResponse:
        """GET an origin page. Transport failures surface as ``FetchError``.

        Unsuccessful statuses are returned, not raised; callers decide.
        """
        try:
            response = await self._client.get(url, headers={"Accept": "application/json"})
        except httpx.HTTPError as exc:
            logger.debug(
                "Origin request failed",
                extra={"url": url, "error_type": type(exc).__name__},
            )
            raise FetchError(f"Request to '{url}' failed: {exc}") from exc

        return OriginResponse(
            url=url,
            status_code=response.status_code,
            body=response.content,
            received_at=self._clock(),
            headers=response.headers,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
