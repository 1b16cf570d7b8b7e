"""Token bookkeeping for providers that authenticate with bearer tokens."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

logger = logging.getLogger(__name__)

TokenFetcher = Callable[[], Awaitable[tuple[str, datetime]]]


class TokenSession:
    """Holds one provider token and refreshes it at most once at a time.

    ``fetch`` performs the actual login and returns ``(token, expires_at)``.
    A token is treated as expired ``leeway`` before its real expiry so that
    a request started just before expiry does not race the carrier.
    """

    def __init__(
        self,
        fetch: TokenFetcher,
        *,
        leeway: timedelta = timedelta(minutes=5),
    ) -> None:
        self._fetch = fetch
        self._leeway = leeway
        self._lock = asyncio.Lock()
        self.token: str | None = None
        self.expires_at: datetime | None = None

    def is_valid(self, now: datetime | None = None) -> bool:
        if self.token is None or self.expires_at is None:
            return False
        now = now or datetime.now(tz=UTC)
        return now < self.expires_at - self._leeway

    def seed(self, token: str, expires_at: datetime) -> None:
        """Reuse a token persisted from an earlier login."""
        self.token = token
        self.expires_at = expires_at

    def invalidate(self) -> None:
        self.token = None
        self.expires_at = None

    async def get(self) -> str:
        if self.is_valid():
            return self.token  # type: ignore[return-value]
        async with self._lock:
            # Another caller may have refreshed while we waited.
            if self.is_valid():
                return self.token  # type: ignore[return-value]
            token, expires_at = await self._fetch()
            self.token = token
            self.expires_at = expires_at
            logger.debug("Token refreshed, valid until %s", expires_at)
            return token
