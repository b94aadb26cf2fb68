"""
calmesh.integrations.feeds.cache - Per-account TTL cache with stale fallback

Feed providers fetch a whole document (ICS text, JSON export) per account
and answer every read from it. Each account holds at most one CacheEntry:

    empty --fetch ok--> fresh --TTL elapses--> expired --fetch ok--> fresh
                                                  |
                                                  +--fetch fails--> stale payload served

A failed fetch with no prior entry propagates. Concurrent refreshes for the
same account are not coordinated: the last one to finish wins.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Generic, TypeVar

from calmesh.accounts.models import Account
from calmesh.errors import CalmeshError, FeedFetchError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]

TTL_CONFIG_KEYS = ("cacheTtlMinutes", "CacheTtlMinutes")


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    payload: T
    fetched_at: datetime


@dataclass(frozen=True)
class CacheLookup(Generic[T]):
    """A cache read. ``stale`` is True when a refresh failed and an old payload was served."""

    payload: T
    fetched_at: datetime
    stale: bool = False


class FeedCache(Generic[T]):
    """
    TTL cache keyed by account id.

    Example:
        >>> cache: FeedCache[Calendar] = FeedCache("ics", default_ttl_minutes=5)
        >>> lookup = await cache.get(account, lambda: fetch_calendar(url))
        >>> lookup.stale
        False
    """

    def __init__(
        self,
        name: str,
        default_ttl_minutes: int,
        clock: Clock | None = None,
    ) -> None:
        self.name = name
        self.default_ttl = timedelta(minutes=default_ttl_minutes)
        self._clock = clock or utcnow
        self._entries: dict[str, CacheEntry[T]] = {}

    def ttl_for(self, account: Account) -> timedelta:
        """TTL from the account's config, or the cache default if absent or invalid."""
        raw = account.config_value(*TTL_CONFIG_KEYS)
        if raw is None:
            return self.default_ttl
        try:
            minutes = int(raw)
        except ValueError:
            logger.warning(
                f"Ignoring non-integer cache TTL '{raw}' for account {account.id}",
                extra={"account_id": account.id, "cache": self.name},
            )
            return self.default_ttl
        if minutes <= 0:
            return self.default_ttl
        return timedelta(minutes=minutes)

    def peek(self, account_id: str) -> CacheEntry[T] | None:
        """Return the current entry without fetching or checking freshness."""
        return self._entries.get(account_id.casefold())

    def invalidate(self, account_id: str | None = None) -> None:
        """Drop one account's entry, or every entry when *account_id* is None."""
        if account_id is None:
            self._entries.clear()
        else:
            self._entries.pop(account_id.casefold(), None)

    async def get(self, account: Account, fetch: Callable[[], Awaitable[T]]) -> CacheLookup[T]:
        """
        Return the account's payload, refetching it if missing or expired.

        Raises:
            FeedFetchError: If the fetch fails and nothing is cached.
        """
        key = account.id.casefold()
        now = self._clock()
        entry = self._entries.get(key)

        if entry is not None and now - entry.fetched_at < self.ttl_for(account):
            logger.debug(f"Using cached {self.name} data for {account.id}")
            return CacheLookup(entry.payload, entry.fetched_at)

        try:
            payload = await fetch()
        except Exception as e:
            if entry is not None:
                logger.warning(
                    f"Failed to refresh {self.name} data for {account.id}, "
                    f"serving stale copy fetched at {entry.fetched_at.isoformat()}: {e}",
                    extra={"account_id": account.id, "cache": self.name},
                )
                return CacheLookup(entry.payload, entry.fetched_at, stale=True)
            if isinstance(e, CalmeshError):
                raise
            raise FeedFetchError(f"Failed to fetch {self.name} data for '{account.id}': {e}") from e

        fetched_at = self._clock()
        self._entries[key] = CacheEntry(payload, fetched_at)
        logger.info(
            f"Fetched and cached {self.name} data for {account.id}",
            extra={"account_id": account.id, "cache": self.name},
        )
        return CacheLookup(payload, fetched_at)
