"""Freshness gates and the feed refresh lifecycle.

A gate decides whether a feed is due for a network fetch, independently of
the generic cache TTL:
- ``every_n_minutes(n)``   - quote-style feeds
- ``once_rolling_hours(h)`` - at most one automatic refresh per h hours
- ``once_per_iso_week()``   - weekly feeds; compares ISO (year, week)

A manual refresh (``force=True``) always bypasses the gate.

Lifecycle of a feed refresh::

    fresh ---(gate due or cache miss)---> fetch
    fetch --success--> fetched (cache + last-good + timestamp updated)
    fetch --failure--> stale_served (last good value, nothing updated)
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Tuple

from .clock import Clock, to_utc, utc_now
from .freshness_cache import FreshnessCache, freshness_cache
from .kv_store import KeyValueStore, kv_store

logger = logging.getLogger(__name__)

LAST_FETCH_PREFIX = "feed:last_fetch:"
LAST_GOOD_PREFIX = "feed:last_good:"


class PolicyKind(str, Enum):
    EVERY_N_MINUTES = "every_n_minutes"
    ONCE_ROLLING_HOURS = "once_rolling_hours"
    ONCE_PER_ISO_WEEK = "once_per_iso_week"


@dataclass(frozen=True)
class RefreshPolicy:
    """How often a feed may be refreshed automatically."""
    kind: PolicyKind
    amount: Optional[float] = None

    @classmethod
    def every_n_minutes(cls, n: float) -> "RefreshPolicy":
        if n <= 0:
            raise ValueError(f"Refresh interval must be positive, got {n} minutes")
        return cls(PolicyKind.EVERY_N_MINUTES, n)

    @classmethod
    def once_rolling_hours(cls, hours: float) -> "RefreshPolicy":
        if hours <= 0:
            raise ValueError(f"Refresh window must be positive, got {hours} hours")
        return cls(PolicyKind.ONCE_ROLLING_HOURS, hours)

    @classmethod
    def once_per_iso_week(cls) -> "RefreshPolicy":
        return cls(PolicyKind.ONCE_PER_ISO_WEEK)

    @property
    def window(self) -> Optional[timedelta]:
        """Minimum gap between refreshes; None for calendar-based policies."""
        if self.kind == PolicyKind.EVERY_N_MINUTES:
            return timedelta(minutes=self.amount)
        if self.kind == PolicyKind.ONCE_ROLLING_HOURS:
            return timedelta(hours=self.amount)
        return None

    def describe(self) -> str:
        if self.kind == PolicyKind.EVERY_N_MINUTES:
            return f"every {self.amount:g} minutes"
        if self.kind == PolicyKind.ONCE_ROLLING_HOURS:
            return f"once per {self.amount:g} hours"
        return "once per ISO week"


def iso_week(moment: datetime) -> Tuple[int, int]:
    """ISO 8601 (year, week) of the UTC date of ``moment``."""
    year, week, _ = to_utc(moment).isocalendar()
    return year, week


def should_refresh(
    last_fetch: Optional[datetime],
    now: datetime,
    policy: RefreshPolicy,
    force: bool = False,
) -> bool:
    """Pure gate: is a feed last fetched at ``last_fetch`` due at ``now``?"""
    if force or last_fetch is None:
        return True

    if policy.kind == PolicyKind.ONCE_PER_ISO_WEEK:
        # Dec 30 2024 is week 1 of 2025, so compare the pair, not the week alone
        return iso_week(last_fetch) != iso_week(now)

    return to_utc(now) - to_utc(last_fetch) >= policy.window


class FreshnessGate:
    """Persists the last successful fetch per feed and applies policies to it."""

    def __init__(self, store: KeyValueStore, clock: Clock = utc_now):
        self._store = store
        self._clock = clock

    def now(self) -> datetime:
        return to_utc(self._clock())

    async def last_fetch(self, feed_id: str) -> Optional[datetime]:
        """Timestamp of the last successful fetch; None if never (or unreadable)."""
        try:
            raw = await self._store.read(f"{LAST_FETCH_PREFIX}{feed_id}")
        except Exception as e:
            logger.warning(f"Could not read last fetch time for {feed_id}: {e}")
            return None

        if raw is None:
            return None

        try:
            return to_utc(datetime.fromisoformat(raw.decode("utf-8")))
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning(f"Ignoring malformed last fetch time for {feed_id}: {e}")
            return None

    async def mark_fetched(self, feed_id: str, at: Optional[datetime] = None) -> datetime:
        at = to_utc(at) if at is not None else self.now()
        try:
            await self._store.write(f"{LAST_FETCH_PREFIX}{feed_id}", at.isoformat().encode("utf-8"))
        except Exception as e:
            logger.error(f"Could not record fetch time for {feed_id}: {e}")
        return at

    async def should_refresh(self, feed_id: str, policy: RefreshPolicy, force: bool = False) -> bool:
        if force:
            return True
        return should_refresh(await self.last_fetch(feed_id), self.now(), policy)


class FeedState(str, Enum):
    FRESH = "fresh"
    FETCHED = "fetched"
    STALE_SERVED = "stale_served"


@dataclass
class FeedResult:
    """Outcome of one refresh request."""
    feed_id: str
    value: Any
    state: FeedState
    fetched_at: Optional[datetime]
    error: Optional[str] = None

    @property
    def is_stale(self) -> bool:
        return self.state == FeedState.STALE_SERVED


class FeedUnavailableError(Exception):
    """A fetch failed and no value was ever stored for the feed."""

    def __init__(self, feed_id: str, cause: Exception):
        self.feed_id = feed_id
        self.cause = cause
        super().__init__(f"No data available for feed '{feed_id}': {cause}")


class FeedRefresher:
    """Runs the gated refresh lifecycle for a feed.

    The last successfully fetched value is kept under its own key with no
    expiry, so a failed fetch can be answered with it even after the cache
    entry has expired or been swept.
    """

    def __init__(self, cache: FreshnessCache, gate: FreshnessGate, store: KeyValueStore):
        self.cache = cache
        self.gate = gate
        self._store = store

    async def refresh(
        self,
        feed_id: str,
        policy: RefreshPolicy,
        fetch: Callable[[], Awaitable[Any]],
        ttl_minutes: Optional[float] = None,
        force: bool = False,
    ) -> FeedResult:
        """Return the feed value, fetching only when the gate or cache requires it.

        Raises:
            FeedUnavailableError: If the fetch fails and nothing was ever stored.
        """
        last_fetch = await self.gate.last_fetch(feed_id)

        if not should_refresh(last_fetch, self.gate.now(), policy, force=force):
            cached = await self.cache.get(feed_id)
            if cached is not None:
                return FeedResult(feed_id, cached, FeedState.FRESH, last_fetch)
            logger.debug(f"{feed_id}: gate not due but cache is empty, fetching")

        try:
            value = await fetch()
        except Exception as e:
            logger.error(f"Error fetching {feed_id}: {e}")
            stale = await self._last_good(feed_id)
            if stale is None:
                raise FeedUnavailableError(feed_id, e) from e
            logger.warning(f"{feed_id}: serving last good value from {last_fetch}")
            return FeedResult(feed_id, stale, FeedState.STALE_SERVED, last_fetch, error=str(e))

        await self.cache.set(feed_id, value, ttl_minutes)
        await self._remember(feed_id, value)
        fetched_at = await self.gate.mark_fetched(feed_id)
        return FeedResult(feed_id, value, FeedState.FETCHED, fetched_at)

    async def _remember(self, feed_id: str, value: Any) -> None:
        try:
            await self._store.write(f"{LAST_GOOD_PREFIX}{feed_id}", json.dumps(value).encode("utf-8"))
        except Exception as e:
            logger.error(f"Could not store last good value for {feed_id}: {e}")

    async def _last_good(self, feed_id: str) -> Optional[Any]:
        try:
            raw = await self._store.read(f"{LAST_GOOD_PREFIX}{feed_id}")
            if raw is not None:
                return json.loads(raw.decode("utf-8"))
        except Exception as e:
            logger.warning(f"Could not read last good value for {feed_id}: {e}")

        # Fall back to whatever the cache still holds, expired or not
        entry = await self.cache.get_entry(feed_id)
        if entry is None:
            return None
        try:
            return entry.value()
        except ValueError:
            return None


# Global instances
freshness_gate = FreshnessGate(kv_store)
feed_refresher = FeedRefresher(freshness_cache, freshness_gate, kv_store)


async def should_refresh_feed(feed_id: str, policy: RefreshPolicy, force: bool = False) -> bool:
    """Whether ``feed_id`` is due for a refresh on the process gate."""
    return await freshness_gate.should_refresh(feed_id, policy, force)
