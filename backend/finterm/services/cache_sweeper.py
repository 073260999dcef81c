"""Periodic removal of expired cache entries."""

import asyncio
import logging
from typing import Optional

from .freshness_cache import FreshnessCache, freshness_cache

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL_MINUTES = 60


class CacheSweeper:
    """Runs ``clear_expired`` on a fixed interval in the background."""

    def __init__(self, cache: FreshnessCache, interval_minutes: float = DEFAULT_SWEEP_INTERVAL_MINUTES):
        self._cache = cache
        self.interval_minutes = interval_minutes
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the sweep loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info(f"CacheSweeper started (every {self.interval_minutes:g} minutes)")

    async def stop(self) -> None:
        """Stop the sweep loop."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("CacheSweeper stopped")

    async def sweep_once(self) -> int:
        return await self._cache.clear_expired()

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_minutes * 60)
                await self.sweep_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Cache sweep error: {e}")


# Global instance
cache_sweeper = CacheSweeper(freshness_cache)
