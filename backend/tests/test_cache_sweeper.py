"""Tests for the background cache sweeper and refresh logs."""

import asyncio
import csv

from conftest import utc
from finterm.services.cache_sweeper import CacheSweeper
from finterm.services.logging_service import FeedLoggingService, RefreshLogEntry, REFRESH_LOG_HEADER


class TestCacheSweeper:

    async def test_sweep_once(self, cache, frozen_clock):
        await cache.set("old", 1, ttl_minutes=1)
        await cache.set("new", 2, ttl_minutes=60)
        frozen_clock.advance(minutes=2)

        sweeper = CacheSweeper(cache, interval_minutes=60)
        assert await sweeper.sweep_once() == 1
        assert await cache.get("new") == 2

    async def test_start_stop(self, cache):
        sweeper = CacheSweeper(cache, interval_minutes=60)
        await sweeper.start()
        await sweeper.start()
        assert sweeper.running is True

        await sweeper.stop()
        assert sweeper.running is False

    async def test_loop_sweeps_on_interval(self, cache, frozen_clock):
        await cache.set("old", 1, ttl_minutes=1)
        frozen_clock.advance(minutes=2)

        sweeper = CacheSweeper(cache, interval_minutes=0.001)
        await sweeper.start()
        for _ in range(50):
            await asyncio.sleep(0.01)
            if await cache.get_entry("old") is None:
                break
        await sweeper.stop()

        assert await cache.get_entry("old") is None


class TestFeedLoggingService:

    def _entry(self, state, error=None):
        return RefreshLogEntry(
            timestamp=utc(2025, 1, 6, 12, 0),
            feed_id="fear_greed",
            state=state,
            forced=False,
            fetched_at=utc(2025, 1, 6, 12, 0) if state == "fetched" else None,
            error=error,
        )

    def test_rows_appended_under_one_header(self, tmp_path):
        service = FeedLoggingService("fear_greed", base_dir=tmp_path)
        service.log_refresh(self._entry("fetched"))
        service.log_refresh(self._entry("stale_served", error="timeout"))

        with open(service.refresh_log_path, newline="") as f:
            rows = list(csv.reader(f))

        assert rows[0] == REFRESH_LOG_HEADER
        assert len(rows) == 3
        assert rows[2][2] == "stale_served"
        assert rows[2][5] == "timeout"

    def test_write_failure_is_swallowed(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        service = FeedLoggingService("fear_greed", base_dir=blocker)
        service.log_refresh(self._entry("fetched"))
        assert not service.refresh_log_path.exists()
