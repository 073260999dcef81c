"""Tests for cache management API endpoints."""

import pytest


@pytest.mark.asyncio
async def test_clear_cache(client, cache):
    """Clearing removes every entry and reports how many."""
    await cache.set("fear_greed", {"value": 1})
    await cache.set("economic_calendar", [])

    response = await client.delete("/api/cache")
    assert response.status_code == 200
    assert response.json() == {"removed": 2}
    assert await cache.get("fear_greed") is None


@pytest.mark.asyncio
async def test_delete_entry(client, cache):
    await cache.set("fear_greed", {"value": 1})
    await cache.set("exchange_rates", [])

    response = await client.delete("/api/cache/fear_greed")
    assert response.status_code == 200
    assert response.json()["deleted"] is True
    assert await cache.get("fear_greed") is None
    assert await cache.get("exchange_rates") == []


@pytest.mark.asyncio
async def test_delete_missing_entry(client):
    response = await client.delete("/api/cache/never-set")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_clear_expired(client, cache, frozen_clock):
    await cache.set("short", 1, ttl_minutes=1)
    await cache.set("long", 2, ttl_minutes=60)
    frozen_clock.advance(minutes=5)

    response = await client.post("/api/cache/clear-expired")
    assert response.status_code == 200
    assert response.json() == {"removed": 1}
    assert await cache.get("long") == 2
