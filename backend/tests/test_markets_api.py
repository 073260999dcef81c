"""Tests for market session API endpoints."""

import pytest


@pytest.mark.asyncio
async def test_list_markets(client):
    """Every configured market is listed with its hours."""
    response = await client.get("/api/markets")
    assert response.status_code == 200
    data = response.json()

    ids = [m["id"] for m in data]
    assert ids == ["US", "EU", "ASIA", "BIST", "TOKYO", "HONGKONG", "SEOUL"]
    us = data[0]
    assert us["has_futures"] is True
    assert us["after_hours_close"] == 25


@pytest.mark.asyncio
async def test_market_status_uses_server_clock(client):
    """Frozen clock is Monday 12:00 UTC: US pre-market."""
    response = await client.get("/api/markets/US/status")
    assert response.status_code == 200
    data = response.json()

    assert data["status"] == "pre"
    assert data["status_text"] == "PRE-MARKET"
    assert data["is_open"] is False
    assert data["minutes_until_change"] == 150
    assert data["next_event"] == "open"
    assert data["message"] == "Opens in 2h 30m"


@pytest.mark.asyncio
async def test_market_status_at_instant(client):
    response = await client.get("/api/markets/US/status", params={"at": "2025-01-05T23:30:00Z"})
    assert response.status_code == 200
    data = response.json()

    assert data["status"] == "futures"
    assert data["is_open"] is True
    assert data["next_event"] == "close"


@pytest.mark.asyncio
async def test_unknown_market_status(client):
    """Unknown markets return a closed placeholder, not an error."""
    response = await client.get("/api/markets/MARS/status")
    assert response.status_code == 200
    data = response.json()

    assert data["known"] is False
    assert data["status"] == "closed"
    assert data["countdown"] == "--"


@pytest.mark.asyncio
async def test_market_open(client):
    response = await client.get("/api/markets/EU/open")
    assert response.status_code == 200
    assert response.json() == {"market_id": "EU", "is_open": True}

    response = await client.get("/api/markets/US/open")
    assert response.json()["is_open"] is False


@pytest.mark.asyncio
async def test_group_status(client):
    response = await client.get("/api/markets/status", params=[("ids", "TOKYO"), ("ids", "HONGKONG")])
    assert response.status_code == 200
    data = response.json()

    assert data["label"] == "closed"
    assert data["next_label"] == "open"
    assert data["minutes_until_change"] == 720
    assert len(data["markets"]) == 2


@pytest.mark.asyncio
async def test_group_status_requires_ids(client):
    response = await client.get("/api/markets/status")
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_region_status(client):
    response = await client.get("/api/regions/asia_pacific/status", params={"at": "2025-01-06T03:00:00Z"})
    assert response.status_code == 200
    data = response.json()

    assert data["name"] == "Asia Pacific"
    assert data["label"] == "open"
    assert data["open_count"] == 3
    assert data["minutes_until_change"] == 300
    assert data["countdown"] == "5h 0m"


@pytest.mark.asyncio
async def test_invalid_region(client):
    response = await client.get("/api/regions/ATLANTIS/status")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_country_status(client):
    response = await client.get("/api/markets/country/de/status")
    assert response.status_code == 200
    data = response.json()

    assert data["market_id"] == "EU"
    assert data["is_open"] is True
