"""Tests for external data sources API."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from finterm.services.config import ConfigValidationError, ConfigValidationException
from finterm.services.external_data import DataSourceType


@pytest.mark.asyncio
async def test_get_data_sources(client):
    """Test getting all data source configurations."""
    response = await client.get("/api/data-sources/sources")
    assert response.status_code == 200
    data = response.json()

    assert set(data) == {"fear_greed", "economic_calendar", "exchange_rates"}

    # Keyless feeds are on by default, rates need a key first
    assert data["fear_greed"]["enabled"] == True
    assert data["economic_calendar"]["enabled"] == True
    assert data["exchange_rates"]["enabled"] == False
    assert data["economic_calendar"]["policy"] == "once per ISO week"


@pytest.mark.asyncio
async def test_disable_data_source(client):
    """Test disabling a data source."""
    response = await client.put(
        "/api/data-sources/sources/fear_greed",
        json={"enabled": False}
    )
    assert response.status_code == 200
    assert response.json()["enabled"] == False


@pytest.mark.asyncio
async def test_set_api_key(client):
    response = await client.put(
        "/api/data-sources/sources/exchange_rates",
        json={"enabled": True, "api_key": "abc123"}
    )
    assert response.status_code == 200
    data = response.json()
    assert data["enabled"] == True
    assert data["has_api_key"] == True


@pytest.mark.asyncio
async def test_bulk_disable_sources(client):
    """Test disabling all sources at once."""
    response = await client.post(
        "/api/data-sources/sources/bulk",
        json={"enabled": False}
    )
    assert response.status_code == 200
    data = response.json()

    for source in data.values():
        assert source["enabled"] == False


@pytest.mark.asyncio
async def test_invalid_source_type(client):
    """Test updating an invalid source type."""
    response = await client.put(
        "/api/data-sources/sources/invalid_source",
        json={"enabled": True}
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_get_fear_greed(client, data_service):
    source = data_service.get_source(DataSourceType.FEAR_GREED)
    source.fetch = AsyncMock(return_value={"value": 72, "classification": "Greed"})

    response = await client.get("/api/data-sources/fear-greed")
    assert response.status_code == 200
    data = response.json()

    assert data["state"] == "fetched"
    assert data["stale"] == False
    assert data["data"]["value"] == 72

    response = await client.get("/api/data-sources/fear-greed")
    assert response.json()["state"] == "fresh"


@pytest.mark.asyncio
async def test_forced_refresh(client, data_service):
    source = data_service.get_source(DataSourceType.ECONOMIC_CALENDAR)
    source.fetch = AsyncMock(side_effect=[{"events": []}, {"events": [{"title": "CPI"}]}])

    await client.get("/api/data-sources/calendar")
    response = await client.get("/api/data-sources/calendar", params={"force": "true"})

    assert response.json()["state"] == "fetched"
    assert response.json()["data"]["events"][0]["title"] == "CPI"


@pytest.mark.asyncio
async def test_stale_feed(client, data_service):
    source = data_service.get_source(DataSourceType.FEAR_GREED)
    source.fetch = AsyncMock(side_effect=[{"value": 72}, ConnectionError("offline")])

    await client.get("/api/data-sources/fear-greed")
    response = await client.get("/api/data-sources/fear-greed", params={"force": "true"})

    assert response.status_code == 200
    data = response.json()
    assert data["state"] == "stale_served"
    assert data["stale"] == True
    assert data["data"] == {"value": 72}
    assert "offline" in data["error"]


@pytest.mark.asyncio
async def test_feed_unavailable(client, data_service):
    source = data_service.get_source(DataSourceType.FEAR_GREED)
    source.fetch = AsyncMock(side_effect=ConnectionError("offline"))

    response = await client.get("/api/data-sources/fear-greed")
    assert response.status_code == 503


@pytest.mark.asyncio
async def test_disabled_feed_returns_null(client):
    response = await client.get("/api/data-sources/rates")
    assert response.status_code == 200
    assert response.json() is None


@pytest.mark.asyncio
async def test_should_refresh(client, data_service):
    response = await client.get("/api/data-sources/feeds/fear_greed/should-refresh")
    assert response.status_code == 200
    assert response.json() == {"feed_id": "fear_greed", "should_refresh": True}

    source = data_service.get_source(DataSourceType.FEAR_GREED)
    source.fetch = AsyncMock(return_value={"value": 72})
    await client.get("/api/data-sources/fear-greed")

    response = await client.get("/api/data-sources/feeds/fear_greed/should-refresh")
    assert response.json()["should_refresh"] is False


@pytest.mark.asyncio
async def test_should_refresh_invalid_feed(client):
    response = await client.get("/api/data-sources/feeds/weather/should-refresh")
    assert response.status_code == 400


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    {"cache_ttl_minutes": 0},
    {"cache_ttl_minutes": -5},
    {"refresh_minutes": -1},
])
async def test_update_rejects_out_of_range_values(client, data_service, body):
    response = await client.put("/api/data-sources/sources/fear_greed", json=body)
    assert response.status_code == 422

    assert not data_service._config_path.exists()
    config = data_service.get_source_configs()["fear_greed"]
    assert config["cache_ttl_minutes"] == 24 * 60
    assert config["policy"] == "once per 24 hours"


@pytest.mark.asyncio
async def test_update_validation_error_is_bad_request(client, data_service):
    data_service.update_source_config = MagicMock(side_effect=ConfigValidationException([
        ConfigValidationError("sources.fear_greed.cache_ttl_minutes", "Cache TTL must be an integer > 0, got 0"),
    ]))

    response = await client.put("/api/data-sources/sources/fear_greed", json={"enabled": True})

    assert response.status_code == 400
    assert response.json()["detail"][0]["path"] == "sources.fear_greed.cache_ttl_minutes"


@pytest.mark.asyncio
async def test_update_keeps_fetch_state(client, data_service):
    source = data_service.get_source(DataSourceType.FEAR_GREED)
    source.fetch = AsyncMock(side_effect=[{"value": 72}, ConnectionError("offline")])
    await client.get("/api/data-sources/fear-greed")
    await client.get("/api/data-sources/fear-greed", params={"force": "true"})

    response = await client.put(
        "/api/data-sources/sources/fear_greed",
        json={"settings": {"history_days": 30}}
    )
    assert response.status_code == 200
    data = response.json()

    assert data["last_state"] == "stale_served"
    assert data["healthy"] == False
    assert data["last_fetch"] is not None
    assert data_service.get_source(DataSourceType.FEAR_GREED) is source
