"""Data sources API router.

Provides endpoints for managing external data sources:
- Get all source configurations and status
- Enable/disable individual sources
- Update source settings
- Fetch feed data, optionally forcing a refresh past the freshness gate
"""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from ..services.config import ConfigValidationException
from ..services.external_data import DataSourceType, ExternalDataService, external_data_service
from ..services.freshness import FeedResult, FeedUnavailableError

router = APIRouter()


def get_external_data_service() -> ExternalDataService:
    return external_data_service


class SourceUpdateRequest(BaseModel):
    """Request to update a data source configuration."""
    enabled: Optional[bool] = None
    api_key: Optional[str] = None
    refresh_minutes: Optional[int] = Field(None, ge=0)
    cache_ttl_minutes: Optional[int] = Field(None, gt=0)
    settings: Optional[Dict[str, Any]] = None


class BulkEnableRequest(BaseModel):
    """Request to enable/disable all sources."""
    enabled: bool


class SourceConfigResponse(BaseModel):
    """Response with source configuration and status."""
    enabled: bool
    has_api_key: bool
    policy: str
    cache_ttl_minutes: int
    settings: Dict[str, Any]
    healthy: bool
    last_fetch: Optional[str]
    last_error: Optional[str]
    last_state: Optional[str]
    data_age_seconds: Optional[int]


class FeedResponse(BaseModel):
    """Feed value with its freshness state."""
    feed_id: str
    state: str
    stale: bool
    fetched_at: Optional[datetime]
    error: Optional[str]
    data: Any


class ShouldRefreshResponse(BaseModel):
    feed_id: str
    should_refresh: bool


def _source_type(source_type: str) -> DataSourceType:
    try:
        return DataSourceType(source_type)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid source type: {source_type}. Valid types: {[s.value for s in DataSourceType]}"
        )


async def _feed(service: ExternalDataService, source_type: DataSourceType, force: bool) -> Optional[FeedResponse]:
    try:
        result: Optional[FeedResult] = await service.get_data(source_type, force=force)
    except FeedUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    if result is None:
        return None
    return FeedResponse(
        feed_id=result.feed_id,
        state=result.state.value,
        stale=result.is_stale,
        fetched_at=result.fetched_at,
        error=result.error,
        data=result.value,
    )


@router.get("/sources", response_model=Dict[str, SourceConfigResponse])
async def get_all_sources(service: ExternalDataService = Depends(get_external_data_service)):
    """Get all data source configurations and status."""
    return service.get_source_configs()


@router.put("/sources/{source_type}", response_model=SourceConfigResponse)
async def update_source(
    source_type: str,
    request: SourceUpdateRequest,
    service: ExternalDataService = Depends(get_external_data_service),
):
    """Update configuration for a specific data source."""
    source_enum = _source_type(source_type)
    try:
        return service.update_source_config(
            source_type=source_enum,
            enabled=request.enabled,
            api_key=request.api_key,
            refresh_minutes=request.refresh_minutes,
            cache_ttl_minutes=request.cache_ttl_minutes,
            settings=request.settings
        )
    except ConfigValidationException as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=[{"path": err.path, "message": err.message} for err in e.errors],
        )


@router.post("/sources/bulk", response_model=Dict[str, SourceConfigResponse])
async def bulk_update_sources(
    request: BulkEnableRequest,
    service: ExternalDataService = Depends(get_external_data_service),
):
    """Enable or disable all data sources at once."""
    return service.set_all_sources_enabled(request.enabled)


@router.get("/fear-greed", response_model=Optional[FeedResponse])
async def get_fear_greed(
    force: bool = False,
    service: ExternalDataService = Depends(get_external_data_service),
):
    """Get Fear & Greed Index if enabled."""
    return await _feed(service, DataSourceType.FEAR_GREED, force)


@router.get("/calendar", response_model=Optional[FeedResponse])
async def get_economic_calendar(
    force: bool = False,
    service: ExternalDataService = Depends(get_external_data_service),
):
    """Get this week's economic calendar if enabled."""
    return await _feed(service, DataSourceType.ECONOMIC_CALENDAR, force)


@router.get("/rates", response_model=Optional[FeedResponse])
async def get_exchange_rates(
    force: bool = False,
    service: ExternalDataService = Depends(get_external_data_service),
):
    """Get currency rates if enabled."""
    return await _feed(service, DataSourceType.EXCHANGE_RATES, force)


@router.get("/feeds/{feed}/should-refresh", response_model=ShouldRefreshResponse)
async def get_should_refresh(
    feed: str,
    service: ExternalDataService = Depends(get_external_data_service),
):
    """Whether the next automatic request for a feed would hit the network."""
    source_enum = _source_type(feed)
    return ShouldRefreshResponse(
        feed_id=source_enum.value,
        should_refresh=await service.should_refresh(source_enum),
    )
