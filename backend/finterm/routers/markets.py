"""Market session API router.

Endpoints for session status of single markets, regions and index
countries. Every endpoint accepts an optional ``at`` instant so clients can
preview a status; without it the server clock is used.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from ..services.market_hours import SessionClock, SessionStatus, countdown_message, session_clock
from ..services.regions import RegionId, RegionalAggregator, RegionalStatus, regional_aggregator

router = APIRouter()


def get_session_clock() -> SessionClock:
    return session_clock


def get_regional_aggregator() -> RegionalAggregator:
    return regional_aggregator


class MarketResponse(BaseModel):
    """Configured market session hours (UTC decimal hours)."""
    id: str
    name: str
    timezone: str
    regular_open: float
    regular_close: float
    pre_market_open: Optional[float]
    pre_market_close: Optional[float]
    after_hours_open: Optional[float]
    after_hours_close: Optional[float]
    futures_open: Optional[float]
    has_futures: bool


class SessionStatusResponse(BaseModel):
    """Session status of one market."""
    market_id: str
    known: bool
    status: str
    status_text: str
    is_open: bool
    minutes_until_change: int
    countdown: str
    message: str
    next_event: str
    next_event_time: datetime


class RegionalStatusResponse(BaseModel):
    """Composite status of a group of markets."""
    name: str
    label: str
    status_text: str
    is_open: bool
    open_count: int
    minutes_until_change: int
    countdown: str
    next_label: Optional[str]
    next_event_time: datetime
    markets: List[SessionStatusResponse]


class MarketOpenResponse(BaseModel):
    market_id: str
    is_open: bool


def _status_response(s: SessionStatus) -> SessionStatusResponse:
    return SessionStatusResponse(
        market_id=s.market_id,
        known=s.known,
        status=s.status.value,
        status_text=s.status_text,
        is_open=s.is_open,
        minutes_until_change=s.minutes_until_change,
        countdown=s.countdown_text,
        message=countdown_message(s),
        next_event=s.next_event.value,
        next_event_time=s.next_event_time,
    )


def _regional_response(r: RegionalStatus) -> RegionalStatusResponse:
    return RegionalStatusResponse(
        name=r.name,
        label=r.label.value,
        status_text=r.status_text,
        is_open=r.is_open,
        open_count=r.open_count,
        minutes_until_change=r.minutes_until_change,
        countdown=r.countdown_text,
        next_label=r.next_label.value if r.next_label else None,
        next_event_time=r.next_event_time,
        markets=[_status_response(s) for s in r.markets],
    )


@router.get("/markets", response_model=List[MarketResponse])
async def list_markets(clock: SessionClock = Depends(get_session_clock)):
    """List configured markets and their session hours."""
    return [
        MarketResponse(
            id=m.id,
            name=m.name,
            timezone=m.timezone,
            regular_open=m.regular_open,
            regular_close=m.regular_close,
            pre_market_open=m.pre_market_open,
            pre_market_close=m.pre_market_close,
            after_hours_open=m.after_hours_open,
            after_hours_close=m.after_hours_close,
            futures_open=m.futures_open,
            has_futures=m.has_futures,
        )
        for m in clock.get_markets()
    ]


@router.get("/markets/status", response_model=RegionalStatusResponse)
async def get_markets_status(
    ids: List[str] = Query(...),
    at: Optional[datetime] = None,
    aggregator: RegionalAggregator = Depends(get_regional_aggregator),
):
    """Composite status of an arbitrary set of markets."""
    return _regional_response(aggregator.get_status(ids, at))


@router.get("/markets/country/{code}/status", response_model=SessionStatusResponse)
async def get_country_status(
    code: str,
    at: Optional[datetime] = None,
    aggregator: RegionalAggregator = Depends(get_regional_aggregator),
):
    """Session status of the market an index country trades on."""
    return _status_response(aggregator.get_country_status(code, at))


@router.get("/markets/{market_id}/status", response_model=SessionStatusResponse)
async def get_market_status(
    market_id: str,
    at: Optional[datetime] = None,
    clock: SessionClock = Depends(get_session_clock),
):
    """Session status of one market. Unknown ids get a closed placeholder."""
    return _status_response(clock.get_status(market_id, at))


@router.get("/markets/{market_id}/open", response_model=MarketOpenResponse)
async def get_market_open(
    market_id: str,
    at: Optional[datetime] = None,
    clock: SessionClock = Depends(get_session_clock),
):
    """Whether a market is trading (regular session or futures)."""
    return MarketOpenResponse(market_id=market_id, is_open=clock.is_open(market_id, at))


@router.get("/regions/{region}/status", response_model=RegionalStatusResponse)
async def get_region_status(
    region: str,
    at: Optional[datetime] = None,
    aggregator: RegionalAggregator = Depends(get_regional_aggregator),
):
    """Composite status of a named region."""
    try:
        region_enum = RegionId(region.upper())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid region: {region}. Valid regions: {[r.value for r in RegionId]}"
        )

    return _regional_response(aggregator.get_region_status(region_enum, at))
