"""Market session hours service.

Classifies the trading session of each tracked market and counts down to the
next session boundary:
- Regular, pre-market and after-hours windows on weekdays
- After-hours windows that roll past midnight UTC (close > 24)
- Sunday evening futures for markets that support them
- Weekend closure with Friday evening rolling straight to Monday

All boundaries are UTC decimal hours (14.5 = 14:30 UTC). The ``timezone`` on a
definition is for display only and never takes part in the math. There is no
holiday calendar: only weekdays/weekends and fixed daily windows are modeled.
"""

import logging
from dataclasses import dataclass, fields, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .clock import Clock, to_utc, truncate_to_minute, utc_now
from .config import ConfigValidationError, ConfigValidationException

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60

# UTC day of week, 0 = Sunday .. 6 = Saturday
SUNDAY = 0
MONDAY = 1
FRIDAY = 5
SATURDAY = 6


class MarketId(str, Enum):
    """Markets tracked by the dashboard."""
    US = "US"
    EU = "EU"
    ASIA = "ASIA"
    BIST = "BIST"
    TOKYO = "TOKYO"
    HONGKONG = "HONGKONG"
    SEOUL = "SEOUL"


class SessionState(str, Enum):
    """Trading mode a market is in."""
    OPEN = "open"
    CLOSED = "closed"
    PRE = "pre"
    POST = "post"
    FUTURES = "futures"


class SessionEvent(str, Enum):
    """The boundary a countdown is running towards."""
    OPEN = "open"
    CLOSE = "close"
    PRE = "pre"
    POST = "post"
    FUTURES = "futures"


STATUS_TEXT = {
    SessionState.OPEN: "LIVE",
    SessionState.CLOSED: "CLOSED",
    SessionState.PRE: "PRE-MARKET",
    SessionState.POST: "AFTER-HOURS",
    SessionState.FUTURES: "FUTURES",
}

# Event reported when the state on the far side of a boundary is known
_ENTRY_EVENTS = {
    SessionState.OPEN: SessionEvent.OPEN,
    SessionState.PRE: SessionEvent.PRE,
    SessionState.POST: SessionEvent.POST,
    SessionState.FUTURES: SessionEvent.FUTURES,
    SessionState.CLOSED: SessionEvent.CLOSE,
}

_COUNTDOWN_PREFIX = {
    SessionEvent.OPEN: "Opens in",
    SessionEvent.PRE: "Pre-market in",
    SessionEvent.FUTURES: "Futures in",
    SessionEvent.POST: "After-hours in",
    SessionEvent.CLOSE: "Closes in",
}


def to_minutes(hour: float) -> int:
    """UTC decimal hour -> minutes after midnight (25 -> 1500)."""
    return int(round(hour * 60))


@dataclass(frozen=True)
class SessionWindow:
    """A daily window in minutes after midnight UTC; ``end`` may exceed a day."""
    state: SessionState
    start: int
    end: int

    def contains(self, minute: int) -> bool:
        return self.start <= minute < self.end


@dataclass(frozen=True)
class MarketDefinition:
    """Static session configuration for one market (UTC decimal hours)."""
    id: str
    name: str
    timezone: str
    regular_open: float
    regular_close: float
    pre_market_open: Optional[float] = None
    pre_market_close: Optional[float] = None
    after_hours_open: Optional[float] = None
    after_hours_close: Optional[float] = None
    # Sunday UTC hour when round-the-clock futures trading begins
    futures_open: Optional[float] = None
    has_futures: bool = False

    def windows(self) -> List[SessionWindow]:
        """Configured weekday windows ordered by start."""
        windows = [SessionWindow(SessionState.OPEN, to_minutes(self.regular_open), to_minutes(self.regular_close))]
        if self.pre_market_open is not None and self.pre_market_close is not None:
            windows.append(SessionWindow(
                SessionState.PRE, to_minutes(self.pre_market_open), to_minutes(self.pre_market_close)
            ))
        if self.after_hours_open is not None and self.after_hours_close is not None:
            windows.append(SessionWindow(
                SessionState.POST, to_minutes(self.after_hours_open), to_minutes(self.after_hours_close)
            ))
        return sorted(windows, key=lambda w: w.start)


DEFAULT_MARKETS: Tuple[MarketDefinition, ...] = (
    MarketDefinition(
        id="US",
        name="US Markets",
        timezone="America/New_York",
        regular_open=14.5,      # 09:30 ET
        regular_close=21,       # 16:00 ET
        pre_market_open=9,      # 04:00 ET
        pre_market_close=14.5,
        after_hours_open=21,
        after_hours_close=25,   # 20:00 ET = 01:00 UTC next day
        futures_open=23,        # Sunday 18:00 ET
        has_futures=True,
    ),
    MarketDefinition(id="EU", name="Europe", timezone="Europe/London", regular_open=8, regular_close=16.5),
    MarketDefinition(id="ASIA", name="Asia", timezone="Asia/Tokyo", regular_open=0, regular_close=6),
    MarketDefinition(id="BIST", name="BIST", timezone="Europe/Istanbul", regular_open=7, regular_close=15),
    MarketDefinition(id="TOKYO", name="Tokyo", timezone="Asia/Tokyo", regular_open=0, regular_close=6),
    MarketDefinition(id="HONGKONG", name="Hong Kong", timezone="Asia/Hong_Kong", regular_open=1.5, regular_close=8),
    MarketDefinition(id="SEOUL", name="Seoul", timezone="Asia/Seoul", regular_open=0, regular_close=6.5),
)


def _is_hour(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_market(definition: MarketDefinition) -> List[ConfigValidationError]:
    """Check a definition for malformed or overlapping session windows."""
    path = f"markets.{definition.id}"
    errors: List[ConfigValidationError] = []

    pairs = [
        ("regular", definition.regular_open, definition.regular_close),
        ("pre_market", definition.pre_market_open, definition.pre_market_close),
        ("after_hours", definition.after_hours_open, definition.after_hours_close),
    ]
    for name, open_hour, close_hour in pairs:
        if open_hour is None and close_hour is None and name != "regular":
            continue
        if open_hour is None or close_hour is None:
            errors.append(ConfigValidationError(f"{path}.{name}", "Both open and close must be set"))
            continue
        if not _is_hour(open_hour) or not _is_hour(close_hour):
            errors.append(ConfigValidationError(f"{path}.{name}", "Session hours must be numbers"))
            continue
        if not 0 <= open_hour < 24:
            errors.append(ConfigValidationError(f"{path}.{name}_open", f"Open hour {open_hour} outside [0, 24)"))
        if not 0 < close_hour <= 48:
            errors.append(ConfigValidationError(f"{path}.{name}_close", f"Close hour {close_hour} outside (0, 48]"))
        if open_hour >= close_hour:
            errors.append(ConfigValidationError(
                f"{path}.{name}", f"Open {open_hour} must be before close {close_hour}"
            ))

    if not isinstance(definition.has_futures, bool):
        errors.append(ConfigValidationError(
            f"{path}.has_futures", f"Expected bool, got {type(definition.has_futures).__name__}"
        ))
    elif definition.has_futures:
        if not _is_hour(definition.futures_open) or not 0 <= definition.futures_open < 24:
            errors.append(ConfigValidationError(
                f"{path}.futures_open", "Futures markets need a Sunday futures_open hour in [0, 24)"
            ))
    elif definition.futures_open is not None:
        errors.append(ConfigValidationError(f"{path}.futures_open", "futures_open set but has_futures is false"))

    if errors:
        return errors

    windows = definition.windows()
    for current, following in zip(windows, windows[1:]):
        if current.end > following.start:
            errors.append(ConfigValidationError(
                path, f"Window '{current.state.value}' overlaps window '{following.state.value}'"
            ))
    spill = windows[-1].end - MINUTES_PER_DAY
    if spill > windows[0].start:
        errors.append(ConfigValidationError(
            path, f"Window '{windows[-1].state.value}' rolls past midnight into the next day's first window"
        ))
    return errors


def apply_overrides(
    definitions: Iterable[MarketDefinition],
    overrides: Optional[Dict[str, Dict[str, Any]]],
) -> List[MarketDefinition]:
    """Apply config-file session overrides (``markets.<ID>.<field>``).

    Raises:
        ConfigValidationException: For unknown market ids or field names.
    """
    by_id = {d.id: d for d in definitions}
    if not overrides:
        return list(by_id.values())

    settable = {f.name for f in fields(MarketDefinition)} - {"id"}
    errors = []
    for market_id, values in overrides.items():
        if market_id not in by_id:
            errors.append(ConfigValidationError(f"markets.{market_id}", f"Unknown market id '{market_id}'"))
            continue
        if not isinstance(values, dict):
            errors.append(ConfigValidationError(
                f"markets.{market_id}", f"Expected dict, got {type(values).__name__}"
            ))
            continue
        unknown = sorted(set(values) - settable)
        for key in unknown:
            errors.append(ConfigValidationError(f"markets.{market_id}.{key}", f"Unknown market field '{key}'"))
        if not unknown:
            by_id[market_id] = replace(by_id[market_id], **values)

    if errors:
        raise ConfigValidationException(errors)
    return list(by_id.values())


class MarketRegistry:
    """Validated, immutable table of market definitions.

    Construction fails with every configuration error at once; lookups never
    raise.
    """

    def __init__(self, definitions: Iterable[MarketDefinition] = DEFAULT_MARKETS):
        errors: List[ConfigValidationError] = []
        markets: Dict[str, MarketDefinition] = {}

        for definition in definitions:
            try:
                MarketId(definition.id)
            except ValueError:
                errors.append(ConfigValidationError(
                    f"markets.{definition.id}", f"Unknown market id '{definition.id}'"
                ))
                continue
            if definition.id in markets:
                errors.append(ConfigValidationError(f"markets.{definition.id}", "Duplicate market definition"))
                continue
            errors.extend(validate_market(definition))
            markets[definition.id] = definition

        if errors:
            raise ConfigValidationException(errors)
        self._markets = markets

    def get(self, market_id: Union[str, MarketId]) -> Optional[MarketDefinition]:
        key = market_id.value if isinstance(market_id, MarketId) else market_id
        return self._markets.get(key)

    def __contains__(self, market_id: Union[str, MarketId]) -> bool:
        return self.get(market_id) is not None

    def all(self) -> List[MarketDefinition]:
        return list(self._markets.values())


def format_countdown(minutes: int) -> str:
    """Format minutes as ``2d 3h``, ``5h 12m`` or ``42m``; ``--`` when negative."""
    if minutes < 0:
        return "--"

    hours, mins = divmod(minutes, 60)
    if hours > 24:
        days, remaining_hours = divmod(hours, 24)
        return f"{days}d {remaining_hours}h"
    if hours > 0:
        return f"{hours}h {mins}m"
    return f"{mins}m"


@dataclass(frozen=True)
class SessionStatus:
    """Session state of one market at one instant. Recomputed, never mutated."""
    market_id: str
    status: SessionState
    is_open: bool
    minutes_until_change: int
    next_event_time: datetime
    next_event: SessionEvent
    known: bool = True

    @classmethod
    def unknown(cls, market_id: str, now: datetime) -> "SessionStatus":
        """Safe default for an unconfigured market id."""
        return cls(
            market_id=market_id,
            status=SessionState.CLOSED,
            is_open=False,
            minutes_until_change=0,
            next_event_time=now,
            next_event=SessionEvent.OPEN,
            known=False,
        )

    @property
    def status_text(self) -> str:
        if not self.known:
            return "Unknown"
        return STATUS_TEXT[self.status]

    @property
    def countdown_text(self) -> str:
        if not self.known:
            return "--"
        return format_countdown(self.minutes_until_change)


def countdown_message(status: SessionStatus) -> str:
    """Human readable countdown, e.g. ``Closes in 5h 30m``."""
    if status.is_open:
        prefix = _COUNTDOWN_PREFIX[SessionEvent.CLOSE]
    else:
        prefix = _COUNTDOWN_PREFIX.get(status.next_event, _COUNTDOWN_PREFIX[SessionEvent.OPEN])
    return f"{prefix} {status.countdown_text}"


def utc_day(moment: datetime) -> int:
    """Day of week with 0 = Sunday."""
    return (moment.weekday() + 1) % 7


class SessionClock:
    """Derives :class:`SessionStatus` from a market definition and an instant.

    Queries are synchronous and pure: the same ``now`` always yields the same
    status.
    """

    def __init__(self, registry: Optional[MarketRegistry] = None, clock: Clock = utc_now):
        self._registry = registry or MarketRegistry()
        self._clock = clock

    @property
    def registry(self) -> MarketRegistry:
        return self._registry

    def configure(self, overrides: Optional[Dict[str, Dict[str, Any]]] = None) -> None:
        """Rebuild the registry with config-file overrides applied.

        Raises:
            ConfigValidationException: If any resulting definition is invalid.
        """
        self._registry = MarketRegistry(apply_overrides(DEFAULT_MARKETS, overrides))
        if overrides:
            logger.info(f"Market session overrides applied for: {', '.join(sorted(overrides))}")

    def now(self) -> datetime:
        return truncate_to_minute(to_utc(self._clock()))

    def get_markets(self) -> List[MarketDefinition]:
        return self._registry.all()

    def get_status(self, market_id: Union[str, MarketId], now: Optional[datetime] = None) -> SessionStatus:
        """Current session status of a market.

        Unknown ids produce :meth:`SessionStatus.unknown` instead of raising.
        """
        instant = truncate_to_minute(to_utc(now)) if now is not None else self.now()
        market = self._registry.get(market_id)
        key = market_id.value if isinstance(market_id, MarketId) else str(market_id)

        if market is None:
            logger.debug(f"Status requested for unknown market '{key}'")
            return SessionStatus.unknown(key, instant)

        state, boundary = self._classify(market, instant)
        minutes = max(0, int((boundary - instant).total_seconds() // 60))

        return SessionStatus(
            market_id=market.id,
            status=state,
            is_open=state in (SessionState.OPEN, SessionState.FUTURES),
            minutes_until_change=minutes,
            next_event_time=boundary,
            next_event=self._event_at(market, state, boundary),
        )

    def is_open(self, market_id: Union[str, MarketId], now: Optional[datetime] = None) -> bool:
        return self.get_status(market_id, now).is_open

    def _classify(self, market: MarketDefinition, instant: datetime) -> Tuple[SessionState, datetime]:
        """Session state at ``instant`` and the next boundary strictly after it."""
        day = utc_day(instant)
        minute = instant.hour * 60 + instant.minute
        midnight = instant.replace(hour=0, minute=0)
        windows = market.windows()

        # Sunday evening futures run until Monday's regular close
        if market.has_futures and day == SUNDAY and minute >= to_minutes(market.futures_open):
            monday_close = midnight + timedelta(days=1, minutes=to_minutes(market.regular_close))
            return SessionState.FUTURES, monday_close

        if day in (SATURDAY, SUNDAY):
            monday = midnight + timedelta(days=2 if day == SATURDAY else 1)
            candidates = [monday + timedelta(minutes=windows[0].start)]
            if market.has_futures:
                sunday = midnight + timedelta(days=1 if day == SATURDAY else 0)
                futures_at = sunday + timedelta(minutes=to_minutes(market.futures_open))
                if futures_at > instant:
                    candidates.append(futures_at)
            return SessionState.CLOSED, min(candidates)

        # Late window of the previous weekday spilling past midnight
        last = windows[-1]
        spill_end = last.end - MINUTES_PER_DAY
        if day != MONDAY and spill_end > 0 and minute < spill_end:
            return last.state, midnight + timedelta(minutes=spill_end)

        for window in windows:
            if window.contains(minute):
                end = window.end
                if day == FRIDAY:
                    # Nothing trades into Saturday
                    end = min(end, MINUTES_PER_DAY)
                return window.state, midnight + timedelta(minutes=end)

        for window in windows:
            if window.start > minute:
                return SessionState.CLOSED, midnight + timedelta(minutes=window.start)

        days_ahead = 3 if day == FRIDAY else 1
        return SessionState.CLOSED, midnight + timedelta(days=days_ahead, minutes=windows[0].start)

    def _event_at(self, market: MarketDefinition, state: SessionState, boundary: datetime) -> SessionEvent:
        """Name the boundary by what happens there."""
        if state in (SessionState.OPEN, SessionState.FUTURES):
            return SessionEvent.CLOSE
        following, _ = self._classify(market, boundary)
        return _ENTRY_EVENTS[following]


# Global instance
session_clock = SessionClock()


def get_market_status(market_id: Union[str, MarketId], now: Optional[datetime] = None) -> SessionStatus:
    """Session status of a market on the process clock."""
    return session_clock.get_status(market_id, now)


def is_market_open(market_id: Union[str, MarketId], now: Optional[datetime] = None) -> bool:
    return session_clock.is_open(market_id, now)
