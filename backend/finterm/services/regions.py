"""Regional market aggregation.

Combines several markets into one composite status (e.g. Tokyo + Hong Kong +
Seoul = "Asia Pacific"). A region is open while any constituent is open; its
countdown runs to the moment the composite label would actually flip.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .clock import to_utc, truncate_to_minute
from .config import ConfigValidationError, ConfigValidationException
from .market_hours import MarketId, SessionClock, SessionState, SessionStatus, format_countdown, session_clock

logger = logging.getLogger(__name__)


class RegionId(str, Enum):
    """Named market groups shown on the dashboard."""
    AMERICAS = "AMERICAS"
    EUROPE = "EUROPE"
    ASIA_PACIFIC = "ASIA_PACIFIC"
    TURKEY = "TURKEY"


class RegionLabel(str, Enum):
    OPEN = "open"
    PARTIAL = "partial"
    CLOSED = "closed"


REGION_TEXT = {
    RegionLabel.OPEN: "LIVE",
    RegionLabel.PARTIAL: "PARTIAL",
    RegionLabel.CLOSED: "CLOSED",
}


@dataclass(frozen=True)
class RegionDefinition:
    id: RegionId
    name: str
    markets: Tuple[MarketId, ...]


REGIONS: Dict[RegionId, RegionDefinition] = {
    RegionId.AMERICAS: RegionDefinition(RegionId.AMERICAS, "Americas", (MarketId.US,)),
    RegionId.EUROPE: RegionDefinition(RegionId.EUROPE, "Europe", (MarketId.EU,)),
    RegionId.ASIA_PACIFIC: RegionDefinition(
        RegionId.ASIA_PACIFIC, "Asia Pacific", (MarketId.TOKYO, MarketId.HONGKONG, MarketId.SEOUL)
    ),
    RegionId.TURKEY: RegionDefinition(RegionId.TURKEY, "Turkey", (MarketId.BIST,)),
}

# Index country code -> market whose session it follows
COUNTRY_MARKETS: Dict[str, MarketId] = {
    "US": MarketId.US,
    "DE": MarketId.EU,
    "UK": MarketId.EU,
    "FR": MarketId.EU,
    "JP": MarketId.TOKYO,
    "HK": MarketId.HONGKONG,
    "KR": MarketId.SEOUL,
    "TR": MarketId.BIST,
}


def market_for_country(code: str) -> Optional[MarketId]:
    return COUNTRY_MARKETS.get(code.upper())


@dataclass(frozen=True)
class RegionalStatus:
    """Composite status of a group of markets."""
    name: str
    label: RegionLabel
    is_open: bool
    minutes_until_change: int
    next_event_time: datetime
    next_label: Optional[RegionLabel]
    markets: Tuple[SessionStatus, ...]

    @property
    def open_count(self) -> int:
        return sum(1 for s in self.markets if s.is_open)

    @property
    def status_text(self) -> str:
        return REGION_TEXT[self.label]

    @property
    def countdown_text(self) -> str:
        if self.next_label is None:
            return "--"
        return format_countdown(self.minutes_until_change)


def aggregate_label(statuses: Iterable[SessionStatus]) -> RegionLabel:
    """open > partial (pre/post only) > closed."""
    statuses = list(statuses)
    if any(s.is_open for s in statuses):
        return RegionLabel.OPEN
    if any(s.status in (SessionState.PRE, SessionState.POST) for s in statuses):
        return RegionLabel.PARTIAL
    return RegionLabel.CLOSED


class RegionalAggregator:
    """Aggregates :class:`SessionStatus` values from a :class:`SessionClock`."""

    # Upper bound on constituent transitions stepped through per query
    MAX_STEPS = 64

    def __init__(self, clock: SessionClock):
        self._clock = clock
        self.validate()

    def validate(self) -> None:
        """Check every region and country mapping against the market registry.

        Raises:
            ConfigValidationException: If a mapping targets an unconfigured market.
        """
        registry = self._clock.registry
        errors: List[ConfigValidationError] = []
        for region in REGIONS.values():
            for market_id in region.markets:
                if market_id not in registry:
                    errors.append(ConfigValidationError(
                        f"regions.{region.id.value}", f"Market '{market_id.value}' is not configured"
                    ))
        for code, market_id in COUNTRY_MARKETS.items():
            if market_id not in registry:
                errors.append(ConfigValidationError(
                    f"countries.{code}", f"Market '{market_id.value}' is not configured"
                ))
        if errors:
            raise ConfigValidationException(errors)

    def get_status(
        self,
        market_ids: Sequence[Union[str, MarketId]],
        now: Optional[datetime] = None,
        name: Optional[str] = None,
    ) -> RegionalStatus:
        """Composite status of ``market_ids`` at ``now``."""
        instant = truncate_to_minute(to_utc(now)) if now is not None else self._clock.now()
        statuses = [self._clock.get_status(m, instant) for m in market_ids]
        if name is None:
            name = ", ".join(s.market_id for s in statuses)

        if not statuses:
            return RegionalStatus(name, RegionLabel.CLOSED, False, 0, instant, None, ())

        label = aggregate_label(statuses)
        flip = self._next_flip(label, statuses)
        if flip is None:
            minutes, next_time, next_label = 0, instant, None
        else:
            next_time, next_label = flip
            minutes = int((next_time - instant).total_seconds() // 60)

        return RegionalStatus(
            name=name,
            label=label,
            is_open=label == RegionLabel.OPEN,
            minutes_until_change=minutes,
            next_event_time=next_time,
            next_label=next_label,
            markets=tuple(statuses),
        )

    def get_region_status(self, region: Union[str, RegionId], now: Optional[datetime] = None) -> RegionalStatus:
        """Composite status of a named region.

        Raises:
            ValueError: If ``region`` is not a :class:`RegionId`.
        """
        definition = REGIONS[RegionId(region)]
        return self.get_status(definition.markets, now, name=definition.name)

    def get_country_status(self, code: str, now: Optional[datetime] = None) -> SessionStatus:
        """Session status of the market an index country trades on."""
        market_id = market_for_country(code)
        return self._clock.get_status(market_id if market_id is not None else code.upper(), now)

    def _next_flip(
        self,
        label: RegionLabel,
        statuses: List[SessionStatus],
    ) -> Optional[Tuple[datetime, RegionLabel]]:
        """Step constituent transitions in time order until the label changes."""
        current = list(statuses)
        for _ in range(self.MAX_STEPS):
            pending = [s for s in current if s.known]
            if not pending:
                return None
            at = min(s.next_event_time for s in pending)
            current = [
                self._clock.get_status(s.market_id, at) if s.known and s.next_event_time == at else s
                for s in current
            ]
            new_label = aggregate_label(current)
            if new_label != label:
                return at, new_label
        logger.warning(f"No regional label change found within {self.MAX_STEPS} transitions")
        return None


# Global instance
regional_aggregator = RegionalAggregator(session_clock)


def get_regional_status(
    market_ids: Sequence[Union[str, MarketId]],
    now: Optional[datetime] = None,
    name: Optional[str] = None,
) -> RegionalStatus:
    """Composite status of several markets on the process clock."""
    return regional_aggregator.get_status(market_ids, now, name)
