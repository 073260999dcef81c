"""External data sources service.

Feeds consumed by the dashboard widgets, each gated by its own freshness
policy and served stale when the upstream fails:
- Fear & Greed Index: changes daily; refreshed at most once per 24 hours
- Economic calendar: weekly ForexFactory sheet; refreshed once per ISO week
- Exchange rates: refreshed every few minutes, with change vs the previous snapshot

Each source can be individually enabled/disabled via ``data_sources.yaml``.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiohttp
import yaml

from .clock import Clock, to_utc, utc_now
from .config import ConfigValidationError, ConfigValidationException
from .freshness import (
    FeedRefresher,
    FeedResult,
    FeedState,
    FeedUnavailableError,
    RefreshPolicy,
    feed_refresher,
    iso_week,
)
from .freshness_cache import FreshnessCache
from .logging_service import FeedLoggingService, RefreshLogEntry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = aiohttp.ClientTimeout(total=10)

# Previous exchange-rate snapshot is kept for a week
PREVIOUS_RATES_TTL_MINUTES = 7 * 24 * 60


class DataSourceType(str, Enum):
    """Types of external data sources."""
    FEAR_GREED = "fear_greed"
    ECONOMIC_CALENDAR = "economic_calendar"
    EXCHANGE_RATES = "exchange_rates"


class DataSourceError(Exception):
    """Upstream returned an unusable response."""
    pass


@dataclass
class DataSourceConfig:
    """Configuration for a single data source."""
    enabled: bool = False
    api_key: Optional[str] = None
    # Overrides the source's own policy with every_n_minutes(refresh_minutes)
    refresh_minutes: Optional[int] = None
    cache_ttl_minutes: int = 5
    # Source-specific settings
    settings: Dict[str, Any] = field(default_factory=dict)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_source_config(path: str, values: Dict[str, Any]) -> List[ConfigValidationError]:
    """Check raw source settings from the API or ``data_sources.yaml``.

    Absent or null values are left to the defaults. ``refresh_minutes`` of 0
    clears the override; the cache TTL must be positive.
    """
    errors = []

    enabled = values.get("enabled")
    if enabled is not None and not isinstance(enabled, bool):
        errors.append(ConfigValidationError(f"{path}.enabled", f"Expected bool, got {type(enabled).__name__}"))

    api_key = values.get("api_key")
    if api_key is not None and not isinstance(api_key, str):
        errors.append(ConfigValidationError(f"{path}.api_key", f"Expected str, got {type(api_key).__name__}"))

    refresh = values.get("refresh_minutes")
    if refresh is not None and (not _is_int(refresh) or refresh < 0):
        errors.append(ConfigValidationError(
            f"{path}.refresh_minutes", f"Refresh interval must be an integer >= 0, got {refresh!r}"
        ))

    ttl = values.get("cache_ttl_minutes")
    if ttl is not None and (not _is_int(ttl) or ttl <= 0):
        errors.append(ConfigValidationError(
            f"{path}.cache_ttl_minutes", f"Cache TTL must be an integer > 0, got {ttl!r}"
        ))

    settings = values.get("settings")
    if settings is not None and not isinstance(settings, dict):
        errors.append(ConfigValidationError(f"{path}.settings", f"Expected dict, got {type(settings).__name__}"))

    return errors


@dataclass
class DataSourceStatus:
    """Status of a data source."""
    source_type: DataSourceType
    enabled: bool
    healthy: bool
    policy: str
    last_fetch: Optional[datetime] = None
    last_error: Optional[str] = None
    last_state: Optional[FeedState] = None
    data_age_seconds: Optional[int] = None


def classify_fear_greed(value: int) -> str:
    """Label for a 0-100 Fear & Greed value."""
    if value <= 25:
        return "Extreme Fear"
    if value <= 45:
        return "Fear"
    if value <= 55:
        return "Neutral"
    if value <= 75:
        return "Greed"
    return "Extreme Greed"


def fear_greed_color(value: int) -> str:
    if value <= 25:
        return "#ff3366"
    if value <= 45:
        return "#ff6b35"
    if value <= 55:
        return "#ffb000"
    if value <= 75:
        return "#7ed321"
    return "#00ff88"


def _parse_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_fear_greed(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize an alternative.me ``fng`` response.

    Raises:
        DataSourceError: If the response reports an error or has no data.
    """
    error = (payload.get("metadata") or {}).get("error")
    if error:
        raise DataSourceError(f"Fear & Greed API error: {error}")

    items = payload.get("data")
    if not items or not isinstance(items, list):
        raise DataSourceError("No data returned from Fear & Greed API")

    history = []
    for item in items:
        value = _parse_int(item.get("value"), 50)
        stamp = datetime.fromtimestamp(_parse_int(item.get("timestamp"), 0), tz=timezone.utc)
        history.append({
            "value": value,
            "classification": item.get("value_classification") or classify_fear_greed(value),
            "date": stamp.isoformat(),
        })

    current = history[0]
    return {
        "value": current["value"],
        "classification": current["classification"],
        "timestamp": current["date"],
        "history": history,
    }


def filter_calendar_events(events: List[Dict[str, Any]], currency: str = "USD") -> List[Dict[str, Any]]:
    """Events for one currency, holidays dropped, ordered by time."""
    selected = [
        e for e in events
        if e.get("country") == currency and e.get("impact") != "Holiday"
    ]
    return sorted(selected, key=lambda e: to_utc(datetime.fromisoformat(e["date"])))


def build_currency_rates(
    usd_rates: Dict[str, float],
    eur_rates: Dict[str, float],
    previous: Optional[Dict[str, float]] = None,
) -> List[Dict[str, Any]]:
    """Dashboard currency pairs with change against the previous snapshot."""
    previous = previous or {}
    pairs = [
        ("USD/TRY", usd_rates["TRY"]),
        ("EUR/USD", 1 / usd_rates["EUR"]),
        ("EUR/TRY", eur_rates["TRY"]),
        ("GBP/USD", 1 / usd_rates["GBP"]),
        ("USD/JPY", usd_rates["JPY"]),
    ]

    result = []
    for pair, rate in pairs:
        prev_rate = previous.get(pair) or rate
        change = rate - prev_rate
        result.append({
            "pair": pair,
            "rate": rate,
            "change": change,
            "change_percent": (change / prev_rate) * 100 if prev_rate else 0.0,
        })
    return result


class BaseDataSource(ABC):
    """Base class for external data sources."""

    def __init__(
        self,
        source_type: DataSourceType,
        config: DataSourceConfig,
        refresher: FeedRefresher,
        log_dir: Optional[Path] = None,
        clock: Clock = utc_now,
    ):
        self.source_type = source_type
        self.config = config
        self._refresher = refresher
        self._clock = clock
        self._refresh_log = FeedLoggingService(source_type.value, base_dir=log_dir)
        self._last_fetch: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._last_state: Optional[FeedState] = None
        self._healthy = True

    @property
    def feed_id(self) -> str:
        return self.source_type.value

    @property
    def policy(self) -> RefreshPolicy:
        if self.config.refresh_minutes:
            return RefreshPolicy.every_n_minutes(self.config.refresh_minutes)
        return self.default_policy()

    @property
    def cache(self) -> FreshnessCache:
        return self._refresher.cache

    @abstractmethod
    def default_policy(self) -> RefreshPolicy:
        """Refresh policy used unless the config overrides it."""
        pass

    @abstractmethod
    async def fetch(self) -> Any:
        """Fetch data from the source as a JSON-compatible value."""
        pass

    async def get_data(self, force: bool = False) -> Optional[FeedResult]:
        """Get data through the freshness gate; None when the source is disabled.

        Raises:
            FeedUnavailableError: If the fetch failed and nothing was ever cached.
        """
        if not self.config.enabled:
            return None

        try:
            result = await self._refresher.refresh(
                self.feed_id,
                self.policy,
                self.fetch,
                ttl_minutes=self.config.cache_ttl_minutes,
                force=force,
            )
        except FeedUnavailableError as e:
            self._healthy = False
            self._last_error = str(e.cause)
            self._last_state = None
            self._log_refresh("unavailable", force, None, self._last_error)
            raise

        self._last_state = result.state
        self._last_fetch = result.fetched_at
        self._healthy = not result.is_stale
        self._last_error = result.error
        self._log_refresh(result.state.value, force, result.fetched_at, result.error)
        return result

    def _log_refresh(self, state: str, forced: bool, fetched_at: Optional[datetime], error: Optional[str]) -> None:
        self._refresh_log.log_refresh(RefreshLogEntry(
            timestamp=to_utc(self._clock()),
            feed_id=self.feed_id,
            state=state,
            forced=forced,
            fetched_at=fetched_at,
            error=error,
        ))

    def get_status(self) -> DataSourceStatus:
        """Get the status of this data source."""
        data_age = None
        if self._last_fetch:
            data_age = int((to_utc(self._clock()) - self._last_fetch).total_seconds())

        return DataSourceStatus(
            source_type=self.source_type,
            enabled=self.config.enabled,
            healthy=self._healthy,
            policy=self.policy.describe(),
            last_fetch=self._last_fetch,
            last_error=self._last_error,
            last_state=self._last_state,
            data_age_seconds=data_age,
        )


class FearGreedSource(BaseDataSource):
    """Fear and Greed Index from alternative.me."""

    def __init__(self, config: DataSourceConfig, refresher: FeedRefresher, **kwargs):
        super().__init__(DataSourceType.FEAR_GREED, config, refresher, **kwargs)

    @property
    def api_url(self) -> str:
        return self.config.settings.get("api_url", "https://api.alternative.me/fng/")

    def default_policy(self) -> RefreshPolicy:
        # The index is published once a day
        return RefreshPolicy.once_rolling_hours(24)

    async def fetch(self) -> Dict[str, Any]:
        """Fetch the current index with a week of history."""
        params = {"limit": self.config.settings.get("history_days", 7), "format": "json"}
        async with aiohttp.ClientSession(timeout=DEFAULT_TIMEOUT) as session:
            async with session.get(self.api_url, params=params) as resp:
                if resp.status != 200:
                    raise DataSourceError(f"Fear & Greed API returned {resp.status}")
                payload = await resp.json()
        return parse_fear_greed(payload)


class EconomicCalendarSource(BaseDataSource):
    """ForexFactory weekly economic calendar."""

    def __init__(self, config: DataSourceConfig, refresher: FeedRefresher, **kwargs):
        super().__init__(DataSourceType.ECONOMIC_CALENDAR, config, refresher, **kwargs)

    @property
    def api_url(self) -> str:
        return self.config.settings.get(
            "api_url", "https://nfs.faireconomy.media/ff_calendar_thisweek.json"
        )

    @property
    def currency(self) -> str:
        return self.config.settings.get("currency", "USD")

    def default_policy(self) -> RefreshPolicy:
        return RefreshPolicy.once_per_iso_week()

    async def fetch(self) -> Dict[str, Any]:
        """Fetch this week's events for the configured currency."""
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=15)) as session:
            async with session.get(self.api_url) as resp:
                if resp.status != 200:
                    raise DataSourceError(f"ForexFactory returned {resp.status}")
                events = await resp.json(content_type=None)

        if not isinstance(events, list):
            raise DataSourceError("ForexFactory returned an unexpected payload")

        year, week = iso_week(self._clock())
        filtered = filter_calendar_events(events, self.currency)
        logger.info(f"Fetched {len(filtered)} {self.currency} calendar events for week {week}")
        return {"year": year, "week": week, "events": filtered}


class ExchangeRatesSource(BaseDataSource):
    """Currency pairs from exchangerate-api.com."""

    def __init__(self, config: DataSourceConfig, refresher: FeedRefresher, **kwargs):
        super().__init__(DataSourceType.EXCHANGE_RATES, config, refresher, **kwargs)

    @property
    def base_url(self) -> str:
        return self.config.settings.get("api_url", "https://v6.exchangerate-api.com/v6")

    @property
    def previous_key(self) -> str:
        return f"{self.feed_id}:previous"

    def default_policy(self) -> RefreshPolicy:
        return RefreshPolicy.every_n_minutes(5)

    async def _latest(self, session: aiohttp.ClientSession, base: str) -> Dict[str, float]:
        async with session.get(f"{self.base_url}/{self.config.api_key}/latest/{base}") as resp:
            if resp.status != 200:
                raise DataSourceError(f"Exchange rate API returned {resp.status}")
            data = await resp.json()
        if data.get("result") != "success":
            raise DataSourceError(f"Exchange rate API failed for {base}: {data.get('error-type')}")
        return data["conversion_rates"]

    async def fetch(self) -> Dict[str, Any]:
        """Fetch USD and EUR rates and compute change vs the previous snapshot."""
        if not self.config.api_key:
            raise DataSourceError("Exchange rate API key not configured")

        async with aiohttp.ClientSession(timeout=DEFAULT_TIMEOUT) as session:
            usd_rates = await self._latest(session, "USD")
            eur_rates = await self._latest(session, "EUR")

        return await self.snapshot(usd_rates, eur_rates)

    async def snapshot(self, usd_rates: Dict[str, float], eur_rates: Dict[str, float]) -> Dict[str, Any]:
        """Build the pair list and store it as the next previous snapshot."""
        previous = await self.cache.get(self.previous_key)
        rates = build_currency_rates(usd_rates, eur_rates, previous)
        await self.cache.set(
            self.previous_key,
            {r["pair"]: r["rate"] for r in rates},
            PREVIOUS_RATES_TTL_MINUTES,
        )
        return {"base": "USD", "rates": rates}


SOURCE_CLASSES = {
    DataSourceType.FEAR_GREED: FearGreedSource,
    DataSourceType.ECONOMIC_CALENDAR: EconomicCalendarSource,
    DataSourceType.EXCHANGE_RATES: ExchangeRatesSource,
}


class ExternalDataService:
    """Service for managing external data sources.

    Provides a unified interface to all external data sources with:
    - Individual enable/disable per source
    - Freshness-gated fetching with stale fallback
    - Health monitoring
    """

    CONFIG_FILE = "data_sources.yaml"

    def __init__(
        self,
        config_path: Optional[Path] = None,
        refresher: Optional[FeedRefresher] = None,
        log_dir: Optional[Path] = None,
        clock: Clock = utc_now,
    ):
        self._config_path = Path(config_path) if config_path else Path(__file__).parent.parent.parent / self.CONFIG_FILE
        self._refresher = refresher or feed_refresher
        self._log_dir = log_dir
        self._clock = clock
        self._sources: Dict[DataSourceType, BaseDataSource] = {}
        self._configs: Dict[DataSourceType, DataSourceConfig] = {}
        self._load_config()
        self._init_sources()

    @staticmethod
    def _default_configs() -> Dict[DataSourceType, DataSourceConfig]:
        # Keyless feeds are on by default; exchange rates need an API key first
        return {
            DataSourceType.FEAR_GREED: DataSourceConfig(
                enabled=True,
                cache_ttl_minutes=24 * 60,
                settings={"history_days": 7},
            ),
            DataSourceType.ECONOMIC_CALENDAR: DataSourceConfig(
                enabled=True,
                cache_ttl_minutes=7 * 24 * 60,
                settings={"currency": "USD"},
            ),
            DataSourceType.EXCHANGE_RATES: DataSourceConfig(
                enabled=False,
                cache_ttl_minutes=5,
            ),
        }

    def _load_config(self):
        """Load configuration from file, falling back to defaults."""
        self._configs = self._default_configs()

        if not self._config_path.exists():
            return

        try:
            with open(self._config_path, 'r') as f:
                file_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load data sources config: {e}, using defaults")
            return

        sources_config = file_config.get("sources", {}) if isinstance(file_config, dict) else None
        if not isinstance(sources_config, dict):
            logger.warning("Data sources config has no 'sources' mapping, using defaults")
            return

        for source_type in DataSourceType:
            source_cfg = sources_config.get(source_type.value)
            if not source_cfg:
                continue
            path = f"sources.{source_type.value}"
            if not isinstance(source_cfg, dict):
                logger.warning(f"Invalid data source config at {path}, using defaults")
                continue
            errors = validate_source_config(path, source_cfg)
            if errors:
                for error in errors:
                    logger.warning(f"Invalid data source config at {error.path}: {error.message}, using defaults")
                continue
            default = self._configs[source_type]
            self._configs[source_type] = DataSourceConfig(
                enabled=source_cfg.get("enabled", default.enabled),
                api_key=source_cfg.get("api_key") or None,
                refresh_minutes=source_cfg.get("refresh_minutes"),
                cache_ttl_minutes=source_cfg.get("cache_ttl_minutes", default.cache_ttl_minutes),
                settings={**default.settings, **(source_cfg.get("settings") or {})},
            )
        logger.info(f"Loaded data sources config from {self._config_path}")

    def _save_config(self):
        """Save configuration to file."""
        config_data = {
            "sources": {
                source_type.value: {
                    "enabled": config.enabled,
                    "api_key": config.api_key or "",
                    "refresh_minutes": config.refresh_minutes,
                    "cache_ttl_minutes": config.cache_ttl_minutes,
                    "settings": config.settings,
                }
                for source_type, config in self._configs.items()
            }
        }

        try:
            with open(self._config_path, 'w') as f:
                yaml.safe_dump(config_data, f, default_flow_style=False)
            logger.info(f"Saved data sources config to {self._config_path}")
        except OSError as e:
            logger.error(f"Failed to save data sources config: {e}")

    def _init_sources(self):
        """Initialize data source instances."""
        for source_type, source_class in SOURCE_CLASSES.items():
            config = self._configs.get(source_type, DataSourceConfig())
            self._sources[source_type] = source_class(
                config, self._refresher, log_dir=self._log_dir, clock=self._clock
            )

    def get_source(self, source_type: DataSourceType) -> BaseDataSource:
        return self._sources[source_type]

    def get_source_configs(self) -> Dict[str, Dict[str, Any]]:
        """Get all source configurations (for API response)."""
        result = {}
        for source_type, config in self._configs.items():
            status = self._sources[source_type].get_status()
            result[source_type.value] = {
                "enabled": config.enabled,
                "has_api_key": bool(config.api_key),
                "policy": status.policy,
                "cache_ttl_minutes": config.cache_ttl_minutes,
                "settings": config.settings,
                "healthy": status.healthy,
                "last_fetch": status.last_fetch.isoformat() if status.last_fetch else None,
                "last_error": status.last_error,
                "last_state": status.last_state.value if status.last_state else None,
                "data_age_seconds": status.data_age_seconds,
            }
        return result

    def update_source_config(
        self,
        source_type: DataSourceType,
        enabled: Optional[bool] = None,
        api_key: Optional[str] = None,
        refresh_minutes: Optional[int] = None,
        cache_ttl_minutes: Optional[int] = None,
        settings: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Update configuration for a specific source.

        Raises:
            ConfigValidationException: If any supplied value is invalid. Nothing
                is changed or saved in that case.
        """
        if source_type not in self._configs:
            raise ValueError(f"Unknown source type: {source_type}")

        errors = validate_source_config(f"sources.{source_type.value}", {
            "enabled": enabled,
            "api_key": api_key,
            "refresh_minutes": refresh_minutes,
            "cache_ttl_minutes": cache_ttl_minutes,
            "settings": settings,
        })
        if errors:
            raise ConfigValidationException(errors)

        # Shared with the live source object; mutate in place
        config = self._configs[source_type]

        if enabled is not None:
            config.enabled = enabled
        if api_key is not None:
            config.api_key = api_key or None
        if refresh_minutes is not None:
            config.refresh_minutes = refresh_minutes or None
        if cache_ttl_minutes is not None:
            config.cache_ttl_minutes = cache_ttl_minutes
        if settings is not None:
            config.settings.update(settings)

        self._save_config()

        return self.get_source_configs()[source_type.value]

    def set_all_sources_enabled(self, enabled: bool) -> Dict[str, Dict[str, Any]]:
        """Enable or disable all sources at once."""
        for config in self._configs.values():
            config.enabled = enabled

        self._save_config()

        return self.get_source_configs()

    async def get_data(self, source_type: DataSourceType, force: bool = False) -> Optional[FeedResult]:
        return await self._sources[source_type].get_data(force=force)

    async def get_fear_greed(self, force: bool = False) -> Optional[FeedResult]:
        """Get Fear & Greed Index if enabled."""
        return await self.get_data(DataSourceType.FEAR_GREED, force)

    async def get_economic_calendar(self, force: bool = False) -> Optional[FeedResult]:
        """Get this week's economic calendar if enabled."""
        return await self.get_data(DataSourceType.ECONOMIC_CALENDAR, force)

    async def get_exchange_rates(self, force: bool = False) -> Optional[FeedResult]:
        """Get currency rates if enabled."""
        return await self.get_data(DataSourceType.EXCHANGE_RATES, force)

    async def should_refresh(self, source_type: DataSourceType) -> bool:
        """Whether an automatic refresh of the source would hit the network."""
        source = self._sources[source_type]
        return await self._refresher.gate.should_refresh(source.feed_id, source.policy)

    def get_all_statuses(self) -> List[DataSourceStatus]:
        """Get status of all data sources."""
        return [source.get_status() for source in self._sources.values()]


# Global instance
external_data_service = ExternalDataService()
