# Business Logic Services

from .clock import (
    Clock,
    utc_now,
    to_utc,
    truncate_to_minute,
)
from .config import (
    ConfigService,
    config_service,
    ConfigValidationException,
    ConfigValidationError,
)
from .logging_service import (
    FeedLoggingService,
    RefreshLogEntry,
    configure_logging,
)
from .market_hours import (
    MarketId,
    MarketDefinition,
    MarketRegistry,
    SessionClock,
    SessionEvent,
    SessionState,
    SessionStatus,
    session_clock,
    get_market_status,
    is_market_open,
)
from .regions import (
    RegionId,
    RegionLabel,
    RegionalAggregator,
    RegionalStatus,
    regional_aggregator,
    get_regional_status,
)
from .kv_store import (
    KeyValueStore,
    MemoryKeyValueStore,
    SqlKeyValueStore,
    kv_store,
)
from .freshness_cache import (
    CacheEntry,
    FreshnessCache,
    freshness_cache,
)
from .freshness import (
    RefreshPolicy,
    FreshnessGate,
    FeedRefresher,
    FeedResult,
    FeedState,
    FeedUnavailableError,
    freshness_gate,
    feed_refresher,
    should_refresh,
    should_refresh_feed,
)
from .cache_sweeper import (
    CacheSweeper,
    cache_sweeper,
)
from .external_data import (
    ExternalDataService,
    external_data_service,
    DataSourceType,
    DataSourceError,
)

__all__ = [
    # Clock
    "Clock",
    "utc_now",
    "to_utc",
    "truncate_to_minute",
    # Config
    "ConfigService",
    "config_service",
    "ConfigValidationException",
    "ConfigValidationError",
    # Logging
    "FeedLoggingService",
    "RefreshLogEntry",
    "configure_logging",
    # Market hours
    "MarketId",
    "MarketDefinition",
    "MarketRegistry",
    "SessionClock",
    "SessionEvent",
    "SessionState",
    "SessionStatus",
    "session_clock",
    "get_market_status",
    "is_market_open",
    # Regions
    "RegionId",
    "RegionLabel",
    "RegionalAggregator",
    "RegionalStatus",
    "regional_aggregator",
    "get_regional_status",
    # Storage
    "KeyValueStore",
    "MemoryKeyValueStore",
    "SqlKeyValueStore",
    "kv_store",
    # Cache
    "CacheEntry",
    "FreshnessCache",
    "freshness_cache",
    "CacheSweeper",
    "cache_sweeper",
    # Freshness
    "RefreshPolicy",
    "FreshnessGate",
    "FeedRefresher",
    "FeedResult",
    "FeedState",
    "FeedUnavailableError",
    "freshness_gate",
    "feed_refresher",
    "should_refresh",
    "should_refresh_feed",
    # External Data
    "ExternalDataService",
    "external_data_service",
    "DataSourceType",
    "DataSourceError",
]
