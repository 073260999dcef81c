# API Routers

from . import health, markets, cache, data_sources

__all__ = ["health", "markets", "cache", "data_sources"]
