"""FinTerm backend: market session clock and freshness cache for the dashboard."""

__version__ = "1.0.0"
