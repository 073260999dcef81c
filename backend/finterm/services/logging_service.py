"""Logging setup and per-feed refresh logs."""

import csv
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Base logs directory
LOGS_BASE_DIR = Path(__file__).parent.parent.parent / "logs"

DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

REFRESH_LOG_HEADER = ['timestamp', 'feed_id', 'state', 'forced', 'fetched_at', 'error']


def configure_logging(level: str = "INFO", fmt: Optional[str] = None) -> None:
    """Configure the root logger once for the process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=fmt or DEFAULT_LOG_FORMAT,
    )


@dataclass
class RefreshLogEntry:
    """One refresh outcome for a feed."""
    timestamp: datetime
    feed_id: str
    state: str  # fresh, fetched, stale_served, unavailable
    forced: bool
    fetched_at: Optional[datetime] = None
    error: Optional[str] = None


class FeedLoggingService:
    """Appends refresh outcomes to ``<logs>/<feed_id>/refreshes.csv``."""

    def __init__(self, feed_id: str, base_dir: Optional[Path] = None):
        self.feed_id = feed_id
        self.feed_log_dir = Path(base_dir or LOGS_BASE_DIR) / feed_id

    @property
    def refresh_log_path(self) -> Path:
        return self.feed_log_dir / "refreshes.csv"

    def log_refresh(self, entry: RefreshLogEntry) -> None:
        """Append one refresh outcome; write failures are logged, never raised."""
        log_file = self.refresh_log_path

        try:
            self.feed_log_dir.mkdir(parents=True, exist_ok=True)
            write_header = not log_file.exists()
            with open(log_file, 'a', newline='', encoding='utf-8') as f:
                writer = csv.writer(f)
                if write_header:
                    writer.writerow(REFRESH_LOG_HEADER)
                writer.writerow([
                    entry.timestamp.isoformat(),
                    entry.feed_id,
                    entry.state,
                    entry.forced,
                    entry.fetched_at.isoformat() if entry.fetched_at else "",
                    entry.error or "",
                ])
        except Exception as e:
            logger.error(f"Feed {self.feed_id}: Failed to log refresh: {e}")
