"""Key/value entry model backing the freshness cache."""

from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, LargeBinary, DateTime

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class KeyValueEntry(Base):
    """Opaque byte value stored under a unique key."""
    __tablename__ = "kv_entries"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(255), unique=True, index=True, nullable=False)  # cache:<key>, feed:last_fetch:<feed>, ...
    value = Column(LargeBinary, nullable=False)

    # Timestamp (naive UTC)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<KeyValueEntry(key={self.key}, size={len(self.value or b'')})>"
