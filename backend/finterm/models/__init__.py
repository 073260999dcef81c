# Database Models

from .database import Base, engine, async_session_maker, init_db
from .kv_entry import KeyValueEntry

__all__ = [
    "Base",
    "engine",
    "async_session_maker",
    "init_db",
    "KeyValueEntry",
]
