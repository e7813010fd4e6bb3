"""
Storage boundary for progress, reviews, sessions and cached responses.

Components:
- ProgressStore / CacheStore: Abstract interfaces the core depends on
- InMemoryProgressStore / InMemoryCacheStore: Dict-backed, for tests and offline use
- SqlProgressStore / SqlCacheStore: SQLAlchemy async (PostgreSQL, SQLite)
"""

from .base import CacheStore, ProgressStore, ScheduleFn
from .memory import InMemoryCacheStore, InMemoryProgressStore
from .sql import SqlCacheStore, SqlProgressStore

__all__ = [
    # Interfaces
    "ProgressStore",
    "CacheStore",
    "ScheduleFn",
    # In-memory
    "InMemoryProgressStore",
    "InMemoryCacheStore",
    # SQLAlchemy
    "SqlProgressStore",
    "SqlCacheStore",
]
