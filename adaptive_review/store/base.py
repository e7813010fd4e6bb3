"""
Persistence boundary for the adaptive review core.

The core never talks to a database directly; it issues typed reads and
writes against these interfaces. Any storage engine implements them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta

from adaptive_review.models import (
    CacheEntry,
    Card,
    ProgressRecord,
    ReviewEvent,
    StudySession,
    UsageRecord,
)

# Given the current record (None on first review) return the updated one.
ScheduleFn = Callable[[ProgressRecord | None], ProgressRecord]


# =============================================================================
# Progress Store
# =============================================================================


class ProgressStore(ABC):
    """
    Abstract store for cards, progress, review events and study sessions.

    Implementations must:
    1. Return empty lists (never raise) when no rows match
    2. Return reviews newest first
    3. Apply a review atomically per (learner, card)
    4. Raise StoreError for any backend failure
    """

    # ----- Reads -----

    @abstractmethod
    async def load_cards(self, document_id: str | None = None) -> list[Card]:
        """Cards of a document ordered by order_index (all cards if None)."""

    @abstractmethod
    async def load_card(self, card_id: str) -> Card | None:
        """One card by id, or None when it does not exist."""

    @abstractmethod
    async def load_progress(
        self,
        learner_id: str,
        document_id: str | None = None,
    ) -> list[ProgressRecord]:
        """Progress records of a learner, optionally limited to one document."""

    @abstractmethod
    async def load_reviews(
        self,
        learner_id: str,
        since: datetime,
        document_id: str | None = None,
        card_id: str | None = None,
    ) -> list[ReviewEvent]:
        """Review events at or after ``since``, newest first."""

    @abstractmethod
    async def load_sessions(
        self,
        learner_id: str,
        since: datetime,
        document_id: str | None = None,
    ) -> list[StudySession]:
        """Study sessions started at or after ``since``, newest first."""

    # ----- Writes -----

    @abstractmethod
    async def save_cards(self, cards: Sequence[Card]) -> None:
        """Insert or replace card content."""

    @abstractmethod
    async def insert_review(self, learner_id: str, event: ReviewEvent) -> None:
        """Append one review event."""

    @abstractmethod
    async def upsert_progress(self, record: ProgressRecord) -> None:
        """Insert the record if absent, else overwrite it."""

    @abstractmethod
    async def apply_review(
        self,
        learner_id: str,
        event: ReviewEvent,
        schedule: ScheduleFn,
    ) -> ProgressRecord:
        """
        Record a review and its schedule update as one unit.

        The current progress record is read, passed to ``schedule`` and the
        result written together with the review event. Concurrent calls for
        the same (learner, card) must not interleave.

        Returns:
            The stored progress record
        """

    @abstractmethod
    async def track_session(
        self,
        learner_id: str,
        document_id: str | None,
        event: ReviewEvent,
        window: timedelta,
    ) -> StudySession:
        """Extend the open study session for this review, or start a new one."""


# =============================================================================
# Cache Store
# =============================================================================


class CacheStore(ABC):
    """Abstract store for cached generator responses and usage logs."""

    @abstractmethod
    async def fetch(self, cache_key: str, not_before: datetime) -> CacheEntry | None:
        """Entry for ``cache_key`` created at or after ``not_before``."""

    @abstractmethod
    async def put(self, entry: CacheEntry) -> None:
        """Upsert an entry by cache key (last write wins)."""

    @abstractmethod
    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete entries created before ``cutoff``; return the number removed."""

    @abstractmethod
    async def log_usage(self, record: UsageRecord) -> None:
        """Append a usage record."""

    @abstractmethod
    async def load_usage(
        self,
        since: datetime | None = None,
        operation: str | None = None,
        limit: int = 1000,
    ) -> list[UsageRecord]:
        """Usage records at or after ``since`` (all time if None), newest first."""
