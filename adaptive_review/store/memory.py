"""
In-memory stores for tests and offline use.

Progress updates are serialised per (learner, card) with an asyncio.Lock;
there is no global lock. Records are copied on the way in and out so callers
never share mutable state with the store.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime, timedelta

from loguru import logger

from adaptive_review.models import (
    CacheEntry,
    Card,
    ProgressRecord,
    ReviewEvent,
    StudySession,
    UsageRecord,
)
from adaptive_review.store.base import CacheStore, ProgressStore, ScheduleFn


class InMemoryProgressStore(ProgressStore):
    """Dict-backed ProgressStore."""

    def __init__(self, cards: Sequence[Card] = ()):
        self._cards: dict[str, Card] = {card.id: card for card in cards}
        self._progress: dict[tuple[str, str], ProgressRecord] = {}
        self._reviews: list[ReviewEvent] = []
        self._sessions: list[StudySession] = []
        self._locks: defaultdict[tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)
        self._session_lock = asyncio.Lock()

    def _document_of(self, card_id: str) -> str | None:
        card = self._cards.get(card_id)
        return card.document_id if card else None

    # ----- Reads -----

    async def load_cards(self, document_id: str | None = None) -> list[Card]:
        cards = [
            card for card in self._cards.values()
            if document_id is None or card.document_id == document_id
        ]
        return sorted(cards, key=lambda c: c.order_index)

    async def load_card(self, card_id: str) -> Card | None:
        return self._cards.get(card_id)

    async def load_progress(
        self,
        learner_id: str,
        document_id: str | None = None,
    ) -> list[ProgressRecord]:
        return [
            replace(record)
            for (owner, card_id), record in self._progress.items()
            if owner == learner_id
            and (document_id is None or self._document_of(card_id) == document_id)
        ]

    async def load_reviews(
        self,
        learner_id: str,
        since: datetime,
        document_id: str | None = None,
        card_id: str | None = None,
    ) -> list[ReviewEvent]:
        reviews = [
            replace(review)
            for review in self._reviews
            if review.learner_id == learner_id
            and review.created_at >= since
            and (card_id is None or review.card_id == card_id)
            and (document_id is None or self._document_of(review.card_id) == document_id)
        ]
        return sorted(reviews, key=lambda r: r.created_at, reverse=True)

    async def load_sessions(
        self,
        learner_id: str,
        since: datetime,
        document_id: str | None = None,
    ) -> list[StudySession]:
        sessions = [
            replace(session)
            for session in self._sessions
            if session.learner_id == learner_id
            and session.started_at >= since
            and (document_id is None or session.document_id == document_id)
        ]
        return sorted(sessions, key=lambda s: s.started_at, reverse=True)

    # ----- Writes -----

    async def save_cards(self, cards: Sequence[Card]) -> None:
        for card in cards:
            self._cards[card.id] = card

    async def insert_review(self, learner_id: str, event: ReviewEvent) -> None:
        self._reviews.append(replace(event, learner_id=learner_id))

    async def upsert_progress(self, record: ProgressRecord) -> None:
        self._progress[(record.learner_id, record.card_id)] = replace(record)

    async def apply_review(
        self,
        learner_id: str,
        event: ReviewEvent,
        schedule: ScheduleFn,
    ) -> ProgressRecord:
        key = (learner_id, event.card_id)
        async with self._locks[key]:
            current = self._progress.get(key)
            updated = schedule(replace(current) if current else None)
            # Both writes happen after schedule() succeeds, so a failure leaves no trace.
            self._progress[key] = replace(updated)
            self._reviews.append(replace(event, learner_id=learner_id))
            logger.debug(f"Applied review {event.id} for card {event.card_id}")
            return replace(updated)

    async def track_session(
        self,
        learner_id: str,
        document_id: str | None,
        event: ReviewEvent,
        window: timedelta,
    ) -> StudySession:
        async with self._session_lock:
            for session in self._sessions:
                if (
                    session.learner_id == learner_id
                    and session.document_id == document_id
                    and session.accepts(event.created_at, window)
                ):
                    break
            else:
                session = StudySession(
                    learner_id=learner_id,
                    document_id=document_id,
                    started_at=event.created_at,
                    last_activity_at=event.created_at,
                )
                self._sessions.append(session)

            session.cards_reviewed += 1
            session.correct_count += 1 if event.correct else 0
            session.duration_seconds += max(0, event.response_time_ms) // 1000
            session.last_activity_at = max(session.last_activity_at, event.created_at)
            return replace(session)


class InMemoryCacheStore(CacheStore):
    """Dict-backed CacheStore."""

    def __init__(self):
        self._entries: dict[str, CacheEntry] = {}
        self.usage_log: list[UsageRecord] = []

    async def fetch(self, cache_key: str, not_before: datetime) -> CacheEntry | None:
        entry = self._entries.get(cache_key)
        if entry is None or entry.created_at < not_before:
            return None
        return entry

    async def put(self, entry: CacheEntry) -> None:
        self._entries[entry.cache_key] = entry

    async def delete_older_than(self, cutoff: datetime) -> int:
        stale = [key for key, entry in self._entries.items() if entry.created_at < cutoff]
        for key in stale:
            del self._entries[key]
        return len(stale)

    async def log_usage(self, record: UsageRecord) -> None:
        self.usage_log.append(record)

    async def load_usage(
        self,
        since: datetime | None = None,
        operation: str | None = None,
        limit: int = 1000,
    ) -> list[UsageRecord]:
        records = [
            record
            for record in self.usage_log
            if (since is None or record.created_at >= since)
            and (not operation or record.operation == operation)
        ]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit]

    def __len__(self) -> int:
        return len(self._entries)
