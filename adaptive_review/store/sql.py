"""
SQLAlchemy-backed stores (PostgreSQL in production, SQLite for local runs).

Review recording is one transaction: insert-if-absent the progress row,
lock it (SELECT ... FOR UPDATE), apply the schedule, append the review.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

import asyncpg
from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from adaptive_review.db.database import async_session_scope, create_session_factory
from adaptive_review.db.models import (
    AICacheRow,
    CardProgressRow,
    CardRow,
    ReviewRow,
    StudySessionRow,
    UsageLogRow,
)
from adaptive_review.errors import StoreError
from adaptive_review.models import (
    CacheEntry,
    Card,
    ProgressRecord,
    ReviewEvent,
    StudySession,
    TokenUsage,
    UsageRecord,
    as_utc,
    new_id,
)
from adaptive_review.scheduling.interval import DEFAULT_EASE
from adaptive_review.store.base import CacheStore, ProgressStore, ScheduleFn

# Connection failures reach us unwrapped from the drivers, next to SQLAlchemy's own errors.
BACKEND_ERRORS = (
    SQLAlchemyError,
    OSError,
    asyncio.TimeoutError,
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
)


# =============================================================================
# Row Conversion
# =============================================================================


def _to_card(row: CardRow) -> Card:
    return Card(
        id=row.id,
        question=row.question,
        answer=row.answer,
        hint=row.hint,
        topic=row.topic,
        order_index=row.order_index or 0,
        document_id=row.document_id,
    )


def _to_progress(row: CardProgressRow) -> ProgressRecord:
    return ProgressRecord(
        learner_id=row.learner_id,
        card_id=row.card_id,
        mastered=bool(row.mastered),
        ease_factor=row.ease_factor,
        interval_days=row.interval_days,
        review_count=row.review_count,
        due_at=as_utc(row.due_at),
        last_reviewed_at=as_utc(row.last_reviewed_at),
    )


def _to_review(row: ReviewRow) -> ReviewEvent:
    return ReviewEvent(
        id=row.id,
        learner_id=row.learner_id,
        card_id=row.card_id,
        document_id=row.document_id,
        correct=bool(row.correct),
        confidence=row.confidence,
        response_time_ms=row.response_time_ms or 0,
        created_at=as_utc(row.created_at),
    )


def _to_session(row: StudySessionRow) -> StudySession:
    return StudySession(
        id=row.id,
        learner_id=row.learner_id,
        document_id=row.document_id,
        started_at=as_utc(row.started_at),
        last_activity_at=as_utc(row.last_activity_at),
        duration_seconds=row.duration_seconds or 0,
        cards_reviewed=row.cards_reviewed or 0,
        correct_count=row.correct_count or 0,
    )


def _to_entry(row: AICacheRow) -> CacheEntry:
    usage = None
    if row.total_tokens is not None:
        usage = TokenUsage(
            prompt_tokens=row.prompt_tokens or 0,
            completion_tokens=row.completion_tokens or 0,
            total_tokens=row.total_tokens,
        )
    return CacheEntry(
        cache_key=row.cache_key,
        response=row.response,
        model=row.model,
        temperature=row.temperature,
        input_hash=row.input_hash,
        usage=usage,
        created_at=as_utc(row.created_at),
    )


def _to_usage(row: UsageLogRow) -> UsageRecord:
    return UsageRecord(
        model=row.model,
        operation=row.operation,
        usage=TokenUsage(
            prompt_tokens=row.prompt_tokens or 0,
            completion_tokens=row.completion_tokens or 0,
            total_tokens=row.total_tokens or 0,
        ),
        latency_ms=row.latency_ms,
        created_at=as_utc(row.created_at),
    )


def _review_row(learner_id: str, event: ReviewEvent) -> ReviewRow:
    return ReviewRow(
        id=event.id,
        learner_id=learner_id,
        card_id=event.card_id,
        document_id=event.document_id,
        correct=event.correct,
        confidence=event.confidence,
        response_time_ms=event.response_time_ms,
        created_at=event.created_at,
    )


def _progress_values(record: ProgressRecord) -> dict:
    return {
        "mastered": record.mastered,
        "ease_factor": record.ease_factor,
        "interval_days": record.interval_days,
        "review_count": record.review_count,
        "due_at": record.due_at,
        "last_reviewed_at": record.last_reviewed_at,
    }


# =============================================================================
# Shared Session Handling
# =============================================================================


class _SqlStore:
    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ):
        self.engine = engine
        self._sessions = session_factory or create_session_factory(engine)
        self._dialect = engine.dialect.name

    def _insert(self, table):
        if self._dialect == "postgresql":
            return pg_insert(table)
        if self._dialect == "sqlite":
            return sqlite_insert(table)
        raise StoreError(f"Upserts are not supported on {self._dialect}")

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with async_session_scope(self._sessions) as session:
                yield session
        except BACKEND_ERRORS as e:
            logger.warning(f"{type(self).__name__} failed: {e}")
            raise StoreError(str(e) or type(e).__name__) from e


# =============================================================================
# Progress Store
# =============================================================================


class SqlProgressStore(_SqlStore, ProgressStore):
    """ProgressStore over the cards/card_progress/reviews/study_sessions tables."""

    async def load_cards(self, document_id: str | None = None) -> list[Card]:
        stmt = select(CardRow).order_by(CardRow.order_index)
        if document_id is not None:
            stmt = stmt.where(CardRow.document_id == document_id)
        async with self._session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_to_card(row) for row in rows]

    async def load_card(self, card_id: str) -> Card | None:
        async with self._session() as session:
            row = await session.get(CardRow, card_id)
        return _to_card(row) if row is not None else None

    async def load_progress(
        self,
        learner_id: str,
        document_id: str | None = None,
    ) -> list[ProgressRecord]:
        stmt = select(CardProgressRow).where(CardProgressRow.learner_id == learner_id)
        if document_id is not None:
            stmt = stmt.where(
                CardProgressRow.card_id.in_(
                    select(CardRow.id).where(CardRow.document_id == document_id)
                )
            )
        async with self._session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_to_progress(row) for row in rows]

    async def load_reviews(
        self,
        learner_id: str,
        since: datetime,
        document_id: str | None = None,
        card_id: str | None = None,
    ) -> list[ReviewEvent]:
        stmt = (
            select(ReviewRow)
            .where(ReviewRow.learner_id == learner_id, ReviewRow.created_at >= since)
            .order_by(ReviewRow.created_at.desc())
        )
        if card_id is not None:
            stmt = stmt.where(ReviewRow.card_id == card_id)
        if document_id is not None:
            stmt = stmt.where(
                ReviewRow.card_id.in_(select(CardRow.id).where(CardRow.document_id == document_id))
            )
        async with self._session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_to_review(row) for row in rows]

    async def load_sessions(
        self,
        learner_id: str,
        since: datetime,
        document_id: str | None = None,
    ) -> list[StudySession]:
        stmt = (
            select(StudySessionRow)
            .where(StudySessionRow.learner_id == learner_id, StudySessionRow.started_at >= since)
            .order_by(StudySessionRow.started_at.desc())
        )
        if document_id is not None:
            stmt = stmt.where(StudySessionRow.document_id == document_id)
        async with self._session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_to_session(row) for row in rows]

    async def save_cards(self, cards: Sequence[Card]) -> None:
        if not cards:
            return
        async with self._session() as session:
            for card in cards:
                stmt = self._insert(CardRow).values(
                    id=card.id,
                    document_id=card.document_id,
                    question=card.question,
                    answer=card.answer,
                    hint=card.hint,
                    topic=card.topic,
                    order_index=card.order_index,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["id"],
                    set_={
                        "document_id": stmt.excluded.document_id,
                        "question": stmt.excluded.question,
                        "answer": stmt.excluded.answer,
                        "hint": stmt.excluded.hint,
                        "topic": stmt.excluded.topic,
                        "order_index": stmt.excluded.order_index,
                    },
                )
                await session.execute(stmt)
        logger.debug(f"Saved {len(cards)} cards")

    async def insert_review(self, learner_id: str, event: ReviewEvent) -> None:
        async with self._session() as session:
            session.add(_review_row(learner_id, event))

    async def upsert_progress(self, record: ProgressRecord) -> None:
        values = _progress_values(record)
        stmt = self._insert(CardProgressRow).values(
            id=new_id(), learner_id=record.learner_id, card_id=record.card_id, **values
        )
        stmt = stmt.on_conflict_do_update(index_elements=["learner_id", "card_id"], set_=values)
        async with self._session() as session:
            await session.execute(stmt)

    async def apply_review(
        self,
        learner_id: str,
        event: ReviewEvent,
        schedule: ScheduleFn,
    ) -> ProgressRecord:
        placeholder = self._insert(CardProgressRow).values(
            id=new_id(),
            learner_id=learner_id,
            card_id=event.card_id,
            mastered=False,
            ease_factor=DEFAULT_EASE,
            interval_days=1,
            review_count=0,
            due_at=event.created_at,
            last_reviewed_at=event.created_at,
        ).on_conflict_do_nothing(index_elements=["learner_id", "card_id"])

        async with self._session() as session:
            await session.execute(placeholder)
            row = (
                await session.execute(
                    select(CardProgressRow)
                    .where(
                        CardProgressRow.learner_id == learner_id,
                        CardProgressRow.card_id == event.card_id,
                    )
                    .with_for_update()
                )
            ).scalar_one()

            # review_count == 0 means the row was created by this transaction.
            current = _to_progress(row) if row.review_count > 0 else None
            updated = schedule(current)

            for name, value in _progress_values(updated).items():
                setattr(row, name, value)
            session.add(_review_row(learner_id, event))

        logger.debug(f"Applied review {event.id} for card {event.card_id}")
        return updated

    async def track_session(
        self,
        learner_id: str,
        document_id: str | None,
        event: ReviewEvent,
        window: timedelta,
    ) -> StudySession:
        at = event.created_at
        document_filter = (
            StudySessionRow.document_id.is_(None)
            if document_id is None
            else StudySessionRow.document_id == document_id
        )
        async with self._session() as session:
            row = (
                await session.execute(
                    select(StudySessionRow)
                    .where(
                        StudySessionRow.learner_id == learner_id,
                        document_filter,
                        StudySessionRow.started_at <= at,
                        StudySessionRow.started_at > at - window,
                    )
                    .order_by(StudySessionRow.started_at.desc())
                    .limit(1)
                    .with_for_update()
                )
            ).scalar_one_or_none()

            if row is None:
                row = StudySessionRow(
                    id=new_id(),
                    learner_id=learner_id,
                    document_id=document_id,
                    started_at=at,
                    last_activity_at=at,
                    duration_seconds=0,
                    cards_reviewed=0,
                    correct_count=0,
                )
                session.add(row)

            row.cards_reviewed += 1
            row.correct_count += 1 if event.correct else 0
            row.duration_seconds += max(0, event.response_time_ms) // 1000
            if as_utc(row.last_activity_at) < at:
                row.last_activity_at = at

            session_record = _to_session(row)
        return session_record


# =============================================================================
# Cache Store
# =============================================================================


class SqlCacheStore(_SqlStore, CacheStore):
    """CacheStore over the ai_cache and usage_logs tables."""

    async def fetch(self, cache_key: str, not_before: datetime) -> CacheEntry | None:
        stmt = select(AICacheRow).where(
            AICacheRow.cache_key == cache_key,
            AICacheRow.created_at >= not_before,
        )
        async with self._session() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return _to_entry(row) if row is not None else None

    async def put(self, entry: CacheEntry) -> None:
        usage = entry.usage
        values = {
            "input_hash": entry.input_hash,
            "model": entry.model,
            "temperature": entry.temperature,
            "response": entry.response,
            "prompt_tokens": usage.prompt_tokens if usage else None,
            "completion_tokens": usage.completion_tokens if usage else None,
            "total_tokens": usage.total_tokens if usage else None,
            "created_at": entry.created_at,
        }
        stmt = self._insert(AICacheRow).values(id=new_id(), cache_key=entry.cache_key, **values)
        stmt = stmt.on_conflict_do_update(index_elements=["cache_key"], set_=values)
        async with self._session() as session:
            await session.execute(stmt)

    async def delete_older_than(self, cutoff: datetime) -> int:
        async with self._session() as session:
            result = await session.execute(delete(AICacheRow).where(AICacheRow.created_at < cutoff))
        return result.rowcount or 0

    async def log_usage(self, record: UsageRecord) -> None:
        async with self._session() as session:
            session.add(
                UsageLogRow(
                    id=new_id(),
                    model=record.model,
                    operation=record.operation,
                    prompt_tokens=record.usage.prompt_tokens,
                    completion_tokens=record.usage.completion_tokens,
                    total_tokens=record.usage.total_tokens,
                    latency_ms=record.latency_ms,
                    created_at=record.created_at,
                )
            )

    async def load_usage(
        self,
        since: datetime | None = None,
        operation: str | None = None,
        limit: int = 1000,
    ) -> list[UsageRecord]:
        stmt = select(UsageLogRow).order_by(UsageLogRow.created_at.desc()).limit(limit)
        if since is not None:
            stmt = stmt.where(UsageLogRow.created_at >= since)
        if operation:
            stmt = stmt.where(UsageLogRow.operation == operation)
        async with self._session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_to_usage(row) for row in rows]
