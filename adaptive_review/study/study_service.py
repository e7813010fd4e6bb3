"""
Study Service for adaptive review.

Provides high-level operations for the CLI and any other front end:
- Record a review (validated, atomic per card)
- Build a prioritized study session
- Summarize recommendations
- List due cards
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from adaptive_review.config import Settings, get_settings
from adaptive_review.errors import InvalidReviewError, ReviewNotRecordedError, StoreError
from adaptive_review.models import ProgressRecord, ReviewEvent, StudySession, as_utc, utc_now
from adaptive_review.scheduling import (
    CardScore,
    StudyRecommendations,
    box_for_interval,
    is_mastered,
    next_schedule,
    rank_cards,
    recommend,
)
from adaptive_review.store.base import ProgressStore

MAX_DUE_LIMIT = 200


class ReviewSubmission(BaseModel):
    """One answered card as submitted by a client."""

    card_id: str = Field(min_length=1)
    correct: bool
    confidence: int = Field(ge=1, le=5)
    response_time_ms: int = Field(default=0, ge=0)
    document_id: str | None = None

    @field_validator("card_id")
    @classmethod
    def _strip_card_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("card_id must not be blank")
        return value

    @classmethod
    def parse(cls, data: dict[str, Any]) -> ReviewSubmission:
        """Validate raw input, raising InvalidReviewError on bad data."""
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise InvalidReviewError(str(e)) from e


@dataclass
class ReviewOutcome:
    """Result of recording one review."""

    event: ReviewEvent
    progress: ProgressRecord
    session: StudySession | None = None

    @property
    def box(self) -> int:
        """Leitner box view of the new interval."""
        return box_for_interval(self.progress.interval_days)


class StudyService:
    """
    High-level service for study operations.

    Coordinates the progress store with the pure scheduling functions. Only
    ``record_review`` can fail visibly; reads degrade to empty results.
    """

    def __init__(self, store: ProgressStore, settings: Settings | None = None):
        self.store = store
        self.settings = settings or get_settings()
        self.config = self.settings.get_scheduler_config()

    # =========================================================================
    # Write path
    # =========================================================================

    async def record_review(
        self,
        learner_id: str,
        submission: ReviewSubmission | dict[str, Any],
        now: datetime | None = None,
    ) -> ReviewOutcome:
        """
        Record a review and reschedule the card.

        Raises:
            InvalidReviewError: Bad input or unknown card (nothing is written)
            ReviewNotRecordedError: The store could not be read or written
        """
        if not learner_id:
            raise InvalidReviewError("learner_id is required")
        if not isinstance(submission, ReviewSubmission):
            submission = ReviewSubmission.parse(submission)

        try:
            card = await self.store.load_card(submission.card_id)
        except StoreError as e:
            logger.error(f"Review for card {submission.card_id} not recorded: {e}")
            raise ReviewNotRecordedError(learner_id, submission.card_id, e) from e
        if card is None:
            raise InvalidReviewError(f"Unknown card: {submission.card_id}")

        now = as_utc(now) if now else utc_now()
        event = ReviewEvent(
            card_id=submission.card_id,
            correct=submission.correct,
            confidence=submission.confidence,
            response_time_ms=submission.response_time_ms,
            created_at=now,
            learner_id=learner_id,
            document_id=submission.document_id,
        )

        def schedule(current: ProgressRecord | None) -> ProgressRecord:
            ease = current.ease_factor if current else 2.5
            interval = current.interval_days if current else 1
            result = next_schedule(
                submission.correct,
                submission.confidence,
                ease_factor=ease,
                interval_days=interval,
                now=now,
            )
            return ProgressRecord(
                learner_id=learner_id,
                card_id=submission.card_id,
                due_at=result.due_at,
                last_reviewed_at=now,
                mastered=is_mastered(
                    submission.correct,
                    submission.confidence,
                    result.interval_days,
                    self.config,
                ),
                ease_factor=result.ease_factor,
                interval_days=result.interval_days,
                review_count=(current.review_count if current else 0) + 1,
            )

        try:
            progress = await self.store.apply_review(learner_id, event, schedule)
        except StoreError as e:
            logger.error(f"Review for card {submission.card_id} not recorded: {e}")
            raise ReviewNotRecordedError(learner_id, submission.card_id, e) from e

        logger.info(
            f"Recorded review: card={submission.card_id} correct={submission.correct} "
            f"interval={progress.interval_days}d ease={progress.ease_factor}"
        )

        session = None
        try:
            session = await self.store.track_session(
                learner_id,
                submission.document_id,
                event,
                timedelta(minutes=self.settings.study_session_window_minutes),
            )
        except StoreError as e:
            logger.warning(f"Study session tracking failed: {e}")

        return ReviewOutcome(event=event, progress=progress, session=session)

    # =========================================================================
    # Read paths
    # =========================================================================

    async def build_session(
        self,
        learner_id: str,
        document_id: str | None = None,
        max_size: int | None = None,
        now: datetime | None = None,
    ) -> list[CardScore]:
        """
        Rank a document's cards for study, highest priority first.

        Returns an empty list if the store cannot be read.
        """
        now = as_utc(now) if now else utc_now()
        max_size = self.settings.session_max_size if max_size is None else max_size
        if max_size < 0:
            raise ValueError(f"max_size must be >= 0, got {max_size}")

        try:
            cards = await self.store.load_cards(document_id)
            progress = await self.store.load_progress(learner_id, document_id)
            reviews = await self.store.load_reviews(
                learner_id,
                since=now - timedelta(days=self.settings.recent_review_days),
                document_id=document_id,
            )
        except StoreError as e:
            logger.warning(f"Could not build study session for {learner_id}: {e}")
            return []

        ranked = rank_cards(cards, progress, reviews, now=now, config=self.config)
        return ranked[:max_size]

    async def recommendations(
        self,
        learner_id: str,
        document_id: str | None = None,
        now: datetime | None = None,
    ) -> StudyRecommendations:
        """Study recommendations (all zero if the store cannot be read)."""
        now = as_utc(now) if now else utc_now()
        try:
            cards = await self.store.load_cards(document_id)
            progress = await self.store.load_progress(learner_id, document_id)
            reviews = await self.store.load_reviews(
                learner_id,
                since=now - timedelta(days=self.settings.recent_review_days),
                document_id=document_id,
            )
        except StoreError as e:
            logger.warning(f"Recommendations unavailable for {learner_id}: {e}")
            return StudyRecommendations()

        return recommend(cards, progress, reviews, now=now)

    async def due_cards(
        self,
        learner_id: str,
        document_id: str | None = None,
        limit: int = 50,
        now: datetime | None = None,
    ) -> list[ProgressRecord]:
        """Due, unmastered progress records, most overdue first."""
        now = as_utc(now) if now else utc_now()
        limit = max(1, min(limit, MAX_DUE_LIMIT))
        try:
            progress = await self.store.load_progress(learner_id, document_id)
        except StoreError as e:
            logger.warning(f"Due cards unavailable for {learner_id}: {e}")
            return []

        due = sorted((p for p in progress if p.is_due(now)), key=lambda p: p.due_at)
        return due[:limit]
