"""
Domain records for the adaptive review core.

Plain dataclasses shared by the scheduler, analytics, stores and cache.
All timestamps are timezone-aware UTC datetimes.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalise a datetime to aware UTC (naive values are assumed UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# Cards & Progress
# =============================================================================


@dataclass(frozen=True)
class Card:
    """Immutable flashcard content."""

    id: str
    question: str
    answer: str
    hint: str | None = None
    topic: str | None = None
    order_index: int = 0
    document_id: str | None = None


@dataclass
class ProgressRecord:
    """Scheduling state for one (learner, card) pair."""

    learner_id: str
    card_id: str
    due_at: datetime
    last_reviewed_at: datetime
    mastered: bool = False
    ease_factor: float = 2.5
    interval_days: int = 1
    review_count: int = 0

    def is_due(self, now: datetime) -> bool:
        """Due means the raw due timestamp has passed and the card is not mastered."""
        return not self.mastered and self.due_at <= now


@dataclass
class ReviewEvent:
    """A single answered card. Append-only."""

    card_id: str
    correct: bool
    confidence: int
    response_time_ms: int
    created_at: datetime
    learner_id: str | None = None
    document_id: str | None = None
    id: str = field(default_factory=new_id)


@dataclass
class StudySession:
    """Coarse time tracking for reviews that fall in the same rolling window."""

    learner_id: str
    started_at: datetime
    last_activity_at: datetime
    document_id: str | None = None
    duration_seconds: int = 0
    cards_reviewed: int = 0
    correct_count: int = 0
    id: str = field(default_factory=new_id)

    def accepts(self, at: datetime, window: timedelta) -> bool:
        """Whether a review at ``at`` still belongs to this session."""
        return timedelta(0) <= at - self.started_at < window


# =============================================================================
# Cache & Usage
# =============================================================================


@dataclass(frozen=True)
class TokenUsage:
    """Token accounting reported by the content generator."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_dict(cls, data: dict | None) -> TokenUsage | None:
        if not data:
            return None
        prompt = int(data.get("prompt_tokens") or 0)
        completion = int(data.get("completion_tokens") or 0)
        total = int(data.get("total_tokens") or prompt + completion)
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


@dataclass(frozen=True)
class CacheEntry:
    """A cached generator response keyed by content hash."""

    cache_key: str
    response: str
    model: str
    temperature: float
    created_at: datetime
    input_hash: str | None = None
    usage: TokenUsage | None = None


@dataclass(frozen=True)
class UsageRecord:
    """One logged generator call, for later aggregation."""

    model: str
    operation: str
    usage: TokenUsage
    created_at: datetime
    latency_ms: int | None = None
