"""
Types for learning analytics.
"""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_TOPIC = "General"


@dataclass(frozen=True)
class TopicPerformance:
    topic: str
    accuracy: float
    review_count: int


@dataclass(frozen=True)
class RecentTrends:
    """Each trend is -1 (declining), 0 (stable) or +1 (improving)."""

    accuracy_trend: int = 0
    confidence_trend: int = 0
    speed_trend: int = 0


@dataclass(frozen=True)
class DailyActivity:
    """Reviews and study minutes for today and yesterday (UTC days)."""

    cards_today: int = 0
    cards_yesterday: int = 0
    minutes_today: int = 0
    minutes_yesterday: int = 0

    @property
    def cards_delta(self) -> int:
        return self.cards_today - self.cards_yesterday

    @property
    def minutes_delta(self) -> int:
        return self.minutes_today - self.minutes_yesterday


@dataclass
class LearningAnalytics:
    """Dashboard metrics for one learner."""

    streak: int = 0
    best_streak: int = 0
    total_cards_reviewed: int = 0
    accuracy_rate: float = 0.0
    average_confidence: float = 0.0
    time_studied_seconds: int = 0
    mastered_cards: int = 0
    struggling_cards: int = 0
    topic_performance: list[TopicPerformance] = field(default_factory=list)
    recent_trends: RecentTrends = field(default_factory=RecentTrends)
    activity: DailyActivity = field(default_factory=DailyActivity)
    due_cards: int = 0
    due_documents: int = 0
    strongest_topic: str | None = None
    weakest_topic: str | None = None

    @classmethod
    def empty(cls) -> LearningAnalytics:
        """All-zero analytics, used when history cannot be read."""
        return cls()


@dataclass
class TopicTally:
    correct: int = 0
    total: int = 0
    confidence_sum: int = 0

    @property
    def accuracy(self) -> float:
        return self.correct / self.total if self.total else 0.0

    @property
    def average_confidence(self) -> float:
        return self.confidence_sum / self.total if self.total else 0.0


@dataclass
class SessionStats:
    """Summary of one batch of reviews (e.g. a finished study session)."""

    total_cards: int = 0
    correct_cards: int = 0
    average_confidence: float = 0.0
    average_response_time_ms: float = 0.0
    topic_breakdown: dict[str, TopicTally] = field(default_factory=dict)
    weak_areas: list[str] = field(default_factory=list)
    strong_areas: list[str] = field(default_factory=list)
