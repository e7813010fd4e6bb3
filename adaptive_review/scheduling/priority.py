"""
Priority scoring for adaptive card selection.

Signals, applied in order:
1. Due state (new / mastered / overdue / not yet due)
2. Ease factor (harder cards float up)
3. Recent performance on the card (low confidence, low success, damper)
4. Topic weakness across every card that shares the topic

Higher priority means the card should be seen sooner. Priority never drops
below zero. The reason string is for telemetry only.
"""

from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from adaptive_review.models import Card, ProgressRecord, ReviewEvent, utc_now
from adaptive_review.scheduling.interval import MAX_EASE, SchedulerConfig

NEW_CARD_PRIORITY = 100.0
MASTERED_PRIORITY = 20.0
MASTERED_OVERDUE_BASE = 80.0
OVERDUE_BASE = 150.0
UPCOMING_BASE = 60.0

LOW_CONFIDENCE_BOOST = 40.0
STRUGGLING_BOOST = 30.0
WEAK_TOPIC_BOOST = 25.0
DAMPER_PENALTY = 50.0

RECENT_REASON = "recently reviewed with high performance"


@dataclass(frozen=True)
class CardScore:
    """Selection priority for one card."""

    card: Card
    priority: float
    reason: str


def days_due(due_at: datetime, now: datetime) -> int:
    """Whole days past due on raw timestamps; negative when not yet due."""
    return math.floor((now - due_at) / timedelta(days=1))


def newest_first(reviews: Iterable[ReviewEvent]) -> list[ReviewEvent]:
    return sorted(reviews, key=lambda r: r.created_at, reverse=True)


def success_rate(reviews: Sequence[ReviewEvent]) -> float:
    if not reviews:
        return 0.0
    return sum(1 for r in reviews if r.correct) / len(reviews)


def group_by_card(reviews: Iterable[ReviewEvent]) -> dict[str, list[ReviewEvent]]:
    """Group reviews per card, newest first within each group."""
    grouped: dict[str, list[ReviewEvent]] = defaultdict(list)
    for review in newest_first(reviews):
        grouped[review.card_id].append(review)
    return grouped


class PriorityScorer:
    """
    Scores cards against a shared review context.

    The context (all recent reviews plus the card set) is needed for the
    topic signal, so it is computed once per scoring pass.
    """

    def __init__(
        self,
        cards: Sequence[Card],
        recent_reviews: Sequence[ReviewEvent],
        now: datetime | None = None,
        config: SchedulerConfig | None = None,
    ):
        self.now = now or utc_now()
        self.config = config or SchedulerConfig()

        topic_by_card = {card.id: card.topic for card in cards}
        self._topic_stats: dict[str, list[int]] = defaultdict(lambda: [0, 0])
        for review in recent_reviews:
            topic = topic_by_card.get(review.card_id)
            if topic:
                stats = self._topic_stats[topic]
                stats[0] += 1 if review.correct else 0
                stats[1] += 1

    def topic_success_rate(self, topic: str) -> float | None:
        """Success rate over all recent reviews of the topic, or None if unseen."""
        correct, total = self._topic_stats.get(topic, (0, 0))
        if total == 0:
            return None
        return correct / total

    def score(
        self,
        card: Card,
        progress: ProgressRecord | None,
        reviews: Sequence[ReviewEvent] = (),
    ) -> CardScore:
        """
        Compute selection priority and reason for a single card.

        Args:
            card: Card being scored
            progress: Learner's progress record, or None for a new card
            reviews: Recent reviews of this card (any order)

        Returns:
            CardScore with a non-negative priority
        """
        priority = NEW_CARD_PRIORITY
        reason = "New card"

        if progress is not None:
            overdue = days_due(progress.due_at, self.now)

            if progress.mastered:
                if overdue > 0:
                    priority = MASTERED_OVERDUE_BASE + min(overdue * 10, 50)
                    reason = f"Mastered but {overdue} days overdue"
                else:
                    priority = MASTERED_PRIORITY
                    reason = "Mastered"
            elif overdue > 0:
                priority = OVERDUE_BASE + min(overdue * 20, 100)
                reason = f"Due {overdue} days ago"
            else:
                priority = UPCOMING_BASE - min(abs(overdue) * 5, 40)
                reason = f"Due in {abs(overdue)} days"

            priority += (MAX_EASE - progress.ease_factor) * 20

        recent = newest_first(reviews)[: self.config.recent_review_limit]
        if recent:
            avg_confidence = sum(r.confidence for r in recent) / len(recent)
            rate = success_rate(recent)

            if avg_confidence < 3:
                priority += LOW_CONFIDENCE_BOOST
                reason += ", low confidence"

            if rate < 0.7:
                priority += STRUGGLING_BOOST
                reason += ", struggling"

            since_last = self.now - recent[0].created_at
            if (
                since_last < timedelta(hours=self.config.damper_hours)
                and rate > 0.8
                and avg_confidence >= 4
            ):
                priority -= DAMPER_PENALTY
                reason = RECENT_REASON

        if card.topic:
            topic_rate = self.topic_success_rate(card.topic)
            if topic_rate is not None and topic_rate < 0.6:
                priority += WEAK_TOPIC_BOOST
                reason += ", weak topic"

        return CardScore(card=card, priority=max(0.0, priority), reason=reason)


def score_card(
    card: Card,
    progress: ProgressRecord | None,
    reviews: Sequence[ReviewEvent] = (),
    topic_reviews: Sequence[ReviewEvent] | None = None,
    cards: Sequence[Card] | None = None,
    now: datetime | None = None,
    config: SchedulerConfig | None = None,
) -> CardScore:
    """Score one card; topic context defaults to the card's own reviews."""
    scorer = PriorityScorer(
        cards=cards if cards is not None else [card],
        recent_reviews=topic_reviews if topic_reviews is not None else reviews,
        now=now,
        config=config,
    )
    return scorer.score(card, progress, reviews)
