"""
Study recommendations: how much to study and where to focus.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

from adaptive_review.models import Card, ProgressRecord, ReviewEvent, utc_now
from adaptive_review.scheduling.priority import group_by_card

MIN_SESSION_SIZE = 5
MAX_SESSION_SIZE = 20
STRUGGLING_SESSION_CAP = 15
MAX_NEW_PER_SESSION = 5
MIN_TOPIC_REVIEWS = 3
MAX_FOCUS_TOPICS = 3


@dataclass
class StudyRecommendations:
    """Summary of what the learner should study next."""

    due_count: int = 0
    new_count: int = 0
    struggling_count: int = 0
    recommended_session_size: int = MIN_SESSION_SIZE
    focus_topics: list[str] = field(default_factory=list)


def recommend(
    cards: Sequence[Card],
    progress: Sequence[ProgressRecord],
    recent_reviews: Sequence[ReviewEvent],
    now: datetime | None = None,
) -> StudyRecommendations:
    """
    Summarise due, new and struggling cards and pick focus topics.

    A card is struggling when its newest three reviews succeed less than 70%
    of the time. Focus topics need at least three reviews and are ordered by
    ascending success rate.
    """
    now = now or utc_now()
    progress_by_card = {p.card_id: p for p in progress}
    reviews_by_card = group_by_card(recent_reviews)

    due_count = 0
    new_count = 0
    struggling_count = 0
    topic_stats: dict[str, list[int]] = {}

    for card in cards:
        record = progress_by_card.get(card.id)
        reviews = reviews_by_card.get(card.id, [])

        if record is None:
            new_count += 1
        elif record.due_at <= now and not record.mastered:
            due_count += 1

        if len(reviews) >= 3:
            newest = reviews[:3]
            if sum(1 for r in newest if r.correct) / len(newest) < 0.7:
                struggling_count += 1

        if card.topic and reviews:
            stats = topic_stats.setdefault(card.topic, [0, 0])
            stats[0] += sum(1 for r in reviews if r.correct)
            stats[1] += len(reviews)

    ranked_topics = sorted(
        ((topic, correct / total) for topic, (correct, total) in topic_stats.items()
         if total >= MIN_TOPIC_REVIEWS),
        key=lambda item: item[1],
    )
    focus_topics = [topic for topic, _ in ranked_topics[:MAX_FOCUS_TOPICS]]

    session_size = min(
        MAX_SESSION_SIZE,
        max(MIN_SESSION_SIZE, due_count + min(new_count, MAX_NEW_PER_SESSION)),
    )
    if struggling_count > 10:
        session_size = min(STRUGGLING_SESSION_CAP, session_size)

    return StudyRecommendations(
        due_count=due_count,
        new_count=new_count,
        struggling_count=struggling_count,
        recommended_session_size=session_size,
        focus_topics=focus_topics,
    )
