"""
Metric computations for learning analytics.

Streaks work on UTC calendar days; every other window is measured on raw
timestamps.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timedelta

from adaptive_review.analytics.types import (
    DEFAULT_TOPIC,
    DailyActivity,
    LearningAnalytics,
    RecentTrends,
    SessionStats,
    TopicPerformance,
    TopicTally,
)
from adaptive_review.models import Card, ProgressRecord, ReviewEvent, StudySession, as_utc
from adaptive_review.scheduling.interval import round_half_up

TREND_WINDOW = timedelta(days=7)
ANALYTICS_WINDOW = timedelta(days=14)

ACCURACY_NOISE = 0.05
CONFIDENCE_NOISE = 0.2
RESPONSE_TIME_NOISE_MS = 1000.0

FOCUS_DAYS = 7
FOCUS_MIN_REVIEWS = 3


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _utc_days(review_times: Iterable[datetime]) -> set[date]:
    return {as_utc(t).date() for t in review_times}


# =============================================================================
# Streaks
# =============================================================================


def compute_streak(review_times: Iterable[datetime], now: datetime) -> int:
    """
    Consecutive UTC days with at least one review, ending today or yesterday.

    Counting starts from today when today has a review, otherwise from
    yesterday, and stops at the first day without one.
    """
    days = _utc_days(review_times)
    cursor = as_utc(now).date()
    if cursor not in days:
        cursor -= timedelta(days=1)

    streak = 0
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def compute_best_streak(review_times: Iterable[datetime]) -> int:
    """Longest run of consecutive UTC review days."""
    best = run = 0
    previous: date | None = None
    for day in sorted(_utc_days(review_times)):
        run = run + 1 if previous is not None and day - previous == timedelta(days=1) else 1
        best = max(best, run)
        previous = day
    return best


# =============================================================================
# Trends
# =============================================================================


def trend(
    recent: Sequence[float],
    prior: Sequence[float],
    threshold: float,
    lower_is_better: bool = False,
) -> int:
    """
    Compare two windows of samples.

    Returns:
        +1 improving, -1 declining, 0 stable or not enough data
    """
    if not recent or not prior:
        return 0
    delta = _mean(recent) - _mean(prior)
    if lower_is_better:
        delta = -delta
    if abs(delta) < threshold:
        return 0
    return 1 if delta > 0 else -1


def recent_trends(reviews: Sequence[ReviewEvent], now: datetime) -> RecentTrends:
    """Last 7 days against the 7 days before that."""
    recent_start = now - TREND_WINDOW
    prior_start = recent_start - TREND_WINDOW
    recent = [r for r in reviews if as_utc(r.created_at) >= recent_start]
    prior = [r for r in reviews if prior_start <= as_utc(r.created_at) < recent_start]

    return RecentTrends(
        accuracy_trend=trend(
            [1.0 if r.correct else 0.0 for r in recent],
            [1.0 if r.correct else 0.0 for r in prior],
            ACCURACY_NOISE,
        ),
        confidence_trend=trend(
            [r.confidence for r in recent],
            [r.confidence for r in prior],
            CONFIDENCE_NOISE,
        ),
        speed_trend=trend(
            [r.response_time_ms for r in recent],
            [r.response_time_ms for r in prior],
            RESPONSE_TIME_NOISE_MS,
            lower_is_better=True,
        ),
    )


# =============================================================================
# Topics & Sessions
# =============================================================================


def _topic_of(card_id: str, topics: dict[str, str | None]) -> str:
    return topics.get(card_id) or DEFAULT_TOPIC


def _tally_by_topic(reviews: Iterable[ReviewEvent], cards: Iterable[Card]) -> dict[str, TopicTally]:
    topics = {card.id: card.topic for card in cards}
    tallies: dict[str, TopicTally] = defaultdict(TopicTally)
    for review in reviews:
        tally = tallies[_topic_of(review.card_id, topics)]
        tally.total += 1
        tally.correct += int(review.correct)
        tally.confidence_sum += review.confidence
    return dict(tallies)


def topic_performance(reviews: Iterable[ReviewEvent], cards: Iterable[Card]) -> list[TopicPerformance]:
    """Per-topic accuracy, most-reviewed topics first."""
    tallies = _tally_by_topic(reviews, cards)
    performance = [
        TopicPerformance(topic=topic, accuracy=tally.accuracy, review_count=tally.total)
        for topic, tally in tallies.items()
    ]
    performance.sort(key=lambda p: p.review_count, reverse=True)
    return performance


def summarize_session(reviews: Sequence[ReviewEvent], cards: Iterable[Card]) -> SessionStats:
    """
    Summarize a batch of reviews.

    Weak areas are topics under 70% accuracy or below 3 mean confidence;
    strong areas reach 80% accuracy with mean confidence of 4 or more.
    """
    if not reviews:
        return SessionStats()

    breakdown = _tally_by_topic(reviews, cards)
    weak_areas = []
    strong_areas = []
    for topic, tally in breakdown.items():
        if tally.accuracy < 0.7 or tally.average_confidence < 3:
            weak_areas.append(topic)
        elif tally.accuracy >= 0.8 and tally.average_confidence >= 4:
            strong_areas.append(topic)

    return SessionStats(
        total_cards=len(reviews),
        correct_cards=sum(1 for r in reviews if r.correct),
        average_confidence=_mean([r.confidence for r in reviews]),
        average_response_time_ms=_mean([r.response_time_ms for r in reviews]),
        topic_breakdown=breakdown,
        weak_areas=weak_areas,
        strong_areas=strong_areas,
    )


# =============================================================================
# Daily Activity & Focus
# =============================================================================


def start_of_utc_day(moment: datetime, days_ago: int = 0) -> datetime:
    day = as_utc(moment).replace(hour=0, minute=0, second=0, microsecond=0)
    return day - timedelta(days=days_ago)


def _minutes(sessions: Iterable[StudySession]) -> int:
    return int(round_half_up(sum(s.duration_seconds for s in sessions) / 60))


def daily_activity(
    reviews: Iterable[ReviewEvent],
    sessions: Iterable[StudySession],
    now: datetime,
) -> DailyActivity:
    """Reviews and session minutes of today against yesterday."""
    today = start_of_utc_day(now)
    yesterday = start_of_utc_day(now, days_ago=1)
    review_times = [as_utc(r.created_at) for r in reviews]
    sessions = list(sessions)

    return DailyActivity(
        cards_today=sum(1 for t in review_times if t >= today),
        cards_yesterday=sum(1 for t in review_times if yesterday <= t < today),
        minutes_today=_minutes(s for s in sessions if as_utc(s.started_at) >= today),
        minutes_yesterday=_minutes(
            s for s in sessions if yesterday <= as_utc(s.started_at) < today
        ),
    )


def due_summary(
    progress: Iterable[ProgressRecord],
    cards: Iterable[Card],
    now: datetime,
) -> tuple[int, int]:
    """Number of due cards and of distinct documents holding them."""
    documents = {card.id: card.document_id for card in cards}
    due = [p for p in progress if p.is_due(now)]
    due_documents = {documents.get(p.card_id) for p in due} - {None}
    return len(due), len(due_documents)


def topic_extremes(
    reviews: Iterable[ReviewEvent],
    cards: Iterable[Card],
    now: datetime,
    min_reviews: int = FOCUS_MIN_REVIEWS,
) -> tuple[str | None, str | None]:
    """
    Strongest and weakest topic by accuracy over the last 7 UTC days.

    Only tagged topics with at least ``min_reviews`` reviews qualify. Ties go
    to the topic seen first. A single qualifying topic is only the strongest.
    """
    since = start_of_utc_day(now, days_ago=FOCUS_DAYS - 1)
    topics = {card.id: card.topic for card in cards if card.topic}
    tallies: dict[str, TopicTally] = {}
    for review in reviews:
        topic = topics.get(review.card_id)
        if topic is None or as_utc(review.created_at) < since:
            continue
        tally = tallies.setdefault(topic, TopicTally())
        tally.total += 1
        tally.correct += int(review.correct)

    qualifying = [(topic, t.accuracy) for topic, t in tallies.items() if t.total >= min_reviews]
    if not qualifying:
        return None, None

    strongest = max(qualifying, key=lambda item: item[1])[0]
    weakest = min(qualifying, key=lambda item: item[1])[0]
    return strongest, (weakest if weakest != strongest else None)


# =============================================================================
# Dashboard
# =============================================================================


def compute_learning_analytics(
    reviews: Sequence[ReviewEvent],
    cards: Sequence[Card],
    sessions: Sequence[StudySession],
    progress: Sequence[ProgressRecord],
    now: datetime,
    lookback: timedelta = ANALYTICS_WINDOW,
) -> LearningAnalytics:
    """
    Build the dashboard metrics from raw history.

    Args:
        reviews: Review history; the streak uses all of it, other metrics
            only the lookback window
        cards: Cards the reviews belong to (for topics)
        sessions: Study sessions (only the last 7 days count)
        progress: Current progress records
        now: Reference time
        lookback: How far back accuracy, topics and trends look
    """
    now = as_utc(now)
    window = [r for r in reviews if as_utc(r.created_at) >= now - lookback]
    last_week = [r for r in window if as_utc(r.created_at) >= now - TREND_WINDOW]
    sample = last_week or window

    times = [r.created_at for r in reviews]
    mastered = sum(1 for p in progress if p.mastered)
    struggling = sum(1 for p in progress if p.review_count >= 3 and p.is_due(now))
    studied = sum(s.duration_seconds for s in sessions if as_utc(s.started_at) >= now - TREND_WINDOW)
    due_cards, due_documents = due_summary(progress, cards, now)
    strongest, weakest = topic_extremes(reviews, cards, now)

    return LearningAnalytics(
        streak=compute_streak(times, now),
        best_streak=compute_best_streak(times),
        total_cards_reviewed=len(window),
        accuracy_rate=_mean([1.0 if r.correct else 0.0 for r in sample]),
        average_confidence=_mean([r.confidence for r in sample]),
        time_studied_seconds=studied,
        mastered_cards=mastered,
        struggling_cards=struggling,
        topic_performance=topic_performance(window, cards),
        recent_trends=recent_trends(window, now),
        activity=daily_activity(reviews, sessions, now),
        due_cards=due_cards,
        due_documents=due_documents,
        strongest_topic=strongest,
        weakest_topic=weakest,
    )
