"""
Unit tests for learning analytics.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from adaptive_review.analytics import (
    AnalyticsAggregator,
    LearningAnalytics,
    compute_best_streak,
    compute_learning_analytics,
    compute_streak,
    daily_activity,
    due_summary,
    summarize_session,
    topic_extremes,
    topic_performance,
    trend,
)
from adaptive_review.errors import StoreError
from adaptive_review.models import Card, StudySession


def _days_ago(now, *days):
    return [now - timedelta(days=d) for d in days]


class TestStreak:
    """Tests for UTC-day streaks."""

    def test_consecutive_days_ending_today(self, now):
        assert compute_streak(_days_ago(now, 3, 2, 1, 0), now) == 4

    def test_starts_from_yesterday_when_today_is_empty(self, now):
        """D-5, D-3, D-2, D-1: the gap at D-4 stops the count at 3."""
        assert compute_streak(_days_ago(now, 5, 3, 2, 1), now) == 3

    def test_zero_without_recent_activity(self, now):
        assert compute_streak(_days_ago(now, 2, 3, 4), now) == 0
        assert compute_streak([], now) == 0

    def test_multiple_reviews_per_day_count_once(self, now):
        times = [now - timedelta(hours=h) for h in (0, 1, 2)] + _days_ago(now, 1)

        assert compute_streak(times, now) == 2

    def test_uses_utc_day_boundaries(self):
        now = datetime(2024, 5, 15, 0, 30, tzinfo=timezone.utc)
        late_yesterday = datetime(2024, 5, 14, 23, 30, tzinfo=timezone.utc)
        # 01:00 at UTC+3 is 22:00 UTC on the 13th
        offset_time = datetime(2024, 5, 14, 1, 0, tzinfo=timezone(timedelta(hours=3)))

        assert compute_streak([late_yesterday, offset_time], now) == 2

    def test_best_streak(self, now):
        times = _days_ago(now, 20, 19, 18, 17, 10, 9, 1, 0)

        assert compute_best_streak(times) == 4
        assert compute_best_streak([]) == 0


class TestTrend:
    """Tests for trend()."""

    def test_improving_and_declining(self):
        assert trend([1.0, 1.0], [0.0, 1.0], 0.05) == 1
        assert trend([0.0, 1.0], [1.0, 1.0], 0.05) == -1

    def test_small_changes_are_stable(self):
        assert trend([3.1], [3.0], 0.2) == 0

    def test_lower_latency_is_improvement(self):
        assert trend([1000], [3000], 1000, lower_is_better=True) == 1
        assert trend([4000], [2000], 1000, lower_is_better=True) == -1
        assert trend([2500], [2000], 1000, lower_is_better=True) == 0

    def test_empty_window_is_stable(self):
        assert trend([], [1.0], 0.05) == 0
        assert trend([1.0], [], 0.05) == 0


class TestTopics:
    def test_topic_performance_sorted_by_count(self, sample_cards, now, make_review):
        reviews = [
            make_review("card-c", now, correct=False),
            make_review("card-a", now, correct=True),
            make_review("card-b", now, correct=False),
            make_review("unknown", now, correct=True),
        ]

        performance = topic_performance(reviews, sample_cards)

        assert [p.topic for p in performance] == ["Biology", "Chemistry", "General"]
        assert performance[0].accuracy == 0.5
        assert performance[0].review_count == 2

    def test_summarize_session(self, sample_cards, now, make_review):
        reviews = [
            *[make_review("card-a", now, correct=True, confidence=5, response_time_ms=1000) for _ in range(4)],
            make_review("card-c", now, correct=True, confidence=4, response_time_ms=4000),
            make_review("card-c", now, correct=False, confidence=4, response_time_ms=4000),
        ]

        stats = summarize_session(reviews, sample_cards)

        assert stats.total_cards == 6
        assert stats.correct_cards == 5
        assert stats.average_response_time_ms == pytest.approx(2000)
        assert stats.topic_breakdown["Biology"].correct == 4
        assert stats.strong_areas == ["Biology"]
        assert stats.weak_areas == ["Chemistry"]

    def test_summarize_empty_session(self, sample_cards):
        stats = summarize_session([], sample_cards)

        assert stats.total_cards == 0
        assert stats.topic_breakdown == {}


class TestComputeLearningAnalytics:
    """Tests for compute_learning_analytics()."""

    @pytest.fixture
    def history(self, now, make_review):
        recent = [
            make_review("card-a", now - timedelta(hours=1), correct=True, confidence=4, response_time_ms=2000),
            make_review("card-a", now - timedelta(days=1), correct=True, confidence=4, response_time_ms=2000),
            make_review("card-b", now - timedelta(days=2), correct=True, confidence=4, response_time_ms=2000),
            make_review("card-b", now - timedelta(days=3), correct=False, confidence=4, response_time_ms=2000),
        ]
        prior = [
            make_review("card-c", now - timedelta(days=8), correct=False, confidence=2, response_time_ms=5000),
            make_review("card-c", now - timedelta(days=9), correct=False, confidence=2, response_time_ms=5000),
            make_review("card-c", now - timedelta(days=10), correct=True, confidence=2, response_time_ms=5000),
        ]
        return recent + prior

    def test_dashboard_metrics(self, history, sample_cards, now, make_progress):
        sessions = [
            StudySession(learner_id="learner-1", started_at=now - timedelta(days=2),
                         last_activity_at=now - timedelta(days=2), duration_seconds=600),
            StudySession(learner_id="learner-1", started_at=now - timedelta(days=10),
                         last_activity_at=now - timedelta(days=10), duration_seconds=900),
        ]
        progress = [
            make_progress("card-a", now, due_in_days=10, mastered=True),
            make_progress("card-b", now, due_in_days=-1, review_count=3),
            make_progress("card-c", now, due_in_days=2, review_count=3),
        ]

        result = compute_learning_analytics(history, sample_cards, sessions, progress, now)

        assert result.streak == 4
        assert result.best_streak == 4
        assert result.total_cards_reviewed == 7
        assert result.accuracy_rate == 0.75
        assert result.average_confidence == 4
        assert result.time_studied_seconds == 600
        assert result.mastered_cards == 1
        assert result.struggling_cards == 1
        assert [(p.topic, p.review_count) for p in result.topic_performance] == [
            ("Biology", 4),
            ("Chemistry", 3),
        ]
        assert result.recent_trends.accuracy_trend == 1
        assert result.recent_trends.confidence_trend == 1
        assert result.recent_trends.speed_trend == 1
        assert (result.activity.cards_today, result.activity.cards_yesterday) == (1, 1)
        assert result.activity.minutes_today == 0
        assert (result.due_cards, result.due_documents) == (1, 1)
        assert (result.strongest_topic, result.weakest_topic) == ("Biology", None)

    def test_falls_back_to_whole_window_without_last_week(self, sample_cards, now, make_review):
        reviews = [make_review("card-a", now - timedelta(days=9), correct=True, confidence=5)]

        result = compute_learning_analytics(reviews, sample_cards, [], [], now)

        assert result.accuracy_rate == 1.0
        assert result.average_confidence == 5
        assert result.streak == 0
        assert result.recent_trends.accuracy_trend == 0

    def test_old_reviews_only_feed_streaks(self, sample_cards, now, make_review):
        reviews = [make_review("card-a", at) for at in _days_ago(now, 40, 39, 38, 37, 36)]

        result = compute_learning_analytics(reviews, sample_cards, [], [], now)

        assert result.total_cards_reviewed == 0
        assert result.best_streak == 5
        assert result.topic_performance == []

    def test_no_history(self, now):
        assert compute_learning_analytics([], [], [], [], now) == LearningAnalytics.empty()


class TestDailyActivity:
    """Today against yesterday, on UTC day boundaries."""

    def _session(self, started_at, seconds):
        return StudySession(
            learner_id="learner-1",
            started_at=started_at,
            last_activity_at=started_at,
            duration_seconds=seconds,
        )

    def test_counts_and_deltas(self, now, make_review):
        # now is 12:00 UTC, so -11h is 01:00 today and -13h is 23:00 yesterday.
        reviews = [
            make_review("card-a", at)
            for at in (
                now - timedelta(hours=1),
                now - timedelta(hours=2),
                now - timedelta(hours=11),
                now - timedelta(hours=13),
                now - timedelta(hours=30),
                now - timedelta(hours=40),
            )
        ]
        sessions = [
            self._session(now - timedelta(hours=11), 1000),
            self._session(now - timedelta(hours=2), 530),
            self._session(now - timedelta(hours=16), 600),
            self._session(now - timedelta(days=2), 900),
        ]

        activity = daily_activity(reviews, sessions, now)

        assert (activity.cards_today, activity.cards_yesterday) == (3, 2)
        assert activity.cards_delta == 1
        assert (activity.minutes_today, activity.minutes_yesterday) == (26, 10)
        assert activity.minutes_delta == 16

    def test_quiet_days(self, now):
        activity = daily_activity([], [], now)

        assert activity.cards_delta == activity.minutes_delta == 0


class TestDueSummary:
    def test_counts_due_cards_and_their_documents(self, sample_cards, now, make_progress):
        cards = sample_cards + [Card(id="card-d", question="Q", answer="A", document_id="doc-2")]
        progress = [
            make_progress("card-a", now, due_in_days=-1),
            make_progress("card-b", now, due_in_days=-2, mastered=True),
            make_progress("card-c", now, due_in_days=2),
            make_progress("card-d", now, due_in_days=-1),
            make_progress("ghost", now, due_in_days=-1),
        ]

        assert due_summary(progress, cards, now) == (3, 2)

    def test_nothing_due(self, sample_cards, now):
        assert due_summary([], sample_cards, now) == (0, 0)


class TestTopicExtremes:
    """Strongest and weakest topic over the last 7 days."""

    @pytest.fixture
    def cards(self, sample_cards):
        return sample_cards + [
            Card(id="card-p", question="Q", answer="A", topic="Physics"),
            Card(id="card-u", question="Q", answer="A"),
        ]

    def test_picks_best_and_worst_qualifying_topics(self, cards, now, make_review):
        reviews = [
            make_review("card-a", now - timedelta(days=1), correct=True),
            make_review("card-a", now - timedelta(days=2), correct=True),
            make_review("card-b", now - timedelta(days=3), correct=False),
            make_review("card-b", now - timedelta(days=4), correct=True),
            make_review("card-c", now - timedelta(days=1), correct=True),
            make_review("card-c", now - timedelta(days=5), correct=True),
            make_review("card-c", now - timedelta(days=6), correct=True),
            make_review("card-p", now, correct=False),
            make_review("card-p", now, correct=False),
        ] + [
            make_review(card_id, now - timedelta(days=8), correct=False)
            for card_id in ("card-c",) * 5 + ("card-u",) * 5
        ]

        assert topic_extremes(reviews, cards, now) == ("Chemistry", "Biology")

    def test_single_topic_is_only_the_strongest(self, cards, now, make_review):
        reviews = [make_review("card-a", now - timedelta(hours=h), correct=False) for h in (1, 2, 3)]

        assert topic_extremes(reviews, cards, now) == ("Biology", None)

    def test_too_few_reviews(self, cards, now, make_review):
        reviews = [make_review("card-a", now), make_review("card-c", now)]

        assert topic_extremes(reviews, cards, now) == (None, None)


class TestAnalyticsAggregator:
    """Tests for AnalyticsAggregator.analyze()."""

    @pytest.mark.asyncio
    async def test_reads_history_from_store(self, memory_store, settings, now, make_review):
        for days in (0, 1, 2):
            await memory_store.insert_review("learner-1", make_review("card-a", now - timedelta(days=days)))
        await memory_store.insert_review("learner-2", make_review("card-a", now))

        result = await AnalyticsAggregator(memory_store, settings).analyze("learner-1", now=now)

        assert result.streak == 3
        assert result.total_cards_reviewed == 3
        assert result.topic_performance[0].topic == "Biology"

    @pytest.mark.asyncio
    async def test_dashboard_figures_from_store(
        self, memory_store, settings, now, make_review, make_progress
    ):
        await memory_store.insert_review("learner-1", make_review("card-a", now - timedelta(hours=1)))
        await memory_store.insert_review("learner-1", make_review("card-b", now - timedelta(hours=2)))
        await memory_store.insert_review("learner-1", make_review("card-c", now - timedelta(days=1)))
        await memory_store.upsert_progress(make_progress("card-a", now, due_in_days=-1))
        await memory_store.track_session(
            "learner-1",
            "doc-1",
            make_review("card-a", now - timedelta(hours=1), response_time_ms=120_000),
            timedelta(minutes=60),
        )

        result = await AnalyticsAggregator(memory_store, settings).analyze("learner-1", now=now)

        assert result.activity.cards_today == 2
        assert result.activity.cards_delta == 1
        assert result.activity.minutes_today == 2
        assert (result.due_cards, result.due_documents) == (1, 1)

    @pytest.mark.asyncio
    async def test_store_failure_degrades_to_empty(self, memory_store, settings, now, monkeypatch):
        async def broken(*args, **kwargs):
            raise StoreError("database unavailable")

        monkeypatch.setattr(memory_store, "load_reviews", broken)

        result = await AnalyticsAggregator(memory_store, settings).analyze("learner-1", now=now)

        assert result == LearningAnalytics.empty()

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, memory_store, settings, now, monkeypatch):
        async def cancelled(*args, **kwargs):
            raise asyncio.CancelledError()

        monkeypatch.setattr(memory_store, "load_progress", cancelled)

        with pytest.raises(asyncio.CancelledError):
            await AnalyticsAggregator(memory_store, settings).analyze("learner-1", now=now)
