"""
Unit tests for StudyService.
"""

import asyncio
from datetime import timedelta

import pytest

from adaptive_review.errors import InvalidReviewError, ReviewNotRecordedError, StoreError
from adaptive_review.study import ReviewSubmission, StudyService


@pytest.fixture
def service(memory_store, settings):
    return StudyService(memory_store, settings)


def _submission(card_id="card-a", correct=True, confidence=3, **kwargs):
    return {"card_id": card_id, "correct": correct, "confidence": confidence, **kwargs}


class TestReviewSubmission:
    """Validation of review input."""

    def test_valid_submission(self):
        submission = ReviewSubmission.parse(_submission(response_time_ms=1500, document_id="doc-1"))

        assert submission.card_id == "card-a"
        assert submission.response_time_ms == 1500

    @pytest.mark.parametrize(
        "data",
        [
            {"correct": True, "confidence": 3},
            _submission(card_id="   "),
            _submission(confidence=0),
            _submission(confidence=6),
            _submission(response_time_ms=-1),
        ],
    )
    def test_invalid_submission(self, data):
        with pytest.raises(InvalidReviewError):
            ReviewSubmission.parse(data)

    def test_invalid_review_error_is_value_error(self):
        with pytest.raises(ValueError):
            ReviewSubmission.parse(_submission(confidence=9))


class TestRecordReview:
    """Tests for StudyService.record_review()."""

    @pytest.mark.asyncio
    async def test_first_review_creates_progress(self, service, memory_store, now):
        outcome = await service.record_review("learner-1", _submission(), now=now)

        assert outcome.progress.interval_days == 6
        assert outcome.progress.review_count == 1
        assert outcome.progress.due_at == now + timedelta(days=6)
        assert outcome.box == 2
        assert outcome.session.cards_reviewed == 1

        stored = await memory_store.load_progress("learner-1")
        reviews = await memory_store.load_reviews("learner-1", since=now - timedelta(days=1))
        assert len(stored) == 1
        assert [r.id for r in reviews] == [outcome.event.id]

    @pytest.mark.asyncio
    async def test_subsequent_reviews_build_on_progress(self, service, now):
        await service.record_review("learner-1", _submission(confidence=4), now=now)
        outcome = await service.record_review(
            "learner-1", _submission(confidence=4), now=now + timedelta(days=6)
        )

        assert outcome.progress.review_count == 2
        assert outcome.progress.interval_days == 15
        assert outcome.progress.ease_factor == 2.5

    @pytest.mark.asyncio
    async def test_incorrect_answer_clears_mastery(self, service, memory_store, now, make_progress):
        await memory_store.upsert_progress(
            make_progress("card-a", now, interval_days=30, mastered=True, review_count=8)
        )

        outcome = await service.record_review("learner-1", _submission(correct=False), now=now)

        assert outcome.progress.mastered is False
        assert outcome.progress.interval_days == 1
        assert outcome.progress.review_count == 9

    @pytest.mark.asyncio
    async def test_confident_long_interval_masters_card(self, service, memory_store, now, make_progress):
        await memory_store.upsert_progress(make_progress("card-a", now, interval_days=10))

        outcome = await service.record_review("learner-1", _submission(confidence=5), now=now)

        assert outcome.progress.interval_days == 25
        assert outcome.progress.mastered is True

    @pytest.mark.asyncio
    async def test_invalid_input_writes_nothing(self, service, memory_store, now):
        with pytest.raises(InvalidReviewError):
            await service.record_review("learner-1", _submission(confidence=7), now=now)

        assert await memory_store.load_progress("learner-1") == []

    @pytest.mark.asyncio
    async def test_unknown_card_rejected(self, service, memory_store, now):
        with pytest.raises(InvalidReviewError, match="Unknown card"):
            await service.record_review("learner-1", _submission(card_id="ghost"), now=now)

        assert await memory_store.load_progress("learner-1") == []
        assert await memory_store.load_reviews("learner-1", since=now - timedelta(days=1)) == []

    @pytest.mark.asyncio
    async def test_card_lookup_failure_raises_review_not_recorded(
        self, service, memory_store, now, monkeypatch
    ):
        async def broken(*args, **kwargs):
            raise StoreError("connection refused")

        monkeypatch.setattr(memory_store, "load_card", broken)

        with pytest.raises(ReviewNotRecordedError):
            await service.record_review("learner-1", _submission(), now=now)

    @pytest.mark.asyncio
    async def test_missing_learner_rejected(self, service, now):
        with pytest.raises(InvalidReviewError):
            await service.record_review("", _submission(), now=now)

    @pytest.mark.asyncio
    async def test_store_failure_raises_review_not_recorded(self, service, memory_store, now, monkeypatch):
        async def broken(*args, **kwargs):
            raise StoreError("connection lost")

        monkeypatch.setattr(memory_store, "apply_review", broken)

        with pytest.raises(ReviewNotRecordedError) as exc_info:
            await service.record_review("learner-1", _submission(), now=now)

        assert exc_info.value.card_id == "card-a"
        assert isinstance(exc_info.value.cause, StoreError)

    @pytest.mark.asyncio
    async def test_session_tracking_failure_is_not_fatal(self, service, memory_store, now, monkeypatch):
        async def broken(*args, **kwargs):
            raise StoreError("sessions table locked")

        monkeypatch.setattr(memory_store, "track_session", broken)

        outcome = await service.record_review("learner-1", _submission(), now=now)

        assert outcome.session is None
        assert outcome.progress.review_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_reviews_are_not_lost(self, service, memory_store, now):
        await asyncio.gather(
            *[service.record_review("learner-1", _submission(), now=now) for _ in range(10)]
        )

        [progress] = await memory_store.load_progress("learner-1")
        reviews = await memory_store.load_reviews("learner-1", since=now - timedelta(days=1))
        assert progress.review_count == 10
        assert len(reviews) == 10

    @pytest.mark.asyncio
    async def test_reviews_in_window_share_a_session(self, service, memory_store, now):
        for minutes in (0, 10, 20):
            await service.record_review(
                "learner-1",
                _submission(document_id="doc-1", response_time_ms=3000),
                now=now + timedelta(minutes=minutes),
            )
        await service.record_review(
            "learner-1", _submission(document_id="doc-1"), now=now + timedelta(hours=2)
        )

        sessions = await memory_store.load_sessions("learner-1", since=now - timedelta(days=1))
        assert len(sessions) == 2
        first = min(sessions, key=lambda s: s.started_at)
        assert first.cards_reviewed == 3
        assert first.duration_seconds == 9


class TestReadPaths:
    """Session, recommendations and due cards."""

    @pytest.mark.asyncio
    async def test_build_session_ranks_cards(self, service, memory_store, now, make_progress):
        await memory_store.upsert_progress(make_progress("card-b", now, due_in_days=-2))
        await memory_store.upsert_progress(make_progress("card-c", now, due_in_days=5))

        ranked = await service.build_session("learner-1", "doc-1", now=now)

        assert [score.card.id for score in ranked] == ["card-b", "card-a", "card-c"]

    @pytest.mark.asyncio
    async def test_build_session_respects_max_size(self, service, now):
        ranked = await service.build_session("learner-1", "doc-1", max_size=2, now=now)

        assert len(ranked) == 2

    @pytest.mark.asyncio
    async def test_build_session_empty_on_store_failure(self, service, memory_store, now, monkeypatch):
        async def broken(*args, **kwargs):
            raise StoreError("timeout")

        monkeypatch.setattr(memory_store, "load_cards", broken)

        assert await service.build_session("learner-1", "doc-1", now=now) == []

    @pytest.mark.asyncio
    async def test_recommendations(self, service, memory_store, now, make_progress):
        await memory_store.upsert_progress(make_progress("card-a", now, due_in_days=-1))

        recs = await service.recommendations("learner-1", "doc-1", now=now)

        assert recs.due_count == 1
        assert recs.new_count == 2

    @pytest.mark.asyncio
    async def test_recommendations_zeroed_on_store_failure(self, service, memory_store, now, monkeypatch):
        async def broken(*args, **kwargs):
            raise StoreError("timeout")

        monkeypatch.setattr(memory_store, "load_progress", broken)

        recs = await service.recommendations("learner-1", "doc-1", now=now)

        assert recs.due_count == recs.new_count == 0

    @pytest.mark.asyncio
    async def test_due_cards_ordered_and_limited(self, service, memory_store, now, make_progress):
        await memory_store.upsert_progress(make_progress("card-a", now, due_in_days=-1))
        await memory_store.upsert_progress(make_progress("card-b", now, due_in_days=-3))
        await memory_store.upsert_progress(make_progress("card-c", now, due_in_days=-2, mastered=True))

        due = await service.due_cards("learner-1", now=now)
        limited = await service.due_cards("learner-1", limit=0, now=now)

        assert [p.card_id for p in due] == ["card-b", "card-a"]
        assert [p.card_id for p in limited] == ["card-b"]
