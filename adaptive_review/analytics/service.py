"""
Analytics aggregation over the progress store.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from loguru import logger

from adaptive_review.analytics.metrics import TREND_WINDOW, compute_learning_analytics
from adaptive_review.analytics.types import LearningAnalytics
from adaptive_review.config import Settings, get_settings
from adaptive_review.errors import StoreError
from adaptive_review.models import as_utc, utc_now
from adaptive_review.store.base import ProgressStore


class AnalyticsAggregator:
    """
    Read a learner's history and compute dashboard metrics.

    Analytics are advisory: a failing store yields all-zero analytics
    instead of an error.
    """

    def __init__(self, store: ProgressStore, settings: Settings | None = None):
        self.store = store
        self.settings = settings or get_settings()

    async def analyze(
        self,
        learner_id: str,
        document_id: str | None = None,
        now: datetime | None = None,
    ) -> LearningAnalytics:
        now = as_utc(now) if now else utc_now()
        lookback = timedelta(days=self.settings.analytics_window_days)
        history_days = max(self.settings.streak_window_days, self.settings.analytics_window_days)

        try:
            reviews = await self.store.load_reviews(
                learner_id,
                since=now - timedelta(days=history_days),
                document_id=document_id,
            )
            cards = await self.store.load_cards(document_id)
            progress = await self.store.load_progress(learner_id, document_id)
            sessions = await self.store.load_sessions(
                learner_id,
                since=now - TREND_WINDOW,
                document_id=document_id,
            )
        except StoreError as e:
            logger.warning(f"Analytics unavailable for learner {learner_id}: {e}")
            return LearningAnalytics.empty()

        analytics = compute_learning_analytics(
            reviews, cards, sessions, progress, now, lookback=lookback
        )
        logger.debug(
            f"Analytics for {learner_id}: {analytics.total_cards_reviewed} reviews, "
            f"streak {analytics.streak}"
        )
        return analytics
