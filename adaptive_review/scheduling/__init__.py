"""
Adaptive scheduling: pure functions with no I/O.

Components:
- next_schedule: Ease-factor / interval model
- PriorityScorer: Multi-signal selection priority
- select_session: Ordered, bounded study queue
- recommend: Due/new/struggling summary with focus topics
"""

from .interval import (
    BOX_INTERVALS_DAYS,
    SchedulerConfig,
    ScheduleResult,
    box_for_interval,
    is_mastered,
    next_schedule,
)
from .priority import CardScore, PriorityScorer, score_card
from .recommendations import StudyRecommendations, recommend
from .selector import rank_cards, select_session

__all__ = [
    # Interval model
    "next_schedule",
    "is_mastered",
    "box_for_interval",
    "BOX_INTERVALS_DAYS",
    "SchedulerConfig",
    "ScheduleResult",
    # Priority
    "PriorityScorer",
    "CardScore",
    "score_card",
    # Selection
    "select_session",
    "rank_cards",
    # Recommendations
    "recommend",
    "StudyRecommendations",
]
