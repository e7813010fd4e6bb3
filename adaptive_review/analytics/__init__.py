from .metrics import (
    compute_best_streak,
    compute_learning_analytics,
    compute_streak,
    daily_activity,
    due_summary,
    recent_trends,
    start_of_utc_day,
    summarize_session,
    topic_extremes,
    topic_performance,
    trend,
)
from .service import AnalyticsAggregator
from .types import (
    DailyActivity,
    LearningAnalytics,
    RecentTrends,
    SessionStats,
    TopicPerformance,
    TopicTally,
)

__all__ = [
    "AnalyticsAggregator",
    "DailyActivity",
    "LearningAnalytics",
    "RecentTrends",
    "SessionStats",
    "TopicPerformance",
    "TopicTally",
    "compute_best_streak",
    "compute_learning_analytics",
    "compute_streak",
    "daily_activity",
    "due_summary",
    "recent_trends",
    "start_of_utc_day",
    "summarize_session",
    "topic_extremes",
    "topic_performance",
    "trend",
]
