"""
Adaptive Review: spaced-repetition scheduling core.

Decides which flashcards a learner sees next, evolves each card's interval
and ease after every answer, aggregates learning analytics and caches
generated content by input hash.
"""

from adaptive_review.errors import (
    AdaptiveReviewError,
    GenerationError,
    InvalidReviewError,
    ReviewNotRecordedError,
    StoreError,
)
from adaptive_review.models import Card, ProgressRecord, ReviewEvent, StudySession

__version__ = "1.0.0"

__all__ = [
    "AdaptiveReviewError",
    "Card",
    "GenerationError",
    "InvalidReviewError",
    "ProgressRecord",
    "ReviewEvent",
    "ReviewNotRecordedError",
    "StoreError",
    "StudySession",
]
