"""
Exception hierarchy for the adaptive review core.

Only the review write path and the content generator surface errors to
callers; scheduling, analytics and caching degrade to defaults instead.
"""

from __future__ import annotations


class AdaptiveReviewError(Exception):
    """Base class for all adaptive review errors."""


class InvalidReviewError(AdaptiveReviewError, ValueError):
    """A review submission failed validation before touching the store."""


class StoreError(AdaptiveReviewError):
    """The progress or cache store could not complete a read or write."""


class ReviewNotRecordedError(StoreError):
    """A review could not be persisted. The caller should retry."""

    def __init__(self, learner_id: str, card_id: str, cause: Exception | None = None):
        self.learner_id = learner_id
        self.card_id = card_id
        self.cause = cause
        super().__init__(f"Review for card {card_id} was not recorded: {cause}")


class GenerationError(AdaptiveReviewError):
    """The external content generator failed or timed out."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
