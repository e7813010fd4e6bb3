"""
Study workflows on top of the scheduling core and the progress store.
"""

from .study_service import ReviewOutcome, ReviewSubmission, StudyService

__all__ = ["ReviewOutcome", "ReviewSubmission", "StudyService"]
