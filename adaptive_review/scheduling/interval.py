"""
Ease-factor / interval model for spaced repetition.

Each card carries:
- Ease Factor (EF): How fast intervals grow (2.5 default, bounded to [1.3, 2.5])
- Interval: Whole days until the next review
- Due date: Last review + interval

Confidence Scale (self-reported):
1 - Guessed
2 - Unsure
3 - Neutral (no ease change)
4 - Confident
5 - Certain

The Leitner box surface is derived from the ease model and never stored.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from adaptive_review.models import utc_now

MIN_EASE = 1.3
MAX_EASE = 2.5
DEFAULT_EASE = 2.5
FAILED_EASE_PENALTY = 0.2
CONFIDENCE_EASE_STEP = 0.1
NEUTRAL_CONFIDENCE = 3
GRADUATING_INTERVAL = 6

BOX_INTERVALS_DAYS = (0, 1, 3, 7, 14, 30)


@dataclass(frozen=True)
class SchedulerConfig:
    """Tunables shared by the interval model and the priority scorer."""

    recent_review_limit: int = 10
    damper_hours: float = 4.0
    mastery_interval_days: int = 21
    mastery_min_confidence: int = 4


@dataclass(frozen=True)
class ScheduleResult:
    """Next schedule for a card after one answer."""

    ease_factor: float
    interval_days: int
    due_at: datetime


def round_half_up(value: float, digits: int = 0) -> float:
    """Round like Math.round: halves go up, not to even."""
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale


def clamp_ease(ease_factor: float) -> float:
    return max(MIN_EASE, min(MAX_EASE, ease_factor))


def next_schedule(
    correct: bool,
    confidence: int,
    ease_factor: float = DEFAULT_EASE,
    interval_days: int = 1,
    now: datetime | None = None,
) -> ScheduleResult:
    """
    Calculate the next ease factor, interval and due date.

    Args:
        correct: Whether the learner answered correctly
        confidence: Self-reported confidence (1-5)
        ease_factor: Current ease factor (clamped into [1.3, 2.5])
        interval_days: Current interval in days (>= 1)
        now: Reference time (defaults to current UTC time)

    Returns:
        ScheduleResult with the rounded ease, new interval and due date

    Raises:
        ValueError: If confidence is outside 1-5 or interval_days < 1
    """
    if not 1 <= confidence <= 5:
        raise ValueError(f"confidence must be between 1 and 5, got {confidence}")
    if interval_days < 1:
        raise ValueError(f"interval_days must be >= 1, got {interval_days}")

    now = now or utc_now()
    ease = clamp_ease(ease_factor)

    if correct:
        if interval_days == 1:
            new_interval = GRADUATING_INTERVAL
        else:
            new_interval = int(round_half_up(interval_days * ease))
        new_ease = clamp_ease(ease + (confidence - NEUTRAL_CONFIDENCE) * CONFIDENCE_EASE_STEP)
    else:
        new_interval = 1
        new_ease = max(MIN_EASE, ease - FAILED_EASE_PENALTY)

    return ScheduleResult(
        ease_factor=round_half_up(new_ease, 2),
        interval_days=new_interval,
        due_at=now + timedelta(days=new_interval),
    )


def is_mastered(
    correct: bool,
    confidence: int,
    interval_days: int,
    config: SchedulerConfig | None = None,
) -> bool:
    """A confident correct answer that pushes the interval past the threshold retires the card."""
    config = config or SchedulerConfig()
    return (
        correct
        and confidence >= config.mastery_min_confidence
        and interval_days >= config.mastery_interval_days
    )


def box_for_interval(interval_days: int) -> int:
    """Highest Leitner box whose fixed interval does not exceed ``interval_days``."""
    box = 0
    for index, days in enumerate(BOX_INTERVALS_DAYS):
        if days <= interval_days:
            box = index
    return box
