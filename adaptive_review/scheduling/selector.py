"""
Session selection: rank candidate cards and cut the study queue.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from loguru import logger

from adaptive_review.models import Card, ProgressRecord, ReviewEvent, utc_now
from adaptive_review.scheduling.interval import SchedulerConfig
from adaptive_review.scheduling.priority import CardScore, PriorityScorer, group_by_card

DEFAULT_SESSION_SIZE = 20


def rank_cards(
    cards: Sequence[Card],
    progress: Sequence[ProgressRecord],
    recent_reviews: Sequence[ReviewEvent],
    now: datetime | None = None,
    config: SchedulerConfig | None = None,
) -> list[CardScore]:
    """
    Score every distinct candidate and sort by priority, highest first.

    Ties keep the input order (sorted() is stable). Duplicate card ids are
    dropped, first occurrence wins.
    """
    now = now or utc_now()
    scorer = PriorityScorer(cards, recent_reviews, now=now, config=config)
    progress_by_card = {p.card_id: p for p in progress}
    reviews_by_card = group_by_card(recent_reviews)

    seen: set[str] = set()
    scored: list[CardScore] = []
    for card in cards:
        if card.id in seen:
            continue
        seen.add(card.id)
        scored.append(
            scorer.score(card, progress_by_card.get(card.id), reviews_by_card.get(card.id, []))
        )

    return sorted(scored, key=lambda s: s.priority, reverse=True)


def select_session(
    cards: Sequence[Card],
    progress: Sequence[ProgressRecord],
    recent_reviews: Sequence[ReviewEvent],
    max_size: int = DEFAULT_SESSION_SIZE,
    now: datetime | None = None,
    config: SchedulerConfig | None = None,
) -> list[Card]:
    """
    Build an ordered study queue.

    Args:
        cards: Candidate cards
        progress: Learner's progress records (records for other cards are ignored)
        recent_reviews: Learner's recent reviews across the candidates
        max_size: Maximum queue length
        now: Reference time
        config: Scoring tunables

    Returns:
        At most ``max_size`` cards, highest priority first
    """
    if max_size < 0:
        raise ValueError(f"max_size must be >= 0, got {max_size}")

    ranked = rank_cards(cards, progress, recent_reviews, now=now, config=config)
    queue = [score.card for score in ranked[:max_size]]

    logger.debug(f"Selected {len(queue)} of {len(ranked)} candidate cards")
    return queue
