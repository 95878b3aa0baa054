"""Deck-level statistics over card learning states."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date
from typing import TypeVar

from lifeos.srs.sm2 import CardLearningState, LearningStage, is_due, stage_of

T = TypeVar("T")


@dataclass
class DeckStats:
    """Counts of cards by schedulability and learning stage."""

    total: int = 0
    due: int = 0
    new: int = 0
    learning: int = 0
    review: int = 0
    mature: int = 0  # mastered


def aggregate(states: Iterable[CardLearningState], today: date) -> DeckStats:
    """Count cards by stage, and those due on or before ``today``.

    Uses the scheduler's own predicates so the due count always matches
    what a review session would accept.
    """
    stats = DeckStats()
    for state in states:
        stats.total += 1
        if is_due(state, today):
            stats.due += 1
        stage = stage_of(state)
        if stage is LearningStage.NEW:
            stats.new += 1
        elif stage is LearningStage.LEARNING:
            stats.learning += 1
        elif stage is LearningStage.REVIEW:
            stats.review += 1
        else:
            stats.mature += 1
    return stats


def due_only(
    items: Iterable[T],
    today: date,
    key: Callable[[T], CardLearningState],
) -> list[T]:
    """Filter ``items`` down to those whose state is due on ``today``."""
    return [item for item in items if is_due(key(item), today)]
