"""SM-2 review scheduler.

Computes the next learning state of a flashcard from its current state, a
learner rating and the review time. The function is pure: the caller injects
``now`` and persists the result.

Key concepts:
- Repetitions: consecutive correct reviews since the last lapse.
- Interval: days until the card is due again.
- Ease factor: multiplier controlling how fast intervals grow (floor 1.3).
- Rating: 0=Again, 1=Hard, 2=Good, 3=Easy. Anything below Good is a lapse.

Reference: https://super-memory.com/english/ol/sm2.htm
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import IntEnum, StrEnum

from lifeos.errors import InvalidArgumentError


class Rating(IntEnum):
    """Learner self-assessment, ordered worst to best."""

    AGAIN = 0
    HARD = 1
    GOOD = 2
    EASY = 3


MIN_RATING = Rating.AGAIN
MAX_RATING = Rating.EASY
CORRECT_THRESHOLD = Rating.GOOD  # ratings below this are lapses

DEFAULT_EASE_FACTOR = 2.5
MIN_EASE_FACTOR = 1.3
LAPSE_EASE_PENALTY = 0.2

FIRST_INTERVAL_DAYS = 1
SECOND_INTERVAL_DAYS = 6
MAX_INTERVAL_DAYS = 36500  # about a century

# Stage thresholds on the resulting interval
REVIEW_INTERVAL_DAYS = 6
MASTERED_INTERVAL_DAYS = 21


class LearningStage(StrEnum):
    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    MASTERED = "mastered"


@dataclass(frozen=True)
class Unreviewed:
    """A card the learner has never reviewed."""


UNREVIEWED = Unreviewed()


@dataclass(frozen=True)
class Reviewed:
    """Scheduling state of a card after at least one review."""

    repetitions: int
    interval_days: int
    ease_factor: float
    next_review_on: date
    last_reviewed_at: datetime
    total_reviews: int
    total_correct: int

    @property
    def learning_stage(self) -> LearningStage:
        return classify(self.repetitions, self.interval_days)


CardLearningState = Unreviewed | Reviewed


@dataclass(frozen=True)
class ReviewSummary:
    """Human-readable outcome of a review, for display only."""

    rating: Rating
    interval_days: int
    ease_factor: float
    repetitions: int
    message: str


def validate_rating(value: object) -> Rating:
    """Return ``value`` as a Rating or raise InvalidArgumentError.

    Out-of-range values are rejected rather than clamped.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgumentError(
            f"rating must be an integer in {int(MIN_RATING)}..{int(MAX_RATING)}, got {value!r}"
        )
    if not MIN_RATING <= value <= MAX_RATING:
        raise InvalidArgumentError(
            f"rating must be in {int(MIN_RATING)}..{int(MAX_RATING)}, got {value}"
        )
    return Rating(value)


def validate_state(state: CardLearningState) -> None:
    """Raise InvalidArgumentError if a stored state breaks the scheduling invariants."""
    if isinstance(state, Unreviewed):
        return
    if not isinstance(state, Reviewed):
        raise InvalidArgumentError(f"unsupported card state: {state!r}")
    if state.repetitions < 0:
        raise InvalidArgumentError(f"repetitions must be >= 0, got {state.repetitions}")
    if state.interval_days < 1:
        raise InvalidArgumentError(f"interval_days must be >= 1, got {state.interval_days}")
    if not math.isfinite(state.ease_factor) or state.ease_factor < MIN_EASE_FACTOR:
        raise InvalidArgumentError(
            f"ease_factor must be >= {MIN_EASE_FACTOR}, got {state.ease_factor}"
        )
    if state.total_correct < 0 or state.total_reviews < state.total_correct:
        raise InvalidArgumentError(
            f"expected total_reviews >= total_correct >= 0, "
            f"got {state.total_reviews} and {state.total_correct}"
        )


def classify(repetitions: int, interval_days: int) -> LearningStage:
    """Classify a reviewed card by its repetition streak and interval."""
    if repetitions == 0:
        return LearningStage.LEARNING
    if interval_days >= MASTERED_INTERVAL_DAYS:
        return LearningStage.MASTERED
    if interval_days >= REVIEW_INTERVAL_DAYS:
        return LearningStage.REVIEW
    return LearningStage.LEARNING


def stage_of(state: CardLearningState) -> LearningStage:
    match state:
        case Reviewed():
            return state.learning_stage
        case _:
            return LearningStage.NEW


def is_due(state: CardLearningState, today: date) -> bool:
    """Return True if the card may be reviewed on ``today`` (inclusive).

    Cards that were never reviewed are always due.
    """
    if isinstance(today, datetime):
        today = today.date()
    match state:
        case Reviewed(next_review_on=next_review_on):
            return next_review_on <= today
        case _:
            return True


def review(state: CardLearningState, rating: int, now: datetime) -> Reviewed:
    """Apply a rating to a card state and return the next state.

    Args:
        state: Current state (``UNREVIEWED`` for a first review).
        rating: Review rating, 0..3.
        now: Review time; also the base for the next review date.

    Returns:
        A new Reviewed state. The input is never modified.

    Raises:
        InvalidArgumentError: If the rating or the state is invalid.
    """
    rating = validate_rating(rating)
    validate_state(state)

    match state:
        case Reviewed():
            repetitions = state.repetitions
            interval = state.interval_days
            ease = state.ease_factor
            total_reviews = state.total_reviews
            total_correct = state.total_correct
        case _:
            repetitions, interval, ease = 0, FIRST_INTERVAL_DAYS, DEFAULT_EASE_FACTOR
            total_reviews = total_correct = 0

    correct = rating >= CORRECT_THRESHOLD
    if correct:
        new_repetitions = repetitions + 1
        new_interval = _next_interval(new_repetitions, interval, ease)
        new_ease = _ease_after_success(ease, rating)
    else:
        new_repetitions = 0
        new_interval = FIRST_INTERVAL_DAYS
        new_ease = _clamp_ease(ease - LAPSE_EASE_PENALTY)

    return Reviewed(
        repetitions=new_repetitions,
        interval_days=new_interval,
        ease_factor=new_ease,
        next_review_on=(now + timedelta(days=new_interval)).date(),
        last_reviewed_at=now,
        total_reviews=total_reviews + 1,
        total_correct=total_correct + (1 if correct else 0),
    )


def summarize(rating: int, state: Reviewed) -> ReviewSummary:
    days = state.interval_days
    return ReviewSummary(
        rating=Rating(rating),
        interval_days=days,
        ease_factor=state.ease_factor,
        repetitions=state.repetitions,
        message=f"Card reviewed! Next review in {days} day{'' if days == 1 else 's'}",
    )


def _next_interval(repetitions: int, previous_interval: int, previous_ease: float) -> int:
    """Interval for the ``repetitions``-th consecutive success."""
    if repetitions == 1:
        return FIRST_INTERVAL_DAYS
    if repetitions == 2:
        return SECOND_INTERVAL_DAYS
    # Decimal keeps x.5 products exact so ties always round up
    product = Decimal(previous_interval) * Decimal(str(previous_ease))
    interval = int(product.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return min(MAX_INTERVAL_DAYS, max(1, interval))


def _ease_after_success(ease: float, rating: Rating) -> float:
    """SM-2 ease update: EF' = EF + (0.1 - d * (0.08 + d * 0.02)), d = max - rating."""
    shortfall = MAX_RATING - rating
    return _clamp_ease(ease + (0.1 - shortfall * (0.08 + shortfall * 0.02)))


def _clamp_ease(ease: float) -> float:
    # Coefficients are hundredths, so two decimals are exact and stop float drift.
    return max(MIN_EASE_FACTOR, round(ease, 2))
