"""Review submission: the boundary between the scheduler and its collaborators.

Loads a card's state, checks project membership, runs the scheduler and writes
the result back with an optimistic version check. A conflicting write is
retried from a fresh read.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from lifeos.config import settings, utcnow
from lifeos.errors import AccessDeniedError, ConflictError
from lifeos.srs import sm2
from lifeos.srs.access import AccessControl
from lifeos.srs.stats import DeckStats, aggregate, due_only
from lifeos.srs.store import CardStore, StoredCard

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewOutcome:
    """The stored state after a review, plus its display summary."""

    card_id: int
    state: sm2.Reviewed
    version: int
    summary: sm2.ReviewSummary


@dataclass(frozen=True)
class CardView:
    """A card's scheduling state as seen by one learner on one day."""

    card_id: int
    project_id: int
    state: sm2.CardLearningState
    stage: sm2.LearningStage
    due: bool


class ReviewService:
    """Submit reviews and read scheduling state on behalf of a learner."""

    def __init__(
        self,
        store: CardStore,
        access: AccessControl,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.access = access
        self.clock = clock

    async def submit_review(self, learner_id: int, card_id: int, rating: int) -> ReviewOutcome:
        """Record a review of ``card_id`` by ``learner_id``.

        Raises:
            InvalidArgumentError: If the rating is out of range or the stored
                state is malformed.
            NotFoundError: If the card does not exist.
            AccessDeniedError: If the learner is not a member of the card's project.
            ConflictError: If every attempt lost a race with another writer.
        """
        rating = sm2.validate_rating(rating)
        return await self._review_once(learner_id, card_id, rating)

    @retry(
        retry=retry_if_exception_type(ConflictError),
        stop=stop_after_attempt(settings.review_max_attempts),
        wait=wait_exponential(multiplier=settings.review_retry_wait_seconds, max=1),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _review_once(
        self, learner_id: int, card_id: int, rating: sm2.Rating
    ) -> ReviewOutcome:
        stored = await self.store.get(learner_id, card_id)
        await self._check_access(learner_id, stored.project_id)

        new_state = sm2.review(stored.state, rating, self.clock())
        logger.debug(
            "Card %d: %r -> %r (rating %d)", card_id, stored.state, new_state, rating
        )
        version = await self.store.put(learner_id, card_id, new_state, stored.version)

        logger.info(
            "Learner %d reviewed card %d: rating=%d interval=%dd ease=%.2f reps=%d",
            learner_id,
            card_id,
            rating,
            new_state.interval_days,
            new_state.ease_factor,
            new_state.repetitions,
        )
        return ReviewOutcome(
            card_id=card_id,
            state=new_state,
            version=version,
            summary=sm2.summarize(rating, new_state),
        )

    async def list_cards(
        self,
        learner_id: int,
        project_id: int,
        due: bool = False,
        today: date | None = None,
    ) -> list[CardView]:
        """List the project's active cards, optionally only those due ``today``."""
        await self._check_access(learner_id, project_id)
        today = today or self.clock().date()
        cards = await self.store.list_for_project(learner_id, project_id)
        if due:
            cards = due_only(cards, today, key=lambda card: card.state)
        return [_view(card, today) for card in cards]

    async def stats(
        self,
        learner_id: int,
        project_id: int,
        today: date | None = None,
    ) -> DeckStats:
        await self._check_access(learner_id, project_id)
        today = today or self.clock().date()
        cards = await self.store.list_for_project(learner_id, project_id)
        return aggregate((card.state for card in cards), today)

    async def deck_stats(
        self,
        learner_id: int,
        project_id: int,
        today: date | None = None,
    ) -> dict[str, DeckStats]:
        """Return stats for each deck in the project, keyed by deck name."""
        await self._check_access(learner_id, project_id)
        today = today or self.clock().date()
        cards = await self.store.list_for_project(learner_id, project_id)
        decks: dict[str, list[sm2.CardLearningState]] = defaultdict(list)
        for card in cards:
            decks[card.deck_name].append(card.state)
        return {name: aggregate(states, today) for name, states in sorted(decks.items())}

    async def _check_access(self, learner_id: int, project_id: int) -> None:
        if not await self.access.has_access(learner_id, project_id):
            logger.warning("Access denied: learner %d, project %d", learner_id, project_id)
            raise AccessDeniedError(f"Learner {learner_id} has no access to project {project_id}")


def _view(card: StoredCard, today: date) -> CardView:
    return CardView(
        card_id=card.card_id,
        project_id=card.project_id,
        state=card.state,
        stage=sm2.stage_of(card.state),
        due=sm2.is_due(card.state, today),
    )
