"""Card stores: load and persist per-learner scheduling state.

Every store guards writes with a version number. A write carries the version
it read; if another writer got there first the store raises ConflictError and
the caller re-reads and recomputes.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import Select, and_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lifeos.database import async_session
from lifeos.errors import ConflictError, NotFoundError
from lifeos.models.card_progress import CardLearningProgress
from lifeos.models.flashcard import DEFAULT_DECK, Flashcard
from lifeos.srs.sm2 import UNREVIEWED, CardLearningState, Reviewed


@dataclass(frozen=True)
class StoredCard:
    """A card's owner project and the learner's state for it."""

    card_id: int
    project_id: int
    state: CardLearningState
    version: int  # 0 until the first review is stored
    deck_name: str = DEFAULT_DECK


class CardStore(Protocol):
    async def get(self, learner_id: int, card_id: int) -> StoredCard: ...

    async def put(
        self,
        learner_id: int,
        card_id: int,
        state: Reviewed,
        expected_version: int,
    ) -> int: ...

    async def list_for_project(self, learner_id: int, project_id: int) -> list[StoredCard]: ...


class SqlCardStore:
    """Card store backed by the ``card_learning_progress`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = async_session) -> None:
        self._session_factory = session_factory

    async def get(self, learner_id: int, card_id: int) -> StoredCard:
        stmt = _cards_with_progress(learner_id).where(Flashcard.id == card_id)
        async with self._session_factory() as db:
            row = (await db.execute(stmt)).first()
        if row is None:
            raise NotFoundError(f"Flashcard {card_id} not found")
        return _to_stored(*row)

    async def put(
        self,
        learner_id: int,
        card_id: int,
        state: Reviewed,
        expected_version: int,
    ) -> int:
        """Write ``state`` if the stored version still equals ``expected_version``.

        Returns:
            The new version.

        Raises:
            ConflictError: If the row changed (or was created) since it was read.
        """
        values = _progress_values(state)
        async with self._session_factory() as db:
            if expected_version == 0:
                db.add(
                    CardLearningProgress(
                        card_id=card_id, learner_id=learner_id, version=1, **values
                    )
                )
                try:
                    await db.commit()
                except IntegrityError as exc:
                    await db.rollback()
                    raise ConflictError(
                        f"Progress for card {card_id} was created concurrently"
                    ) from exc
                return 1

            stmt = (
                update(CardLearningProgress)
                .where(
                    and_(
                        CardLearningProgress.card_id == card_id,
                        CardLearningProgress.learner_id == learner_id,
                        CardLearningProgress.version == expected_version,
                    )
                )
                .values(version=expected_version + 1, **values)
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(stmt)
            if result.rowcount != 1:
                await db.rollback()
                raise ConflictError(
                    f"Progress for card {card_id} changed since version {expected_version}"
                )
            await db.commit()
        return expected_version + 1

    async def list_for_project(self, learner_id: int, project_id: int) -> list[StoredCard]:
        stmt = (
            _cards_with_progress(learner_id)
            .where(Flashcard.project_id == project_id)
            .order_by(Flashcard.id.asc())
        )
        async with self._session_factory() as db:
            rows = (await db.execute(stmt)).all()
        return [_to_stored(card, progress) for card, progress in rows]


class InMemoryCardStore:
    """Process-local card store.

    Writes for one (learner, card) pair are serialized with a per-key lock,
    and still checked against the expected version.
    """

    def __init__(self) -> None:
        self._projects: dict[int, int] = {}  # card_id -> project_id
        self._decks: dict[int, str] = {}
        self._progress: dict[tuple[int, int], tuple[Reviewed, int]] = {}
        self._locks: defaultdict[tuple[int, int], asyncio.Lock] = defaultdict(asyncio.Lock)

    def add_card(self, card_id: int, project_id: int, deck_name: str = DEFAULT_DECK) -> None:
        self._projects[card_id] = project_id
        self._decks[card_id] = deck_name

    def remove_card(self, card_id: int) -> None:
        """Delete a card together with every learner's progress on it."""
        self._projects.pop(card_id, None)
        self._decks.pop(card_id, None)
        for key in [key for key in self._progress if key[1] == card_id]:
            del self._progress[key]
        for key in [key for key in self._locks if key[1] == card_id]:
            del self._locks[key]

    @property
    def lock_count(self) -> int:
        return len(self._locks)

    async def get(self, learner_id: int, card_id: int) -> StoredCard:
        if card_id not in self._projects:
            raise NotFoundError(f"Flashcard {card_id} not found")
        return self._stored(learner_id, card_id)

    async def put(
        self,
        learner_id: int,
        card_id: int,
        state: Reviewed,
        expected_version: int,
    ) -> int:
        if card_id not in self._projects:
            raise NotFoundError(f"Flashcard {card_id} not found")
        key = (learner_id, card_id)
        async with self._locks[key]:
            _, version = self._progress.get(key, (None, 0))
            if version != expected_version:
                raise ConflictError(
                    f"Progress for card {card_id} is at version {version}, expected {expected_version}"
                )
            self._progress[key] = (state, version + 1)
        return version + 1

    async def list_for_project(self, learner_id: int, project_id: int) -> list[StoredCard]:
        return [
            self._stored(learner_id, card_id)
            for card_id, owner in sorted(self._projects.items())
            if owner == project_id
        ]

    def _stored(self, learner_id: int, card_id: int) -> StoredCard:
        state, version = self._progress.get((learner_id, card_id), (UNREVIEWED, 0))
        return StoredCard(
            card_id=card_id,
            project_id=self._projects[card_id],
            state=state,
            version=version,
            deck_name=self._decks[card_id],
        )


def _cards_with_progress(learner_id: int) -> Select:
    """Select active flashcards with the learner's progress row, if any."""
    return (
        select(Flashcard, CardLearningProgress)
        .outerjoin(
            CardLearningProgress,
            and_(
                CardLearningProgress.card_id == Flashcard.id,
                CardLearningProgress.learner_id == learner_id,
            ),
        )
        .where(Flashcard.is_active.is_(True))
    )


def _to_stored(card: Flashcard, progress: CardLearningProgress | None) -> StoredCard:
    if progress is None:
        return StoredCard(
            card_id=card.id,
            project_id=card.project_id,
            state=UNREVIEWED,
            version=0,
            deck_name=card.deck_name,
        )
    state = Reviewed(
        repetitions=progress.repetitions,
        interval_days=progress.interval_days,
        ease_factor=float(progress.ease_factor),
        next_review_on=progress.next_review_date,
        last_reviewed_at=progress.last_reviewed_at,
        total_reviews=progress.total_reviews,
        total_correct=progress.total_correct,
    )
    return StoredCard(
        card_id=card.id,
        project_id=card.project_id,
        state=state,
        version=progress.version,
        deck_name=card.deck_name,
    )


def _progress_values(state: Reviewed) -> dict:
    return {
        "learning_stage": state.learning_stage.value,
        "repetitions": state.repetitions,
        "interval_days": state.interval_days,
        "ease_factor": state.ease_factor,
        "next_review_date": state.next_review_on,
        "last_reviewed_at": state.last_reviewed_at,
        "total_reviews": state.total_reviews,
        "total_correct": state.total_correct,
    }
