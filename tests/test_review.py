"""Tests for review submission, card stores, and access control."""

from datetime import date, datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lifeos.config import settings
from lifeos.database import create_tables, make_engine
from lifeos.errors import AccessDeniedError, ConflictError, InvalidArgumentError, NotFoundError
from lifeos.models import CardLearningProgress, Flashcard, ProjectMember
from lifeos.srs.access import SqlAccessControl, StaticAccessControl
from lifeos.srs.review import ReviewService
from lifeos.srs.sm2 import UNREVIEWED, LearningStage, Rating, Reviewed, review
from lifeos.srs.store import InMemoryCardStore, SqlCardStore

NOW = datetime(2026, 3, 10, 9, 0)
LEARNER = 7
OTHER_LEARNER = 8
PROJECT = 1


class FixedClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: int) -> None:
        self.now += timedelta(days=days)


class RacingStore(InMemoryCardStore):
    """Lets another writer land a review just before each of our writes."""

    def __init__(self, races: int) -> None:
        super().__init__()
        self.races = races
        self.put_calls = 0

    async def put(self, learner_id, card_id, state, expected_version):  # type: ignore[no-untyped-def]
        self.put_calls += 1
        if self.races > 0:
            self.races -= 1
            current = await self.get(learner_id, card_id)
            rival = review(current.state, Rating.AGAIN, NOW)
            await super().put(learner_id, card_id, rival, current.version)
        return await super().put(learner_id, card_id, state, expected_version)


def _memory_service(store: InMemoryCardStore | None = None) -> tuple[ReviewService, InMemoryCardStore, FixedClock]:
    store = store or InMemoryCardStore()
    store.add_card(10, PROJECT)
    store.add_card(11, PROJECT)
    store.add_card(20, project_id=2)
    clock = FixedClock()
    service = ReviewService(store, StaticAccessControl({(LEARNER, PROJECT)}), clock=clock)
    return service, store, clock


# --- Review service (in-memory store) ---


class TestReviewService:
    @pytest.mark.asyncio
    async def test_first_review_creates_state(self) -> None:
        service, store, _ = _memory_service()
        outcome = await service.submit_review(LEARNER, 10, 3)
        assert outcome.version == 1
        assert outcome.state.repetitions == 1
        assert outcome.state.next_review_on == date(2026, 3, 11)
        assert outcome.summary.message == "Card reviewed! Next review in 1 day"
        stored = await store.get(LEARNER, 10)
        assert stored.state == outcome.state

    @pytest.mark.asyncio
    async def test_reviews_accumulate(self) -> None:
        service, _, clock = _memory_service()
        await service.submit_review(LEARNER, 10, Rating.EASY)
        clock.advance(1)
        outcome = await service.submit_review(LEARNER, 10, Rating.EASY)
        assert outcome.version == 2
        assert outcome.state.interval_days == 6
        assert outcome.state.last_reviewed_at == NOW + timedelta(days=1)
        assert outcome.summary.message.endswith("6 days")

    @pytest.mark.asyncio
    async def test_learners_are_independent(self) -> None:
        service, store, _ = _memory_service()
        await service.submit_review(LEARNER, 10, Rating.EASY)
        other = await store.get(OTHER_LEARNER, 10)
        assert other.state == UNREVIEWED

    @pytest.mark.asyncio
    async def test_invalid_rating_rejected_before_loading(self) -> None:
        service, store, _ = _memory_service()
        with pytest.raises(InvalidArgumentError):
            await service.submit_review(LEARNER, 999, 4)
        assert (await store.get(LEARNER, 10)).version == 0

    @pytest.mark.asyncio
    async def test_missing_card(self) -> None:
        service, _, _ = _memory_service()
        with pytest.raises(NotFoundError):
            await service.submit_review(LEARNER, 999, Rating.GOOD)

    @pytest.mark.asyncio
    async def test_access_denied(self) -> None:
        service, store, _ = _memory_service()
        with pytest.raises(AccessDeniedError):
            await service.submit_review(LEARNER, 20, Rating.GOOD)
        assert (await store.get(LEARNER, 20)).version == 0

    @pytest.mark.asyncio
    async def test_conflict_recomputes_from_fresh_state(self) -> None:
        service, store, _ = _memory_service(RacingStore(races=1))
        outcome = await service.submit_review(LEARNER, 10, Rating.GOOD)
        assert store.put_calls == 2
        # Built on top of the rival's lapse rather than overwriting it
        assert outcome.version == 2
        assert outcome.state.total_reviews == 2
        assert outcome.state.total_correct == 1
        assert outcome.state.ease_factor == 2.3

    @pytest.mark.asyncio
    async def test_conflict_gives_up(self) -> None:
        service, store, _ = _memory_service(RacingStore(races=100))
        with pytest.raises(ConflictError):
            await service.submit_review(LEARNER, 10, Rating.GOOD)
        assert store.put_calls == settings.review_max_attempts

    @pytest.mark.asyncio
    async def test_list_and_stats(self) -> None:
        service, _, clock = _memory_service()
        await service.submit_review(LEARNER, 10, Rating.EASY)

        cards = await service.list_cards(LEARNER, PROJECT)
        assert [card.card_id for card in cards] == [10, 11]
        assert cards[0].stage == LearningStage.LEARNING
        assert cards[1].stage == LearningStage.NEW

        due_today = await service.list_cards(LEARNER, PROJECT, due=True)
        assert [card.card_id for card in due_today] == [11]

        clock.advance(1)
        due_tomorrow = await service.list_cards(LEARNER, PROJECT, due=True)
        assert [card.card_id for card in due_tomorrow] == [10, 11]

        stats = await service.stats(LEARNER, PROJECT, today=NOW.date())
        assert (stats.total, stats.due, stats.new, stats.learning) == (2, 1, 1, 1)

    @pytest.mark.asyncio
    async def test_deck_stats(self) -> None:
        store = InMemoryCardStore()
        store.add_card(30, PROJECT, deck_name="Spanish")
        store.add_card(31, PROJECT, deck_name="Spanish")
        store.add_card(32, PROJECT, deck_name="Startups")
        service, _, _ = _memory_service(store)
        await service.submit_review(LEARNER, 30, Rating.EASY)

        decks = await service.deck_stats(LEARNER, PROJECT, today=NOW.date())
        assert list(decks) == ["General", "Spanish", "Startups"]
        assert (decks["Spanish"].total, decks["Spanish"].due) == (2, 1)
        assert (decks["Spanish"].new, decks["Spanish"].learning) == (1, 1)
        assert (decks["Startups"].total, decks["Startups"].new) == (1, 1)
        assert decks["General"].total == 2
        with pytest.raises(AccessDeniedError):
            await service.deck_stats(OTHER_LEARNER, PROJECT)

    @pytest.mark.asyncio
    async def test_remove_card_drops_its_locks(self) -> None:
        service, store, _ = _memory_service()
        await service.submit_review(LEARNER, 10, Rating.EASY)
        await service.submit_review(LEARNER, 11, Rating.EASY)
        assert store.lock_count == 2
        store.remove_card(10)
        assert store.lock_count == 1

    @pytest.mark.asyncio
    async def test_stats_require_access(self) -> None:
        service, _, _ = _memory_service()
        with pytest.raises(AccessDeniedError):
            await service.stats(LEARNER, 2)

    @pytest.mark.asyncio
    async def test_removed_card_takes_progress_with_it(self) -> None:
        service, store, _ = _memory_service()
        await service.submit_review(LEARNER, 10, Rating.EASY)
        store.remove_card(10)
        with pytest.raises(NotFoundError):
            await store.get(LEARNER, 10)
        store.add_card(10, PROJECT)
        assert (await store.get(LEARNER, 10)).state == UNREVIEWED


# --- SQL store ---


@pytest_asyncio.fixture
async def sessions(tmp_path):  # type: ignore[no-untyped-def]
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_tables(engine)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as db:
        db.add_all(
            [
                Flashcard(id=10, project_id=PROJECT, front="What is SM-2?", back="A scheduler"),
                Flashcard(id=11, project_id=PROJECT, deck_name="Algorithms", front="Ease floor?", back="1.3"),
                Flashcard(id=12, project_id=PROJECT, front="Archived", back="-", is_active=False),
                ProjectMember(project_id=PROJECT, user_id=LEARNER, role="owner"),
            ]
        )
        await db.commit()
    yield factory
    await engine.dispose()


class TestSqlCardStore:
    @pytest.mark.asyncio
    async def test_round_trip(self, sessions) -> None:  # type: ignore[no-untyped-def]
        clock = FixedClock()
        service = ReviewService(SqlCardStore(sessions), SqlAccessControl(sessions), clock=clock)
        await service.submit_review(LEARNER, 10, Rating.EASY)
        clock.advance(1)
        outcome = await service.submit_review(LEARNER, 10, Rating.EASY)

        stored = await SqlCardStore(sessions).get(LEARNER, 10)
        assert stored.version == 2
        assert stored.project_id == PROJECT
        assert stored.state == outcome.state

        async with sessions() as db:
            row = (await db.execute(select(CardLearningProgress))).scalar_one()
        assert row.learning_stage == "review"
        assert row.interval_days == 6

    @pytest.mark.asyncio
    async def test_unreviewed_card(self, sessions) -> None:  # type: ignore[no-untyped-def]
        stored = await SqlCardStore(sessions).get(LEARNER, 11)
        assert stored.state == UNREVIEWED
        assert stored.version == 0

    @pytest.mark.asyncio
    async def test_inactive_and_missing_cards(self, sessions) -> None:  # type: ignore[no-untyped-def]
        store = SqlCardStore(sessions)
        with pytest.raises(NotFoundError):
            await store.get(LEARNER, 12)
        with pytest.raises(NotFoundError):
            await store.get(LEARNER, 999)

    @pytest.mark.asyncio
    async def test_stale_update_conflicts(self, sessions) -> None:  # type: ignore[no-untyped-def]
        store = SqlCardStore(sessions)
        state = review(UNREVIEWED, Rating.GOOD, NOW)
        assert await store.put(LEARNER, 10, state, expected_version=0) == 1
        assert await store.put(LEARNER, 10, review(state, Rating.GOOD, NOW), expected_version=1) == 2
        with pytest.raises(ConflictError):
            await store.put(LEARNER, 10, review(state, Rating.AGAIN, NOW), expected_version=1)
        stored = await store.get(LEARNER, 10)
        assert isinstance(stored.state, Reviewed)
        assert stored.state.repetitions == 2

    @pytest.mark.asyncio
    async def test_duplicate_first_write_conflicts(self, sessions) -> None:  # type: ignore[no-untyped-def]
        store = SqlCardStore(sessions)
        state = review(UNREVIEWED, Rating.GOOD, NOW)
        await store.put(LEARNER, 10, state, expected_version=0)
        with pytest.raises(ConflictError):
            await store.put(LEARNER, 10, state, expected_version=0)

    @pytest.mark.asyncio
    async def test_progress_deleted_with_card(self, sessions) -> None:  # type: ignore[no-untyped-def]
        store = SqlCardStore(sessions)
        await store.put(LEARNER, 10, review(UNREVIEWED, Rating.GOOD, NOW), expected_version=0)
        async with sessions() as db:
            await db.execute(delete(Flashcard).where(Flashcard.id == 10))
            await db.commit()
            remaining = (await db.execute(select(func.count(CardLearningProgress.id)))).scalar()
        assert remaining == 0

    @pytest.mark.asyncio
    async def test_list_for_project_skips_inactive(self, sessions) -> None:  # type: ignore[no-untyped-def]
        cards = await SqlCardStore(sessions).list_for_project(LEARNER, PROJECT)
        assert [card.card_id for card in cards] == [10, 11]

    @pytest.mark.asyncio
    async def test_deck_stats(self, sessions) -> None:  # type: ignore[no-untyped-def]
        service = ReviewService(SqlCardStore(sessions), SqlAccessControl(sessions), clock=FixedClock())
        await service.submit_review(LEARNER, 10, Rating.EASY)
        decks = await service.deck_stats(LEARNER, PROJECT)
        assert list(decks) == ["Algorithms", "General"]
        assert (decks["General"].total, decks["General"].learning, decks["General"].due) == (1, 1, 0)
        assert (decks["Algorithms"].total, decks["Algorithms"].new, decks["Algorithms"].due) == (1, 1, 1)

    @pytest.mark.asyncio
    async def test_membership(self, sessions) -> None:  # type: ignore[no-untyped-def]
        access = SqlAccessControl(sessions)
        assert await access.has_access(LEARNER, PROJECT)
        assert not await access.has_access(OTHER_LEARNER, PROJECT)
        service = ReviewService(SqlCardStore(sessions), access, clock=FixedClock())
        with pytest.raises(AccessDeniedError):
            await service.submit_review(OTHER_LEARNER, 10, Rating.GOOD)
