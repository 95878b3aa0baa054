"""Per-learner SM-2 scheduling state for a flashcard."""

from datetime import date, datetime

from sqlalchemy import Date, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lifeos.models.base import Base, TimestampMixin
from lifeos.srs.sm2 import DEFAULT_EASE_FACTOR


class CardLearningProgress(Base, TimestampMixin):
    """One row per (learner, card); absent until the learner's first review."""

    __tablename__ = "card_learning_progress"
    __table_args__ = (UniqueConstraint("card_id", "learner_id", name="uq_progress_card_learner"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    card_id: Mapped[int] = mapped_column(
        ForeignKey("flashcards.id", ondelete="CASCADE"), nullable=False
    )
    learner_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    learning_stage: Mapped[str] = mapped_column(String(20), nullable=False)  # learning, review, mastered
    repetitions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    interval_days: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    ease_factor: Mapped[float] = mapped_column(Float, nullable=False, default=DEFAULT_EASE_FACTOR)
    next_review_date: Mapped[date] = mapped_column(Date, nullable=False)
    last_reviewed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    total_reviews: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_correct: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)  # optimistic lock

    card: Mapped["Flashcard"] = relationship(back_populates="progress")  # type: ignore[name-defined] # noqa: F821
