from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lifeos.models.base import Base, TimestampMixin

DEFAULT_DECK = "General"


class Flashcard(Base, TimestampMixin):
    __tablename__ = "flashcards"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    deck_name: Mapped[str] = mapped_column(String(200), nullable=False, default=DEFAULT_DECK)
    front: Mapped[str] = mapped_column(String(1000), nullable=False)
    back: Mapped[str] = mapped_column(String(2000), nullable=False)
    hint: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    progress: Mapped[list["CardLearningProgress"]] = relationship(  # type: ignore[name-defined] # noqa: F821
        back_populates="card",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
