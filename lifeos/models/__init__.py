"""SQLAlchemy ORM models for the learning module."""

from lifeos.models.base import Base
from lifeos.models.card_progress import CardLearningProgress
from lifeos.models.flashcard import Flashcard
from lifeos.models.project_member import ProjectMember

__all__ = ["Base", "CardLearningProgress", "Flashcard", "ProjectMember"]
