"""Project membership checks for card access."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lifeos.database import async_session
from lifeos.models.project_member import ProjectMember


class AccessControl(Protocol):
    async def has_access(self, user_id: int, project_id: int) -> bool: ...


class SqlAccessControl:
    """Grants access to members listed in ``project_members``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = async_session) -> None:
        self._session_factory = session_factory

    async def has_access(self, user_id: int, project_id: int) -> bool:
        stmt = select(ProjectMember.id).where(
            and_(ProjectMember.project_id == project_id, ProjectMember.user_id == user_id)
        )
        async with self._session_factory() as db:
            return (await db.execute(stmt)).first() is not None


class StaticAccessControl:
    """Fixed set of (user_id, project_id) memberships."""

    def __init__(self, memberships: Iterable[tuple[int, int]] = ()) -> None:
        self._memberships = set(memberships)

    def grant(self, user_id: int, project_id: int) -> None:
        self._memberships.add((user_id, project_id))

    async def has_access(self, user_id: int, project_id: int) -> bool:
        return (user_id, project_id) in self._memberships
