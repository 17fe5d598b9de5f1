from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.document_control.application.ports import UserDirectory
from app.document_control.domain.models import UserSummary
from database import User


def _to_summary(user: User) -> UserSummary:
    return UserSummary(id=user.id, name=user.name, role=user.role, email=user.email)


class SqlAlchemyUserDirectory(UserDirectory):
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_user(self, user_id: str) -> Optional[UserSummary]:
        result = await self._session.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        return _to_summary(user) if user is not None else None

    async def list_users_with_roles(self, roles: Iterable[str]) -> Sequence[UserSummary]:
        result = await self._session.execute(
            select(User).where(User.role.in_(list(roles)), User.is_active.is_(True))
        )
        return [_to_summary(user) for user in result.scalars().all()]

    async def register(self, user: UserSummary) -> None:
        """Insert or refresh the directory row for an authenticated identity."""
        await self._session.execute(
            insert(User)
            .values(id=user.id, name=user.name, role=user.role, email=user.email, is_active=True)
            .on_conflict_do_update(
                index_elements=[User.id],
                set_={"name": user.name, "role": user.role, "email": user.email},
            )
        )
        await self._session.commit()
