from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.document_control.domain.errors import SequenceConflict


class SqlAlchemyUnitOfWork:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()

    async def _flush_unique(self, message: str, **context: Any) -> None:
        """Flush pending inserts so unique constraints fire here, not at commit."""
        try:
            await self._session.flush()
        except IntegrityError as exc:
            await self._session.rollback()
            raise SequenceConflict(message, **context) from exc
