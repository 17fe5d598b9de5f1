from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert

from app.document_control.application.ports import SerialNumberRepository, utc_now
from app.document_control.domain.models import SerialNumberLedgerEntry, SerialNumberReservation
from app.document_control.infrastructure.session import SqlAlchemyUnitOfWork
from database import (
    SerialNumberCounter,
    SerialNumberLedger,
    SerialNumberReservation as SerialNumberReservationModel,
)


class SqlAlchemySerialNumberRepository(SqlAlchemyUnitOfWork, SerialNumberRepository):
    async def max_sequence_number(self, category: str) -> Optional[int]:
        result = await self._session.execute(
            select(func.max(SerialNumberLedger.sequence_number)).where(
                SerialNumberLedger.category == category
            )
        )
        return result.scalar()

    async def increment_counter(self, scope: str, floor: int) -> int:
        now = utc_now()
        await self._session.execute(
            insert(SerialNumberCounter)
            .values(scope=scope, last_value=floor - 1, updated_at=now)
            .on_conflict_do_nothing(index_elements=[SerialNumberCounter.scope])
        )
        # single statement, so concurrent callers serialize on the row lock
        result = await self._session.execute(
            update(SerialNumberCounter)
            .where(SerialNumberCounter.scope == scope)
            .values(
                last_value=func.greatest(SerialNumberCounter.last_value, floor - 1) + 1,
                updated_at=now,
            )
            .returning(SerialNumberCounter.last_value)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one()

    async def peek_counter(self, scope: str) -> Optional[int]:
        result = await self._session.execute(
            select(SerialNumberCounter.last_value).where(SerialNumberCounter.scope == scope)
        )
        return result.scalar_one_or_none()

    async def add_ledger_entry(self, entry: SerialNumberLedgerEntry) -> None:
        self._session.add(
            SerialNumberLedger(
                id=entry.id,
                category=entry.category,
                serial_number=entry.serial_number,
                sequence_number=entry.sequence_number,
                project_code=entry.project_code,
                issued_at=entry.issued_at,
            )
        )
        await self._flush_unique(
            "Serial number already issued",
            category=entry.category,
            serial_number=entry.serial_number,
        )

    async def add_reservation(self, reservation: SerialNumberReservation) -> None:
        self._session.add(
            SerialNumberReservationModel(
                id=reservation.id,
                serial_number=reservation.serial_number,
                category=reservation.category,
                holder_id=reservation.holder_id,
                created_at=reservation.created_at,
                expires_at=reservation.expires_at,
                consumed_at=reservation.consumed_at,
            )
        )

    async def get_reservation(self, reservation_id: str) -> Optional[SerialNumberReservation]:
        result = await self._session.execute(
            select(SerialNumberReservationModel).where(
                SerialNumberReservationModel.id == reservation_id
            )
        )
        reservation = result.scalar_one_or_none()
        if reservation is None:
            return None
        return SerialNumberReservation(
            id=reservation.id,
            serial_number=reservation.serial_number,
            category=reservation.category,
            holder_id=reservation.holder_id,
            created_at=reservation.created_at,
            expires_at=reservation.expires_at,
            consumed_at=reservation.consumed_at,
        )

    async def mark_reservation_consumed(self, reservation_id: str, consumed_at: datetime) -> bool:
        result = await self._session.execute(
            update(SerialNumberReservationModel)
            .where(
                SerialNumberReservationModel.id == reservation_id,
                SerialNumberReservationModel.consumed_at.is_(None),
            )
            .values(consumed_at=consumed_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0
