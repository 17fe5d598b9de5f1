import uuid
from typing import Iterable, Optional, Sequence

from sqlalchemy import desc, select, update

from app.document_control.application.ports import TransmittalRepository
from app.document_control.domain.errors import SequenceConflict
from app.document_control.domain.models import (
    Transmittal,
    TransmittalDocument,
    TransmittalHistoryEntry,
)
from app.document_control.infrastructure.session import SqlAlchemyUnitOfWork
from database import (
    Transmittal as TransmittalModel,
    TransmittalDocument as TransmittalDocumentModel,
    TransmittalHistory as TransmittalHistoryModel,
)


class SqlAlchemyTransmittalRepository(SqlAlchemyUnitOfWork, TransmittalRepository):
    async def add_transmittal(self, transmittal: Transmittal) -> None:
        self._session.add(
            TransmittalModel(
                id=transmittal.id,
                transmittal_number=transmittal.transmittal_number,
                project_id=transmittal.project_id,
                subject=transmittal.subject,
                sender=transmittal.sender,
                sender_organization=transmittal.sender_organization,
                recipient=transmittal.recipient,
                recipient_organization=transmittal.recipient_organization,
                status=transmittal.status,
                transmittal_type=transmittal.transmittal_type,
                transmittal_date=transmittal.transmittal_date,
                due_date=transmittal.due_date,
                notes=transmittal.notes,
                created_by=transmittal.created_by,
                created_at=transmittal.created_at,
                updated_at=transmittal.updated_at,
            )
        )
        await self._flush_unique(
            "Transmittal number already used",
            transmittal_number=transmittal.transmittal_number,
        )
        await self.add_documents(transmittal.id, transmittal.documents)

    async def get_transmittal(self, transmittal_id: str) -> Optional[Transmittal]:
        result = await self._session.execute(
            select(TransmittalModel).where(TransmittalModel.id == transmittal_id)
        )
        transmittal = result.scalar_one_or_none()
        if transmittal is None:
            return None
        documents = await self._documents_by_transmittal([transmittal.id])
        return self._to_transmittal(transmittal, documents.get(transmittal.id, []))

    async def update_transmittal(self, transmittal: Transmittal, expected_status: str) -> None:
        result = await self._session.execute(
            update(TransmittalModel)
            .where(
                TransmittalModel.id == transmittal.id,
                TransmittalModel.status == expected_status,
            )
            .values(
                status=transmittal.status,
                transmittal_date=transmittal.transmittal_date,
                notes=transmittal.notes,
                updated_at=transmittal.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise SequenceConflict(
                "Transmittal status changed concurrently",
                transmittal_id=transmittal.id,
                expected_status=expected_status,
            )

    async def add_documents(
        self, transmittal_id: str, documents: Sequence[TransmittalDocument]
    ) -> None:
        for document in documents:
            self._session.add(
                TransmittalDocumentModel(
                    id=str(uuid.uuid4()),
                    transmittal_id=transmittal_id,
                    document_id=document.document_id,
                    document_number=document.document_number,
                    title=document.title,
                    revision=document.revision,
                    copies=document.copies,
                    format=document.format,
                    action=document.action,
                    item_index=document.item_index,
                )
            )

    async def add_history_entry(self, entry: TransmittalHistoryEntry) -> None:
        self._session.add(
            TransmittalHistoryModel(
                id=entry.id,
                transmittal_id=entry.transmittal_id,
                action=entry.action,
                performed_by=entry.performed_by,
                performed_at=entry.performed_at,
                comment=entry.comment,
            )
        )

    async def list_history(self, transmittal_id: str) -> Sequence[TransmittalHistoryEntry]:
        result = await self._session.execute(
            select(TransmittalHistoryModel)
            .where(TransmittalHistoryModel.transmittal_id == transmittal_id)
            .order_by(desc(TransmittalHistoryModel.performed_at))
        )
        return [
            TransmittalHistoryEntry(
                id=row.id,
                transmittal_id=row.transmittal_id,
                action=row.action,
                performed_by=row.performed_by,
                performed_at=row.performed_at,
                comment=row.comment,
            )
            for row in result.scalars().all()
        ]

    async def list_for_project(self, project_id: str) -> Sequence[Transmittal]:
        return await self._list(
            select(TransmittalModel)
            .where(TransmittalModel.project_id == project_id)
            .order_by(
                desc(TransmittalModel.transmittal_date).nulls_last(),
                desc(TransmittalModel.created_at),
            )
        )

    async def list_for_recipient(
        self, recipients: Iterable[str], statuses: Iterable[str]
    ) -> Sequence[Transmittal]:
        return await self._list(
            select(TransmittalModel)
            .where(
                TransmittalModel.recipient.in_(list(recipients)),
                TransmittalModel.status.in_(list(statuses)),
            )
            .order_by(TransmittalModel.transmittal_date)
        )

    async def _list(self, query) -> Sequence[Transmittal]:
        result = await self._session.execute(query)
        transmittals = result.scalars().all()
        documents = await self._documents_by_transmittal([t.id for t in transmittals])
        return [self._to_transmittal(t, documents.get(t.id, [])) for t in transmittals]

    async def _documents_by_transmittal(
        self, transmittal_ids: Sequence[str]
    ) -> dict[str, list[TransmittalDocument]]:
        documents: dict[str, list[TransmittalDocument]] = {}
        if not transmittal_ids:
            return documents
        result = await self._session.execute(
            select(TransmittalDocumentModel)
            .where(TransmittalDocumentModel.transmittal_id.in_(transmittal_ids))
            .order_by(
                TransmittalDocumentModel.transmittal_id,
                TransmittalDocumentModel.item_index,
            )
        )
        for item in result.scalars().all():
            documents.setdefault(item.transmittal_id, []).append(
                TransmittalDocument(
                    document_id=item.document_id,
                    document_number=item.document_number,
                    title=item.title,
                    revision=item.revision,
                    copies=item.copies,
                    format=item.format,
                    action=item.action,
                    item_index=item.item_index,
                )
            )
        return documents

    @staticmethod
    def _to_transmittal(
        model: TransmittalModel, documents: list[TransmittalDocument]
    ) -> Transmittal:
        return Transmittal(
            id=model.id,
            transmittal_number=model.transmittal_number,
            project_id=model.project_id,
            subject=model.subject,
            sender=model.sender,
            sender_organization=model.sender_organization,
            recipient=model.recipient,
            recipient_organization=model.recipient_organization,
            status=model.status,
            transmittal_type=model.transmittal_type,
            transmittal_date=model.transmittal_date,
            due_date=model.due_date,
            notes=model.notes,
            created_by=model.created_by,
            created_at=model.created_at,
            updated_at=model.updated_at,
            documents=documents,
        )
