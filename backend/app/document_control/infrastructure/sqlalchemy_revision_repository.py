from typing import Optional, Sequence

from sqlalchemy import desc, select, update

from app.document_control.application.ports import RevisionRepository
from app.document_control.domain.errors import SequenceConflict
from app.document_control.domain.models import DocumentRevision, RevisionStatus
from app.document_control.infrastructure.session import SqlAlchemyUnitOfWork
from database import DocumentRevision as DocumentRevisionModel


def _to_revision(model: DocumentRevisionModel) -> DocumentRevision:
    return DocumentRevision(
        id=model.id,
        document_id=model.document_id,
        revision_letter=model.revision_letter,
        version=model.version,
        title=model.title,
        status=model.status,
        artifact_ref=model.artifact_ref,
        size=model.size,
        created_by=model.created_by,
        created_at=model.created_at,
        approved_by=model.approved_by,
        approved_at=model.approved_at,
        changes=model.changes,
    )


class SqlAlchemyRevisionRepository(SqlAlchemyUnitOfWork, RevisionRepository):
    async def get_latest_revision(self, document_id: str) -> Optional[DocumentRevision]:
        result = await self._session.execute(
            select(DocumentRevisionModel)
            .where(DocumentRevisionModel.document_id == document_id)
            .order_by(desc(DocumentRevisionModel.version))
            .limit(1)
        )
        revision = result.scalar_one_or_none()
        return _to_revision(revision) if revision is not None else None

    async def get_latest_approved_revision(self, document_id: str) -> Optional[DocumentRevision]:
        result = await self._session.execute(
            select(DocumentRevisionModel)
            .where(
                DocumentRevisionModel.document_id == document_id,
                DocumentRevisionModel.status == RevisionStatus.APPROVED,
            )
            .order_by(desc(DocumentRevisionModel.version))
            .limit(1)
        )
        revision = result.scalar_one_or_none()
        return _to_revision(revision) if revision is not None else None

    async def get_revision_by_id(self, revision_id: str) -> Optional[DocumentRevision]:
        result = await self._session.execute(
            select(DocumentRevisionModel).where(DocumentRevisionModel.id == revision_id)
        )
        revision = result.scalar_one_or_none()
        return _to_revision(revision) if revision is not None else None

    async def get_revision(self, document_id: str, revision_letter: str) -> Optional[DocumentRevision]:
        result = await self._session.execute(
            select(DocumentRevisionModel).where(
                DocumentRevisionModel.document_id == document_id,
                DocumentRevisionModel.revision_letter == revision_letter,
            )
        )
        revision = result.scalar_one_or_none()
        return _to_revision(revision) if revision is not None else None

    async def list_revisions(self, document_id: str) -> Sequence[DocumentRevision]:
        result = await self._session.execute(
            select(DocumentRevisionModel)
            .where(DocumentRevisionModel.document_id == document_id)
            .order_by(desc(DocumentRevisionModel.version))
        )
        return [_to_revision(row) for row in result.scalars().all()]

    async def add_revision(self, revision: DocumentRevision) -> None:
        self._session.add(
            DocumentRevisionModel(
                id=revision.id,
                document_id=revision.document_id,
                revision_letter=revision.revision_letter,
                version=revision.version,
                title=revision.title,
                status=revision.status,
                artifact_ref=revision.artifact_ref,
                size=revision.size,
                created_by=revision.created_by,
                created_at=revision.created_at,
                approved_by=revision.approved_by,
                approved_at=revision.approved_at,
                changes=revision.changes,
            )
        )
        await self._flush_unique(
            "Revision version already exists",
            document_id=revision.document_id,
            version=revision.version,
        )

    async def update_revision(self, revision: DocumentRevision, expected_status: str) -> None:
        result = await self._session.execute(
            update(DocumentRevisionModel)
            .where(
                DocumentRevisionModel.id == revision.id,
                DocumentRevisionModel.status == expected_status,
            )
            .values(
                status=revision.status,
                approved_by=revision.approved_by,
                approved_at=revision.approved_at,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise SequenceConflict(
                "Revision status changed concurrently",
                revision_id=revision.id,
                expected_status=expected_status,
            )

    async def supersede_revision(self, revision_id: str) -> None:
        # status only; an approval committed meanwhile keeps its approver
        await self._session.execute(
            update(DocumentRevisionModel)
            .where(
                DocumentRevisionModel.id == revision_id,
                DocumentRevisionModel.status != RevisionStatus.SUPERSEDED,
            )
            .values(status=RevisionStatus.SUPERSEDED)
            .execution_options(synchronize_session=False)
        )
