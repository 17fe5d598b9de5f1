import logging
from dataclasses import replace
from typing import Optional, Sequence

from app.document_control.application.audit import AuditAction, AuditLogger
from app.document_control.application.ports import Clock, IdGenerator, RevisionRepository
from app.document_control.domain.errors import (
    InvalidRequest,
    InvalidTransition,
    NotFound,
    SequenceConflict,
)
from app.document_control.domain.models import (
    DocumentRevision,
    RevisionComparison,
    RevisionStatus,
    UserSummary,
)
from app.document_control.domain.numbering import next_revision_letter

logger = logging.getLogger(__name__)

APPROVABLE_STATUSES = (RevisionStatus.DRAFT, RevisionStatus.REVIEW)


class RevisionService:
    def __init__(
        self,
        repository: RevisionRepository,
        audit: AuditLogger,
        id_generator: IdGenerator,
        clock: Clock,
        max_retries: int = 3,
    ) -> None:
        self._repository = repository
        self._audit = audit
        self._id_generator = id_generator
        self._clock = clock
        self._max_retries = max(1, max_retries)

    next_revision_letter = staticmethod(next_revision_letter)

    async def create_revision(
        self,
        document_id: str,
        artifact_ref: str,
        size: int,
        actor: UserSummary,
        changes: Optional[str] = None,
    ) -> DocumentRevision:
        """
        Add the next lettered revision in draft and supersede the previous one.

        The store's unique (document_id, version) constraint serialises
        concurrent creators; the loser re-reads the latest revision and retries.
        """
        if size < 0:
            raise InvalidRequest("Artifact size cannot be negative", document_id=document_id)

        for attempt in range(1, self._max_retries + 1):
            latest = await self._repository.get_latest_revision(document_id)
            letter = next_revision_letter(latest.revision_letter if latest else "")
            version = latest.version + 1 if latest else 1

            revision = DocumentRevision(
                id=self._id_generator(),
                document_id=document_id,
                revision_letter=letter,
                version=version,
                title=f"Revision {letter}",
                status=RevisionStatus.DRAFT,
                artifact_ref=artifact_ref,
                size=size,
                created_by=actor.id,
                created_at=self._clock(),
                changes=changes,
            )

            try:
                await self._repository.add_revision(revision)
                if latest is not None and latest.status != RevisionStatus.SUPERSEDED:
                    await self._repository.supersede_revision(latest.id)
                await self._audit.record(
                    AuditAction.CREATE,
                    entity_type="document",
                    entity_id=document_id,
                    actor=actor,
                    entity_name=revision.title,
                    new_values={"revision": letter, "version": version, "status": revision.status},
                    metadata={
                        "revision_id": revision.id,
                        "superseded_revision_id": latest.id if latest else None,
                        "file_size": size,
                    },
                )
                await self._repository.commit()
            except SequenceConflict:
                await self._repository.rollback()
                if attempt == self._max_retries:
                    raise
                logger.warning(
                    f"Version {version} of document {document_id} taken concurrently, "
                    f"retrying (attempt {attempt})"
                )
                continue

            logger.info(f"Created revision {letter} (v{version}) of document {document_id}")
            return revision

        raise SequenceConflict("Could not create revision", document_id=document_id)

    async def submit_for_review(self, revision_id: str, actor: UserSummary) -> DocumentRevision:
        return await self._change_status(
            revision_id,
            "submit_for_review",
            allowed=(RevisionStatus.DRAFT,),
            actor=actor,
            audit_action=AuditAction.UPDATE,
            status=RevisionStatus.REVIEW,
        )

    async def approve_revision(self, revision_id: str, approver: UserSummary) -> DocumentRevision:
        updated = await self._change_status(
            revision_id,
            "approve",
            allowed=APPROVABLE_STATUSES,
            actor=approver,
            audit_action=AuditAction.APPROVE,
            status=RevisionStatus.APPROVED,
            approved_by=approver.id,
            approved_at=self._clock(),
        )
        logger.info(
            f"Revision {updated.revision_letter} of document {updated.document_id} "
            f"approved by {approver.id}"
        )
        return updated

    async def get_current_revision(self, document_id: str) -> Optional[DocumentRevision]:
        return await self._repository.get_latest_approved_revision(document_id)

    async def get_revision_history(self, document_id: str) -> Sequence[DocumentRevision]:
        return await self._repository.list_revisions(document_id)

    async def get_revision(self, document_id: str, revision_letter: str) -> Optional[DocumentRevision]:
        return await self._repository.get_revision(document_id, revision_letter.upper())

    async def compare_revisions(
        self, document_id: str, old_letter: str, new_letter: str
    ) -> RevisionComparison:
        old_revision = await self.get_revision(document_id, old_letter)
        new_revision = await self.get_revision(document_id, new_letter)
        if old_revision is None or new_revision is None:
            raise NotFound(
                "Revisions not found",
                document_id=document_id,
                old_revision=old_letter,
                new_revision=new_letter,
            )

        changes = [
            f"Revision {old_revision.revision_letter} → {new_revision.revision_letter}",
            new_revision.changes or "No changes documented",
        ]
        return RevisionComparison(
            old_revision=old_revision,
            new_revision=new_revision,
            changes=changes,
        )

    async def _get_by_id(self, revision_id: str) -> DocumentRevision:
        revision = await self._repository.get_revision_by_id(revision_id)
        if revision is None:
            raise NotFound("Revision not found", revision_id=revision_id)
        return revision

    async def _change_status(
        self,
        revision_id: str,
        action: str,
        allowed: Sequence[str],
        actor: UserSummary,
        audit_action: str,
        **changes,
    ) -> DocumentRevision:
        """
        Check-and-set on the stored status.

        A revision superseded or approved between the read and the write makes
        the update miss; the revision is re-read and the guard applied again.
        """
        for attempt in range(1, self._max_retries + 1):
            revision = await self._get_by_id(revision_id)
            if revision.status not in allowed:
                raise InvalidTransition(
                    f"Revision {revision.revision_letter} cannot {action.replace('_', ' ')} "
                    f"(status={revision.status})",
                    entity_id=revision_id,
                    action=action,
                    current_stage=revision.status,
                )

            updated = replace(revision, **changes)
            try:
                await self._repository.update_revision(updated, expected_status=revision.status)
                await self._audit.record(
                    audit_action,
                    entity_type="document",
                    entity_id=revision.document_id,
                    actor=actor,
                    entity_name=revision.title,
                    old_values={"status": revision.status},
                    new_values={"status": updated.status},
                    metadata={"revision_id": revision_id},
                )
                await self._repository.commit()
            except SequenceConflict:
                await self._repository.rollback()
                if attempt == self._max_retries:
                    raise
                logger.warning(
                    f"Revision {revision_id} changed concurrently, "
                    f"retrying '{action}' (attempt {attempt})"
                )
                continue
            return updated

        raise SequenceConflict("Could not update revision", revision_id=revision_id, action=action)
