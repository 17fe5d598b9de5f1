import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from app.document_control.application.audit import AuditAction, AuditLogger
from app.document_control.application.ports import (
    Clock,
    CoverSheetRenderer,
    IdGenerator,
    TransmittalRepository,
    UserDirectory,
)
from app.document_control.application.serial_numbers import SerialNumberService
from app.document_control.domain.errors import (
    InvalidRequest,
    InvalidTransition,
    NotFound,
    SequenceConflict,
)
from app.document_control.domain.models import (
    TRANSMITTAL_ACTIONS,
    TRANSMITTAL_FORMATS,
    TRANSMITTAL_TYPES,
    Transmittal,
    TransmittalDocument,
    TransmittalHistoryEntry,
    TransmittalStatus,
    UserSummary,
)

logger = logging.getLogger(__name__)

PENDING_STATUSES = (TransmittalStatus.SENT, TransmittalStatus.RECEIVED)

# history action -> (statuses it may start from, resulting status)
_STATUS_CHANGES: Dict[str, Tuple[FrozenSet[str], str]] = {
    "sent": (frozenset({TransmittalStatus.DRAFT}), TransmittalStatus.SENT),
    "received": (frozenset({TransmittalStatus.SENT}), TransmittalStatus.RECEIVED),
    "acknowledged": (frozenset(PENDING_STATUSES), TransmittalStatus.ACKNOWLEDGED),
    "rejected": (frozenset(PENDING_STATUSES), TransmittalStatus.REJECTED),
}


@dataclass(frozen=True)
class TransmittalDocumentInput:
    document_id: str
    document_number: str
    title: str
    revision: str
    copies: int = 1
    format: str = "pdf"
    action: str = "for_review"


@dataclass(frozen=True)
class CreateTransmittalCommand:
    project_id: str
    subject: str
    sender: str
    sender_organization: str
    recipient: str
    recipient_organization: str
    transmittal_type: str = "document"
    project_code: Optional[str] = None
    due_date: Optional[datetime] = None
    notes: Optional[str] = None
    documents: Sequence[TransmittalDocumentInput] = ()


def _validate_documents(documents: Sequence[TransmittalDocumentInput]) -> None:
    for doc in documents:
        if not doc.document_id.strip() or not doc.document_number.strip():
            raise InvalidRequest("Each document needs an id and a number")
        if doc.copies <= 0:
            raise InvalidRequest(
                "Copies must be greater than zero", document_id=doc.document_id
            )
        if doc.format not in TRANSMITTAL_FORMATS:
            raise InvalidRequest(
                f"Unknown document format '{doc.format}'", document_id=doc.document_id
            )
        if doc.action not in TRANSMITTAL_ACTIONS:
            raise InvalidRequest(
                f"Unknown required action '{doc.action}'", document_id=doc.document_id
            )


class TransmittalService:
    def __init__(
        self,
        repository: TransmittalRepository,
        serial_numbers: SerialNumberService,
        users: UserDirectory,
        audit: AuditLogger,
        renderer: CoverSheetRenderer,
        id_generator: IdGenerator,
        clock: Clock,
        max_retries: int = 3,
    ) -> None:
        self._repository = repository
        self._serial_numbers = serial_numbers
        self._users = users
        self._audit = audit
        self._renderer = renderer
        self._id_generator = id_generator
        self._clock = clock
        self._max_retries = max(1, max_retries)

    async def create(self, command: CreateTransmittalCommand, actor: UserSummary) -> Transmittal:
        if not command.subject.strip():
            raise InvalidRequest("Transmittal subject is required")
        if not command.recipient.strip():
            raise InvalidRequest("Transmittal recipient is required")
        if command.transmittal_type not in TRANSMITTAL_TYPES:
            raise InvalidRequest(f"Unknown transmittal type '{command.transmittal_type}'")
        _validate_documents(command.documents)

        for attempt in range(1, self._max_retries + 1):
            number = await self._serial_numbers.issue_transmittal_number(command.project_code)
            now = self._clock()
            transmittal = Transmittal(
                id=self._id_generator(),
                transmittal_number=number,
                project_id=command.project_id,
                subject=command.subject,
                sender=command.sender,
                sender_organization=command.sender_organization,
                recipient=command.recipient,
                recipient_organization=command.recipient_organization,
                status=TransmittalStatus.DRAFT,
                transmittal_type=command.transmittal_type,
                created_by=actor.id,
                created_at=now,
                updated_at=now,
                due_date=command.due_date,
                notes=command.notes,
                documents=self._to_documents(command.documents),
            )
            try:
                await self._repository.add_transmittal(transmittal)
                await self._add_history(transmittal.id, "created", actor)
                await self._audit.record(
                    AuditAction.CREATE,
                    entity_type="transmittal",
                    entity_id=transmittal.id,
                    actor=actor,
                    entity_name=number,
                    new_values={"status": transmittal.status, "recipient": transmittal.recipient},
                    metadata={"project_id": transmittal.project_id},
                )
                await self._repository.commit()
            except SequenceConflict:
                await self._repository.rollback()
                if attempt == self._max_retries:
                    raise
                logger.warning(f"Transmittal number {number} taken, retrying (attempt {attempt})")
                continue

            logger.info(f"Transmittal {number} created for project {command.project_id}")
            return transmittal

        raise SequenceConflict("Could not number transmittal", project_id=command.project_id)

    async def add_documents(
        self,
        transmittal_id: str,
        documents: Sequence[TransmittalDocumentInput],
        actor: UserSummary,
    ) -> Transmittal:
        if not documents:
            raise InvalidRequest("At least one document is required", entity_id=transmittal_id)
        _validate_documents(documents)

        for attempt in range(1, self._max_retries + 1):
            transmittal = await self.get(transmittal_id)
            if transmittal.status != TransmittalStatus.DRAFT:
                raise InvalidTransition(
                    "Documents can only be added to a draft transmittal",
                    entity_id=transmittal_id,
                    action="add_documents",
                    current_stage=transmittal.status,
                )

            items = self._to_documents(documents, start=len(transmittal.documents))
            updated = replace(
                transmittal,
                documents=list(transmittal.documents) + items,
                updated_at=self._clock(),
            )
            try:
                # status guard first; a send committed meanwhile blocks the insert
                await self._repository.update_transmittal(
                    updated, expected_status=TransmittalStatus.DRAFT
                )
                await self._repository.add_documents(transmittal_id, items)
                await self._add_history(
                    transmittal_id, "updated", actor, f"Added {len(items)} document(s)"
                )
                await self._repository.commit()
            except SequenceConflict:
                await self._repository.rollback()
                if attempt == self._max_retries:
                    raise
                logger.warning(
                    f"Transmittal {transmittal_id} changed while adding documents, "
                    f"retrying (attempt {attempt})"
                )
                continue
            return updated

        raise SequenceConflict("Could not add documents", transmittal_id=transmittal_id)

    async def send(self, transmittal_id: str, actor: UserSummary) -> Transmittal:
        return await self._change_status(transmittal_id, "sent", actor, stamp_date=True)

    async def mark_received(self, transmittal_id: str, actor: UserSummary) -> Transmittal:
        return await self._change_status(transmittal_id, "received", actor)

    async def acknowledge(
        self, transmittal_id: str, actor: UserSummary, comment: Optional[str] = None
    ) -> Transmittal:
        return await self._change_status(transmittal_id, "acknowledged", actor, comment)

    async def reject(
        self, transmittal_id: str, actor: UserSummary, comment: Optional[str] = None
    ) -> Transmittal:
        return await self._change_status(transmittal_id, "rejected", actor, comment)

    async def get(self, transmittal_id: str) -> Transmittal:
        transmittal = await self._repository.get_transmittal(transmittal_id)
        if transmittal is None:
            raise NotFound("Transmittal not found", transmittal_id=transmittal_id)
        return transmittal

    async def get_history(self, transmittal_id: str) -> Sequence[TransmittalHistoryEntry]:
        await self.get(transmittal_id)
        return await self._repository.list_history(transmittal_id)

    async def list_for_project(self, project_id: str) -> Sequence[Transmittal]:
        return await self._repository.list_for_project(project_id)

    async def list_pending_for(self, user_id: str) -> Sequence[Transmittal]:
        user = await self._users.get_user(user_id)
        if user is None:
            return []
        recipients = {user.id}
        if user.email:
            recipients.add(user.email)
        return await self._repository.list_for_recipient(recipients, PENDING_STATUSES)

    async def generate_cover_sheet(self, transmittal_id: str) -> bytes:
        transmittal = await self.get(transmittal_id)
        return self._renderer.render(transmittal)

    async def _change_status(
        self,
        transmittal_id: str,
        action: str,
        actor: UserSummary,
        comment: Optional[str] = None,
        stamp_date: bool = False,
    ) -> Transmittal:
        allowed_from, target = _STATUS_CHANGES[action]

        for attempt in range(1, self._max_retries + 1):
            transmittal = await self.get(transmittal_id)
            if transmittal.status not in allowed_from:
                raise InvalidTransition(
                    f"Transmittal {transmittal.transmittal_number} cannot be {action} "
                    f"from status '{transmittal.status}'",
                    entity_id=transmittal_id,
                    action=action,
                    current_stage=transmittal.status,
                )

            now = self._clock()
            updated = replace(
                transmittal,
                status=target,
                transmittal_date=now if stamp_date else transmittal.transmittal_date,
                updated_at=now,
            )
            try:
                await self._repository.update_transmittal(
                    updated, expected_status=transmittal.status
                )
                await self._add_history(transmittal_id, action, actor, comment)
                await self._audit.record(
                    AuditAction.UPDATE,
                    entity_type="transmittal",
                    entity_id=transmittal_id,
                    actor=actor,
                    entity_name=transmittal.transmittal_number,
                    old_values={"status": transmittal.status},
                    new_values={"status": updated.status},
                    metadata={"comment": comment} if comment else None,
                )
                await self._repository.commit()
            except SequenceConflict:
                await self._repository.rollback()
                if attempt == self._max_retries:
                    raise
                logger.warning(
                    f"Transmittal {transmittal.transmittal_number} changed concurrently, "
                    f"retrying {action} (attempt {attempt})"
                )
                continue

            logger.info(
                f"Transmittal {transmittal.transmittal_number}: {transmittal.status} -> {target}"
            )
            return updated

        raise SequenceConflict("Could not update transmittal", transmittal_id=transmittal_id)

    async def _add_history(
        self,
        transmittal_id: str,
        action: str,
        actor: UserSummary,
        comment: Optional[str] = None,
    ) -> None:
        await self._repository.add_history_entry(
            TransmittalHistoryEntry(
                id=self._id_generator(),
                transmittal_id=transmittal_id,
                action=action,
                performed_by=actor.id,
                performed_at=self._clock(),
                comment=comment,
            )
        )

    @staticmethod
    def _to_documents(
        documents: Sequence[TransmittalDocumentInput], start: int = 0
    ) -> List[TransmittalDocument]:
        return [
            TransmittalDocument(
                document_id=doc.document_id,
                document_number=doc.document_number,
                title=doc.title,
                revision=doc.revision,
                copies=doc.copies,
                format=doc.format,
                action=doc.action,
                item_index=start + index,
            )
            for index, doc in enumerate(documents)
        ]
