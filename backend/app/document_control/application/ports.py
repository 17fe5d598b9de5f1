import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Protocol, Sequence

from app.document_control.domain.models import (
    ApprovalRequest,
    AuditEntry,
    AuditFilters,
    DocumentRevision,
    Notification,
    SerialNumberLedgerEntry,
    SerialNumberReservation,
    Transmittal,
    TransmittalDocument,
    TransmittalHistoryEntry,
    UserSummary,
    WorkflowInstance,
)

IdGenerator = Callable[[], str]
Clock = Callable[[], datetime]


def new_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    # naive UTC, matching the DateTime columns
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UnitOfWork(Protocol):
    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...


class UserDirectory(Protocol):
    async def get_user(self, user_id: str) -> Optional[UserSummary]:
        ...

    async def list_users_with_roles(self, roles: Iterable[str]) -> Sequence[UserSummary]:
        ...


class AuditLogRepository(Protocol):
    async def add_audit_entry(self, entry: AuditEntry) -> None:
        ...

    async def query_audit_entries(self, filters: AuditFilters) -> Sequence[AuditEntry]:
        ...


class WorkflowRepository(UnitOfWork, Protocol):
    async def get_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        ...

    async def add_instance(self, instance: WorkflowInstance) -> None:
        ...

    async def save_instance(self, instance: WorkflowInstance, expected_version: int) -> None:
        """Persist ``instance`` only if the stored version still equals ``expected_version``."""
        ...

    async def get_approval_request(self, request_id: str) -> Optional[ApprovalRequest]:
        ...

    async def find_live_request(self, entity_type: str, entity_id: str) -> Optional[ApprovalRequest]:
        ...

    async def add_approval_request(self, request: ApprovalRequest) -> None:
        """Raises SequenceConflict when the entity already has a pending request."""
        ...

    async def update_approval_request(self, request: ApprovalRequest) -> None:
        ...

    async def list_pending_requests(self) -> Sequence[ApprovalRequest]:
        ...

    async def list_requests_for_user(self, user_id: str, limit: int) -> Sequence[ApprovalRequest]:
        ...


class SerialNumberRepository(UnitOfWork, Protocol):
    async def max_sequence_number(self, category: str) -> Optional[int]:
        ...

    async def increment_counter(self, scope: str, floor: int) -> int:
        """Atomically return ``max(last_value, floor - 1) + 1`` and store it."""
        ...

    async def peek_counter(self, scope: str) -> Optional[int]:
        ...

    async def add_ledger_entry(self, entry: SerialNumberLedgerEntry) -> None:
        ...

    async def add_reservation(self, reservation: SerialNumberReservation) -> None:
        ...

    async def get_reservation(self, reservation_id: str) -> Optional[SerialNumberReservation]:
        ...

    async def mark_reservation_consumed(self, reservation_id: str, consumed_at: datetime) -> bool:
        """False when the reservation was already consumed."""
        ...


class RevisionRepository(UnitOfWork, Protocol):
    async def get_latest_revision(self, document_id: str) -> Optional[DocumentRevision]:
        ...

    async def get_latest_approved_revision(self, document_id: str) -> Optional[DocumentRevision]:
        ...

    async def get_revision_by_id(self, revision_id: str) -> Optional[DocumentRevision]:
        ...

    async def get_revision(self, document_id: str, revision_letter: str) -> Optional[DocumentRevision]:
        ...

    async def list_revisions(self, document_id: str) -> Sequence[DocumentRevision]:
        ...

    async def add_revision(self, revision: DocumentRevision) -> None:
        ...

    async def update_revision(self, revision: DocumentRevision, expected_status: str) -> None:
        """Check-and-set on status; raises SequenceConflict when the stored status moved."""
        ...

    async def supersede_revision(self, revision_id: str) -> None:
        ...


class TransmittalRepository(UnitOfWork, Protocol):
    async def add_transmittal(self, transmittal: Transmittal) -> None:
        ...

    async def get_transmittal(self, transmittal_id: str) -> Optional[Transmittal]:
        ...

    async def update_transmittal(self, transmittal: Transmittal, expected_status: str) -> None:
        """Check-and-set on status; raises SequenceConflict when the stored status moved."""
        ...

    async def add_documents(
        self, transmittal_id: str, documents: Sequence[TransmittalDocument]
    ) -> None:
        ...

    async def add_history_entry(self, entry: TransmittalHistoryEntry) -> None:
        ...

    async def list_history(self, transmittal_id: str) -> Sequence[TransmittalHistoryEntry]:
        ...

    async def list_for_project(self, project_id: str) -> Sequence[Transmittal]:
        ...

    async def list_for_recipient(
        self, recipients: Iterable[str], statuses: Iterable[str]
    ) -> Sequence[Transmittal]:
        ...


class NotificationSink(Protocol):
    async def send(self, notification: Notification) -> None:
        ...


class CoverSheetRenderer(Protocol):
    def render(self, transmittal: Transmittal) -> bytes:
        ...
