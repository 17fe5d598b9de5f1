from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, FrozenSet, Mapping, Optional, Sequence, Tuple


class ApprovalStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RevisionStatus:
    DRAFT = "draft"
    REVIEW = "review"
    APPROVED = "approved"
    SUPERSEDED = "superseded"


class TransmittalStatus:
    DRAFT = "draft"
    SENT = "sent"
    RECEIVED = "received"
    ACKNOWLEDGED = "acknowledged"
    REJECTED = "rejected"


TRANSMITTAL_TYPES = ("drawing", "document", "material", "sample", "other")
TRANSMITTAL_FORMATS = ("pdf", "dwg", "excel", "word", "other")
TRANSMITTAL_ACTIONS = ("for_approval", "for_review", "for_information", "for_construction")


@dataclass(frozen=True)
class UserSummary:
    id: str
    name: str
    role: str
    email: Optional[str] = None


# ==================== WORKFLOW ====================

@dataclass(frozen=True)
class WorkflowStage:
    id: str
    name: str
    required_roles: FrozenSet[str]
    # action -> next stage id, in declaration order
    transitions: Mapping[str, str]

    @property
    def allowed_actions(self) -> Tuple[str, ...]:
        return tuple(self.transitions)

    @property
    def next_stages(self) -> Tuple[str, ...]:
        return tuple(dict.fromkeys(self.transitions.values()))

    def authorizes(self, role: str) -> bool:
        return not self.required_roles or role in self.required_roles


@dataclass(frozen=True)
class WorkflowDefinition:
    domain: str
    stages: Mapping[str, WorkflowStage]
    initial_stage: str
    final_stages: FrozenSet[str]
    # final stages that mean the request was turned down
    failure_stages: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class WorkflowHistoryEntry:
    stage_id: str
    action: str
    user_id: str
    user_name: str
    user_role: str
    timestamp: datetime
    comment: Optional[str] = None


@dataclass(frozen=True)
class WorkflowInstance:
    id: str
    entity_type: str
    entity_id: str
    current_stage: str
    created_at: datetime
    updated_at: datetime
    history: Sequence[WorkflowHistoryEntry] = ()
    version: int = 1


@dataclass(frozen=True)
class ApprovalRequest:
    id: str
    entity_type: str
    entity_id: str
    workflow_instance_id: str
    requester_id: str
    requester_name: str
    status: str
    current_stage: str
    created_at: datetime
    updated_at: datetime
    approver_id: Optional[str] = None
    approver_name: Optional[str] = None
    comment: Optional[str] = None


# ==================== REVISIONS ====================

@dataclass(frozen=True)
class DocumentRevision:
    id: str
    document_id: str
    revision_letter: str
    version: int
    title: str
    status: str
    artifact_ref: str
    size: int
    created_by: str
    created_at: datetime
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    changes: Optional[str] = None


@dataclass(frozen=True)
class RevisionComparison:
    old_revision: DocumentRevision
    new_revision: DocumentRevision
    changes: Sequence[str]


# ==================== SERIAL NUMBERS ====================

@dataclass(frozen=True)
class SerialNumberConfig:
    category: str
    prefix: str
    padding_length: int
    start_number: int = 1
    format: str = "{PREFIX}-{CATEGORY}-{NUMBER}"


@dataclass(frozen=True)
class SerialNumberLedgerEntry:
    id: str
    category: str
    serial_number: str
    sequence_number: int
    issued_at: datetime
    project_code: Optional[str] = None


@dataclass(frozen=True)
class SerialNumberReservation:
    id: str
    serial_number: str
    category: str
    holder_id: str
    created_at: datetime
    expires_at: datetime
    consumed_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.consumed_at is None and now >= self.expires_at


@dataclass(frozen=True)
class ParsedSerialNumber:
    prefix: str
    category: str
    number: int
    project_code: Optional[str] = None


# ==================== TRANSMITTALS ====================

@dataclass(frozen=True)
class TransmittalDocument:
    document_id: str
    document_number: str
    title: str
    revision: str
    copies: int = 1
    format: str = "pdf"
    action: str = "for_review"
    item_index: int = 0


@dataclass(frozen=True)
class Transmittal:
    id: str
    transmittal_number: str
    project_id: str
    subject: str
    sender: str
    sender_organization: str
    recipient: str
    recipient_organization: str
    status: str
    transmittal_type: str
    created_by: str
    created_at: datetime
    updated_at: datetime
    transmittal_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    notes: Optional[str] = None
    documents: Sequence[TransmittalDocument] = field(default_factory=list)


@dataclass(frozen=True)
class TransmittalHistoryEntry:
    id: str
    transmittal_id: str
    action: str
    performed_by: str
    performed_at: datetime
    comment: Optional[str] = None


# ==================== AUDIT & NOTIFICATIONS ====================

@dataclass(frozen=True)
class AuditEntry:
    id: str
    action: str
    entity_type: str
    entity_id: str
    user_id: str
    user_name: str
    user_role: str
    timestamp: datetime
    entity_name: Optional[str] = None
    old_values: Optional[Mapping[str, Any]] = None
    new_values: Optional[Mapping[str, Any]] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AuditFilters:
    user_id: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    action: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    limit: int = 100


@dataclass(frozen=True)
class Notification:
    user_id: str
    title: str
    message: str
    entity_type: str
    entity_id: str
    notification_type: str = "info"
