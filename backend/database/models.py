"""
PostgreSQL Database Models - SQLAlchemy ORM
All tables for the Document Control & Approval subsystem
"""
from datetime import datetime
from typing import Optional
from sqlalchemy import (
    Integer, String, Text, DateTime, Boolean, BigInteger,
    ForeignKey, Index, JSON, UniqueConstraint, text
)
from sqlalchemy.orm import Mapped, mapped_column
import uuid as uuid_lib

from .connection import Base


def _uuid() -> str:
    return str(uuid_lib.uuid4())


# ==================== USER MODEL ====================

class User(Base):
    """User directory - id, display name and role supplied by the identity provider"""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True, index=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


# ==================== WORKFLOW MODELS ====================

class WorkflowInstance(Base):
    """Live workflow state for one business entity"""
    __tablename__ = "workflow_instances"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    current_stage: Mapped[str] = mapped_column(String(100), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)  # check-and-set token
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('idx_workflow_instances_entity', 'entity_type', 'entity_id'),
    )


class WorkflowHistory(Base):
    """Append-only history of workflow actions"""
    __tablename__ = "workflow_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    instance_id: Mapped[str] = mapped_column(String(36), ForeignKey("workflow_instances.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    stage_id: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    user_name: Mapped[str] = mapped_column(String(255), nullable=False)
    user_role: Mapped[str] = mapped_column(String(50), nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('instance_id', 'position', name='uq_workflow_history_position'),
    )


class ApprovalRequest(Base):
    """Approval request - durable projection of a workflow instance"""
    __tablename__ = "approval_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    workflow_instance_id: Mapped[str] = mapped_column(String(36), ForeignKey("workflow_instances.id"), nullable=False, index=True)
    requester_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    requester_name: Mapped[str] = mapped_column(String(255), nullable=False)
    approver_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    approver_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    current_stage: Mapped[str] = mapped_column(String(100), nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    __table_args__ = (
        Index('idx_approval_requests_entity_status', 'entity_type', 'entity_id', 'status'),
        Index(
            'uq_approval_requests_live', 'entity_type', 'entity_id',
            unique=True, postgresql_where=text("status = 'pending'"),
        ),
    )


# ==================== DOCUMENT REVISION MODEL ====================

class DocumentRevision(Base):
    """Lettered revisions of a controlled document"""
    __tablename__ = "document_revisions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    document_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    revision_letter: Mapped[str] = mapped_column(String(10), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="draft", index=True)
    artifact_ref: Mapped[str] = mapped_column(Text, nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, default=0)
    created_by: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    approved_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    changes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint('document_id', 'version', name='uq_document_revisions_version'),
        UniqueConstraint('document_id', 'revision_letter', name='uq_document_revisions_letter'),
    )


# ==================== SERIAL NUMBER MODELS ====================

class SerialNumberCounter(Base):
    """Atomic counters - one row per category or per transmittal month"""
    __tablename__ = "serial_number_counters"

    scope: Mapped[str] = mapped_column(String(100), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class SerialNumberLedger(Base):
    """Append-only ledger of issued serial numbers"""
    __tablename__ = "serial_number_ledger"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    category: Mapped[str] = mapped_column(String(10), nullable=False)
    serial_number: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    project_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    issued_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('category', 'sequence_number', name='uq_serial_ledger_sequence'),
    )


class SerialNumberReservation(Base):
    """Short-lived leases on issued serial numbers"""
    __tablename__ = "serial_number_reservations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    serial_number: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(10), nullable=False)
    holder_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    consumed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


# ==================== TRANSMITTAL MODELS ====================

class Transmittal(Base):
    """Tracked dispatch of documents between organizations"""
    __tablename__ = "transmittals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    transmittal_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    project_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    sender: Mapped[str] = mapped_column(String(255), nullable=False)
    sender_organization: Mapped[str] = mapped_column(String(255), nullable=False)
    recipient: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    recipient_organization: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="draft", index=True)
    transmittal_type: Mapped[str] = mapped_column(String(20), default="document")
    transmittal_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('idx_transmittals_recipient_status', 'recipient', 'status'),
    )


class TransmittalDocument(Base):
    """Line items of a transmittal"""
    __tablename__ = "transmittal_documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    transmittal_id: Mapped[str] = mapped_column(String(36), ForeignKey("transmittals.id", ondelete="CASCADE"), nullable=False, index=True)
    document_id: Mapped[str] = mapped_column(String(100), nullable=False)
    document_number: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    revision: Mapped[str] = mapped_column(String(10), nullable=False)
    copies: Mapped[int] = mapped_column(Integer, default=1)
    format: Mapped[str] = mapped_column(String(20), default="pdf")
    action: Mapped[str] = mapped_column(String(30), default="for_review")
    item_index: Mapped[int] = mapped_column(Integer, default=0)


class TransmittalHistory(Base):
    """Append-only action log per transmittal"""
    __tablename__ = "transmittal_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    transmittal_id: Mapped[str] = mapped_column(String(36), ForeignKey("transmittals.id", ondelete="CASCADE"), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    performed_by: Mapped[str] = mapped_column(String(36), nullable=False)
    performed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


# ==================== AUDIT & NOTIFICATION MODELS ====================

class ActivityLog(Base):
    """Activity logs - write-once audit trail"""
    __tablename__ = "activity_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_name: Mapped[str] = mapped_column(String(255), nullable=False)
    user_role: Mapped[str] = mapped_column(String(50), nullable=False)
    old_values: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    new_values: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    meta: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)  # "metadata" is reserved on declarative classes
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    __table_args__ = (
        Index('idx_activity_entity', 'entity_type', 'entity_id'),
        Index('idx_activity_entity_timestamp', 'entity_type', 'timestamp'),
    )


class Notification(Base):
    """In-app notifications"""
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    notification_type: Mapped[str] = mapped_column(String(50), default="info")
    entity_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
