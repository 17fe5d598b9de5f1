"""
Service wiring shared by the Document Control routers
"""
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional
import logging

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_session_maker
from app.document_control.application.approvals import ApprovalService
from app.document_control.application.audit import AuditLogger
from app.document_control.application.notifications import NotificationDispatcher
from app.document_control.application.ports import new_id, utc_now
from app.document_control.application.revisions import RevisionService
from app.document_control.application.serial_numbers import SerialNumberService
from app.document_control.application.transmittals import TransmittalService
from app.document_control.config import document_control_settings as settings
from app.document_control.domain.engine import WorkflowEngine
from app.document_control.domain.errors import (
    DomainError,
    InvalidRequest,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    ReservationExpired,
    SequenceConflict,
    UnknownWorkflowDomain,
)
from app.document_control.domain.workflows import WorkflowRegistry, load_definitions_file
from app.document_control.infrastructure.cover_sheet import ReportLabCoverSheetRenderer
from app.document_control.infrastructure.sqlalchemy_audit_repository import SqlAlchemyAuditLogRepository
from app.document_control.infrastructure.sqlalchemy_notification_sink import SqlAlchemyNotificationSink
from app.document_control.infrastructure.sqlalchemy_revision_repository import SqlAlchemyRevisionRepository
from app.document_control.infrastructure.sqlalchemy_serial_number_repository import (
    SqlAlchemySerialNumberRepository,
)
from app.document_control.infrastructure.sqlalchemy_transmittal_repository import (
    SqlAlchemyTransmittalRepository,
)
from app.document_control.infrastructure.sqlalchemy_user_directory import SqlAlchemyUserDirectory
from app.document_control.infrastructure.sqlalchemy_workflow_repository import (
    SqlAlchemyWorkflowRepository,
)

logger = logging.getLogger(__name__)

_STATUS_CODES = (
    (PermissionDenied, 403),
    (NotFound, 404),
    (UnknownWorkflowDomain, 404),
    (InvalidTransition, 409),
    (SequenceConflict, 409),
    (ReservationExpired, 409),
    (InvalidRequest, 400),
)

_dispatcher: Optional[NotificationDispatcher] = None


def to_http_exception(exc: DomainError) -> HTTPException:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.message)
    return HTTPException(status_code=400, detail=exc.message)


@lru_cache(maxsize=1)
def get_workflow_registry() -> WorkflowRegistry:
    extra = []
    if settings.workflow_definitions_file:
        extra = load_definitions_file(settings.workflow_definitions_file)
        logger.info(
            f"Loaded {len(extra)} workflow definition(s) from {settings.workflow_definitions_file}"
        )
    return WorkflowRegistry.with_builtins(extra)


def get_notification_dispatcher() -> NotificationDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher(SqlAlchemyNotificationSink(get_session_maker()))
    return _dispatcher


async def drain_notifications() -> None:
    """Wait for in-flight notification deliveries (application shutdown)."""
    global _dispatcher
    if _dispatcher is not None:
        await _dispatcher.drain()
        _dispatcher = None


def build_audit_logger(session: AsyncSession) -> AuditLogger:
    return AuditLogger(
        repository=SqlAlchemyAuditLogRepository(session),
        id_generator=new_id,
        clock=utc_now,
    )


def build_approval_service(session: AsyncSession) -> ApprovalService:
    return ApprovalService(
        repository=SqlAlchemyWorkflowRepository(session),
        users=SqlAlchemyUserDirectory(session),
        engine=WorkflowEngine(get_workflow_registry(), clock=utc_now),
        audit=build_audit_logger(session),
        notifications=get_notification_dispatcher(),
        id_generator=new_id,
        clock=utc_now,
        max_retries=settings.max_write_retries,
    )


def build_serial_number_service(session: AsyncSession) -> SerialNumberService:
    return SerialNumberService(
        repository=SqlAlchemySerialNumberRepository(session),
        id_generator=new_id,
        clock=utc_now,
        default_prefix=settings.serial_prefix,
        reservation_ttl=settings.reservation_ttl,
        max_retries=settings.max_write_retries,
    )


def build_revision_service(session: AsyncSession) -> RevisionService:
    return RevisionService(
        repository=SqlAlchemyRevisionRepository(session),
        audit=build_audit_logger(session),
        id_generator=new_id,
        clock=utc_now,
        max_retries=settings.max_write_retries,
    )


def build_transmittal_service(session: AsyncSession) -> TransmittalService:
    return TransmittalService(
        repository=SqlAlchemyTransmittalRepository(session),
        serial_numbers=build_serial_number_service(session),
        users=SqlAlchemyUserDirectory(session),
        audit=build_audit_logger(session),
        renderer=ReportLabCoverSheetRenderer(),
        id_generator=new_id,
        clock=utc_now,
        max_retries=settings.max_write_retries,
    )


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are stored as naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
