"""
Document Control - Transmittal Routes
"""
from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_postgres_session
from app.document_control.application.transmittals import (
    CreateTransmittalCommand,
    TransmittalDocumentInput,
)
from app.document_control.domain.errors import DomainError
from app.document_control.domain.models import UserSummary
from app.document_control.presentation.response_mapper import (
    transmittal_history_to_response,
    transmittal_to_response,
)
from routes.auth import get_current_user
from routes.dependencies import build_transmittal_service, naive_utc, to_http_exception

# Create router
transmittals_router = APIRouter(prefix="/api/dc", tags=["Transmittals"])


# ==================== PYDANTIC MODELS ====================

class TransmittalDocumentCreate(BaseModel):
    document_id: str
    document_number: str
    title: str
    revision: str
    copies: int = 1
    format: str = "pdf"
    action: str = "for_review"


class TransmittalCreate(BaseModel):
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
    documents: List[TransmittalDocumentCreate] = []


class TransmittalDocumentsAdd(BaseModel):
    documents: List[TransmittalDocumentCreate]


class TransmittalComment(BaseModel):
    comment: Optional[str] = None


# ==================== HELPER FUNCTIONS ====================

def _to_inputs(documents: List[TransmittalDocumentCreate]) -> List[TransmittalDocumentInput]:
    return [
        TransmittalDocumentInput(
            document_id=doc.document_id,
            document_number=doc.document_number,
            title=doc.title,
            revision=doc.revision,
            copies=doc.copies,
            format=doc.format,
            action=doc.action,
        )
        for doc in documents
    ]


# ==================== TRANSMITTAL ROUTES ====================

@transmittals_router.post("/transmittals")
async def create_transmittal(
    data: TransmittalCreate,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    """Create a draft transmittal with the next monthly number"""
    service = build_transmittal_service(session)
    command = CreateTransmittalCommand(
        project_id=data.project_id,
        subject=data.subject,
        sender=data.sender,
        sender_organization=data.sender_organization,
        recipient=data.recipient,
        recipient_organization=data.recipient_organization,
        transmittal_type=data.transmittal_type,
        project_code=data.project_code,
        due_date=naive_utc(data.due_date),
        notes=data.notes,
        documents=_to_inputs(data.documents),
    )
    try:
        transmittal = await service.create(command, current_user)
    except DomainError as exc:
        raise to_http_exception(exc)
    return transmittal_to_response(transmittal)


@transmittals_router.get("/transmittals")
async def list_project_transmittals(
    project_id: str,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    service = build_transmittal_service(session)
    transmittals = await service.list_for_project(project_id)
    return [transmittal_to_response(transmittal) for transmittal in transmittals]


@transmittals_router.get("/transmittals/pending")
async def list_pending_transmittals(
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    """Sent or received transmittals addressed to the current user"""
    service = build_transmittal_service(session)
    transmittals = await service.list_pending_for(current_user.id)
    return [transmittal_to_response(transmittal) for transmittal in transmittals]


@transmittals_router.get("/transmittals/{transmittal_id}")
async def get_transmittal(
    transmittal_id: str,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    service = build_transmittal_service(session)
    try:
        transmittal = await service.get(transmittal_id)
    except DomainError as exc:
        raise to_http_exception(exc)
    return transmittal_to_response(transmittal)


@transmittals_router.post("/transmittals/{transmittal_id}/documents")
async def add_transmittal_documents(
    transmittal_id: str,
    data: TransmittalDocumentsAdd,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    service = build_transmittal_service(session)
    try:
        transmittal = await service.add_documents(
            transmittal_id, _to_inputs(data.documents), current_user
        )
    except DomainError as exc:
        raise to_http_exception(exc)
    return transmittal_to_response(transmittal)


@transmittals_router.post("/transmittals/{transmittal_id}/send")
async def send_transmittal(
    transmittal_id: str,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    service = build_transmittal_service(session)
    try:
        transmittal = await service.send(transmittal_id, current_user)
    except DomainError as exc:
        raise to_http_exception(exc)
    return transmittal_to_response(transmittal)


@transmittals_router.post("/transmittals/{transmittal_id}/receive")
async def receive_transmittal(
    transmittal_id: str,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    service = build_transmittal_service(session)
    try:
        transmittal = await service.mark_received(transmittal_id, current_user)
    except DomainError as exc:
        raise to_http_exception(exc)
    return transmittal_to_response(transmittal)


@transmittals_router.post("/transmittals/{transmittal_id}/acknowledge")
async def acknowledge_transmittal(
    transmittal_id: str,
    data: TransmittalComment,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    service = build_transmittal_service(session)
    try:
        transmittal = await service.acknowledge(transmittal_id, current_user, data.comment)
    except DomainError as exc:
        raise to_http_exception(exc)
    return transmittal_to_response(transmittal)


@transmittals_router.post("/transmittals/{transmittal_id}/reject")
async def reject_transmittal(
    transmittal_id: str,
    data: TransmittalComment,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    service = build_transmittal_service(session)
    try:
        transmittal = await service.reject(transmittal_id, current_user, data.comment)
    except DomainError as exc:
        raise to_http_exception(exc)
    return transmittal_to_response(transmittal)


@transmittals_router.get("/transmittals/{transmittal_id}/history")
async def get_transmittal_history(
    transmittal_id: str,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    service = build_transmittal_service(session)
    try:
        history = await service.get_history(transmittal_id)
    except DomainError as exc:
        raise to_http_exception(exc)
    return [transmittal_history_to_response(entry) for entry in history]


@transmittals_router.get("/transmittals/{transmittal_id}/cover-sheet")
async def get_transmittal_cover_sheet(
    transmittal_id: str,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    """Cover sheet as PDF"""
    service = build_transmittal_service(session)
    try:
        transmittal = await service.get(transmittal_id)
        content = await service.generate_cover_sheet(transmittal_id)
    except DomainError as exc:
        raise to_http_exception(exc)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{transmittal.transmittal_number}.pdf"'
        },
    )
