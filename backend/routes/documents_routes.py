"""
Document Control - Revision and Serial Number Routes
"""
from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_postgres_session
from app.document_control.domain.errors import DomainError
from app.document_control.domain.models import UserSummary
from app.document_control.presentation.response_mapper import (
    comparison_to_response,
    parsed_serial_to_response,
    reservation_to_response,
    revision_to_response,
)
from routes.auth import get_current_user
from routes.dependencies import (
    build_revision_service,
    build_serial_number_service,
    to_http_exception,
)

# Create router
documents_router = APIRouter(prefix="/api/dc", tags=["Documents"])


# ==================== PYDANTIC MODELS ====================

class RevisionCreate(BaseModel):
    artifact_ref: str
    size: int = 0
    changes: Optional[str] = None


class SerialNumberIssue(BaseModel):
    category: str
    project_code: Optional[str] = None


class ReservationCreate(BaseModel):
    category: str


# ==================== REVISION ROUTES ====================

@documents_router.post("/documents/{document_id}/revisions")
async def create_revision(
    document_id: str,
    data: RevisionCreate,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    """Upload the next lettered revision of a document (starts in draft)"""
    service = build_revision_service(session)
    try:
        revision = await service.create_revision(
            document_id, data.artifact_ref, data.size, current_user, data.changes
        )
    except DomainError as exc:
        raise to_http_exception(exc)
    return revision_to_response(revision)


@documents_router.get("/documents/{document_id}/revisions")
async def get_revision_history(
    document_id: str,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    service = build_revision_service(session)
    revisions = await service.get_revision_history(document_id)
    return [revision_to_response(revision) for revision in revisions]


@documents_router.get("/documents/{document_id}/revisions/current")
async def get_current_revision(
    document_id: str,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    """Latest approved revision"""
    service = build_revision_service(session)
    revision = await service.get_current_revision(document_id)
    if revision is None:
        raise HTTPException(status_code=404, detail="No approved revision")
    return revision_to_response(revision)


@documents_router.get("/documents/{document_id}/revisions/{revision_letter}")
async def get_revision(
    document_id: str,
    revision_letter: str,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    service = build_revision_service(session)
    revision = await service.get_revision(document_id, revision_letter)
    if revision is None:
        raise HTTPException(status_code=404, detail="Revision not found")
    return revision_to_response(revision)


@documents_router.get("/documents/{document_id}/compare")
async def compare_revisions(
    document_id: str,
    old: str,
    new: str,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    service = build_revision_service(session)
    try:
        comparison = await service.compare_revisions(document_id, old, new)
    except DomainError as exc:
        raise to_http_exception(exc)
    return comparison_to_response(comparison)


@documents_router.post("/revisions/{revision_id}/submit")
async def submit_revision(
    revision_id: str,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    service = build_revision_service(session)
    try:
        revision = await service.submit_for_review(revision_id, current_user)
    except DomainError as exc:
        raise to_http_exception(exc)
    return revision_to_response(revision)


@documents_router.post("/revisions/{revision_id}/approve")
async def approve_revision(
    revision_id: str,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    service = build_revision_service(session)
    try:
        revision = await service.approve_revision(revision_id, current_user)
    except DomainError as exc:
        raise to_http_exception(exc)
    return revision_to_response(revision)


# ==================== SERIAL NUMBER ROUTES ====================

@documents_router.post("/serial-numbers")
async def issue_serial_number(
    data: SerialNumberIssue,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    service = build_serial_number_service(session)
    try:
        serial = await service.issue(data.category.upper(), data.project_code)
    except DomainError as exc:
        raise to_http_exception(exc)
    return {"serial_number": serial}


@documents_router.get("/serial-numbers/validate")
async def validate_serial_number(
    serial: str,
    category: str,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    valid = build_serial_number_service(session).validate(serial, category.upper())
    return {"serial_number": serial, "category": category.upper(), "valid": valid}


@documents_router.get("/serial-numbers/parse")
async def parse_serial_number(
    serial: str,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    parsed = build_serial_number_service(session).parse(serial)
    if parsed is None:
        raise HTTPException(status_code=400, detail="Malformed serial number")
    return parsed_serial_to_response(parsed)


@documents_router.get("/serial-numbers/{category}/next")
async def preview_next_sequence_number(
    category: str,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    """Next sequence number for a category (preview only, nothing is issued)"""
    service = build_serial_number_service(session)
    try:
        number = await service.next_sequence_number(category.upper())
    except DomainError as exc:
        raise to_http_exception(exc)
    return {"category": category.upper(), "next_sequence_number": number}


@documents_router.post("/serial-numbers/reservations")
async def reserve_serial_number(
    data: ReservationCreate,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    """Issue a serial number and lease it to the caller"""
    service = build_serial_number_service(session)
    try:
        _, reservation_id = await service.reserve(data.category.upper(), current_user.id)
        reservation = await service.get_reservation(reservation_id)
    except DomainError as exc:
        raise to_http_exception(exc)
    return reservation_to_response(reservation)


@documents_router.get("/serial-numbers/reservations/{reservation_id}")
async def get_reservation(
    reservation_id: str,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    service = build_serial_number_service(session)
    try:
        reservation = await service.get_reservation(reservation_id)
    except DomainError as exc:
        raise to_http_exception(exc)
    return reservation_to_response(reservation)


@documents_router.post("/serial-numbers/reservations/{reservation_id}/consume")
async def consume_reservation(
    reservation_id: str,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    service = build_serial_number_service(session)
    try:
        reservation = await service.consume_reservation(reservation_id, current_user.id)
    except DomainError as exc:
        raise to_http_exception(exc)
    return reservation_to_response(reservation)
