"""
Document Control - Audit Log Routes
"""
from fastapi import APIRouter, HTTPException, Depends
from typing import Optional
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_postgres_session
from app.document_control.domain.models import AuditFilters, UserSummary
from app.document_control.presentation.response_mapper import audit_entry_to_response
from routes.auth import get_current_user
from routes.dependencies import build_audit_logger, naive_utc

# Create router
audit_router = APIRouter(prefix="/api/dc", tags=["Audit"])


@audit_router.get("/audit")
async def query_audit_log(
    user_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    action: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 100,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    """Audit entries, newest first"""
    if limit < 1:
        raise HTTPException(status_code=400, detail="limit must be positive")
    start, end = naive_utc(start), naive_utc(end)
    if start and end and start > end:
        raise HTTPException(status_code=400, detail="start must not be after end")

    audit = build_audit_logger(session)
    entries = await audit.query(
        AuditFilters(
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.upper() if action else None,
            start=start,
            end=end,
            limit=limit,
        )
    )
    return [audit_entry_to_response(entry) for entry in entries]
