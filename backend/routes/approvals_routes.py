"""
Document Control - Approval Routes
Approval requests driven by the workflow engine
"""
from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_postgres_session
from app.document_control.application.ports import utc_now
from app.document_control.domain.engine import WorkflowEngine
from app.document_control.domain.errors import DomainError
from app.document_control.domain.models import UserSummary
from app.document_control.presentation.response_mapper import approval_request_to_response
from routes.auth import get_current_user
from routes.dependencies import build_approval_service, get_workflow_registry, to_http_exception

# Create router
approvals_router = APIRouter(prefix="/api/dc", tags=["Approvals"])


# ==================== PYDANTIC MODELS ====================

class ApprovalRequestCreate(BaseModel):
    entity_type: str
    entity_id: str


class ApprovalActionData(BaseModel):
    action: str
    comment: Optional[str] = None


# ==================== WORKFLOW DEFINITIONS ====================

@approvals_router.get("/workflows")
async def list_workflows(current_user: UserSummary = Depends(get_current_user)):
    """Registered workflow definitions"""
    registry = get_workflow_registry()
    workflows = []
    for domain in registry.domains():
        definition = registry.require(domain)
        workflows.append({
            "domain": definition.domain,
            "initial_stage": definition.initial_stage,
            "final_stages": sorted(definition.final_stages),
            "stages": [
                {
                    "id": stage.id,
                    "name": stage.name,
                    "required_roles": sorted(stage.required_roles),
                    "transitions": dict(stage.transitions),
                }
                for stage in definition.stages.values()
            ],
        })
    return workflows


# ==================== APPROVAL ROUTES ====================

@approvals_router.post("/approvals")
async def create_approval_request(
    data: ApprovalRequestCreate,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    """Start a workflow for an entity"""
    service = build_approval_service(session)
    try:
        request = await service.create_approval_request(
            data.entity_type, data.entity_id, current_user
        )
    except DomainError as exc:
        raise to_http_exception(exc)
    return approval_request_to_response(request)


@approvals_router.get("/approvals/inbox")
async def get_approval_inbox(
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    """Pending requests the current user may act on"""
    service = build_approval_service(session)
    requests = await service.get_approval_requests(current_user.id, current_user.role)
    return [approval_request_to_response(request) for request in requests]


@approvals_router.get("/approvals/history")
async def get_approval_history(
    limit: int = 50,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    """Requests the current user raised or acted on, newest first"""
    if limit < 1:
        raise HTTPException(status_code=400, detail="limit must be positive")
    service = build_approval_service(session)
    requests = await service.get_approval_history(current_user.id, limit)
    return [approval_request_to_response(request) for request in requests]


@approvals_router.get("/approvals/{request_id}")
async def get_approval_request(
    request_id: str,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    """Request detail with workflow history and the caller's available actions"""
    service = build_approval_service(session)
    try:
        request, instance = await service.get_approval_request(request_id)
    except DomainError as exc:
        raise to_http_exception(exc)

    response = approval_request_to_response(request, instance)
    registry = get_workflow_registry()
    definition = registry.get(request.entity_type)
    engine = WorkflowEngine(registry, clock=utc_now)
    response["available_actions"] = (
        engine.available_actions(definition, instance.current_stage, current_user.role)
        if definition is not None
        else []
    )
    return response


@approvals_router.post("/approvals/{request_id}/actions")
async def process_approval(
    request_id: str,
    data: ApprovalActionData,
    current_user: UserSummary = Depends(get_current_user),
    session: AsyncSession = Depends(get_postgres_session)
):
    """Apply an action (approve / reject / request_changes / ...) to a request"""
    service = build_approval_service(session)
    try:
        request = await service.process_approval(
            request_id, data.action, current_user, data.comment
        )
    except DomainError as exc:
        raise to_http_exception(exc)
    return approval_request_to_response(request)
