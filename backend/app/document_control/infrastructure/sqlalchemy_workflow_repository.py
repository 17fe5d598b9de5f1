from typing import Optional, Sequence

from sqlalchemy import func, or_, select, update

from app.document_control.application.ports import WorkflowRepository
from app.document_control.domain.errors import StaleWorkflowInstance
from app.document_control.domain.models import (
    ApprovalRequest,
    ApprovalStatus,
    WorkflowHistoryEntry,
    WorkflowInstance,
)
from app.document_control.infrastructure.session import SqlAlchemyUnitOfWork
from database import (
    ApprovalRequest as ApprovalRequestModel,
    WorkflowHistory as WorkflowHistoryModel,
    WorkflowInstance as WorkflowInstanceModel,
)


def _to_request(model: ApprovalRequestModel) -> ApprovalRequest:
    return ApprovalRequest(
        id=model.id,
        entity_type=model.entity_type,
        entity_id=model.entity_id,
        workflow_instance_id=model.workflow_instance_id,
        requester_id=model.requester_id,
        requester_name=model.requester_name,
        approver_id=model.approver_id,
        approver_name=model.approver_name,
        status=model.status,
        current_stage=model.current_stage,
        comment=model.comment,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


class SqlAlchemyWorkflowRepository(SqlAlchemyUnitOfWork, WorkflowRepository):
    async def get_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        result = await self._session.execute(
            select(WorkflowInstanceModel).where(WorkflowInstanceModel.id == instance_id)
        )
        instance = result.scalar_one_or_none()
        if instance is None:
            return None

        history_result = await self._session.execute(
            select(WorkflowHistoryModel)
            .where(WorkflowHistoryModel.instance_id == instance_id)
            .order_by(WorkflowHistoryModel.position)
        )
        history = tuple(
            WorkflowHistoryEntry(
                stage_id=row.stage_id,
                action=row.action,
                user_id=row.user_id,
                user_name=row.user_name,
                user_role=row.user_role,
                timestamp=row.timestamp,
                comment=row.comment,
            )
            for row in history_result.scalars().all()
        )
        return WorkflowInstance(
            id=instance.id,
            entity_type=instance.entity_type,
            entity_id=instance.entity_id,
            current_stage=instance.current_stage,
            created_at=instance.created_at,
            updated_at=instance.updated_at,
            history=history,
            version=instance.version,
        )

    async def add_instance(self, instance: WorkflowInstance) -> None:
        self._session.add(
            WorkflowInstanceModel(
                id=instance.id,
                entity_type=instance.entity_type,
                entity_id=instance.entity_id,
                current_stage=instance.current_stage,
                version=instance.version,
                created_at=instance.created_at,
                updated_at=instance.updated_at,
            )
        )
        self._add_history(instance, start=0)

    async def save_instance(self, instance: WorkflowInstance, expected_version: int) -> None:
        result = await self._session.execute(
            update(WorkflowInstanceModel)
            .where(
                WorkflowInstanceModel.id == instance.id,
                WorkflowInstanceModel.version == expected_version,
            )
            .values(
                current_stage=instance.current_stage,
                version=instance.version,
                updated_at=instance.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise StaleWorkflowInstance(
                "Workflow instance was modified concurrently",
                entity_id=instance.entity_id,
                instance_id=instance.id,
            )

        stored = await self._session.scalar(
            select(func.count())
            .select_from(WorkflowHistoryModel)
            .where(WorkflowHistoryModel.instance_id == instance.id)
        )
        self._add_history(instance, start=stored or 0)
        await self._flush_unique(
            "Workflow history was appended concurrently", instance_id=instance.id
        )

    def _add_history(self, instance: WorkflowInstance, start: int) -> None:
        for position, entry in enumerate(instance.history[start:], start=start):
            self._session.add(
                WorkflowHistoryModel(
                    instance_id=instance.id,
                    position=position,
                    stage_id=entry.stage_id,
                    action=entry.action,
                    user_id=entry.user_id,
                    user_name=entry.user_name,
                    user_role=entry.user_role,
                    comment=entry.comment,
                    timestamp=entry.timestamp,
                )
            )

    async def get_approval_request(self, request_id: str) -> Optional[ApprovalRequest]:
        result = await self._session.execute(
            select(ApprovalRequestModel).where(ApprovalRequestModel.id == request_id)
        )
        request = result.scalar_one_or_none()
        return _to_request(request) if request is not None else None

    async def find_live_request(self, entity_type: str, entity_id: str) -> Optional[ApprovalRequest]:
        result = await self._session.execute(
            select(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.entity_type == entity_type,
                ApprovalRequestModel.entity_id == entity_id,
                ApprovalRequestModel.status == ApprovalStatus.PENDING,
            )
            .limit(1)
        )
        request = result.scalar_one_or_none()
        return _to_request(request) if request is not None else None

    async def add_approval_request(self, request: ApprovalRequest) -> None:
        self._session.add(
            ApprovalRequestModel(
                id=request.id,
                entity_type=request.entity_type,
                entity_id=request.entity_id,
                workflow_instance_id=request.workflow_instance_id,
                requester_id=request.requester_id,
                requester_name=request.requester_name,
                approver_id=request.approver_id,
                approver_name=request.approver_name,
                status=request.status,
                current_stage=request.current_stage,
                comment=request.comment,
                created_at=request.created_at,
                updated_at=request.updated_at,
            )
        )
        await self._flush_unique(
            "Entity already has a pending approval request",
            entity_type=request.entity_type,
            entity_id=request.entity_id,
        )

    async def update_approval_request(self, request: ApprovalRequest) -> None:
        await self._session.execute(
            update(ApprovalRequestModel)
            .where(ApprovalRequestModel.id == request.id)
            .values(
                status=request.status,
                current_stage=request.current_stage,
                approver_id=request.approver_id,
                approver_name=request.approver_name,
                comment=request.comment,
                updated_at=request.updated_at,
            )
            .execution_options(synchronize_session=False)
        )

    async def list_pending_requests(self) -> Sequence[ApprovalRequest]:
        result = await self._session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.status == ApprovalStatus.PENDING)
            .order_by(ApprovalRequestModel.created_at)
        )
        return [_to_request(row) for row in result.scalars().all()]

    async def list_requests_for_user(self, user_id: str, limit: int) -> Sequence[ApprovalRequest]:
        result = await self._session.execute(
            select(ApprovalRequestModel)
            .where(
                or_(
                    ApprovalRequestModel.requester_id == user_id,
                    ApprovalRequestModel.approver_id == user_id,
                )
            )
            .order_by(ApprovalRequestModel.updated_at.desc())
            .limit(limit)
        )
        return [_to_request(row) for row in result.scalars().all()]
