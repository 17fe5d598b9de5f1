import logging
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple

from app.document_control.application.audit import AuditAction, AuditLogger
from app.document_control.application.notifications import NotificationDispatcher
from app.document_control.application.ports import (
    Clock,
    IdGenerator,
    UserDirectory,
    WorkflowRepository,
)
from app.document_control.domain.engine import WorkflowEngine
from app.document_control.domain.errors import (
    InvalidRequest,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    SequenceConflict,
    StaleWorkflowInstance,
)
from app.document_control.domain.models import (
    ApprovalRequest,
    ApprovalStatus,
    Notification,
    UserSummary,
    WorkflowDefinition,
    WorkflowInstance,
)

logger = logging.getLogger(__name__)


class ApprovalService:
    """Durable approval requests driven by the workflow engine."""

    def __init__(
        self,
        repository: WorkflowRepository,
        users: UserDirectory,
        engine: WorkflowEngine,
        audit: AuditLogger,
        notifications: NotificationDispatcher,
        id_generator: IdGenerator,
        clock: Clock,
        max_retries: int = 3,
    ) -> None:
        self._repository = repository
        self._users = users
        self._engine = engine
        self._audit = audit
        self._notifications = notifications
        self._id_generator = id_generator
        self._clock = clock
        self._max_retries = max(1, max_retries)

    async def create_approval_request(
        self,
        entity_type: str,
        entity_id: str,
        requester: UserSummary,
    ) -> ApprovalRequest:
        definition = self._engine.registry.require(entity_type)

        existing = await self._repository.find_live_request(entity_type, entity_id)
        if existing is not None:
            raise InvalidRequest(
                f"{entity_type} {entity_id} already has a pending approval request",
                entity_id=entity_id,
                request_id=existing.id,
            )

        now = self._clock()
        instance = WorkflowInstance(
            id=self._id_generator(),
            entity_type=entity_type,
            entity_id=entity_id,
            current_stage=definition.initial_stage,
            created_at=now,
            updated_at=now,
        )
        request = ApprovalRequest(
            id=self._id_generator(),
            entity_type=entity_type,
            entity_id=entity_id,
            workflow_instance_id=instance.id,
            requester_id=requester.id,
            requester_name=requester.name,
            status=ApprovalStatus.PENDING,
            current_stage=definition.initial_stage,
            created_at=now,
            updated_at=now,
        )

        await self._repository.add_instance(instance)
        try:
            await self._repository.add_approval_request(request)
        except SequenceConflict as exc:
            await self._repository.rollback()
            raise InvalidRequest(
                f"{entity_type} {entity_id} already has a pending approval request",
                entity_id=entity_id,
            ) from exc
        await self._audit.record(
            AuditAction.CREATE,
            entity_type=entity_type,
            entity_id=entity_id,
            actor=requester,
            entity_name=f"Approval request {request.id}",
            new_values={"stage": request.current_stage, "status": request.status},
            metadata={"approval_request_id": request.id},
        )
        await self._repository.commit()
        logger.info(
            f"Approval request {request.id} opened for {entity_type}/{entity_id} "
            f"at stage '{request.current_stage}'"
        )

        await self._notify_approvers(definition, request)
        return request

    async def process_approval(
        self,
        request_id: str,
        action: str,
        actor: UserSummary,
        comment: Optional[str] = None,
    ) -> ApprovalRequest:
        for attempt in range(1, self._max_retries + 1):
            request, instance = await self.get_approval_request(request_id)

            try:
                updated = self._engine.transition(instance, action, actor, comment)
            except (PermissionDenied, InvalidTransition) as exc:
                await self._record_denied(request, instance, action, actor, exc)
                raise

            definition = self._engine.registry.require(instance.entity_type)
            updated = replace(updated, version=instance.version + 1)
            updated_request = replace(
                request,
                status=self._status_for(definition, updated.current_stage),
                current_stage=updated.current_stage,
                approver_id=actor.id,
                approver_name=actor.name,
                comment=comment,
                updated_at=updated.updated_at,
            )

            try:
                await self._repository.save_instance(updated, expected_version=instance.version)
                await self._repository.update_approval_request(updated_request)
                await self._audit.record(
                    self._audit_action_for(updated_request.status),
                    entity_type=request.entity_type,
                    entity_id=request.entity_id,
                    actor=actor,
                    entity_name=f"Approval request {request.id}",
                    old_values={"stage": instance.current_stage, "status": request.status},
                    new_values={"stage": updated.current_stage, "status": updated_request.status},
                    metadata={"approval_request_id": request.id, "workflow_action": action},
                )
                await self._repository.commit()
            except StaleWorkflowInstance:
                await self._repository.rollback()
                if attempt == self._max_retries:
                    raise
                logger.warning(
                    f"Workflow instance {instance.id} changed concurrently, "
                    f"retrying '{action}' (attempt {attempt})"
                )
                continue

            logger.info(
                f"Approval request {request.id}: '{action}' by {actor.id} "
                f"moved {instance.current_stage} -> {updated.current_stage}"
            )
            self._notifications.dispatch(
                [
                    Notification(
                        user_id=request.requester_id,
                        title=f"Approval {action}",
                        message=f"Your {request.entity_type} has been {action}",
                        entity_type=request.entity_type,
                        entity_id=request.entity_id,
                        notification_type="approval_update",
                    )
                ]
            )
            return updated_request

        raise StaleWorkflowInstance(
            "Workflow instance kept changing", request_id=request_id, action=action
        )

    async def get_approval_request(
        self, request_id: str
    ) -> Tuple[ApprovalRequest, WorkflowInstance]:
        request = await self._repository.get_approval_request(request_id)
        if request is None:
            raise NotFound("Approval request not found", request_id=request_id)

        instance = await self._repository.get_instance(request.workflow_instance_id)
        if instance is None:
            raise NotFound(
                "Workflow instance not found",
                request_id=request_id,
                instance_id=request.workflow_instance_id,
            )
        return request, instance

    async def get_approval_requests(
        self, actor_id: str, actor_role: str
    ) -> List[ApprovalRequest]:
        """Pending requests whose current stage lets ``actor_role`` act."""
        inbox = []
        for request in await self._repository.list_pending_requests():
            definition = self._engine.get_workflow(request.entity_type)
            if definition is None:
                continue
            stage = definition.stages.get(request.current_stage)
            if stage is not None and stage.transitions and stage.authorizes(actor_role):
                inbox.append(request)
        return inbox

    async def get_approval_history(
        self, actor_id: str, limit: int = 50
    ) -> Sequence[ApprovalRequest]:
        return await self._repository.list_requests_for_user(actor_id, limit)

    def _status_for(self, definition: WorkflowDefinition, stage_id: str) -> str:
        if not self._engine.is_complete(definition, stage_id):
            return ApprovalStatus.PENDING
        if stage_id in definition.failure_stages:
            return ApprovalStatus.REJECTED
        return ApprovalStatus.APPROVED

    @staticmethod
    def _audit_action_for(status: str) -> str:
        if status == ApprovalStatus.APPROVED:
            return AuditAction.APPROVE
        if status == ApprovalStatus.REJECTED:
            return AuditAction.REJECT
        return AuditAction.TRANSITION

    async def _record_denied(
        self,
        request: ApprovalRequest,
        instance: WorkflowInstance,
        action: str,
        actor: UserSummary,
        exc: Exception,
    ) -> None:
        logger.warning(
            f"Denied '{action}' on approval request {request.id} by {actor.id} "
            f"({actor.role}) at stage '{instance.current_stage}': {exc}"
        )
        await self._audit.record(
            AuditAction.TRANSITION_DENIED,
            entity_type=request.entity_type,
            entity_id=request.entity_id,
            actor=actor,
            entity_name=f"Approval request {request.id}",
            metadata={
                "approval_request_id": request.id,
                "workflow_action": action,
                "stage": instance.current_stage,
                "reason": type(exc).__name__,
            },
        )
        await self._repository.commit()

    async def _notify_approvers(
        self, definition: WorkflowDefinition, request: ApprovalRequest
    ) -> None:
        stage = definition.stages.get(request.current_stage)
        if stage is None or not stage.required_roles:
            return

        try:
            approvers = await self._users.list_users_with_roles(sorted(stage.required_roles))
        except Exception:
            logger.exception(f"Could not look up approvers for request {request.id}")
            return

        self._notifications.dispatch(
            Notification(
                user_id=user.id,
                title="Approval Required",
                message=f"New {request.entity_type} requires your approval",
                entity_type=request.entity_type,
                entity_id=request.entity_id,
                notification_type="approval_required",
            )
            for user in approvers
        )
