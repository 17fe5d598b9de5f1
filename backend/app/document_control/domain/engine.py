"""
Workflow engine: a finite-state evaluator over declarative WorkflowDefinitions.

The engine never touches storage. ``transition`` returns a new instance and the
caller is responsible for persisting it.
"""
from dataclasses import replace
from datetime import datetime
from typing import Callable, List, Optional

from app.document_control.domain.errors import InvalidTransition, PermissionDenied
from app.document_control.domain.models import (
    UserSummary,
    WorkflowDefinition,
    WorkflowHistoryEntry,
    WorkflowInstance,
)
from app.document_control.domain.workflows import WorkflowRegistry


class WorkflowEngine:
    def __init__(self, registry: WorkflowRegistry, clock: Callable[[], datetime]) -> None:
        self._registry = registry
        self._clock = clock

    @property
    def registry(self) -> WorkflowRegistry:
        return self._registry

    def get_workflow(self, domain: str) -> Optional[WorkflowDefinition]:
        return self._registry.get(domain)

    def can_perform_action(
        self,
        definition: WorkflowDefinition,
        current_stage_id: str,
        action: str,
        actor_role: str,
    ) -> bool:
        stage = definition.stages.get(current_stage_id)
        if stage is None:
            return False
        if action not in stage.transitions:
            return False
        return stage.authorizes(actor_role)

    def next_stage(
        self,
        definition: WorkflowDefinition,
        current_stage_id: str,
        action: str,
    ) -> Optional[str]:
        stage = definition.stages.get(current_stage_id)
        if stage is None:
            return None
        return stage.transitions.get(action)

    def available_actions(
        self,
        definition: WorkflowDefinition,
        current_stage_id: str,
        actor_role: str,
    ) -> List[str]:
        stage = definition.stages.get(current_stage_id)
        if stage is None or not stage.authorizes(actor_role):
            return []
        return list(stage.allowed_actions)

    def is_complete(self, definition: WorkflowDefinition, stage_id: str) -> bool:
        return stage_id in definition.final_stages

    def transition(
        self,
        instance: WorkflowInstance,
        action: str,
        actor: UserSummary,
        comment: Optional[str] = None,
    ) -> WorkflowInstance:
        definition = self._registry.require(instance.entity_type)
        current = instance.current_stage
        stage = definition.stages.get(current)

        # an action the stage does not declare is illegal for everyone
        if stage is None or action not in stage.transitions:
            raise InvalidTransition(
                f"Action '{action}' is not allowed in stage '{current}'",
                entity_id=instance.entity_id,
                action=action,
                current_stage=current,
            )

        if not self.can_perform_action(definition, current, action, actor.role):
            raise PermissionDenied(
                f"Role '{actor.role}' may not '{action}' in stage '{current}'",
                entity_id=instance.entity_id,
                action=action,
                current_stage=current,
            )

        target = self.next_stage(definition, current, action)
        if target is None or target not in definition.stages:
            raise InvalidTransition(
                f"No next stage for '{action}' from '{current}'",
                entity_id=instance.entity_id,
                action=action,
                current_stage=current,
            )

        now = self._clock()
        entry = WorkflowHistoryEntry(
            stage_id=current,
            action=action,
            user_id=actor.id,
            user_name=actor.name,
            user_role=actor.role,
            timestamp=now,
            comment=comment,
        )
        return replace(
            instance,
            current_stage=target,
            history=tuple(instance.history) + (entry,),
            updated_at=now,
        )
