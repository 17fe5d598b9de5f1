"""
Workflow definitions and the registry that holds them.

Definitions are declared as plain data (the same shape a JSON file uses) and
validated by ``parse_workflow_definition`` before the engine ever sees them.
Each stage maps an action explicitly to its destination stage.
"""
import json
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from app.document_control.domain.errors import (
    InvalidWorkflowDefinition,
    UnknownWorkflowDomain,
)
from app.document_control.domain.models import WorkflowDefinition, WorkflowStage


# NCR: Open → Inspection → Corrective Action → Verification → Closed
NCR_WORKFLOW: Dict[str, Any] = {
    "domain": "ncr",
    "initial_stage": "open",
    "final_stages": ["closed", "rejected"],
    "failure_stages": ["rejected"],
    "stages": [
        {
            "id": "open",
            "name": "Open",
            "required_roles": ["site_engineer", "qa_manager"],
            "transitions": {"submit": "inspection", "approve": "inspection", "reject": "rejected"},
        },
        {
            "id": "inspection",
            "name": "Inspection",
            "required_roles": ["qa_manager"],
            "transitions": {"approve": "corrective_action", "request_changes": "open"},
        },
        {
            "id": "corrective_action",
            "name": "Corrective Action",
            "required_roles": ["site_engineer", "project_manager"],
            "transitions": {"complete": "verification"},
        },
        {
            "id": "verification",
            "name": "Verification",
            "required_roles": ["qa_manager"],
            "transitions": {"approve": "closed", "request_changes": "corrective_action"},
        },
        {"id": "closed", "name": "Closed"},
        {"id": "rejected", "name": "Rejected"},
    ],
}

# Document: Draft → Review → Approval → Published
DOCUMENT_WORKFLOW: Dict[str, Any] = {
    "domain": "document",
    "initial_stage": "draft",
    "final_stages": ["published", "rejected"],
    "failure_stages": ["rejected"],
    "stages": [
        {
            "id": "draft",
            "name": "Draft",
            "required_roles": ["site_engineer", "project_manager"],
            "transitions": {"submit": "review"},
        },
        {
            "id": "review",
            "name": "Under Review",
            "required_roles": ["project_manager", "qa_manager"],
            "transitions": {"approve": "approval", "request_changes": "draft"},
        },
        {
            "id": "approval",
            "name": "Pending Approval",
            "required_roles": ["admin", "super_admin"],
            "transitions": {"approve": "published", "reject": "rejected", "request_changes": "review"},
        },
        {"id": "published", "name": "Published"},
        {"id": "rejected", "name": "Rejected"},
    ],
}

# Expense: Pending → Manager Approval → Finance Approval → Paid
EXPENSE_WORKFLOW: Dict[str, Any] = {
    "domain": "expense",
    "initial_stage": "pending",
    "final_stages": ["paid", "rejected"],
    "failure_stages": ["rejected"],
    "stages": [
        {
            "id": "pending",
            "name": "Pending",
            "required_roles": ["site_engineer", "project_manager"],
            "transitions": {"submit": "manager_approval"},
        },
        {
            "id": "manager_approval",
            "name": "Manager Approval",
            "required_roles": ["project_manager"],
            "transitions": {"approve": "finance_approval", "reject": "rejected"},
        },
        {
            "id": "finance_approval",
            "name": "Finance Approval",
            "required_roles": ["accountant", "admin"],
            "transitions": {"approve": "paid", "request_changes": "manager_approval"},
        },
        {"id": "paid", "name": "Paid"},
        {"id": "rejected", "name": "Rejected"},
    ],
}

BUILTIN_WORKFLOWS = (NCR_WORKFLOW, DOCUMENT_WORKFLOW, EXPENSE_WORKFLOW)


def parse_workflow_definition(raw: Mapping[str, Any]) -> WorkflowDefinition:
    """Build a WorkflowDefinition from plain data, rejecting inconsistent graphs."""
    domain = raw.get("domain")
    if not domain:
        raise InvalidWorkflowDefinition("Workflow definition requires a domain")

    stages: Dict[str, WorkflowStage] = {}
    for raw_stage in raw.get("stages", []):
        stage_id = raw_stage["id"]
        if stage_id in stages:
            raise InvalidWorkflowDefinition(
                f"Duplicate stage '{stage_id}'", domain=domain, stage=stage_id
            )
        stages[stage_id] = WorkflowStage(
            id=stage_id,
            name=raw_stage.get("name", stage_id),
            required_roles=frozenset(raw_stage.get("required_roles", [])),
            transitions=MappingProxyType(dict(raw_stage.get("transitions", {}))),
        )

    if not stages:
        raise InvalidWorkflowDefinition("Workflow has no stages", domain=domain)

    initial_stage = raw.get("initial_stage")
    if initial_stage not in stages:
        raise InvalidWorkflowDefinition(
            f"Initial stage '{initial_stage}' is not declared", domain=domain
        )

    final_stages = frozenset(raw.get("final_stages", []))
    failure_stages = frozenset(raw.get("failure_stages", []))
    if not final_stages:
        raise InvalidWorkflowDefinition("Workflow has no final stages", domain=domain)
    undeclared = sorted(final_stages - stages.keys())
    if undeclared:
        raise InvalidWorkflowDefinition(
            f"Final stages not declared: {', '.join(undeclared)}", domain=domain
        )
    if not failure_stages <= final_stages:
        raise InvalidWorkflowDefinition(
            "Failure stages must be final stages", domain=domain
        )

    for stage in stages.values():
        if stage.id in final_stages:
            if stage.transitions:
                raise InvalidWorkflowDefinition(
                    f"Final stage '{stage.id}' cannot declare actions",
                    domain=domain,
                    stage=stage.id,
                )
            continue
        if not stage.transitions:
            raise InvalidWorkflowDefinition(
                f"Stage '{stage.id}' has no outgoing transitions",
                domain=domain,
                stage=stage.id,
            )
        for action, target in stage.transitions.items():
            if target not in stages:
                raise InvalidWorkflowDefinition(
                    f"Action '{action}' on stage '{stage.id}' targets unknown stage '{target}'",
                    domain=domain,
                    stage=stage.id,
                    action=action,
                )

    return WorkflowDefinition(
        domain=domain,
        stages=MappingProxyType(stages),
        initial_stage=initial_stage,
        final_stages=final_stages,
        failure_stages=failure_stages,
    )


def load_definitions_file(path: Union[str, Path]) -> List[WorkflowDefinition]:
    """Read a JSON file holding either one definition or a list of them."""
    with open(path, "r", encoding="utf-8") as f:
        payload = json.load(f)
    if isinstance(payload, Mapping):
        payload = [payload]
    return [parse_workflow_definition(raw) for raw in payload]


class WorkflowRegistry:
    """Immutable lookup of workflow definitions by domain tag."""

    def __init__(self, definitions: Iterable[WorkflowDefinition]) -> None:
        self._definitions: Dict[str, WorkflowDefinition] = {}
        for definition in definitions:
            self._definitions[definition.domain] = definition

    def get(self, domain: str) -> Optional[WorkflowDefinition]:
        return self._definitions.get(domain)

    def require(self, domain: str) -> WorkflowDefinition:
        definition = self._definitions.get(domain)
        if definition is None:
            raise UnknownWorkflowDomain(
                f"No workflow registered for '{domain}'", domain=domain
            )
        return definition

    def domains(self) -> List[str]:
        return sorted(self._definitions)

    @classmethod
    def with_builtins(
        cls, extra: Iterable[WorkflowDefinition] = ()
    ) -> "WorkflowRegistry":
        """Built-in NCR/document/expense definitions, overridden by ``extra``."""
        definitions = [parse_workflow_definition(raw) for raw in BUILTIN_WORKFLOWS]
        definitions.extend(extra)
        return cls(definitions)
