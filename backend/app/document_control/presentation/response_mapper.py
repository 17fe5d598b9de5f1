from datetime import datetime
from typing import Any, Dict, Optional

from app.document_control.domain.models import (
    ApprovalRequest,
    AuditEntry,
    DocumentRevision,
    ParsedSerialNumber,
    RevisionComparison,
    SerialNumberReservation,
    Transmittal,
    TransmittalHistoryEntry,
    WorkflowInstance,
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def workflow_instance_to_response(instance: WorkflowInstance) -> Dict[str, Any]:
    return {
        "id": instance.id,
        "entity_type": instance.entity_type,
        "entity_id": instance.entity_id,
        "current_stage": instance.current_stage,
        "version": instance.version,
        "history": [
            {
                "stage_id": entry.stage_id,
                "action": entry.action,
                "user_id": entry.user_id,
                "user_name": entry.user_name,
                "user_role": entry.user_role,
                "comment": entry.comment,
                "timestamp": _iso(entry.timestamp),
            }
            for entry in instance.history
        ],
        "created_at": _iso(instance.created_at),
        "updated_at": _iso(instance.updated_at),
    }


def approval_request_to_response(
    request: ApprovalRequest, instance: Optional[WorkflowInstance] = None
) -> Dict[str, Any]:
    response = {
        "id": request.id,
        "entity_type": request.entity_type,
        "entity_id": request.entity_id,
        "workflow_instance_id": request.workflow_instance_id,
        "requester_id": request.requester_id,
        "requester_name": request.requester_name,
        "approver_id": request.approver_id,
        "approver_name": request.approver_name,
        "status": request.status,
        "current_stage": request.current_stage,
        "comment": request.comment,
        "created_at": _iso(request.created_at),
        "updated_at": _iso(request.updated_at),
    }
    if instance is not None:
        response["workflow"] = workflow_instance_to_response(instance)
    return response


def revision_to_response(revision: DocumentRevision) -> Dict[str, Any]:
    return {
        "id": revision.id,
        "document_id": revision.document_id,
        "revision_letter": revision.revision_letter,
        "version": revision.version,
        "title": revision.title,
        "status": revision.status,
        "artifact_ref": revision.artifact_ref,
        "size": revision.size,
        "created_by": revision.created_by,
        "created_at": _iso(revision.created_at),
        "approved_by": revision.approved_by,
        "approved_at": _iso(revision.approved_at),
        "changes": revision.changes,
    }


def comparison_to_response(comparison: RevisionComparison) -> Dict[str, Any]:
    return {
        "old_revision": revision_to_response(comparison.old_revision),
        "new_revision": revision_to_response(comparison.new_revision),
        "changes": list(comparison.changes),
    }


def reservation_to_response(reservation: SerialNumberReservation) -> Dict[str, Any]:
    return {
        "id": reservation.id,
        "serial_number": reservation.serial_number,
        "category": reservation.category,
        "holder_id": reservation.holder_id,
        "created_at": _iso(reservation.created_at),
        "expires_at": _iso(reservation.expires_at),
        "consumed_at": _iso(reservation.consumed_at),
    }


def parsed_serial_to_response(parsed: ParsedSerialNumber) -> Dict[str, Any]:
    return {
        "prefix": parsed.prefix,
        "category": parsed.category,
        "number": parsed.number,
        "project_code": parsed.project_code,
    }


def transmittal_to_response(transmittal: Transmittal) -> Dict[str, Any]:
    return {
        "id": transmittal.id,
        "transmittal_number": transmittal.transmittal_number,
        "project_id": transmittal.project_id,
        "subject": transmittal.subject,
        "sender": transmittal.sender,
        "sender_organization": transmittal.sender_organization,
        "recipient": transmittal.recipient,
        "recipient_organization": transmittal.recipient_organization,
        "status": transmittal.status,
        "transmittal_type": transmittal.transmittal_type,
        "documents": [
            {
                "document_id": document.document_id,
                "document_number": document.document_number,
                "title": document.title,
                "revision": document.revision,
                "copies": document.copies,
                "format": document.format,
                "action": document.action,
            }
            for document in transmittal.documents
        ],
        "transmittal_date": _iso(transmittal.transmittal_date),
        "due_date": _iso(transmittal.due_date),
        "notes": transmittal.notes,
        "created_by": transmittal.created_by,
        "created_at": _iso(transmittal.created_at),
        "updated_at": _iso(transmittal.updated_at),
    }


def transmittal_history_to_response(entry: TransmittalHistoryEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "transmittal_id": entry.transmittal_id,
        "action": entry.action,
        "performed_by": entry.performed_by,
        "performed_at": _iso(entry.performed_at),
        "comment": entry.comment,
    }


def audit_entry_to_response(entry: AuditEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "action": entry.action,
        "entity_type": entry.entity_type,
        "entity_id": entry.entity_id,
        "entity_name": entry.entity_name,
        "user_id": entry.user_id,
        "user_name": entry.user_name,
        "user_role": entry.user_role,
        "old_values": dict(entry.old_values) if entry.old_values is not None else None,
        "new_values": dict(entry.new_values) if entry.new_values is not None else None,
        "metadata": dict(entry.metadata),
        "timestamp": _iso(entry.timestamp),
    }
