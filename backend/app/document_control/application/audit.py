import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from app.document_control.application.ports import AuditLogRepository, Clock, IdGenerator
from app.document_control.domain.models import AuditEntry, AuditFilters, UserSummary

logger = logging.getLogger(__name__)

REDACT_KEYS = {"password", "token", "access", "refresh", "secret", "api_key"}


class AuditAction:
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    TRANSITION = "TRANSITION"
    TRANSITION_DENIED = "TRANSITION_DENIED"


def _sanitize(meta: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    out = {}
    for key, value in (meta or {}).items():
        out[key] = "***" if key.lower() in REDACT_KEYS else value
    return out


def changed_fields(old: Mapping[str, Any], new: Mapping[str, Any]) -> List[str]:
    return [key for key in new if old.get(key) != new[key]]


class AuditLogger:
    """
    Write-once audit trail.

    Entries are added to the caller's unit of work, so they commit (or roll
    back) together with the state change they describe.
    """

    def __init__(
        self,
        repository: AuditLogRepository,
        id_generator: IdGenerator,
        clock: Clock,
        max_limit: int = 500,
    ) -> None:
        self._repository = repository
        self._id_generator = id_generator
        self._clock = clock
        self._max_limit = max_limit

    async def record(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        actor: UserSummary,
        entity_name: Optional[str] = None,
        old_values: Optional[Mapping[str, Any]] = None,
        new_values: Optional[Mapping[str, Any]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> AuditEntry:
        meta = _sanitize(metadata)
        if old_values is not None and new_values is not None:
            meta.setdefault("changed_fields", changed_fields(old_values, new_values))

        entry = AuditEntry(
            id=self._id_generator(),
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_name=entity_name,
            user_id=actor.id,
            user_name=actor.name,
            user_role=actor.role,
            timestamp=self._clock(),
            old_values=dict(old_values) if old_values is not None else None,
            new_values=dict(new_values) if new_values is not None else None,
            metadata=meta,
        )
        await self._repository.add_audit_entry(entry)
        logger.debug(f"Audit {action} {entity_type}/{entity_id} by {actor.id}")
        return entry

    async def query(self, filters: AuditFilters) -> Sequence[AuditEntry]:
        limit = max(1, min(filters.limit, self._max_limit))
        if limit != filters.limit:
            filters = AuditFilters(
                user_id=filters.user_id,
                entity_type=filters.entity_type,
                entity_id=filters.entity_id,
                action=filters.action,
                start=filters.start,
                end=filters.end,
                limit=limit,
            )
        return await self._repository.query_audit_entries(filters)
