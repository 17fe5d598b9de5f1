from typing import Sequence

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.document_control.application.ports import AuditLogRepository
from app.document_control.domain.models import AuditEntry, AuditFilters
from database import ActivityLog


class SqlAlchemyAuditLogRepository(AuditLogRepository):
    """Write-once activity log; entries are never updated or deleted."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add_audit_entry(self, entry: AuditEntry) -> None:
        self._session.add(
            ActivityLog(
                id=entry.id,
                action=entry.action,
                entity_type=entry.entity_type,
                entity_id=entry.entity_id,
                entity_name=entry.entity_name,
                user_id=entry.user_id,
                user_name=entry.user_name,
                user_role=entry.user_role,
                old_values=dict(entry.old_values) if entry.old_values is not None else None,
                new_values=dict(entry.new_values) if entry.new_values is not None else None,
                meta=dict(entry.metadata),
                timestamp=entry.timestamp,
            )
        )

    async def query_audit_entries(self, filters: AuditFilters) -> Sequence[AuditEntry]:
        query = select(ActivityLog)

        if filters.user_id:
            query = query.where(ActivityLog.user_id == filters.user_id)
        if filters.entity_type:
            query = query.where(ActivityLog.entity_type == filters.entity_type)
        if filters.entity_id:
            query = query.where(ActivityLog.entity_id == filters.entity_id)
        if filters.action:
            query = query.where(ActivityLog.action == filters.action)
        if filters.start:
            query = query.where(ActivityLog.timestamp >= filters.start)
        if filters.end:
            query = query.where(ActivityLog.timestamp <= filters.end)

        query = query.order_by(desc(ActivityLog.timestamp)).limit(filters.limit)

        result = await self._session.execute(query)
        return [
            AuditEntry(
                id=log.id,
                action=log.action,
                entity_type=log.entity_type,
                entity_id=log.entity_id,
                entity_name=log.entity_name,
                user_id=log.user_id,
                user_name=log.user_name,
                user_role=log.user_role,
                old_values=log.old_values,
                new_values=log.new_values,
                metadata=log.meta or {},
                timestamp=log.timestamp,
            )
            for log in result.scalars().all()
        ]
