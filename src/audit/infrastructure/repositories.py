"""
Audit Infrastructure Repositories
=================================

SQLAlchemy implementation of the audit repository.

Only inserts and reads are exposed.
"""

from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.audit.application.dto import AuditQuery
from src.audit.application.services import IAuditRepository
from src.audit.domain import AuditEntry, AuditStatistics
from src.audit.infrastructure.models import AuditLogModel


def _to_domain(model: AuditLogModel) -> AuditEntry:
    return AuditEntry(
        id=model.id,
        actor_id=model.actor_id,
        action=model.action,
        resource_type=model.resource_type,
        resource_id=model.resource_id,
        details=dict(model.details or {}),
        ip_address=model.ip_address,
        user_agent=model.user_agent,
        timestamp=model.timestamp,
        success=model.success,
        error_message=model.error_message,
    )


class SQLAlchemyAuditRepository(IAuditRepository):
    """
    SQLAlchemy implementation of audit repository.

    Handles persistence of AuditEntry records using async SQLAlchemy.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, entry: AuditEntry) -> AuditEntry:
        """Append a new entry."""
        model = AuditLogModel(
            id=entry.id,
            actor_id=entry.actor_id,
            action=entry.action,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            details=dict(entry.details),
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            timestamp=entry.timestamp,
            success=entry.success,
            error_message=entry.error_message,
        )
        self._session.add(model)
        await self._session.flush()
        return entry

    async def get(self, entry_id: str) -> Optional[AuditEntry]:
        """Get entry by ID."""
        model = await self._session.get(AuditLogModel, entry_id)
        return _to_domain(model) if model else None

    def _conditions(self, query: AuditQuery) -> list:
        conditions = []
        if query.actor_id is not None:
            conditions.append(AuditLogModel.actor_id == query.actor_id)
        if query.action is not None:
            conditions.append(AuditLogModel.action == query.action)
        if query.resource_type is not None:
            conditions.append(AuditLogModel.resource_type == query.resource_type)
        if query.resource_id is not None:
            conditions.append(AuditLogModel.resource_id == query.resource_id)
        if query.success is not None:
            conditions.append(AuditLogModel.success == query.success)
        if query.start is not None:
            conditions.append(AuditLogModel.timestamp >= query.start)
        if query.end is not None:
            conditions.append(AuditLogModel.timestamp <= query.end)
        return conditions

    async def list(self, query: AuditQuery) -> Tuple[List[AuditEntry], int]:
        """Filtered page of entries plus the total match count."""
        conditions = self._conditions(query)

        count_stmt = select(func.count()).select_from(AuditLogModel)
        stmt = select(AuditLogModel)
        if conditions:
            count_stmt = count_stmt.where(and_(*conditions))
            stmt = stmt.where(and_(*conditions))

        if query.sort_order == "asc":
            stmt = stmt.order_by(AuditLogModel.timestamp.asc(), AuditLogModel.id.asc())
        else:
            stmt = stmt.order_by(AuditLogModel.timestamp.desc(), AuditLogModel.id.desc())
        stmt = stmt.limit(query.limit).offset(query.offset)

        total = (await self._session.execute(count_stmt)).scalar_one()
        result = await self._session.execute(stmt)
        return [_to_domain(m) for m in result.scalars().all()], total

    async def statistics(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        actor_id: Optional[str] = None
    ) -> AuditStatistics:
        """Grouped counts over a time window."""
        conditions = []
        if start is not None:
            conditions.append(AuditLogModel.timestamp >= start)
        if end is not None:
            conditions.append(AuditLogModel.timestamp <= end)
        if actor_id is not None:
            conditions.append(AuditLogModel.actor_id == actor_id)

        async def grouped(column) -> dict:
            stmt = select(column, func.count()).group_by(column)
            if conditions:
                stmt = stmt.where(and_(*conditions))
            rows = (await self._session.execute(stmt)).all()
            return {row[0]: row[1] for row in rows}

        by_action = await grouped(AuditLogModel.action)
        by_resource = await grouped(AuditLogModel.resource_type)
        by_actor = {
            (key if key is not None else "system"): count
            for key, count in (await grouped(AuditLogModel.actor_id)).items()
        }
        by_success = {
            ("success" if key else "failed"): count
            for key, count in (await grouped(AuditLogModel.success)).items()
        }

        total = sum(by_action.values())
        return AuditStatistics(
            total=total,
            failed=by_success.get("failed", 0),
            by_action=by_action,
            by_resource=by_resource,
            by_actor=by_actor,
            by_success=by_success,
        )
