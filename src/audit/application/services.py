"""
Audit Application Services
==========================

Recording and querying the audit ledger.

Every write happens in its own session and transaction, after the business
transaction that triggered it has ended. A failed write is logged and
swallowed so it never changes the outcome of the operation being audited.
"""

import math
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from src.access.domain import AuditScope, can_access_audit_logs
from src.audit.application.dto import AuditQuery
from src.audit.domain import AuditEntry, AuditStatistics
from src.config import AuditAction, AuditResource
from src.core import (
    Origin, Principal,
    PermissionDeniedException, ResourceNotFoundException,
)
from src.infrastructure.database import utcnow
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Repository Interface (Dependency Inversion) ==========

class IAuditRepository(ABC):
    """Interface for audit ledger access. There is no mutation path."""

    @abstractmethod
    async def add(self, entry: AuditEntry) -> AuditEntry:
        """Append a new entry."""

    @abstractmethod
    async def get(self, entry_id: str) -> Optional[AuditEntry]:
        """Get entry by ID."""

    @abstractmethod
    async def list(self, query: AuditQuery) -> Tuple[List[AuditEntry], int]:
        """Filtered page of entries plus the total match count."""

    @abstractmethod
    async def statistics(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        actor_id: Optional[str] = None
    ) -> AuditStatistics:
        """Grouped counts over a time window."""


def _value(item: Any) -> Any:
    return item.value if hasattr(item, "value") else item


# ========== Application Services ==========

class AuditService:
    """
    Service for the audit ledger.

    Holds a session factory rather than a session: audit writes must not
    share a transaction with the business operation they describe.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        repository_factory: Optional[Callable[[AsyncSession], IAuditRepository]] = None
    ):
        self._session_factory = session_factory
        if repository_factory is None:
            from src.audit.infrastructure.repositories import SQLAlchemyAuditRepository
            repository_factory = SQLAlchemyAuditRepository
        self._repository_factory = repository_factory

    async def record(
        self,
        actor_id: Optional[str],
        action: AuditAction | str,
        resource_type: AuditResource | str,
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        origin: Optional[Origin] = None,
        success: bool = True,
        error_message: Optional[str] = None
    ) -> Optional[AuditEntry]:
        """
        Append one entry to the ledger.

        Returns:
            The stored entry, or None if the write failed
        """
        origin = origin or Origin()
        entry = AuditEntry(
            id=str(uuid4()),
            actor_id=actor_id,
            action=_value(action),
            resource_type=_value(resource_type),
            resource_id=resource_id,
            details=details or {},
            ip_address=origin.ip_address,
            user_agent=origin.user_agent,
            timestamp=utcnow(),
            success=success,
            error_message=error_message,
        )

        try:
            async with self._session_factory() as session:
                repo = self._repository_factory(session)
                stored = await repo.add(entry)
                await session.commit()
                return stored
        except Exception as e:
            logger.error(
                "Failed to write audit entry",
                extra={
                    "audit_action": entry.action,
                    "resource_type": entry.resource_type,
                    "resource_id": resource_id,
                    "error": str(e),
                }
            )
            return None

    async def deny(
        self,
        principal: Principal,
        resource_type: AuditResource | str,
        action: str,
        origin: Optional[Origin] = None,
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> PermissionDeniedException:
        """Audit a permission denial and build the exception to raise."""
        resource = _value(resource_type)
        await self.record(
            actor_id=principal.user_id,
            action=AuditAction.PERMISSION_DENIED,
            resource_type=resource,
            resource_id=resource_id,
            details={"attempted_action": action, "role": principal.role.value, **(details or {})},
            origin=origin,
            success=False,
            error_message=f"Role {principal.role.value} may not {action}",
        )
        return PermissionDeniedException(resource, action, resource_id)

    async def _scoped_actor(
        self,
        principal: Principal,
        origin: Optional[Origin],
        action: str
    ) -> Optional[str]:
        scope = can_access_audit_logs(principal)
        if scope == AuditScope.NONE:
            raise await self.deny(principal, AuditResource.AUDIT_LOG, action, origin)
        if scope == AuditScope.OWN:
            return principal.user_id
        return None

    async def list_entries(
        self,
        query: AuditQuery,
        principal: Principal,
        origin: Optional[Origin] = None
    ) -> Dict[str, Any]:
        """
        List entries visible to the caller.

        Agents are pinned to their own entries whatever actor filter they pass.

        Returns:
            Dict with items and pagination info
        """
        own_actor = await self._scoped_actor(principal, origin, "view")
        if own_actor is not None:
            query = query.model_copy(update={"actor_id": own_actor})

        async with self._session_factory() as session:
            items, total = await self._repository_factory(session).list(query)

        return {
            "items": items,
            "pagination": {
                "total": total,
                "page": query.page,
                "limit": query.limit,
                "pages": math.ceil(total / query.limit) if total else 0,
            },
        }

    async def get_entry(
        self,
        entry_id: str,
        principal: Principal,
        origin: Optional[Origin] = None
    ) -> AuditEntry:
        """Fetch one entry; agents only see their own."""
        own_actor = await self._scoped_actor(principal, origin, "view")

        async with self._session_factory() as session:
            entry = await self._repository_factory(session).get(entry_id)

        if entry is None or (own_actor is not None and entry.actor_id != own_actor):
            raise ResourceNotFoundException("Audit entry", entry_id)
        return entry

    async def statistics(
        self,
        principal: Principal,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        origin: Optional[Origin] = None
    ) -> AuditStatistics:
        """Grouped counts, restricted to the caller's own entries for agents."""
        own_actor = await self._scoped_actor(principal, origin, "stats")

        async with self._session_factory() as session:
            return await self._repository_factory(session).statistics(start, end, own_actor)
