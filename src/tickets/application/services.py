"""
Ticket Application Services
===========================

Orchestrates the ticket lifecycle.

Every mutating operation is one unit: permission check, domain change with
its history entries, then a single commit of the ticket and its children.
The audit entry is written after that transaction has ended.
"""

import math
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.access.domain import (
    authorize, can_access_ticket, can_attach_to_ticket, can_read_ticket, ticket_visibility,
    TicketVisibility,
)
from src.access.domain.permissions import (
    TICKETS, CREATE, UPDATE_ASSIGNED, ESCALATE, REASSIGN, ADD_COMMENTS, READ_OWN,
)
from src.accounts.application.services import IUserRepository
from src.audit.application import AuditService
from src.config import (
    AuditAction, AuditResource, Confidentiality, Priority, Role, Settings, TicketCategory,
    TicketStatus,
)
from src.core import (
    Origin, Principal,
    PersistenceException, ResourceNotFoundException, ValidationException,
)
from src.infrastructure.database import utcnow
from src.shared.infrastructure.logging import get_logger
from src.sla.domain import ISLAConfigProvider
from src.tickets.domain import Attachment, Comment, HistoryEntry, Ticket, parse_choice

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketRepository(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def get(self, ticket_id: str, for_update: bool = False) -> Optional[Ticket]:
        """Get a ticket with its history, comments and attachments."""

    @abstractmethod
    async def list(
        self,
        visibility: TicketVisibility,
        status: Optional[TicketStatus] = None,
        priority: Optional[Priority] = None,
        offset: int = 0,
        limit: int = 20
    ) -> Tuple[List[Ticket], int]:
        """Page of tickets (children not loaded), newest first, plus total."""

    @abstractmethod
    async def history(
        self,
        ticket_id: str,
        offset: int = 0,
        limit: int = 50,
        ascending: bool = True
    ) -> Tuple[List[HistoryEntry], int]:
        """Page of history entries ordered by sequence."""

    @abstractmethod
    async def add(self, ticket: Ticket) -> None:
        """Insert a new ticket and its pending children."""

    @abstractmethod
    async def save(self, ticket: Ticket) -> None:
        """Write changed fields and insert pending children."""


class ITicketNumberAllocator(ABC):
    """Hands out ticket numbers within the caller's transaction."""

    @abstractmethod
    def reserve(self, session: AsyncSession) -> AbstractAsyncContextManager[str]:
        """
        Context manager yielding the next number.

        The caller must commit or roll back before the context exits.
        """


# ========== Result Types ==========

@dataclass(frozen=True)
class TicketPage:
    items: List[Ticket]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0


@dataclass(frozen=True)
class HistoryPage:
    items: List[HistoryEntry]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0


# ========== Application Service ==========

class TicketService:
    """
    Service for ticket operations.

    Permission failures roll back, are audited, and raise
    PermissionDeniedException before anything changes. Storage failures
    roll back the ticket and its new history together, are audited as
    `ticket_update_failed`, and raise PersistenceException.
    """

    def __init__(
        self,
        session: AsyncSession,
        ticket_repository: ITicketRepository,
        user_repository: IUserRepository,
        audit_service: AuditService,
        number_allocator: ITicketNumberAllocator,
        sla_config_provider: ISLAConfigProvider,
        settings: Settings
    ):
        self._session = session
        self._tickets = ticket_repository
        self._users = user_repository
        self._audit = audit_service
        self._allocator = number_allocator
        self._sla_config = sla_config_provider
        self._settings = settings

    # ========== Helpers ==========

    async def _deny(
        self,
        principal: Principal,
        action: str,
        origin: Origin,
        ticket: Optional[Ticket] = None
    ) -> None:
        await self._session.rollback()
        details = {"ticket_number": ticket.ticket_number} if ticket else None
        raise await self._audit.deny(
            principal,
            AuditResource.TICKET,
            action,
            origin,
            resource_id=ticket.id if ticket else None,
            details=details,
        )

    async def _load(self, ticket_id: str, for_update: bool = False) -> Ticket:
        ticket = await self._tickets.get(ticket_id, for_update=for_update)
        if ticket is None:
            await self._session.rollback()
            raise ResourceNotFoundException("Ticket", ticket_id)
        return ticket

    async def _persist(
        self,
        ticket: Ticket,
        operation: str,
        principal: Principal,
        origin: Origin,
        new: bool = False,
        retry_on_conflict: bool = False
    ) -> bool:
        """
        Flush and commit the ticket with its pending children, atomically.

        With `retry_on_conflict`, a history sequence collision (another writer
        committed after the load) rolls back and returns False instead of
        failing, so the caller can re-apply its change on fresh state.
        """
        try:
            if new:
                await self._tickets.add(ticket)
            else:
                await self._tickets.save(ticket)
            await self._session.commit()
        except IntegrityError as e:
            if not retry_on_conflict:
                await self._fail_persist(ticket, operation, principal, origin, new, e)
            await self._session.rollback()
            logger.warning(
                "Ticket changed concurrently, retrying",
                extra={"operation": operation, "ticket_id": ticket.id}
            )
            return False
        except SQLAlchemyError as e:
            await self._fail_persist(ticket, operation, principal, origin, new, e)

        ticket.mark_persisted()
        return True

    async def _fail_persist(
        self,
        ticket: Ticket,
        operation: str,
        principal: Principal,
        origin: Origin,
        new: bool,
        error: SQLAlchemyError
    ) -> None:
        """Roll back, log and audit a failed write, then raise PersistenceException."""
        await self._session.rollback()
        logger.error(
            "Ticket write failed",
            extra={
                "operation": operation,
                "ticket_id": ticket.id,
                "error_type": type(error).__name__,
                "error": str(error),
            }
        )
        await self._audit.record(
            actor_id=principal.user_id,
            action=AuditAction.TICKET_UPDATE_FAILED,
            resource_type=AuditResource.TICKET,
            resource_id=None if new else ticket.id,
            details={"operation": operation},
            origin=origin,
            success=False,
            error_message=f"Could not complete {operation}",
        )
        raise PersistenceException(operation, {"error_type": type(error).__name__}) from error

    async def _record(
        self,
        principal: Principal,
        action: AuditAction,
        ticket: Ticket,
        origin: Origin,
        details: Optional[Dict[str, Any]] = None,
        resource_type: AuditResource = AuditResource.TICKET,
        resource_id: Optional[str] = None
    ) -> None:
        await self._audit.record(
            actor_id=principal.user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id or ticket.id,
            details={"ticket_number": ticket.ticket_number, **(details or {})},
            origin=origin,
        )

    # ========== Creation ==========

    async def create_ticket(
        self,
        title: str,
        description: str,
        category: TicketCategory,
        priority: Priority,
        principal: Principal,
        origin: Origin,
        confidentiality: Confidentiality = Confidentiality.INTERNAL
    ) -> Ticket:
        """
        Create a ticket.

        The SLA deadline is fixed at creation from the priority's hours.
        The ticket number is reserved and committed under the allocator's
        lock so concurrent creations get distinct, contiguous numbers.
        """
        if not authorize(principal.role, TICKETS, CREATE):
            await self._deny(principal, CREATE, origin)

        category = parse_choice(TicketCategory, category, "category")
        priority = parse_choice(Priority, priority, "priority")
        confidentiality = parse_choice(Confidentiality, confidentiality, "confidentiality")

        now = utcnow()
        deadline = self._sla_config.get_config().deadline_for(priority, now)

        async with self._allocator.reserve(self._session) as ticket_number:
            ticket = Ticket.open(
                id=str(uuid4()),
                ticket_number=ticket_number,
                creator_id=principal.user_id,
                title=title,
                description=description,
                category=category,
                priority=priority,
                sla_deadline=deadline,
                ip_address=origin.ip_address,
                now=now,
                confidentiality=confidentiality,
            )
            await self._persist(ticket, "ticket creation", principal, origin, new=True)

        logger.info(
            "Ticket created",
            extra={
                "ticket_id": ticket.id,
                "ticket_number": ticket.ticket_number,
                "priority": ticket.priority.value,
            }
        )
        await self._record(
            principal, AuditAction.TICKET_CREATED, ticket, origin,
            {"title": ticket.title, "priority": ticket.priority.value, "category": ticket.category.value},
        )
        return ticket

    # ========== Queries ==========

    async def get_ticket(self, ticket_id: str, principal: Principal, origin: Origin) -> Ticket:
        ticket = await self._load(ticket_id)
        if not can_read_ticket(ticket, principal):
            await self._deny(principal, READ_OWN, origin, ticket)
        return ticket

    async def list_tickets(
        self,
        principal: Principal,
        status: Optional[TicketStatus] = None,
        priority: Optional[Priority] = None,
        page: int = 1,
        limit: int = 20
    ) -> TicketPage:
        """Tickets visible to the caller, newest first."""
        visibility = ticket_visibility(principal)
        if visibility.deny_all:
            return TicketPage(items=[], total=0, page=page, limit=limit)

        items, total = await self._tickets.list(
            visibility,
            status=status,
            priority=priority,
            offset=(page - 1) * limit,
            limit=limit,
        )
        return TicketPage(items=items, total=total, page=page, limit=limit)

    async def get_history(
        self,
        ticket_id: str,
        principal: Principal,
        origin: Origin,
        page: int = 1,
        limit: int = 50,
        ascending: bool = True
    ) -> HistoryPage:
        ticket = await self._load(ticket_id)
        if not can_read_ticket(ticket, principal):
            await self._deny(principal, READ_OWN, origin, ticket)

        items, total = await self._tickets.history(
            ticket_id, offset=(page - 1) * limit, limit=limit, ascending=ascending
        )
        return HistoryPage(items=items, total=total, page=page, limit=limit)

    # ========== Mutations ==========

    async def update_ticket(
        self,
        ticket_id: str,
        changes: Dict[str, Any],
        principal: Principal,
        origin: Origin
    ) -> Ticket:
        """
        Apply field changes; one history entry per changed field.

        Returns the ticket unchanged (and writes nothing) when no field differs.
        If another writer appended history after the load, the changes are
        re-applied once on the fresh ticket so both writes survive.
        """
        for attempt in range(2):
            ticket = await self._load(ticket_id, for_update=True)
            if not can_access_ticket(ticket, principal, UPDATE_ASSIGNED):
                await self._deny(principal, UPDATE_ASSIGNED, origin, ticket)

            try:
                applied = ticket.apply_update(changes, principal.user_id, origin.ip_address, utcnow())
            except ValidationException:
                await self._session.rollback()
                raise

            if not applied:
                await self._session.rollback()
                return ticket

            if await self._persist(ticket, "ticket update", principal, origin, retry_on_conflict=attempt == 0):
                break

        await self._record(
            principal, AuditAction.TICKET_UPDATED, ticket, origin,
            {"changes": [
                {"field": c.field, "old_value": c.old_value, "new_value": c.new_value}
                for c in applied
            ]},
        )
        for change in applied:
            if change.field == "priority":
                await self._record(
                    principal, AuditAction.TICKET_PRIORITY_CHANGED, ticket, origin,
                    {"old_priority": change.old_value, "new_priority": change.new_value},
                )
            elif change.field == "status" and change.new_value == TicketStatus.RESOLVED.value:
                await self._record(principal, AuditAction.TICKET_RESOLVED, ticket, origin)
            elif change.field == "status" and change.new_value == TicketStatus.CLOSED.value:
                await self._record(principal, AuditAction.TICKET_CLOSED, ticket, origin)

        return ticket

    async def escalate_ticket(
        self,
        ticket_id: str,
        reason: Optional[str],
        principal: Principal,
        origin: Origin
    ) -> Ticket:
        """Move a ticket to escalated; tier-2 on its own tickets or above."""
        ticket = await self._load(ticket_id, for_update=True)
        if not can_access_ticket(ticket, principal, ESCALATE):
            await self._deny(principal, ESCALATE, origin, ticket)

        try:
            entry = ticket.escalate(principal.user_id, origin.ip_address, utcnow(), reason)
        except ValidationException:
            await self._session.rollback()
            raise

        await self._persist(ticket, "ticket escalation", principal, origin)

        await self._record(
            principal, AuditAction.TICKET_ESCALATED, ticket, origin,
            {"old_status": entry.old_value, "reason": entry.reason},
        )
        return ticket

    async def reassign_ticket(
        self,
        ticket_id: str,
        assignee_id: str,
        principal: Principal,
        origin: Origin
    ) -> Ticket:
        """Hand a ticket to another agent; supervisors and administrators only."""
        ticket = await self._load(ticket_id, for_update=True)
        if not authorize(principal.role, TICKETS, REASSIGN):
            await self._deny(principal, REASSIGN, origin, ticket)

        assignee = await self._users.get_by_id(assignee_id)
        if assignee is None or not assignee.is_active:
            await self._session.rollback()
            raise ValidationException("Assignee does not exist", {"assignee_id": assignee_id})
        if assignee.role.rank < Role.AGENT_TIER1.rank:
            await self._session.rollback()
            raise ValidationException("Assignee must be an agent", {"assignee_id": assignee_id})

        old_assignee = ticket.assignee_id
        entry = ticket.reassign(assignee_id, principal.user_id, origin.ip_address, utcnow())
        if entry is None:
            await self._session.rollback()
            return ticket

        await self._persist(ticket, "ticket reassignment", principal, origin)

        await self._record(
            principal, AuditAction.TICKET_REASSIGNED, ticket, origin,
            {"old_assignee_id": old_assignee, "new_assignee_id": assignee_id},
        )
        return ticket

    async def add_comment(
        self,
        ticket_id: str,
        text: str,
        principal: Principal,
        origin: Origin
    ) -> Comment:
        ticket = await self._load(ticket_id, for_update=True)
        if not can_access_ticket(ticket, principal, ADD_COMMENTS):
            await self._deny(principal, ADD_COMMENTS, origin, ticket)

        try:
            comment = ticket.add_comment(str(uuid4()), principal.user_id, text, origin.ip_address, utcnow())
        except ValidationException:
            await self._session.rollback()
            raise

        await self._persist(ticket, "comment", principal, origin)

        await self._record(
            principal, AuditAction.COMMENT_ADDED, ticket, origin,
            {"ticket_id": ticket.id},
            resource_type=AuditResource.COMMENT,
            resource_id=comment.id,
        )
        return comment

    async def add_attachment(
        self,
        ticket_id: str,
        filename: str,
        mime_type: str,
        size_bytes: int,
        checksum: str,
        principal: Principal,
        origin: Origin
    ) -> Attachment:
        """Record metadata of an uploaded file against a ticket."""
        ticket = await self._load(ticket_id, for_update=True)
        if not can_attach_to_ticket(ticket, principal):
            await self._deny(principal, "upload", origin, ticket)

        if size_bytes > self._settings.attachment_max_bytes:
            await self._session.rollback()
            raise ValidationException(
                "Attachment too large",
                {"size_bytes": size_bytes, "max_bytes": self._settings.attachment_max_bytes}
            )
        if mime_type not in self._settings.attachment_allowed_mime_types:
            await self._session.rollback()
            raise ValidationException("File type not allowed", {"mime_type": mime_type})

        try:
            attachment = ticket.add_attachment(
                str(uuid4()), filename, mime_type, size_bytes, checksum,
                principal.user_id, origin.ip_address, utcnow(),
            )
        except ValidationException:
            await self._session.rollback()
            raise

        await self._persist(ticket, "attachment upload", principal, origin)

        await self._record(
            principal, AuditAction.ATTACHMENT_UPLOADED, ticket, origin,
            {
                "ticket_id": ticket.id,
                "filename": attachment.filename,
                "size_bytes": attachment.size_bytes,
                "checksum": attachment.checksum,
            },
            resource_type=AuditResource.ATTACHMENT,
            resource_id=attachment.id,
        )
        return attachment
