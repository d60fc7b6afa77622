"""
Tickets Infrastructure Repositories
===================================

SQLAlchemy implementation of the ticket repository.

History, comments and attachments are insert-only from here: `save`
writes the ticket's changed columns and inserts the pending child rows.
"""

from typing import Any, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.access.domain import TicketVisibility
from src.config import Priority, TicketStatus
from src.core import RepositoryException
from src.tickets.application.services import ITicketRepository
from src.tickets.domain import Attachment, Comment, HistoryEntry, Ticket
from src.tickets.infrastructure.models import (
    AttachmentModel,
    CommentModel,
    TicketHistoryModel,
    TicketModel,
)


def _column(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


def _to_domain(model: TicketModel) -> Ticket:
    return Ticket(
        id=model.id,
        ticket_number=model.ticket_number,
        creator_id=model.creator_id,
        title=model.title,
        description=model.description,
        category=model.category,
        priority=model.priority,
        status=model.status,
        confidentiality=model.confidentiality,
        sla_deadline=model.sla_deadline,
        created_at=model.created_at,
        updated_at=model.updated_at,
        assignee_id=model.assignee_id,
        resolved_at=model.resolved_at,
        closed_at=model.closed_at,
        version=model.version,
        sla_escalated=model.sla_escalated,
        sla_escalated_at=model.sla_escalated_at,
        sla_warning_sent=model.sla_warning_sent,
        sla_warning_sent_at=model.sla_warning_sent_at,
    )


def history_to_domain(model: TicketHistoryModel) -> HistoryEntry:
    return HistoryEntry(
        sequence=model.sequence,
        action=model.action,
        field=model.field,
        old_value=model.old_value,
        new_value=model.new_value,
        actor_id=model.actor_id,
        timestamp=model.timestamp,
        ip_address=model.ip_address,
        reason=model.reason,
    )


def history_to_model(ticket_id: str, entry: HistoryEntry) -> TicketHistoryModel:
    return TicketHistoryModel(
        ticket_id=ticket_id,
        sequence=entry.sequence,
        action=_column(entry.action),
        field=entry.field,
        old_value=entry.old_value,
        new_value=entry.new_value,
        reason=entry.reason,
        actor_id=entry.actor_id,
        timestamp=entry.timestamp,
        ip_address=entry.ip_address,
    )


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of ticket repository.

    `for_update` reads lock the ticket row (FOR UPDATE on PostgreSQL) so
    history sequence numbers are assigned against the latest committed state.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, ticket_id: str, for_update: bool = False) -> Optional[Ticket]:
        """Get a ticket with its child records."""
        stmt = select(TicketModel).where(TicketModel.id == ticket_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        model = (await self._session.execute(stmt)).scalar_one_or_none()
        if model is None:
            return None

        history = await self._session.execute(
            select(TicketHistoryModel)
            .where(TicketHistoryModel.ticket_id == ticket_id)
            .order_by(TicketHistoryModel.sequence)
        )
        comments = await self._session.execute(
            select(CommentModel)
            .where(CommentModel.ticket_id == ticket_id)
            .order_by(CommentModel.created_at, CommentModel.id)
        )
        attachments = await self._session.execute(
            select(AttachmentModel)
            .where(AttachmentModel.ticket_id == ticket_id)
            .order_by(AttachmentModel.uploaded_at, AttachmentModel.id)
        )

        return _to_domain(model).load_children(
            history=[history_to_domain(h) for h in history.scalars()],
            comments=[
                Comment(id=c.id, author_id=c.author_id, text=c.text, created_at=c.created_at)
                for c in comments.scalars()
            ],
            attachments=[
                Attachment(
                    id=a.id,
                    filename=a.filename,
                    mime_type=a.mime_type,
                    size_bytes=a.size_bytes,
                    checksum=a.checksum,
                    uploaded_by=a.uploaded_by,
                    uploaded_at=a.uploaded_at,
                )
                for a in attachments.scalars()
            ],
        )

    async def list(
        self,
        visibility: TicketVisibility,
        status: Optional[TicketStatus] = None,
        priority: Optional[Priority] = None,
        offset: int = 0,
        limit: int = 20
    ) -> Tuple[List[Ticket], int]:
        """Page of tickets, newest first."""
        conditions = []
        if visibility.creator_id is not None:
            conditions.append(TicketModel.creator_id == visibility.creator_id)
        if visibility.assignee_id is not None:
            conditions.append(TicketModel.assignee_id == visibility.assignee_id)
        if status is not None:
            conditions.append(TicketModel.status == _column(status))
        if priority is not None:
            conditions.append(TicketModel.priority == _column(priority))

        total = await self._session.scalar(
            select(func.count()).select_from(TicketModel).where(*conditions)
        )
        result = await self._session.execute(
            select(TicketModel)
            .where(*conditions)
            .order_by(TicketModel.created_at.desc(), TicketModel.ticket_number.desc())
            .offset(offset)
            .limit(limit)
        )
        return [_to_domain(m) for m in result.scalars()], total or 0

    async def history(
        self,
        ticket_id: str,
        offset: int = 0,
        limit: int = 50,
        ascending: bool = True
    ) -> Tuple[List[HistoryEntry], int]:
        total = await self._session.scalar(
            select(func.count()).select_from(TicketHistoryModel)
            .where(TicketHistoryModel.ticket_id == ticket_id)
        )
        order = TicketHistoryModel.sequence.asc() if ascending else TicketHistoryModel.sequence.desc()
        result = await self._session.execute(
            select(TicketHistoryModel)
            .where(TicketHistoryModel.ticket_id == ticket_id)
            .order_by(order)
            .offset(offset)
            .limit(limit)
        )
        return [history_to_domain(h) for h in result.scalars()], total or 0

    def _add_children(self, ticket: Ticket) -> None:
        for entry in ticket.pending_history:
            self._session.add(history_to_model(ticket.id, entry))
        for comment in ticket.pending_comments:
            self._session.add(CommentModel(
                id=comment.id,
                ticket_id=ticket.id,
                author_id=comment.author_id,
                text=comment.text,
                created_at=comment.created_at,
            ))
        for attachment in ticket.pending_attachments:
            self._session.add(AttachmentModel(
                id=attachment.id,
                ticket_id=ticket.id,
                filename=attachment.filename,
                mime_type=attachment.mime_type,
                size_bytes=attachment.size_bytes,
                checksum=attachment.checksum,
                uploaded_by=attachment.uploaded_by,
                uploaded_at=attachment.uploaded_at,
            ))

    async def add(self, ticket: Ticket) -> None:
        """Insert a new ticket."""
        self._session.add(TicketModel(
            id=ticket.id,
            ticket_number=ticket.ticket_number,
            creator_id=ticket.creator_id,
            assignee_id=ticket.assignee_id,
            title=ticket.title,
            description=ticket.description,
            category=_column(ticket.category),
            priority=_column(ticket.priority),
            status=_column(ticket.status),
            confidentiality=_column(ticket.confidentiality),
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
            resolved_at=ticket.resolved_at,
            closed_at=ticket.closed_at,
            sla_deadline=ticket.sla_deadline,
            version=ticket.version,
        ))
        # Parent row first so child foreign keys resolve
        await self._session.flush()
        self._add_children(ticket)
        await self._session.flush()

    async def save(self, ticket: Ticket) -> None:
        """
        Write only the columns the domain marked dirty.

        Untouched columns keep whatever another writer committed, so
        concurrent changes to different fields are both preserved.
        """
        model = await self._session.get(TicketModel, ticket.id)
        if model is None:
            raise RepositoryException(f"Ticket {ticket.id} not found")

        for name in ticket.dirty_fields:
            setattr(model, name, _column(getattr(ticket, name)))
        if ticket.dirty_fields:
            model.version = TicketModel.version + 1

        self._add_children(ticket)
        await self._session.flush()

        if ticket.dirty_fields:
            await self._session.refresh(model, ["version"])
            ticket.version = model.version
