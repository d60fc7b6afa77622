"""
Ticket Controllers (API Routes)
===============================

FastAPI routes for the ticket lifecycle.

Controllers are thin - they delegate to application services.
"""

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.accounts.infrastructure import SQLAlchemyUserRepository
from src.audit.application import AuditService
from src.audit.interfaces.controllers import get_audit_service
from src.config import settings
from src.core import Origin, Principal
from src.shared.api.dependencies import get_db_session, get_origin, get_principal
from src.sla.domain import ISLAConfigProvider, SLAConfig, StaticSLAConfigProvider
from src.tickets.application import (
    TicketService,
    TicketCreateRequest,
    TicketUpdateRequest,
    EscalateRequest,
    ReassignRequest,
    CommentCreateRequest,
    AttachmentCreateRequest,
    TicketListQuery,
    HistoryEntryResponse,
    CommentResponse,
    AttachmentResponse,
    TicketSummaryResponse,
    TicketResponse,
    TicketListResponse,
    HistoryListResponse,
    PaginationInfo,
)
from src.tickets.domain import Attachment, Comment, Ticket
from src.tickets.infrastructure import SQLAlchemyTicketRepository, TicketNumberAllocator

router = APIRouter(prefix="/tickets", tags=["Tickets"])


# ========== Dependencies ==========

def get_ticket_allocator(request: Request) -> TicketNumberAllocator:
    """Process-wide allocator; one lock per application instance."""
    allocator = getattr(request.app.state, "ticket_allocator", None)
    if allocator is None:
        allocator = TicketNumberAllocator()
        request.app.state.ticket_allocator = allocator
    return allocator


def get_sla_config_provider(request: Request) -> ISLAConfigProvider:
    """Hot-reloading config manager when the app started one, else defaults."""
    provider = getattr(request.app.state, "sla_config_manager", None)
    if provider is None:
        provider = StaticSLAConfigProvider(
            SLAConfig(warning_lookahead_minutes=settings.sla_warning_lookahead_minutes)
        )
    return provider


async def get_ticket_service(
    session: AsyncSession = Depends(get_db_session),
    audit_service: AuditService = Depends(get_audit_service),
    allocator: TicketNumberAllocator = Depends(get_ticket_allocator),
    sla_config_provider: ISLAConfigProvider = Depends(get_sla_config_provider)
) -> TicketService:
    """Get ticket service instance."""
    return TicketService(
        session=session,
        ticket_repository=SQLAlchemyTicketRepository(session),
        user_repository=SQLAlchemyUserRepository(session),
        audit_service=audit_service,
        number_allocator=allocator,
        sla_config_provider=sla_config_provider,
        settings=settings,
    )


# ========== Mapping ==========

def _summary_fields(ticket: Ticket) -> dict:
    return {
        "id": ticket.id,
        "ticket_number": ticket.ticket_number,
        "creator_id": ticket.creator_id,
        "assignee_id": ticket.assignee_id,
        "title": ticket.title,
        "category": ticket.category.value,
        "priority": ticket.priority.value,
        "status": ticket.status.value,
        "confidentiality": ticket.confidentiality.value,
        "sla_deadline": ticket.sla_deadline,
        "sla_escalated": ticket.sla_escalated,
        "created_at": ticket.created_at,
        "updated_at": ticket.updated_at,
        "resolved_at": ticket.resolved_at,
        "closed_at": ticket.closed_at,
        "version": ticket.version,
    }


def _history_response(entry) -> HistoryEntryResponse:
    return HistoryEntryResponse(
        sequence=entry.sequence,
        action=getattr(entry.action, "value", entry.action),
        field=entry.field,
        old_value=entry.old_value,
        new_value=entry.new_value,
        actor_id=entry.actor_id,
        timestamp=entry.timestamp,
        ip_address=entry.ip_address,
        reason=entry.reason,
    )


def _comment_response(comment: Comment) -> CommentResponse:
    return CommentResponse(
        id=comment.id,
        author_id=comment.author_id,
        text=comment.text,
        created_at=comment.created_at,
    )


def _attachment_response(attachment: Attachment) -> AttachmentResponse:
    return AttachmentResponse(
        id=attachment.id,
        filename=attachment.filename,
        mime_type=attachment.mime_type,
        size_bytes=attachment.size_bytes,
        checksum=attachment.checksum,
        uploaded_by=attachment.uploaded_by,
        uploaded_at=attachment.uploaded_at,
    )


def _ticket_response(ticket: Ticket) -> TicketResponse:
    return TicketResponse(
        **_summary_fields(ticket),
        description=ticket.description,
        sla_warning_sent=ticket.sla_warning_sent,
        history=[_history_response(e) for e in ticket.history],
        comments=[_comment_response(c) for c in ticket.comments],
        attachments=[_attachment_response(a) for a in ticket.attachments],
    )


# ========== Route Handlers ==========

@router.post(
    "",
    response_model=TicketResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create ticket",
    description="""
    Open a new ticket.

    The SLA deadline is set from the priority (critical 2h, high 8h,
    medium 24h, low 72h by default) and a `TKT-000001` style number is
    assigned. Legacy Spanish values such as `critica` are accepted.
    """
)
async def create_ticket(
    request: TicketCreateRequest,
    principal: Principal = Depends(get_principal),
    origin: Origin = Depends(get_origin),
    ticket_service: TicketService = Depends(get_ticket_service)
):
    ticket = await ticket_service.create_ticket(
        title=request.title,
        description=request.description,
        category=request.category,
        priority=request.priority,
        principal=principal,
        origin=origin,
        confidentiality=request.confidentiality,
    )
    return _ticket_response(ticket)


@router.get(
    "",
    response_model=TicketListResponse,
    summary="List tickets",
    description="Customers see tickets they created, agents tickets assigned to them; newest first."
)
async def list_tickets(
    query: TicketListQuery = Depends(),
    principal: Principal = Depends(get_principal),
    ticket_service: TicketService = Depends(get_ticket_service)
):
    page = await ticket_service.list_tickets(
        principal,
        status=query.status,
        priority=query.priority,
        page=query.page,
        limit=query.limit,
    )
    return TicketListResponse(
        items=[TicketSummaryResponse(**_summary_fields(t)) for t in page.items],
        pagination=PaginationInfo(total=page.total, page=page.page, limit=page.limit, pages=page.pages),
    )


@router.get(
    "/{ticket_id}",
    response_model=TicketResponse,
    summary="Get ticket",
    responses={403: {"description": "Not your ticket"}, 404: {"description": "Ticket not found"}}
)
async def get_ticket(
    ticket_id: str,
    principal: Principal = Depends(get_principal),
    origin: Origin = Depends(get_origin),
    ticket_service: TicketService = Depends(get_ticket_service)
):
    ticket = await ticket_service.get_ticket(ticket_id, principal, origin)
    return _ticket_response(ticket)


@router.patch(
    "/{ticket_id}",
    response_model=TicketResponse,
    summary="Update ticket fields",
    description="One history entry is written per field that actually changes."
)
async def update_ticket(
    ticket_id: str,
    request: TicketUpdateRequest,
    principal: Principal = Depends(get_principal),
    origin: Origin = Depends(get_origin),
    ticket_service: TicketService = Depends(get_ticket_service)
):
    ticket = await ticket_service.update_ticket(ticket_id, request.changes(), principal, origin)
    return _ticket_response(ticket)


@router.post("/{ticket_id}/escalate", response_model=TicketResponse, summary="Escalate ticket")
async def escalate_ticket(
    ticket_id: str,
    request: EscalateRequest,
    principal: Principal = Depends(get_principal),
    origin: Origin = Depends(get_origin),
    ticket_service: TicketService = Depends(get_ticket_service)
):
    ticket = await ticket_service.escalate_ticket(ticket_id, request.reason, principal, origin)
    return _ticket_response(ticket)


@router.post("/{ticket_id}/reassign", response_model=TicketResponse, summary="Reassign ticket")
async def reassign_ticket(
    ticket_id: str,
    request: ReassignRequest,
    principal: Principal = Depends(get_principal),
    origin: Origin = Depends(get_origin),
    ticket_service: TicketService = Depends(get_ticket_service)
):
    ticket = await ticket_service.reassign_ticket(ticket_id, request.assignee_id, principal, origin)
    return _ticket_response(ticket)


@router.post(
    "/{ticket_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add comment"
)
async def add_comment(
    ticket_id: str,
    request: CommentCreateRequest,
    principal: Principal = Depends(get_principal),
    origin: Origin = Depends(get_origin),
    ticket_service: TicketService = Depends(get_ticket_service)
):
    comment = await ticket_service.add_comment(ticket_id, request.text, principal, origin)
    return _comment_response(comment)


@router.post(
    "/{ticket_id}/attachments",
    response_model=AttachmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register attachment",
    description="Records metadata (name, type, size, SHA-256) of a stored file."
)
async def add_attachment(
    ticket_id: str,
    request: AttachmentCreateRequest,
    principal: Principal = Depends(get_principal),
    origin: Origin = Depends(get_origin),
    ticket_service: TicketService = Depends(get_ticket_service)
):
    attachment = await ticket_service.add_attachment(
        ticket_id,
        filename=request.filename,
        mime_type=request.mime_type,
        size_bytes=request.size_bytes,
        checksum=request.checksum,
        principal=principal,
        origin=origin,
    )
    return _attachment_response(attachment)


@router.get("/{ticket_id}/history", response_model=HistoryListResponse, summary="Ticket history")
async def get_history(
    ticket_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    order: str = Query("asc", pattern="^(asc|desc)$"),
    principal: Principal = Depends(get_principal),
    origin: Origin = Depends(get_origin),
    ticket_service: TicketService = Depends(get_ticket_service)
):
    result = await ticket_service.get_history(
        ticket_id, principal, origin, page=page, limit=limit, ascending=(order == "asc")
    )
    return HistoryListResponse(
        items=[_history_response(e) for e in result.items],
        pagination=PaginationInfo(total=result.total, page=result.page, limit=result.limit, pages=result.pages),
    )
