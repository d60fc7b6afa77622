"""
SLA Controllers (API Routes)
=============================

FastAPI routes for SLA monitoring endpoints.

Controllers are thin - they delegate to application services.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.audit.application import AuditService
from src.audit.interfaces.controllers import get_audit_service
from src.core import Origin, Principal
from src.shared.api.dependencies import get_db_session, get_origin, get_principal, get_session_factory
from src.shared.infrastructure.logging import get_logger
from src.sla.application import SLAMonitor, SLAService, SLACycleResponse, TicketSLAResponse
from src.sla.domain import ISLAConfigProvider
from src.sla.infrastructure import WebhookNotifier
from src.tickets.infrastructure import SQLAlchemyTicketRepository
from src.tickets.interfaces.controllers import get_sla_config_provider

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA Monitoring"])


# ========== Dependencies ==========

def get_sla_monitor(
    request: Request,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    audit_service: AuditService = Depends(get_audit_service),
    config_provider: ISLAConfigProvider = Depends(get_sla_config_provider)
) -> SLAMonitor:
    """The application's monitor, or one built on the request's session factory."""
    monitor = getattr(request.app.state, "sla_monitor", None)
    if monitor is not None:
        return monitor

    notifier = getattr(request.app.state, "notifier", None)
    if notifier is None:
        notifier = WebhookNotifier()
        request.app.state.notifier = notifier
    return SLAMonitor(session_factory, audit_service, notifier, config_provider)


async def get_sla_service(
    session: AsyncSession = Depends(get_db_session),
    audit_service: AuditService = Depends(get_audit_service),
    config_provider: ISLAConfigProvider = Depends(get_sla_config_provider),
    monitor: SLAMonitor = Depends(get_sla_monitor)
) -> SLAService:
    """Get SLA service instance."""
    return SLAService(
        session=session,
        ticket_repository=SQLAlchemyTicketRepository(session),
        audit_service=audit_service,
        config_provider=config_provider,
        monitor=monitor,
    )


# ========== Route Handlers ==========

@router.get(
    "/tickets/{ticket_id}",
    response_model=TicketSLAResponse,
    summary="Get SLA status for a ticket",
    description="""
    Remaining time, breach flag and state (on_track, at_risk, breached, met)
    for a ticket the caller may read.
    """,
    responses={403: {"description": "Not your ticket"}, 404: {"description": "Ticket not found"}}
)
async def get_ticket_sla(
    ticket_id: str,
    principal: Principal = Depends(get_principal),
    origin: Origin = Depends(get_origin),
    sla_service: SLAService = Depends(get_sla_service)
):
    status = await sla_service.ticket_sla_status(ticket_id, principal, origin)

    return TicketSLAResponse(
        ticket_id=status.ticket_id,
        ticket_number=status.ticket_number,
        priority=status.priority.value,
        deadline=status.deadline,
        remaining_seconds=status.remaining_seconds,
        is_breached=status.is_breached,
        state=status.state.value,
        sla_escalated=status.sla_escalated,
        sla_warning_sent=status.sla_warning_sent,
    )


@router.post(
    "/run",
    response_model=SLACycleResponse,
    summary="Run an SLA monitor cycle now",
    description="Administrators only. Runs the breach scan and the warning scan once."
)
async def run_sla_cycle(
    principal: Principal = Depends(get_principal),
    origin: Origin = Depends(get_origin),
    sla_service: SLAService = Depends(get_sla_service)
):
    report = await sla_service.trigger_cycle(principal, origin)
    logger.info("Manual SLA cycle", extra={"triggered_by": principal.user_id, "escalated": report.escalated})
    return SLACycleResponse(**report.to_dict())
