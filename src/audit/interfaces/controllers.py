"""
Audit Controllers (API Routes)
==============================

FastAPI routes for reading the audit ledger.

Controllers are thin - they delegate to application services.
There are no write routes.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.audit.application import (
    AuditService,
    AuditQuery,
    AuditEntryResponse,
    AuditListResponse,
    AuditStatsResponse,
)
from src.core import Origin, Principal
from src.shared.api.dependencies import get_origin, get_principal, get_session_factory

router = APIRouter(prefix="/audit-logs", tags=["Audit"])


# ========== Dependencies ==========

def get_audit_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory)
) -> AuditService:
    """Get audit service instance."""
    return AuditService(session_factory)


# ========== Route Handlers ==========

@router.get(
    "",
    response_model=AuditListResponse,
    summary="List audit entries",
    description="""
    Filtered, paginated audit listing, newest first by default.

    Supervisors and administrators see every entry; agents only entries
    they performed. Customers are denied.
    """
)
async def list_audit_logs(
    actor_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    resource_type: Optional[str] = Query(None),
    resource_id: Optional[str] = Query(None),
    success: Optional[bool] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    principal: Principal = Depends(get_principal),
    origin: Origin = Depends(get_origin),
    audit_service: AuditService = Depends(get_audit_service)
):
    query = AuditQuery(
        actor_id=actor_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        success=success,
        start=start,
        end=end,
        page=page,
        limit=limit,
        sort_order=sort_order,
    )
    result = await audit_service.list_entries(query, principal, origin)

    return AuditListResponse(
        items=[AuditEntryResponse(**entry.to_dict()) for entry in result["items"]],
        pagination=result["pagination"],
    )


@router.get(
    "/stats",
    response_model=AuditStatsResponse,
    summary="Audit statistics",
    description="Totals, failure count and grouped counts over an optional time window."
)
async def audit_stats(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    principal: Principal = Depends(get_principal),
    origin: Origin = Depends(get_origin),
    audit_service: AuditService = Depends(get_audit_service)
):
    stats = await audit_service.statistics(principal, start, end, origin)

    return AuditStatsResponse(
        total=stats.total,
        failed=stats.failed,
        success_rate=stats.success_rate,
        by_action=stats.by_action,
        by_resource=stats.by_resource,
        by_actor=stats.by_actor,
        by_success=stats.by_success,
    )


@router.get(
    "/{entry_id}",
    response_model=AuditEntryResponse,
    summary="Get audit entry",
    responses={404: {"description": "Entry not found"}}
)
async def get_audit_log(
    entry_id: str,
    principal: Principal = Depends(get_principal),
    origin: Origin = Depends(get_origin),
    audit_service: AuditService = Depends(get_audit_service)
):
    entry = await audit_service.get_entry(entry_id, principal, origin)
    return AuditEntryResponse(**entry.to_dict())
