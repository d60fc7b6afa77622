"""
SLA Application DTOs
=====================

Data Transfer Objects for SLA API layer.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


# ========== Type Aliases for Literals ==========
PriorityStr = Literal["critical", "high", "medium", "low"]
SLAStateStr = Literal["on_track", "at_risk", "breached", "met"]


# ========== Response DTOs ==========

class TicketSLAResponse(BaseModel):
    """SLA position of a single ticket."""
    ticket_id: str = Field(..., description="Ticket UUID")
    ticket_number: str
    priority: PriorityStr
    deadline: datetime = Field(..., description="SLA deadline")
    remaining_seconds: float = Field(..., description="Time remaining (0 if breached)")
    is_breached: bool
    state: SLAStateStr
    sla_escalated: bool = Field(..., description="Already escalated by the monitor")
    sla_warning_sent: bool


class SLACycleResponse(BaseModel):
    """Counters from one monitor cycle."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    breach_candidates: int
    escalated: int
    escalation_skipped: int
    warning_candidates: int
    warnings_sent: int
    warnings_skipped: int
    failures: int
    failed_ticket_ids: List[str] = Field(default_factory=list)
    cancelled: bool
