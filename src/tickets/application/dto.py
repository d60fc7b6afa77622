"""
Ticket Application DTOs
=======================

Data Transfer Objects for the ticket API layer.

Enumerated fields accept the legacy Spanish values (e.g. "critica",
"abierto") and normalize them to the canonical ones.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from src.config import (
    CATEGORY_ALIASES,
    CONFIDENTIALITY_ALIASES,
    PRIORITY_ALIASES,
    STATUS_ALIASES,
)


# ========== Type Aliases for Literals ==========
PriorityStr = Literal["critical", "high", "medium", "low"]
TicketStatusStr = Literal["open", "in_progress", "escalated", "resolved", "closed"]
CategoryStr = Literal["functional_support", "incident", "alarm"]
ConfidentialityStr = Literal["public", "internal", "confidential"]


_ALIASES = {
    "category": CATEGORY_ALIASES,
    "priority": PRIORITY_ALIASES,
    "status": STATUS_ALIASES,
    "confidentiality": CONFIDENTIALITY_ALIASES,
}


def _normalize(cls, v, info: ValidationInfo):
    if isinstance(v, str):
        v = v.strip().lower()
        return _ALIASES[info.field_name].get(v, v)
    return v


# ========== Request DTOs ==========

class TicketCreateRequest(BaseModel):
    """Request model for ticket creation."""
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=10000)
    category: CategoryStr = Field(default="functional_support")
    priority: PriorityStr = Field(default="medium")
    confidentiality: ConfidentialityStr = Field(default="internal")

    normalize_aliases = field_validator("category", "priority", "confidentiality", mode="before")(_normalize)


class TicketUpdateRequest(BaseModel):
    """Partial update; omitted fields are left alone."""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1, max_length=10000)
    category: Optional[CategoryStr] = None
    priority: Optional[PriorityStr] = None
    status: Optional[TicketStatusStr] = None
    confidentiality: Optional[ConfidentialityStr] = None

    normalize_aliases = field_validator(
        "category", "priority", "status", "confidentiality", mode="before"
    )(_normalize)

    def changes(self) -> dict:
        return self.model_dump(exclude_none=True)


class EscalateRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000, description="Why the ticket is escalated")


class ReassignRequest(BaseModel):
    assignee_id: str = Field(..., min_length=1, max_length=36)


class CommentCreateRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=5000)


class AttachmentCreateRequest(BaseModel):
    """
    Metadata of a file already stored by the upload gateway.
    """
    filename: str = Field(..., min_length=1, max_length=255)
    mime_type: str = Field(..., min_length=1, max_length=100)
    size_bytes: int = Field(..., gt=0)
    checksum: str = Field(..., pattern=r"^[0-9a-fA-F]{64}$", description="SHA-256 hex digest")


class TicketListQuery(BaseModel):
    """Query parameters for ticket listing."""
    status: Optional[TicketStatusStr] = None
    priority: Optional[PriorityStr] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)

    normalize_aliases = field_validator("priority", "status", mode="before")(_normalize)


# ========== Response DTOs ==========

class HistoryEntryResponse(BaseModel):
    sequence: int
    action: str
    field: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    actor_id: Optional[str] = Field(None, description="Null when the system made the change")
    timestamp: datetime
    ip_address: str
    reason: Optional[str] = None


class CommentResponse(BaseModel):
    id: str
    author_id: str
    text: str
    created_at: datetime


class AttachmentResponse(BaseModel):
    id: str
    filename: str
    mime_type: str
    size_bytes: int
    checksum: str
    uploaded_by: str
    uploaded_at: datetime


class TicketSummaryResponse(BaseModel):
    """Ticket without its child records, used in listings."""
    id: str
    ticket_number: str = Field(..., description="TKT-000001 style number")
    creator_id: str
    assignee_id: Optional[str] = None
    title: str
    category: CategoryStr
    priority: PriorityStr
    status: TicketStatusStr
    confidentiality: ConfidentialityStr
    sla_deadline: datetime
    sla_escalated: bool
    created_at: datetime
    updated_at: datetime
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    version: int


class TicketResponse(TicketSummaryResponse):
    """Full ticket view."""
    description: str
    sla_warning_sent: bool
    history: List[HistoryEntryResponse] = Field(default_factory=list)
    comments: List[CommentResponse] = Field(default_factory=list)
    attachments: List[AttachmentResponse] = Field(default_factory=list)


class PaginationInfo(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class TicketListResponse(BaseModel):
    items: List[TicketSummaryResponse]
    pagination: PaginationInfo


class HistoryListResponse(BaseModel):
    items: List[HistoryEntryResponse]
    pagination: PaginationInfo
