"""
Audit Application DTOs
======================

Pydantic models for audit queries and responses.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


SortOrderStr = Literal["asc", "desc"]


# ========== Request DTOs ==========

class AuditQuery(BaseModel):
    """Filters and paging for audit log listing."""
    actor_id: Optional[str] = Field(None, description="Only entries by this actor")
    action: Optional[str] = Field(None, description="Audit action code")
    resource_type: Optional[str] = Field(None, description="ticket, user, system, ...")
    resource_id: Optional[str] = Field(None, description="Affected resource id")
    success: Optional[bool] = Field(None, description="Outcome flag")
    start: Optional[datetime] = Field(None, description="Inclusive lower bound on timestamp")
    end: Optional[datetime] = Field(None, description="Inclusive upper bound on timestamp")
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=200)
    sort_order: SortOrderStr = Field(default="desc", description="Timestamp ordering")

    @model_validator(mode="after")
    def validate_range(self) -> "AuditQuery":
        """Ensure the time window is not inverted."""
        if self.start and self.end and self.start > self.end:
            raise ValueError("start must not be after end")
        return self

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


# ========== Response DTOs ==========

class AuditEntryResponse(BaseModel):
    """Response model for a single audit entry."""
    id: str
    actor_id: Optional[str] = None
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    ip_address: str
    user_agent: Optional[str] = None
    timestamp: datetime
    success: bool
    error_message: Optional[str] = None


class PaginationInfo(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class AuditListResponse(BaseModel):
    """Paginated audit listing."""
    items: List[AuditEntryResponse]
    pagination: PaginationInfo


class AuditStatsResponse(BaseModel):
    """Summary statistics over a time window."""
    total: int
    failed: int
    success_rate: float = Field(..., description="Percentage of successful entries")
    by_action: Dict[str, int] = Field(default_factory=dict)
    by_resource: Dict[str, int] = Field(default_factory=dict)
    by_actor: Dict[str, int] = Field(default_factory=dict)
    by_success: Dict[str, int] = Field(default_factory=dict)
