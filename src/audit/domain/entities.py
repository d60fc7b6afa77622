"""
Audit Domain Entities
=====================

Pure Python representation of an audit ledger entry.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class AuditEntry:
    """
    A single immutable audit record.

    `actor_id` is None for events without an identified user
    (unknown-user logins, SLA monitor actions).
    """

    id: str
    action: str
    resource_type: str
    timestamp: datetime
    ip_address: str
    actor_id: Optional[str] = None
    resource_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    user_agent: Optional[str] = None
    success: bool = True
    error_message: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "actor_id": self.actor_id,
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "details": dict(self.details),
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "error_message": self.error_message,
        }


@dataclass
class AuditStatistics:
    """Aggregated counts over a time window."""

    total: int
    failed: int
    by_action: Dict[str, int] = field(default_factory=dict)
    by_resource: Dict[str, int] = field(default_factory=dict)
    by_actor: Dict[str, int] = field(default_factory=dict)
    by_success: Dict[str, int] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        """Percentage of successful entries; 100.0 for an empty window."""
        if self.total == 0:
            return 100.0
        return round((self.total - self.failed) / self.total * 100, 2)
