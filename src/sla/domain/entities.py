"""
SLA Domain Entities
====================

Pure Python domain entities for SLA monitoring.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


UNASSIGNED_QUEUE = "unassigned"


class NotificationEvent(str, Enum):
    """Events the monitor asks the notification collaborator to deliver."""
    SLA_WARNING = "sla_warning"
    SLA_BREACHED = "sla_breached"


@dataclass
class SLACycleReport:
    """
    Outcome of one monitor cycle.

    Counters only grow while the cycle runs; `cancelled` means the cycle
    stopped between tickets.
    """
    started_at: datetime
    finished_at: Optional[datetime] = None

    breach_candidates: int = 0
    escalated: int = 0
    escalation_skipped: int = 0

    warning_candidates: int = 0
    warnings_sent: int = 0
    warnings_skipped: int = 0

    failures: int = 0
    failed_ticket_ids: List[str] = field(default_factory=list)
    cancelled: bool = False

    def record_failure(self, ticket_id: str) -> None:
        self.failures += 1
        self.failed_ticket_ids.append(ticket_id)

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "breach_candidates": self.breach_candidates,
            "escalated": self.escalated,
            "escalation_skipped": self.escalation_skipped,
            "warning_candidates": self.warning_candidates,
            "warnings_sent": self.warnings_sent,
            "warnings_skipped": self.warnings_skipped,
            "failures": self.failures,
            "failed_ticket_ids": list(self.failed_ticket_ids),
            "cancelled": self.cancelled,
        }
