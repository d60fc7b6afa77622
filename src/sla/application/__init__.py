"""
SLA Application Layer
======================

Application layer for SLA monitoring module.

Contains:
- Services: SLAMonitor (scheduled scan), SLAService (status, manual trigger)
- DTOs: Data transfer objects for API serialization
- Interfaces: ISLARepository, INotifier

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from src.sla.application.dto import TicketSLAResponse, SLACycleResponse
from src.sla.application.services import (
    SLAMonitor,
    SLAService,
    SLACandidate,
    ISLARepository,
    INotifier,
    SLA_BREACH_REASON,
)

__all__ = [
    # DTOs
    "TicketSLAResponse",
    "SLACycleResponse",
    # Services
    "SLAMonitor",
    "SLAService",
    "SLACandidate",
    "SLA_BREACH_REASON",
    # Interfaces
    "ISLARepository",
    "INotifier",
]
