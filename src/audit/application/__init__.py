"""
Audit Application Layer
=======================

Contains:
- Services: AuditService (record, query, statistics)
- DTOs: Query and response models

This layer depends on the domain layer and the repository interface,
but not on concrete infrastructure implementations.
"""

from src.audit.application.dto import (
    AuditQuery,
    AuditEntryResponse,
    AuditListResponse,
    AuditStatsResponse,
    PaginationInfo,
)
from src.audit.application.services import AuditService, IAuditRepository

__all__ = [
    # DTOs
    "AuditQuery",
    "AuditEntryResponse",
    "AuditListResponse",
    "AuditStatsResponse",
    "PaginationInfo",
    # Services
    "AuditService",
    # Repository Interfaces
    "IAuditRepository",
]
