"""
Audit Domain Layer
==================

Entities for the audit ledger. No infrastructure dependencies.
"""

from src.audit.domain.entities import AuditEntry, AuditStatistics

__all__ = [
    "AuditEntry",
    "AuditStatistics",
]
