"""
Audit Infrastructure Layer
==========================

- Models: append-only SQLAlchemy model
- Repositories: insert/read-only data access
"""

from src.audit.infrastructure.models import AuditLogModel
from src.audit.infrastructure.repositories import SQLAlchemyAuditRepository

__all__ = [
    "AuditLogModel",
    "SQLAlchemyAuditRepository",
]
