"""
Access Domain Layer
===================

Pure authorization logic: the permission matrix and ownership policies.
No infrastructure dependencies.
"""

from src.access.domain.permissions import (
    PERMISSIONS,
    RESOURCES,
    WILDCARD,
    authorize,
    role_permissions,
)
from src.access.domain.policies import (
    AuditScope,
    TicketVisibility,
    can_access_ticket,
    can_read_ticket,
    can_attach_to_ticket,
    can_access_audit_logs,
    ticket_visibility,
)

__all__ = [
    "PERMISSIONS",
    "RESOURCES",
    "WILDCARD",
    "authorize",
    "role_permissions",
    "AuditScope",
    "TicketVisibility",
    "can_access_ticket",
    "can_read_ticket",
    "can_attach_to_ticket",
    "can_access_audit_logs",
    "ticket_visibility",
]
