"""
Ticket Ownership Policies
=========================

Per-ticket access decisions layered on top of the permission matrix.

Customers are scoped to tickets they created, agents to tickets assigned
to them. Supervisors and administrators see everything.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from src.config import Role
from src.access.domain.permissions import (
    AUDIT_LOGS, ATTACHMENTS, VIEW_ALL, VIEW_OWN, UPLOAD, UPLOAD_OWN,
    CREATE, READ_OWN, READ_ASSIGNED, READ_ALL, UPDATE_ASSIGNED, ADD_COMMENTS, ESCALATE,
    authorize,
)


AGENT_ROLES = (Role.AGENT_TIER1, Role.AGENT_TIER2)
READ_ACTIONS = (READ_OWN, READ_ASSIGNED, READ_ALL)


def _same_id(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return False
    return str(left) == str(right)


def can_access_ticket(ticket: Any, user: Any, action: str) -> bool:
    """
    Decide whether `user` may perform `action` on this specific ticket.

    `ticket` needs `creator_id` and `assignee_id`; `user` needs `user_id`
    and `role`. Unknown roles are denied.
    """
    try:
        role = Role.parse(user.role)
    except (ValueError, TypeError):
        return False

    if role == Role.ADMINISTRATOR:
        return True

    if role == Role.SUPERVISOR:
        return True

    if role == Role.CUSTOMER:
        if action == CREATE:
            return True
        if action in (READ_OWN, ADD_COMMENTS):
            return _same_id(ticket.creator_id, user.user_id)
        return False

    if role in AGENT_ROLES:
        if action == CREATE:
            return True
        if action in (READ_ASSIGNED, UPDATE_ASSIGNED, ADD_COMMENTS):
            return _same_id(ticket.assignee_id, user.user_id)
        if action == ESCALATE and role == Role.AGENT_TIER2:
            return _same_id(ticket.assignee_id, user.user_id)
        return False

    return False


def can_read_ticket(ticket: Any, user: Any) -> bool:
    """True if any read token grants the user this ticket."""
    return any(can_access_ticket(ticket, user, action) for action in READ_ACTIONS)


def can_attach_to_ticket(ticket: Any, user: Any) -> bool:
    """
    Customers attach to their own tickets, agents to tickets assigned to them.
    """
    if authorize(user.role, ATTACHMENTS, UPLOAD):
        if Role.parse(user.role) in AGENT_ROLES:
            return _same_id(ticket.assignee_id, user.user_id)
        return True
    if authorize(user.role, ATTACHMENTS, UPLOAD_OWN):
        return _same_id(ticket.creator_id, user.user_id)
    return False


class AuditScope(str, Enum):
    """How much of the audit log a caller may read."""
    NONE = "none"
    OWN = "own"
    ALL = "all"


def can_access_audit_logs(user: Any) -> AuditScope:
    """Supervisors/admins read every entry, agents only their own."""
    if authorize(user.role, AUDIT_LOGS, VIEW_ALL):
        return AuditScope.ALL
    if authorize(user.role, AUDIT_LOGS, VIEW_OWN):
        return AuditScope.OWN
    return AuditScope.NONE


@dataclass(frozen=True)
class TicketVisibility:
    """Listing scope; both None means unrestricted."""
    creator_id: Optional[str] = None
    assignee_id: Optional[str] = None
    deny_all: bool = False


def ticket_visibility(user: Any) -> TicketVisibility:
    """Translate the caller's role into a ticket listing filter."""
    try:
        role = Role.parse(user.role)
    except (ValueError, TypeError):
        return TicketVisibility(deny_all=True)

    if role == Role.CUSTOMER:
        return TicketVisibility(creator_id=user.user_id)
    if role in AGENT_ROLES:
        return TicketVisibility(assignee_id=user.user_id)
    return TicketVisibility()
