"""
Permission Matrix
=================

Immutable role -> resource -> action-set table, built once at import.

Every (role, resource) pair resolves to a frozenset, possibly empty.
The administrator holds the wildcard on every resource.
"""

from types import MappingProxyType
from typing import Mapping, FrozenSet

from src.config import Role


WILDCARD = "*"

# Resources
TICKETS = "tickets"
COMMENTS = "comments"
ATTACHMENTS = "attachments"
AUDIT_LOGS = "audit_logs"
USERS = "users"

RESOURCES = (TICKETS, COMMENTS, ATTACHMENTS, AUDIT_LOGS, USERS)

# Ticket action tokens
CREATE = "create"
READ_OWN = "read_own"
READ_ASSIGNED = "read_assigned"
READ_ALL = "read_all"
UPDATE_ASSIGNED = "update_assigned"
UPDATE_ALL = "update_all"
ADD_COMMENTS = "add_comments"
ESCALATE = "escalate"
REASSIGN = "reassign"
REPORTS = "reports"

# Attachment action tokens
UPLOAD = "upload"
UPLOAD_OWN = "upload_own"
DOWNLOAD = "download"

# Audit log action tokens
VIEW_OWN = "view_own"
VIEW_ALL = "view_all"
FILTER = "filter"

_AGENT_TIER1 = {
    TICKETS: {CREATE, READ_ASSIGNED, UPDATE_ASSIGNED, ADD_COMMENTS},
    COMMENTS: {CREATE, READ_ASSIGNED},
    ATTACHMENTS: {UPLOAD, DOWNLOAD},
    AUDIT_LOGS: {VIEW_OWN},
    USERS: set(),
}

_RAW_MATRIX = {
    Role.CUSTOMER: {
        TICKETS: {CREATE, READ_OWN},
        COMMENTS: {CREATE, READ_OWN},
        ATTACHMENTS: {UPLOAD_OWN},
        AUDIT_LOGS: set(),
        USERS: set(),
    },
    Role.AGENT_TIER1: _AGENT_TIER1,
    Role.AGENT_TIER2: {
        **_AGENT_TIER1,
        TICKETS: _AGENT_TIER1[TICKETS] | {ESCALATE},
    },
    Role.SUPERVISOR: {
        TICKETS: {CREATE, READ_ALL, UPDATE_ALL, REASSIGN, REPORTS, ADD_COMMENTS},
        COMMENTS: {CREATE, READ_ALL},
        ATTACHMENTS: {UPLOAD, DOWNLOAD},
        AUDIT_LOGS: {VIEW_ALL, FILTER},
        USERS: set(),
    },
    Role.ADMINISTRATOR: {resource: {WILDCARD} for resource in RESOURCES},
}


def _freeze(raw) -> Mapping[Role, Mapping[str, FrozenSet[str]]]:
    frozen = {}
    for role in Role:
        grants = raw.get(role, {})
        frozen[role] = MappingProxyType({
            resource: frozenset(grants.get(resource, ()))
            for resource in RESOURCES
        })
    return MappingProxyType(frozen)


PERMISSIONS: Mapping[Role, Mapping[str, FrozenSet[str]]] = _freeze(_RAW_MATRIX)

del _RAW_MATRIX, _AGENT_TIER1


def _coerce_role(role) -> Role | None:
    try:
        return Role.parse(role)
    except (ValueError, TypeError):
        return None


def authorize(role, resource: str, action: str) -> bool:
    """
    Pure permission lookup.

    Unknown roles and resources are denied rather than raising.
    """
    role = _coerce_role(role)
    if role is None:
        return False

    actions = PERMISSIONS[role].get(resource)
    if actions is None:
        return False

    return WILDCARD in actions or action in actions


def role_permissions(role) -> Mapping[str, FrozenSet[str]]:
    """Read-only view of everything a role may do; empty for unknown roles."""
    role = _coerce_role(role)
    if role is None:
        return MappingProxyType({})
    return PERMISSIONS[role]
