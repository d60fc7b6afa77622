"""
Request Context
===============

Identity and origin of the caller, handed to the core by the transport layer.
"""

from dataclasses import dataclass
from typing import Optional

from src.config import Role


@dataclass(frozen=True)
class Principal:
    """An already-authenticated caller."""
    user_id: str
    role: Role

    def __post_init__(self):
        if not isinstance(self.role, Role):
            object.__setattr__(self, "role", Role.parse(self.role))


@dataclass(frozen=True)
class Origin:
    """Network origin of a request."""
    ip_address: str = "unknown"
    user_agent: Optional[str] = None


SYSTEM_ORIGIN = Origin(ip_address="system", user_agent="SLA Monitor")
