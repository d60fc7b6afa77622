"""
SLA Domain Layer
================

Domain layer for SLA monitoring module.

Contains:
- Entities: SLACycleReport, NotificationEvent
- Value Objects: Immutable objects defined by attributes (SLAConfig, SLAStatus)
- Domain Services: Stateless business logic (SLACalculator)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.sla.domain.entities import NotificationEvent, SLACycleReport, UNASSIGNED_QUEUE
from src.sla.domain.value_objects import (
    ISLAConfigProvider,
    SLACalculator,
    SLAConfig,
    SLAState,
    SLAStatus,
    StaticSLAConfigProvider,
)

__all__ = [
    # Entities
    "NotificationEvent",
    "SLACycleReport",
    "UNASSIGNED_QUEUE",
    # Value Objects & Services
    "ISLAConfigProvider",
    "SLACalculator",
    "SLAConfig",
    "SLAState",
    "SLAStatus",
    "StaticSLAConfigProvider",
]
