"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for SLA monitoring:
- Repositories: compare-and-set ticket access for the monitor
- External: notification webhook, config watcher, scheduler
"""

from src.sla.infrastructure.external import (
    CircuitBreaker,
    CircuitState,
    SLAConfigManager,
    SLAScheduler,
    WebhookNotifier,
)
from src.sla.infrastructure.repositories import SQLAlchemySLARepository

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "SLAConfigManager",
    "SLAScheduler",
    "WebhookNotifier",
    "SQLAlchemySLARepository",
]
