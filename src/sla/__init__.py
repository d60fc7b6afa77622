"""
SLA Monitoring Module
=====================

Bounded Context for Service Level Agreement monitoring and escalation.

Responsibilities:
- Compute per-priority deadlines from a hot-reloadable YAML config
- Escalate breached tickets one priority step, exactly once per breach
- Warn assignees before a deadline through the notification webhook
- Run the scan as a scheduled background task
- Report a ticket's remaining SLA time
"""

__version__ = "1.0.0"
