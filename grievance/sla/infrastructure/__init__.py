"""
SLA Infrastructure Layer
=========================

- Policy YAML loading with hot reload
- Slack escalation notifications
- Background scheduler for the escalation sweep
"""

from grievance.sla.infrastructure.external import (
    PolicyConfigManager,
    CircuitBreaker,
    SlackEscalationNotifier,
    SLAScheduler,
)

__all__ = [
    "PolicyConfigManager",
    "CircuitBreaker",
    "SlackEscalationNotifier",
    "SLAScheduler",
]
