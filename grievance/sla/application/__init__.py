"""
SLA Application Layer
======================

Application layer for SLA tracking.

Contains:
- IPolicyProvider: access to the current working-hours / escalation policy
- IEscalationNotifier: delivery of escalation notifications
- SLAService: evaluates issues against the policy in force

This layer depends on the domain layer and the policy interface,
but not on the YAML/watchdog implementation.
"""

from grievance.sla.application.services import IEscalationNotifier, IPolicyProvider, SLAService

__all__ = [
    "IEscalationNotifier",
    "IPolicyProvider",
    "SLAService",
]
