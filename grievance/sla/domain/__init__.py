"""
SLA Domain Layer
================

Pure Python business logic for service-level tracking:
- WorkingTimeClock: business-hours calendar arithmetic
- SLAEvaluator: deadline / remaining time / SLA state per issue
- Value objects: policy configuration and evaluation results

This layer has no dependencies on infrastructure.
"""

from grievance.sla.domain.value_objects import (
    WorkingHoursConfig,
    EscalationPolicyConfig,
    PortalPolicyConfig,
    SLAEvaluation,
    EscalationMessage,
)
from grievance.sla.domain.working_time import WorkingTimeClock
from grievance.sla.domain.evaluator import SLAEvaluator

__all__ = [
    "WorkingHoursConfig",
    "EscalationPolicyConfig",
    "PortalPolicyConfig",
    "SLAEvaluation",
    "EscalationMessage",
    "WorkingTimeClock",
    "SLAEvaluator",
]
