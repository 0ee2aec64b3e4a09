"""
SLA Application Services
=========================

Evaluates issues against the policy currently in force.

The policy can be hot-reloaded, so the evaluator is rebuilt from the
provider on every call instead of being cached here.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from grievance.shared.clock import Clock
from grievance.sla.domain import EscalationMessage, SLAEvaluation, SLAEvaluator, WorkingTimeClock


class IPolicyProvider(ABC):
    """Interface for policy configuration access."""

    @property
    @abstractmethod
    def working_clock(self) -> WorkingTimeClock:
        """Working-time clock for the current working-hours policy."""

    @abstractmethod
    def escalation_threshold(self) -> int:
        """Escalation level from which priority is forced to critical."""


class IEscalationNotifier(ABC):
    """Interface for escalation notifications (best effort)."""

    @abstractmethod
    async def send_escalation(self, data: EscalationMessage, max_retries: int = 3) -> bool:
        """Deliver the notification; returns False instead of raising on failure."""


class SLAService:
    """
    Service for SLA evaluation.

    Coordinates the policy provider, the clock collaborator and the pure
    evaluator.
    """

    def __init__(self, policy: IPolicyProvider, clock: Clock):
        self._policy = policy
        self._clock = clock

    @property
    def policy(self) -> IPolicyProvider:
        return self._policy

    def evaluator(self) -> SLAEvaluator:
        return SLAEvaluator(self._policy.working_clock)

    def evaluate(self, issue: Any, at: Optional[datetime] = None) -> SLAEvaluation:
        """
        Evaluate an issue at ``at`` (defaults to the clock's now).

        Args:
            issue: anything exposing created_at, priority and status
            at: evaluation instant, timezone-aware
        """
        return self.evaluator().evaluate(issue, at or self._clock.now())
