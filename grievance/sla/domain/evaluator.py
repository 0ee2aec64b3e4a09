"""
SLA Evaluator
=============

Pure SLA evaluation over working time.

The evaluator never mutates an issue. A ``breached`` result is only a signal;
acting on it (auto-escalation) belongs to the issue state machine.
"""

from datetime import datetime
from typing import Any, Optional

from grievance.config import (
    DEFAULT_SLA_PRIORITY,
    SLA_TIER_HOURS,
    SLA_WARNING_FRACTION,
    TERMINAL_STATUSES,
    Priority,
    SLAState,
    normalize_priority,
    normalize_status,
)
from grievance.sla.domain.value_objects import SLAEvaluation
from grievance.sla.domain.working_time import WorkingTimeClock

_SECONDS_PER_HOUR = 3600.0


class SLAEvaluator:
    """
    Computes deadline, remaining/overdue working time and SLA state.

    Works on any object exposing ``created_at``, ``priority`` and ``status``;
    ``resolved_at``/``closed_at`` and ``id`` are read when present.
    """

    def __init__(
        self,
        clock: WorkingTimeClock,
        warning_fraction: float = SLA_WARNING_FRACTION
    ):
        self._clock = clock
        self._warning_fraction = warning_fraction

    @property
    def clock(self) -> WorkingTimeClock:
        return self._clock

    @staticmethod
    def tier_priority(priority: Any) -> Priority:
        """Priority whose tier applies; unknown values use the medium tier."""
        try:
            return normalize_priority(str(getattr(priority, "value", priority)))
        except ValueError:
            return DEFAULT_SLA_PRIORITY

    def tier_hours(self, priority: Any) -> float:
        return float(SLA_TIER_HOURS[self.tier_priority(priority)])

    def deadline(self, issue: Any) -> datetime:
        return self._clock.add_working_duration(issue.created_at, self.tier_hours(issue.priority))

    def status(self, issue: Any, now: datetime) -> SLAState:
        """
        SLA state at ``now``.

        Finished issues are always ``met``: they stop accruing breach.
        """
        if self._is_finished(issue):
            return SLAState.MET

        deadline = self.deadline(issue)
        if now > deadline:
            return SLAState.BREACHED

        remaining = self._clock.working_seconds(now, deadline)
        warning_window = self.tier_hours(issue.priority) * _SECONDS_PER_HOUR * self._warning_fraction
        if remaining <= warning_window:
            return SLAState.WARNING
        return SLAState.ON_TIME

    def remaining_or_overdue(self, issue: Any, now: datetime) -> float:
        """
        Signed working hours to the deadline: positive remaining, negative overdue.

        Finished issues are measured at their resolution time, not ``now``.
        """
        return self._signed_hours(self.deadline(issue), self._reference_instant(issue, now))

    def evaluate(self, issue: Any, now: datetime) -> SLAEvaluation:
        deadline = self.deadline(issue)
        reference = self._reference_instant(issue, now)

        resolved_within_sla = None
        if self._is_finished(issue) and self._finished_at(issue) is not None:
            resolved_within_sla = self._finished_at(issue) <= deadline

        return SLAEvaluation(
            issue_id=getattr(issue, "id", None),
            state=self.status(issue, now),
            priority=self.tier_priority(issue.priority),
            tier_hours=self.tier_hours(issue.priority),
            deadline=deadline,
            remaining_hours=self._signed_hours(deadline, reference),
            elapsed_hours=self._clock.working_duration(issue.created_at, reference),
            evaluated_at=now,
            resolved_within_sla=resolved_within_sla,
        )

    # ========== Helpers ==========

    def _signed_hours(self, deadline: datetime, reference: datetime) -> float:
        if reference <= deadline:
            seconds = self._clock.working_seconds(reference, deadline)
        else:
            seconds = -self._clock.working_seconds(deadline, reference)
        return round(seconds / _SECONDS_PER_HOUR, 2)

    def _reference_instant(self, issue: Any, now: datetime) -> datetime:
        if self._is_finished(issue):
            return self._finished_at(issue) or now
        return now

    @staticmethod
    def _finished_at(issue: Any) -> Optional[datetime]:
        return getattr(issue, "resolved_at", None) or getattr(issue, "closed_at", None)

    @staticmethod
    def _is_finished(issue: Any) -> bool:
        try:
            status, _ = normalize_status(str(getattr(issue.status, "value", issue.status)))
        except ValueError:
            return False
        return status in TERMINAL_STATUSES
