"""
Issue State Machine
===================

Owns the status field and the reopen / escalation rules.

Every operation validates the whole request first and then applies it to a
copy of the issue. The caller receives the new issue plus the audit entries
to append; the input issue is never touched, so a rejected request leaves no
partial state behind.
"""

import copy
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple

from grievance.config import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    VALID_PRIORITIES,
    VALID_STATUSES,
    AuditAction,
    IssueStatus,
    Priority,
    SLAState,
    normalize_priority,
    normalize_status,
)
from grievance.core import (
    IllegalTransitionException,
    NotReopenableException,
    ReopenWindowExpiredException,
    ValidationException,
)
from grievance.issues.domain.entities import AuditEntry, Issue
from grievance.shared.clock import Clock
from grievance.sla.domain import SLAEvaluation

DEFAULT_REOPEN_WINDOW = timedelta(days=30)


@dataclass(frozen=True)
class TransitionResult:
    """New issue state and the audit entries recording how it was reached."""
    issue: Issue
    audit_entries: Tuple[AuditEntry, ...]


class IssueStateMachine:
    """
    Status transitions, reopen window and escalation for one issue at a time.

    Status changes are staff overrides and may move in either direction
    between operational states, with two hard rules: a resolved/closed issue
    only returns to open through ``reopen``, and a no-op change is rejected.
    """

    def __init__(
        self,
        clock: Clock,
        reopen_window: timedelta = DEFAULT_REOPEN_WINDOW,
        escalation_threshold: int = 1
    ):
        if escalation_threshold < 1:
            raise ValueError("escalation_threshold must be at least 1")
        self._clock = clock
        self._reopen_window = reopen_window
        self._escalation_threshold = escalation_threshold

    @property
    def reopen_window(self) -> timedelta:
        return self._reopen_window

    # ========== Creation ==========

    def new_issue(
        self,
        type_id: str,
        sub_type_id: str,
        employee_id: int,
        description: str = "",
        priority: str = Priority.MEDIUM.value
    ) -> Issue:
        """Fresh issue in ``open`` with escalation level 0 (not yet persisted)."""
        if not type_id or not sub_type_id:
            raise ValidationException("type_id and sub_type_id are required")
        if employee_id is None or employee_id <= 0:
            raise ValidationException("employee_id must be a positive id", {"employee_id": employee_id})

        return Issue(
            id=None,
            type_id=type_id,
            sub_type_id=sub_type_id,
            employee_id=employee_id,
            description=description,
            priority=self._parse_priority(priority),
            created_at=self._clock.now(),
        )

    @staticmethod
    def creation_entry(issue: Issue) -> AuditEntry:
        """Audit entry recording the creation of a persisted issue."""
        return AuditEntry(
            id=None,
            issue_id=issue.id,
            action=AuditAction.CREATED,
            employee_id=issue.employee_id,
            created_at=issue.created_at,
            new_status=issue.status,
        )

    # ========== Transitions ==========

    def change_status(self, issue: Issue, requested: str, actor_id: int) -> TransitionResult:
        """
        Staff status change.

        ``pending`` and ``escalated`` are accepted as aliases of ``open`` and
        ``in_progress``; ``escalated`` also raises the escalation level.
        """
        try:
            target, escalate = normalize_status(requested)
        except ValueError:
            raise ValidationException(
                f"Unknown status '{requested}'",
                {"status": requested, "allowed": VALID_STATUSES}
            )

        if issue.is_finished and target in ACTIVE_STATUSES:
            raise IllegalTransitionException(
                issue.id, issue.status.value, f"change status to '{target.value}'",
                "use reopen to bring a resolved or closed issue back to open"
            )
        if target == issue.status and not escalate:
            raise IllegalTransitionException(
                issue.id, issue.status.value, f"change status to '{target.value}'",
                "issue is already in that status"
            )

        now = self._clock.now()
        updated = self._copy(issue)
        entries = []

        if target != issue.status:
            updated.status = target
            updated.last_status_change_at = now
            updated.updated_at = now
            if target in TERMINAL_STATUSES:
                updated.closed_at = now
                updated.reopenable_until = now + self._reopen_window
                updated.resolved_at = updated.resolved_at or now
                updated.previously_closed_at.append(now)
            entries.append(self._entry(
                updated, AuditAction.STATUS_CHANGED, actor_id, now,
                previous_status=issue.status, new_status=target
            ))

        if escalate:
            entries.append(self._apply_escalation(
                updated, actor_id, now, reason=f"status set to '{requested}'", automatic=False
            ))

        return TransitionResult(updated, tuple(entries))

    def reopen(self, issue: Issue, reason: str, actor_id: int) -> TransitionResult:
        """
        Revert a resolved/closed issue to open within the reopen window.

        Raises:
            ValidationException: empty reason
            NotReopenableException: issue is open or in progress
            ReopenWindowExpiredException: now is past ``reopenable_until``
        """
        if reason is None or not reason.strip():
            raise ValidationException("A reason is required to reopen an issue", {"issue_id": issue.id})
        if not issue.is_finished:
            raise NotReopenableException(issue.id, issue.status.value)

        now = self._clock.now()
        if not issue.can_reopen(now):
            raise ReopenWindowExpiredException(issue.id, issue.reopenable_until)

        updated = self._copy(issue)
        # Rows closed before the history was kept on close lack the entry
        history = updated.previously_closed_at
        if updated.closed_at is not None and (not history or history[-1] != updated.closed_at):
            history.append(updated.closed_at)
        updated.closed_at = None
        updated.reopenable_until = None
        updated.resolved_at = None
        updated.status = IssueStatus.OPEN
        updated.last_status_change_at = now
        updated.updated_at = now

        entry = self._entry(
            updated, AuditAction.REOPENED, actor_id, now,
            previous_status=issue.status, new_status=IssueStatus.OPEN,
            details={"reason": reason.strip()}
        )
        return TransitionResult(updated, (entry,))

    def assign(self, issue: Issue, assignee_id: int, actor_id: int) -> TransitionResult:
        """Set the assignee. Closed issues may be reassigned ahead of a reopen."""
        if assignee_id is None or assignee_id <= 0:
            raise ValidationException("assignee_id must be a positive id", {"assignee_id": assignee_id})
        if assignee_id == issue.assigned_to:
            raise ValidationException(
                f"Issue {issue.id} is already assigned to {assignee_id}",
                {"issue_id": issue.id, "assignee_id": assignee_id}
            )

        now = self._clock.now()
        updated = self._copy(issue)
        updated.assigned_to = assignee_id
        updated.updated_at = now

        entry = self._entry(
            updated, AuditAction.ASSIGNED, actor_id, now,
            details={"assignee_id": assignee_id, "previous_assignee_id": issue.assigned_to}
        )
        return TransitionResult(updated, (entry,))

    def change_priority(self, issue: Issue, requested: str, actor_id: int) -> TransitionResult:
        target = self._parse_priority(requested)
        if target == issue.priority:
            raise ValidationException(
                f"Issue {issue.id} already has priority '{target.value}'",
                {"issue_id": issue.id, "priority": target.value}
            )

        now = self._clock.now()
        updated = self._copy(issue)
        updated.priority = target
        updated.updated_at = now

        entry = self._entry(
            updated, AuditAction.PRIORITY_CHANGED, actor_id, now,
            details={"previous_priority": issue.priority.value, "new_priority": target.value}
        )
        return TransitionResult(updated, (entry,))

    # ========== Recategorisation ==========

    def map_type(
        self,
        issue: Issue,
        mapped_type_id: str,
        mapped_sub_type_id: str,
        actor_id: int
    ) -> TransitionResult:
        """
        Recategorise a generic ("other") issue under a specific type/sub-type.

        The filed ``type_id``/``sub_type_id`` are kept; the mapping sits beside
        them and can be replaced or removed later.
        """
        mapped_type_id = (mapped_type_id or "").strip()
        mapped_sub_type_id = (mapped_sub_type_id or "").strip()
        if not mapped_type_id or not mapped_sub_type_id:
            raise ValidationException(
                "mapped_type_id and mapped_sub_type_id are required",
                {"issue_id": issue.id}
            )
        if (mapped_type_id, mapped_sub_type_id) == (issue.mapped_type_id, issue.mapped_sub_type_id):
            raise ValidationException(
                f"Issue {issue.id} is already mapped to {mapped_type_id}/{mapped_sub_type_id}",
                {"issue_id": issue.id}
            )

        now = self._clock.now()
        updated = self._copy(issue)
        updated.mapped_type_id = mapped_type_id
        updated.mapped_sub_type_id = mapped_sub_type_id
        updated.mapped_at = now
        updated.mapped_by = actor_id
        updated.updated_at = now

        entry = self._entry(
            updated, AuditAction.ISSUE_MAPPED, actor_id, now,
            details={
                "mapped_type_id": mapped_type_id,
                "mapped_sub_type_id": mapped_sub_type_id,
                "previous_mapped_type_id": issue.mapped_type_id,
                "previous_mapped_sub_type_id": issue.mapped_sub_type_id,
            }
        )
        return TransitionResult(updated, (entry,))

    def unmap_type(self, issue: Issue, actor_id: int) -> TransitionResult:
        """Remove the mapping; ``mapped_by`` keeps the last actor who touched it."""
        if issue.mapped_type_id is None and issue.mapped_sub_type_id is None:
            raise ValidationException(f"Issue {issue.id} is not mapped", {"issue_id": issue.id})

        now = self._clock.now()
        updated = self._copy(issue)
        updated.mapped_type_id = None
        updated.mapped_sub_type_id = None
        updated.mapped_at = None
        updated.mapped_by = actor_id
        updated.updated_at = now

        entry = self._entry(
            updated, AuditAction.ISSUE_UNMAPPED, actor_id, now,
            details={
                "previous_mapped_type_id": issue.mapped_type_id,
                "previous_mapped_sub_type_id": issue.mapped_sub_type_id,
            }
        )
        return TransitionResult(updated, (entry,))

    # ========== Escalation ==========

    def escalate(self, issue: Issue, actor_id: int, reason: Optional[str] = None) -> TransitionResult:
        """Manual escalation by staff."""
        if issue.is_finished:
            raise IllegalTransitionException(
                issue.id, issue.status.value, "escalate",
                "resolved or closed issues cannot be escalated"
            )

        now = self._clock.now()
        updated = self._copy(issue)
        entry = self._apply_escalation(updated, actor_id, now, reason=reason, automatic=False)
        return TransitionResult(updated, (entry,))

    def escalate_if_breached(
        self,
        issue: Issue,
        evaluation: SLAEvaluation
    ) -> Optional[TransitionResult]:
        """
        Automatic escalation for a breached SLA, once per breach episode.

        A breach episode starts at the SLA deadline; an escalation recorded at
        or after that deadline already covers it, so repeated polls are no-ops.
        Returns None when nothing changes.
        """
        if issue.is_finished or evaluation.state != SLAState.BREACHED:
            return None
        if issue.last_escalated_at is not None and issue.last_escalated_at >= evaluation.deadline:
            return None

        now = self._clock.now()
        updated = self._copy(issue)
        entry = self._apply_escalation(
            updated, None, now,
            reason="SLA breached",
            automatic=True,
            sla_deadline=evaluation.deadline
        )
        return TransitionResult(updated, (entry,))

    def _apply_escalation(
        self,
        updated: Issue,
        actor_id: Optional[int],
        now: datetime,
        reason: Optional[str],
        automatic: bool,
        sla_deadline: Optional[datetime] = None
    ) -> AuditEntry:
        previous_priority = updated.priority
        updated.escalation_level += 1
        updated.last_escalated_at = now
        updated.updated_at = now
        if updated.escalation_level >= self._escalation_threshold:
            updated.priority = Priority.CRITICAL

        details = {
            "escalation_level": updated.escalation_level,
            "previous_priority": previous_priority.value,
            "new_priority": updated.priority.value,
            "automatic": automatic,
        }
        if reason:
            details["reason"] = reason
        if sla_deadline is not None:
            details["sla_deadline"] = sla_deadline.isoformat()
        return self._entry(updated, AuditAction.ESCALATED, actor_id, now, details=details)

    # ========== Helpers ==========

    @staticmethod
    def _parse_priority(raw: str) -> Priority:
        try:
            return normalize_priority(raw)
        except ValueError:
            raise ValidationException(
                f"Unknown priority '{raw}'",
                {"priority": raw, "allowed": VALID_PRIORITIES}
            )

    @staticmethod
    def _copy(issue: Issue) -> Issue:
        return copy.deepcopy(issue)

    @staticmethod
    def _entry(
        issue: Issue,
        action: AuditAction,
        actor_id: Optional[int],
        now: datetime,
        previous_status: Optional[IssueStatus] = None,
        new_status: Optional[IssueStatus] = None,
        details: Optional[dict] = None
    ) -> AuditEntry:
        return AuditEntry(
            id=None,
            issue_id=issue.id,
            action=action,
            employee_id=actor_id,
            created_at=now,
            previous_status=previous_status,
            new_status=new_status,
            details=details or {},
        )
