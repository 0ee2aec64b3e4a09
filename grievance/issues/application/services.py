"""
Issues Application Services
============================

Application services orchestrate the issue lifecycle: they load issues from
storage, hand them to the state machine, and persist the result under an
optimistic version check.

Following SOLID principles:
- Single Responsibility: lifecycle operations and the escalation sweep are
  separate services
- Dependency Inversion: depend on repository/directory interfaces, not on
  SQLAlchemy
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from grievance.core import (
    LookupDegradedException,
    ResourceNotFoundException,
    ValidationException,
    VersionConflictException,
)
from grievance.config import AuditAction
from grievance.issues.domain import (
    AuditEntry,
    Comment,
    InternalComment,
    Issue,
    IssueStateMachine,
    TimelineAssembler,
    TimelineEvent,
    TransitionResult,
)
from grievance.shared.clock import Clock
from grievance.shared.infrastructure.logging import get_issue_logger, get_logger
from grievance.sla.application import IEscalationNotifier, SLAService
from grievance.sla.domain import EscalationMessage, SLAEvaluation

logger = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


# ========== Repository Interfaces (Dependency Inversion) ==========

class IIssueRepository(ABC):
    """Interface for issue, comment and audit trail storage."""

    @abstractmethod
    async def get_by_id(self, issue_id: int) -> Optional[Issue]:
        """Fresh read of an issue, or None."""

    @abstractmethod
    async def create(self, issue: Issue) -> Issue:
        """Insert a new issue; returns it with id and version 1."""

    @abstractmethod
    async def save(self, issue: Issue, expected_version: int) -> Issue:
        """
        Compare-and-swap write.

        Raises:
            VersionConflictException: stored version differs from expected_version
        """

    @abstractmethod
    async def list_active(self) -> List[Issue]:
        """Issues that are open or in progress."""

    @abstractmethod
    async def get_audit_trail(self, issue_id: int) -> List[AuditEntry]:
        """Audit entries in chronological order."""

    @abstractmethod
    async def append_audit_entries(self, entries: Iterable[AuditEntry]) -> List[AuditEntry]:
        """Append audit entries; returns them with ids."""

    @abstractmethod
    async def get_comments(self, issue_id: int) -> List[Comment]:
        """Public comments in chronological order."""

    @abstractmethod
    async def add_comment(self, comment: Comment) -> Comment:
        """Append a public comment."""

    @abstractmethod
    async def get_internal_comments(self, issue_id: int) -> List[InternalComment]:
        """Internal staff comments in chronological order."""

    @abstractmethod
    async def add_internal_comment(self, comment: InternalComment) -> InternalComment:
        """Append an internal staff comment."""


class IActorDirectory(ABC):
    """Interface for employee identity lookups."""

    @abstractmethod
    async def exists(self, employee_id: int) -> bool:
        """Whether the employee is known."""

    @abstractmethod
    async def resolve_names(self, employee_ids: Iterable[int]) -> Dict[int, Optional[str]]:
        """
        Display names by id; unknown ids map to None.

        Raises:
            LookupDegradedException: the directory could not be queried
        """


# ========== Application Services ==========

class IssueLifecycleService:
    """
    Service for issue lifecycle operations.

    Every mutation is a read-modify-write: read the issue, apply the
    transition in memory, save it guarded by the version read. A lost race
    is retried from a fresh read up to ``max_attempts`` times.
    """

    def __init__(
        self,
        repository: IIssueRepository,
        actor_directory: IActorDirectory,
        sla_service: SLAService,
        clock: Clock,
        reopen_window: timedelta = timedelta(days=30),
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        notifier: Optional[IEscalationNotifier] = None
    ):
        self._repo = repository
        self._directory = actor_directory
        self._sla = sla_service
        self._clock = clock
        self._reopen_window = reopen_window
        self._max_attempts = max(1, max_attempts)
        self._notifier = notifier

    def state_machine(self) -> IssueStateMachine:
        """State machine configured with the escalation policy currently in force."""
        return IssueStateMachine(
            self._clock,
            reopen_window=self._reopen_window,
            escalation_threshold=self._sla.policy.escalation_threshold()
        )

    # ========== Queries ==========

    async def get_issue(self, issue_id: int) -> Issue:
        issue = await self._repo.get_by_id(issue_id)
        if issue is None:
            raise ResourceNotFoundException("Issue", issue_id)
        return issue

    async def get_sla_status(self, issue_id: int, at: Optional[datetime] = None) -> SLAEvaluation:
        """SLA state, deadline and signed remaining working hours."""
        issue = await self.get_issue(issue_id)
        return self._sla.evaluate(issue, at)

    async def get_timeline(
        self,
        issue_id: int,
        viewer_id: Optional[int] = None,
        privileged: bool = False,
        descending: bool = True
    ) -> List[TimelineEvent]:
        """
        Merged history of an issue as seen by ``viewer_id``.

        Names are fetched up front in one directory call; if the directory is
        unavailable every actor renders as the unknown placeholder.
        """
        issue = await self.get_issue(issue_id)
        audit = await self._repo.get_audit_trail(issue_id)
        comments = await self._repo.get_comments(issue_id)

        assembler = TimelineAssembler(await self._name_resolver(issue, audit, comments))
        internal: List[InternalComment] = []
        if assembler.can_view_private(issue, audit, viewer_id, privileged):
            internal = await self._repo.get_internal_comments(issue_id)

        return assembler.assemble(
            issue, comments, audit, internal,
            viewer_id=viewer_id,
            privileged=privileged,
            descending=descending
        )

    async def can_view_private(self, issue_id: int, viewer_id: Optional[int], privileged: bool = False) -> bool:
        issue = await self.get_issue(issue_id)
        audit = await self._repo.get_audit_trail(issue_id)
        return TimelineAssembler.can_view_private(issue, audit, viewer_id, privileged)

    async def _name_resolver(
        self,
        issue: Issue,
        audit: List[AuditEntry],
        comments: List[Comment]
    ) -> Callable[[int], Optional[str]]:
        ids = {issue.employee_id}
        if issue.assigned_to is not None:
            ids.add(issue.assigned_to)
        for entry in audit:
            if entry.employee_id is not None:
                ids.add(entry.employee_id)
            if entry.details.get("assignee_id") is not None:
                ids.add(entry.details["assignee_id"])
        ids.update(comment.employee_id for comment in comments)

        try:
            names = await self._directory.resolve_names(ids)
        except LookupDegradedException as e:
            logger.warning("Actor directory unavailable", extra={"issue_id": issue.id, "error": e.message})
            failure = e

            def degraded(employee_id: int) -> Optional[str]:
                raise failure
            return degraded

        # Internal comment authors outside the prefetched set resolve as unknown
        return names.get

    # ========== Commands ==========

    async def create_issue(
        self,
        type_id: str,
        sub_type_id: str,
        employee_id: int,
        description: str = "",
        priority: str = "medium"
    ) -> Issue:
        """File a new issue in ``open`` with a ``created`` audit entry."""
        issue = self.state_machine().new_issue(type_id, sub_type_id, employee_id, description, priority)
        issue = await self._repo.create(issue)
        await self._repo.append_audit_entries([IssueStateMachine.creation_entry(issue)])

        logger.info(
            "Issue created",
            extra={"issue_id": issue.id, "priority": issue.priority.value, "employee_id": employee_id}
        )
        return issue

    async def change_status(self, issue_id: int, status: str, actor_id: int) -> Issue:
        return await self._transition(
            issue_id, "change_status",
            lambda machine, issue: machine.change_status(issue, status, actor_id)
        )

    async def assign(self, issue_id: int, assignee_id: int, actor_id: int) -> Issue:
        if assignee_id is None or assignee_id <= 0:
            raise ValidationException("assignee_id must be a positive id", {"assignee_id": assignee_id})
        if not await self._directory.exists(assignee_id):
            raise ResourceNotFoundException("Employee", assignee_id)
        return await self._transition(
            issue_id, "assign",
            lambda machine, issue: machine.assign(issue, assignee_id, actor_id)
        )

    async def reopen(self, issue_id: int, reason: str, actor_id: int) -> Issue:
        return await self._transition(
            issue_id, "reopen",
            lambda machine, issue: machine.reopen(issue, reason, actor_id)
        )

    async def change_priority(self, issue_id: int, priority: str, actor_id: int) -> Issue:
        return await self._transition(
            issue_id, "change_priority",
            lambda machine, issue: machine.change_priority(issue, priority, actor_id)
        )

    async def map_type(self, issue_id: int, mapped_type_id: str, mapped_sub_type_id: str, actor_id: int) -> Issue:
        """Recategorise an issue filed under a generic type."""
        return await self._transition(
            issue_id, "map_type",
            lambda machine, issue: machine.map_type(issue, mapped_type_id, mapped_sub_type_id, actor_id)
        )

    async def unmap_type(self, issue_id: int, actor_id: int) -> Issue:
        return await self._transition(
            issue_id, "unmap_type",
            lambda machine, issue: machine.unmap_type(issue, actor_id)
        )

    async def escalate(self, issue_id: int, actor_id: int, reason: Optional[str] = None) -> Issue:
        """Manual escalation; a Slack notification follows on a best-effort basis."""
        issue = await self._transition(
            issue_id, "escalate",
            lambda machine, current: machine.escalate(current, actor_id, reason)
        )
        if self._notifier is not None:
            evaluation = self._sla.evaluate(issue)
            await self._notifier.send_escalation(EscalationMessage.from_evaluation(issue, evaluation, automatic=False))
        return issue

    async def add_comment(self, issue_id: int, employee_id: int, content: str) -> Comment:
        """Public comment, visible to the filing employee."""
        await self.get_issue(issue_id)
        if not content or not content.strip():
            raise ValidationException("Comment content cannot be empty", {"issue_id": issue_id})

        comment = await self._repo.add_comment(Comment(
            id=None,
            issue_id=issue_id,
            employee_id=employee_id,
            content=content.strip(),
            created_at=self._clock.now(),
        ))
        logger.info("Comment added", extra={"issue_id": issue_id, "employee_id": employee_id})
        return comment

    async def add_internal_comment(self, issue_id: int, employee_id: int, content: str) -> InternalComment:
        """Staff-only message; recorded in the audit trail as well."""
        await self.get_issue(issue_id)
        if not content or not content.strip():
            raise ValidationException("Comment content cannot be empty", {"issue_id": issue_id})

        now = self._clock.now()
        comment = await self._repo.add_internal_comment(InternalComment(
            id=None,
            issue_id=issue_id,
            employee_id=employee_id,
            content=content.strip(),
            created_at=now,
        ))
        await self._repo.append_audit_entries([AuditEntry(
            id=None,
            issue_id=issue_id,
            action=AuditAction.INTERNAL_COMMENT_ADDED,
            employee_id=employee_id,
            created_at=now,
            details={"internal_comment_id": comment.id},
        )])
        logger.info("Internal comment added", extra={"issue_id": issue_id, "employee_id": employee_id})
        return comment

    # ========== Read-modify-write ==========

    async def _transition(
        self,
        issue_id: int,
        operation: str,
        apply: Callable[[IssueStateMachine, Issue], TransitionResult]
    ) -> Issue:
        """
        Apply a transition under the version check, retrying lost races.

        Business-rule failures raised by ``apply`` propagate immediately;
        only VersionConflictException triggers a retry.
        """
        issue_logger = get_issue_logger(__name__, issue_id)
        machine = self.state_machine()
        expected_version = None

        for attempt in range(1, self._max_attempts + 1):
            issue = await self.get_issue(issue_id)
            expected_version = issue.version
            result = apply(machine, issue)

            try:
                saved = await self._repo.save(result.issue, expected_version)
            except VersionConflictException:
                issue_logger.warning(
                    "Version conflict, retrying from a fresh read",
                    extra={"operation": operation, "attempt": attempt, "expected_version": expected_version}
                )
                continue

            await self._repo.append_audit_entries(result.audit_entries)
            issue_logger.info(
                "Issue transition applied",
                extra={
                    "operation": operation,
                    "status": saved.status.value,
                    "escalation_level": saved.escalation_level,
                    "version": saved.version,
                    "attempt": attempt,
                }
            )
            return saved

        issue_logger.error(
            "Version conflict retries exhausted",
            extra={"operation": operation, "attempts": self._max_attempts}
        )
        raise VersionConflictException(issue_id, expected_version, attempts=self._max_attempts)


@dataclass
class SweepReport:
    """Outcome of one escalation sweep."""
    evaluated: int = 0
    escalated: List[int] = field(default_factory=list)
    conflicts: List[int] = field(default_factory=list)
    notified: int = 0


class EscalationSweepService:
    """
    Service for automatic escalation of breached issues.

    Run periodically. Each issue is escalated at most once per breach
    episode; a concurrent write skips the issue until the next sweep.
    """

    def __init__(
        self,
        repository: IIssueRepository,
        sla_service: SLAService,
        clock: Clock,
        notifier: Optional[IEscalationNotifier] = None
    ):
        self._repo = repository
        self._sla = sla_service
        self._clock = clock
        self._notifier = notifier

    async def sweep(self) -> SweepReport:
        """
        Evaluate every active issue and escalate the newly breached ones.

        Notification failures never undo a persisted escalation.
        """
        report = SweepReport()
        machine = IssueStateMachine(self._clock, escalation_threshold=self._sla.policy.escalation_threshold())

        for issue in await self._repo.list_active():
            report.evaluated += 1
            evaluation = self._sla.evaluate(issue)
            result = machine.escalate_if_breached(issue, evaluation)
            if result is None:
                continue

            try:
                saved = await self._repo.save(result.issue, issue.version)
            except VersionConflictException:
                logger.warning("Escalation skipped after concurrent write", extra={"issue_id": issue.id})
                report.conflicts.append(issue.id)
                continue

            await self._repo.append_audit_entries(result.audit_entries)
            report.escalated.append(saved.id)
            logger.info(
                "Issue escalated on SLA breach",
                extra={
                    "issue_id": saved.id,
                    "escalation_level": saved.escalation_level,
                    "priority": saved.priority.value,
                    "remaining_hours": evaluation.remaining_hours,
                }
            )

            if self._notifier is not None:
                message = EscalationMessage.from_evaluation(saved, evaluation, automatic=True)
                if await self._notifier.send_escalation(message):
                    report.notified += 1

        logger.info(
            "Escalation sweep completed",
            extra={
                "evaluated": report.evaluated,
                "escalated": len(report.escalated),
                "conflicts": len(report.conflicts),
            }
        )
        return report
