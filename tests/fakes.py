"""In-memory collaborators for service tests."""

import copy
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from grievance.core import LookupDegradedException, VersionConflictException
from grievance.issues.application import IActorDirectory, IIssueRepository
from grievance.issues.domain import AuditEntry, Comment, InternalComment, Issue
from grievance.sla.application import IEscalationNotifier
from grievance.sla.domain import EscalationMessage


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def make_issue(**overrides) -> Issue:
    fields = dict(
        id=1,
        type_id="payroll",
        sub_type_id="salary_delay",
        employee_id=10,
        created_at=utc(2024, 3, 4, 9, 0),
    )
    fields.update(overrides)
    return Issue(**fields)


class InMemoryIssueRepository(IIssueRepository):
    """Dict-backed repository with the same compare-and-swap contract."""

    def __init__(self):
        self.issues: Dict[int, Issue] = {}
        self.audit: List[AuditEntry] = []
        self.comments: List[Comment] = []
        self.internal_comments: List[InternalComment] = []
        self.save_calls = 0

    async def get_by_id(self, issue_id: int) -> Optional[Issue]:
        issue = self.issues.get(issue_id)
        return copy.deepcopy(issue) if issue else None

    async def create(self, issue: Issue) -> Issue:
        created = replace(issue, id=len(self.issues) + 1, version=1)
        self.issues[created.id] = copy.deepcopy(created)
        return created

    async def save(self, issue: Issue, expected_version: int) -> Issue:
        self.save_calls += 1
        stored = self.issues.get(issue.id)
        if stored is None or stored.version != expected_version:
            raise VersionConflictException(issue.id, expected_version)
        saved = replace(issue, version=expected_version + 1)
        self.issues[issue.id] = copy.deepcopy(saved)
        return saved

    async def list_active(self) -> List[Issue]:
        return [copy.deepcopy(issue) for issue in self.issues.values() if issue.is_active]

    async def get_audit_trail(self, issue_id: int) -> List[AuditEntry]:
        return [entry for entry in self.audit if entry.issue_id == issue_id]

    async def append_audit_entries(self, entries: Iterable[AuditEntry]) -> List[AuditEntry]:
        stored = []
        for entry in entries:
            entry = replace(entry, id=len(self.audit) + 1)
            self.audit.append(entry)
            stored.append(entry)
        return stored

    async def get_comments(self, issue_id: int) -> List[Comment]:
        return [comment for comment in self.comments if comment.issue_id == issue_id]

    async def add_comment(self, comment: Comment) -> Comment:
        comment = replace(comment, id=len(self.comments) + 1)
        self.comments.append(comment)
        return comment

    async def get_internal_comments(self, issue_id: int) -> List[InternalComment]:
        return [comment for comment in self.internal_comments if comment.issue_id == issue_id]

    async def add_internal_comment(self, comment: InternalComment) -> InternalComment:
        comment = replace(comment, id=len(self.internal_comments) + 1)
        self.internal_comments.append(comment)
        return comment


class RacingIssueRepository(InMemoryIssueRepository):
    """
    Simulates a competing writer: before each of the first ``races`` saves,
    the stored row is bumped so the caller's expected version is stale.
    """

    def __init__(self, races: int):
        super().__init__()
        self.races = races

    async def save(self, issue: Issue, expected_version: int) -> Issue:
        if self.races > 0:
            self.races -= 1
            stored = self.issues[issue.id]
            self.issues[issue.id] = replace(stored, version=stored.version + 1)
        return await super().save(issue, expected_version)


class InMemoryActorDirectory(IActorDirectory):
    def __init__(self, names: Optional[Dict[int, str]] = None, degraded: bool = False):
        self.names = dict(names or {})
        self.degraded = degraded

    async def exists(self, employee_id: int) -> bool:
        if self.degraded:
            raise LookupDegradedException(employee_id)
        return employee_id in self.names

    async def resolve_names(self, employee_ids: Iterable[int]) -> Dict[int, Optional[str]]:
        ids = list(employee_ids)
        if self.degraded:
            raise LookupDegradedException(ids)
        return {employee_id: self.names.get(employee_id) for employee_id in ids}


class RecordingNotifier(IEscalationNotifier):
    def __init__(self, delivered: bool = True):
        self.delivered = delivered
        self.messages: List[EscalationMessage] = []

    async def send_escalation(self, data: EscalationMessage, max_retries: int = 3) -> bool:
        self.messages.append(data)
        return self.delivered
