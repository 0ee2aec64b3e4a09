"""
Issues Infrastructure Repositories
===================================

Concrete implementations of the issue repository and actor directory using
async SQLAlchemy.

All datetimes are written and read back as timezone-aware UTC; drivers that
drop the offset (SQLite) get it restored on load.
"""

from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from grievance.config import (
    ACTIVE_STATUSES,
    STATUS_ALIASES,
    AuditAction,
    IssueStatus,
    Priority,
    normalize_priority,
    normalize_status,
)
from grievance.core import LookupDegradedException, VersionConflictException
from grievance.issues.application import IActorDirectory, IIssueRepository
from grievance.issues.domain import AuditEntry, Comment, InternalComment, Issue
from grievance.issues.infrastructure.models import (
    AuditEntryModel,
    CommentModel,
    EmployeeModel,
    InternalCommentModel,
    IssueModel,
)
from grievance.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _status_or_none(raw: Optional[str]) -> Optional[IssueStatus]:
    return normalize_status(raw)[0] if raw else None


class SQLAlchemyIssueRepository(IIssueRepository):
    """
    SQLAlchemy implementation of the issue repository.

    ``save`` is a single conditional UPDATE on (id, version), so two writers
    holding the same version cannot both succeed.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    # ========== Issues ==========

    async def get_by_id(self, issue_id: int) -> Optional[Issue]:
        stmt = (
            select(IssueModel)
            .where(IssueModel.id == issue_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def create(self, issue: Issue) -> Issue:
        model = IssueModel(**self._columns(issue), version=1)
        self._session.add(model)
        await self._session.flush()
        return replace(issue, id=model.id, version=1)

    async def save(self, issue: Issue, expected_version: int) -> Issue:
        stmt = (
            update(IssueModel)
            .where(IssueModel.id == issue.id, IssueModel.version == expected_version)
            .values(**self._columns(issue), version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise VersionConflictException(issue.id, expected_version)
        return replace(issue, version=expected_version + 1)

    async def list_active(self) -> List[Issue]:
        labels = [status.value for status in ACTIVE_STATUSES]
        labels += [alias for alias, (status, _) in STATUS_ALIASES.items() if status in ACTIVE_STATUSES]

        stmt = (
            select(IssueModel)
            .where(IssueModel.status.in_(labels))
            .order_by(IssueModel.created_at, IssueModel.id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    # ========== Audit trail ==========

    async def get_audit_trail(self, issue_id: int) -> List[AuditEntry]:
        stmt = (
            select(AuditEntryModel)
            .where(AuditEntryModel.issue_id == issue_id)
            .order_by(AuditEntryModel.created_at, AuditEntryModel.id)
        )
        result = await self._session.execute(stmt)
        return [
            AuditEntry(
                id=model.id,
                issue_id=model.issue_id,
                action=AuditAction(model.action),
                employee_id=model.employee_id,
                created_at=_as_utc(model.created_at),
                previous_status=_status_or_none(model.previous_status),
                new_status=_status_or_none(model.new_status),
                details=dict(model.details or {}),
            )
            for model in result.scalars().all()
        ]

    async def append_audit_entries(self, entries: Iterable[AuditEntry]) -> List[AuditEntry]:
        pending = []
        for entry in entries:
            model = AuditEntryModel(
                issue_id=entry.issue_id,
                action=entry.action.value,
                employee_id=entry.employee_id,
                previous_status=entry.previous_status.value if entry.previous_status else None,
                new_status=entry.new_status.value if entry.new_status else None,
                details=dict(entry.details),
                created_at=_as_utc(entry.created_at),
            )
            self._session.add(model)
            pending.append((entry, model))

        await self._session.flush()
        return [replace(entry, id=model.id) for entry, model in pending]

    # ========== Comments ==========

    async def get_comments(self, issue_id: int) -> List[Comment]:
        stmt = (
            select(CommentModel)
            .where(CommentModel.issue_id == issue_id)
            .order_by(CommentModel.created_at, CommentModel.id)
        )
        result = await self._session.execute(stmt)
        return [
            Comment(
                id=model.id,
                issue_id=model.issue_id,
                employee_id=model.employee_id,
                content=model.content,
                created_at=_as_utc(model.created_at),
            )
            for model in result.scalars().all()
        ]

    async def add_comment(self, comment: Comment) -> Comment:
        model = CommentModel(
            issue_id=comment.issue_id,
            employee_id=comment.employee_id,
            content=comment.content,
            created_at=_as_utc(comment.created_at),
        )
        self._session.add(model)
        await self._session.flush()
        return replace(comment, id=model.id)

    async def get_internal_comments(self, issue_id: int) -> List[InternalComment]:
        stmt = (
            select(InternalCommentModel)
            .where(InternalCommentModel.issue_id == issue_id)
            .order_by(InternalCommentModel.created_at, InternalCommentModel.id)
        )
        result = await self._session.execute(stmt)
        return [
            InternalComment(
                id=model.id,
                issue_id=model.issue_id,
                employee_id=model.employee_id,
                content=model.content,
                created_at=_as_utc(model.created_at),
            )
            for model in result.scalars().all()
        ]

    async def add_internal_comment(self, comment: InternalComment) -> InternalComment:
        model = InternalCommentModel(
            issue_id=comment.issue_id,
            employee_id=comment.employee_id,
            content=comment.content,
            created_at=_as_utc(comment.created_at),
        )
        self._session.add(model)
        await self._session.flush()
        return replace(comment, id=model.id)

    # ========== Mapping ==========

    @staticmethod
    def _columns(issue: Issue) -> dict:
        return {
            "type_id": issue.type_id,
            "sub_type_id": issue.sub_type_id,
            "mapped_type_id": issue.mapped_type_id,
            "mapped_sub_type_id": issue.mapped_sub_type_id,
            "mapped_at": _as_utc(issue.mapped_at),
            "mapped_by": issue.mapped_by,
            "employee_id": issue.employee_id,
            "description": issue.description,
            "status": issue.status.value,
            "priority": issue.priority.value,
            "escalation_level": issue.escalation_level,
            "assigned_to": issue.assigned_to,
            "created_at": _as_utc(issue.created_at),
            "updated_at": _as_utc(issue.updated_at),
            "last_status_change_at": _as_utc(issue.last_status_change_at),
            "resolved_at": _as_utc(issue.resolved_at),
            "closed_at": _as_utc(issue.closed_at),
            "reopenable_until": _as_utc(issue.reopenable_until),
            "last_escalated_at": _as_utc(issue.last_escalated_at),
            "previously_closed_at": [_as_utc(t).isoformat() for t in issue.previously_closed_at],
        }

    @staticmethod
    def _to_domain(model: IssueModel) -> Issue:
        status, _ = normalize_status(model.status)
        try:
            priority = normalize_priority(model.priority)
        except ValueError:
            logger.warning(
                "Unknown stored priority, using medium",
                extra={"issue_id": model.id, "priority": model.priority}
            )
            priority = Priority.MEDIUM

        return Issue(
            id=model.id,
            type_id=model.type_id,
            sub_type_id=model.sub_type_id,
            mapped_type_id=model.mapped_type_id,
            mapped_sub_type_id=model.mapped_sub_type_id,
            mapped_at=_as_utc(model.mapped_at),
            mapped_by=model.mapped_by,
            employee_id=model.employee_id,
            description=model.description or "",
            status=status,
            priority=priority,
            escalation_level=model.escalation_level,
            assigned_to=model.assigned_to,
            created_at=_as_utc(model.created_at),
            updated_at=_as_utc(model.updated_at),
            last_status_change_at=_as_utc(model.last_status_change_at),
            resolved_at=_as_utc(model.resolved_at),
            closed_at=_as_utc(model.closed_at),
            reopenable_until=_as_utc(model.reopenable_until),
            last_escalated_at=_as_utc(model.last_escalated_at),
            previously_closed_at=[
                _as_utc(datetime.fromisoformat(value)) for value in (model.previously_closed_at or [])
            ],
            version=model.version,
        )


class SQLAlchemyActorDirectory(IActorDirectory):
    """
    Employee directory backed by the 'employees' table.

    Database failures surface as LookupDegradedException so timeline
    rendering can fall back to placeholder names.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def exists(self, employee_id: int) -> bool:
        try:
            result = await self._session.execute(
                select(EmployeeModel.id).where(EmployeeModel.id == employee_id)
            )
        except SQLAlchemyError as e:
            raise LookupDegradedException(employee_id, str(e)) from e
        return result.scalar_one_or_none() is not None

    async def resolve_names(self, employee_ids: Iterable[int]) -> Dict[int, Optional[str]]:
        ids = sorted(set(employee_ids))
        if not ids:
            return {}

        try:
            result = await self._session.execute(
                select(EmployeeModel.id, EmployeeModel.name).where(EmployeeModel.id.in_(ids))
            )
        except SQLAlchemyError as e:
            raise LookupDegradedException(ids, str(e)) from e

        names: Dict[int, Optional[str]] = {employee_id: None for employee_id in ids}
        names.update({row.id: row.name for row in result})
        return names
