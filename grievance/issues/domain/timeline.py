"""
Issue Timeline
==============

Merges creation, assignment, status, public comment and private message
events of one issue into a single ordered, attributed history.

Public comments and private (internal) messages come from separate source
lists and never cross: the public thread is built only from ``Comment``
records, the private thread only from ``InternalComment`` records.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, ClassVar, Dict, Iterable, List, Optional, Sequence, Union

from grievance.config import (
    SYSTEM_ACTOR_NAME,
    UNKNOWN_ACTOR_NAME,
    AuditAction,
    TimelineEventType,
)
from grievance.core import LookupDegradedException
from grievance.issues.domain.entities import AuditEntry, Comment, InternalComment, Issue

logger = logging.getLogger(__name__)

NameResolver = Callable[[int], Optional[str]]


# ========== Events ==========

@dataclass(frozen=True)
class CreationEvent:
    event_type: ClassVar[TimelineEventType] = TimelineEventType.CREATION
    timestamp: datetime
    actor_id: Optional[int]
    actor_name: str
    description: str
    priority: str


@dataclass(frozen=True)
class AssignmentEvent:
    event_type: ClassVar[TimelineEventType] = TimelineEventType.ASSIGNMENT
    timestamp: datetime
    actor_id: Optional[int]
    actor_name: str
    assignee_id: Optional[int]
    assignee_name: str
    previous_assignee_id: Optional[int]


@dataclass(frozen=True)
class StatusEvent:
    event_type: ClassVar[TimelineEventType] = TimelineEventType.STATUS
    timestamp: datetime
    actor_id: Optional[int]
    actor_name: str
    previous_status: Optional[str]
    new_status: Optional[str]
    reopen_reason: Optional[str] = None


@dataclass(frozen=True)
class CommentEvent:
    event_type: ClassVar[TimelineEventType] = TimelineEventType.COMMENT
    timestamp: datetime
    actor_id: Optional[int]
    actor_name: str
    comment_id: Optional[int]
    content: str


@dataclass(frozen=True)
class PrivateCommentEvent:
    event_type: ClassVar[TimelineEventType] = TimelineEventType.PRIVATE_COMMENT
    timestamp: datetime
    actor_id: Optional[int]
    actor_name: str
    comment_id: Optional[int]
    content: str


TimelineEvent = Union[CreationEvent, AssignmentEvent, StatusEvent, CommentEvent, PrivateCommentEvent]


class _NameCache:
    """Per-assembly memo around the resolver; failures degrade to a placeholder."""

    def __init__(self, resolver: NameResolver):
        self._resolver = resolver
        self._names: Dict[int, str] = {}

    def __call__(self, actor_id: Optional[int]) -> str:
        if actor_id is None:
            return SYSTEM_ACTOR_NAME
        if actor_id not in self._names:
            self._names[actor_id] = self._resolve(actor_id)
        return self._names[actor_id]

    def _resolve(self, actor_id: int) -> str:
        try:
            name = self._resolver(actor_id)
        except LookupDegradedException as e:
            logger.warning("Actor name lookup degraded", extra={"employee_id": actor_id, "error": e.message})
            return UNKNOWN_ACTOR_NAME
        except Exception as e:
            logger.warning(
                "Actor name lookup failed",
                extra={"employee_id": actor_id, "error": str(e) or type(e).__name__}
            )
            return UNKNOWN_ACTOR_NAME
        return name or UNKNOWN_ACTOR_NAME


# ========== Assembler ==========

class TimelineAssembler:
    """
    Builds the display history of an issue.

    Private messages are included only when the viewer is the current
    assignee, the assigner or a privileged user, and only those exchanged
    between the assignee and the assigner.
    """

    def __init__(self, name_resolver: NameResolver):
        self._name_resolver = name_resolver

    def assemble(
        self,
        issue: Issue,
        comments: Iterable[Comment],
        audit_entries: Iterable[AuditEntry],
        internal_comments: Iterable[InternalComment] = (),
        viewer_id: Optional[int] = None,
        privileged: bool = False,
        descending: bool = True
    ) -> List[TimelineEvent]:
        """
        Merged timeline, most recent first by default.

        Events with identical timestamps keep their source order: creation,
        audit entries, public comments, private messages.
        """
        names = _NameCache(self._name_resolver)
        audit = self._ordered_audit(audit_entries)

        events: List[TimelineEvent] = [
            CreationEvent(
                timestamp=issue.created_at,
                actor_id=issue.employee_id,
                actor_name=names(issue.employee_id),
                description=issue.description,
                priority=issue.priority.value,
            )
        ]
        events.extend(self._audit_events(audit, names))
        events.extend(self._comment_events(comments, names))
        if self.can_view_private(issue, audit, viewer_id, privileged):
            events.extend(self._private_events(issue, audit, internal_comments, names))

        return sorted(events, key=lambda event: event.timestamp, reverse=descending)

    def public_thread(self, comments: Iterable[Comment], descending: bool = False) -> List[CommentEvent]:
        """Employee-facing conversation; never contains internal messages."""
        names = _NameCache(self._name_resolver)
        events = self._comment_events(comments, names)
        return sorted(events, key=lambda event: event.timestamp, reverse=descending)

    def private_thread(
        self,
        issue: Issue,
        audit_entries: Iterable[AuditEntry],
        internal_comments: Iterable[InternalComment],
        viewer_id: Optional[int],
        privileged: bool = False,
        descending: bool = False
    ) -> List[PrivateCommentEvent]:
        """Assignee/assigner conversation; empty for viewers outside it."""
        audit = self._ordered_audit(audit_entries)
        if not self.can_view_private(issue, audit, viewer_id, privileged):
            return []
        names = _NameCache(self._name_resolver)
        events = self._private_events(issue, audit, internal_comments, names)
        return sorted(events, key=lambda event: event.timestamp, reverse=descending)

    # ========== Participants ==========

    @staticmethod
    def assigner_of(issue: Issue, audit_entries: Sequence[AuditEntry]) -> Optional[int]:
        """Actor of the latest assignment that handed the issue to its current assignee."""
        if issue.assigned_to is None:
            return None
        for entry in reversed(TimelineAssembler._ordered_audit(audit_entries)):
            if entry.action == AuditAction.ASSIGNED and entry.details.get("assignee_id") == issue.assigned_to:
                return entry.employee_id
        return None

    @classmethod
    def can_view_private(
        cls,
        issue: Issue,
        audit_entries: Sequence[AuditEntry],
        viewer_id: Optional[int],
        privileged: bool = False
    ) -> bool:
        if issue.assigned_to is None:
            return False
        if privileged:
            return True
        if viewer_id is None:
            return False
        return viewer_id in (issue.assigned_to, cls.assigner_of(issue, audit_entries))

    # ========== Builders ==========

    @staticmethod
    def _ordered_audit(audit_entries: Iterable[AuditEntry]) -> List[AuditEntry]:
        # Stable: entries without an id keep their given order.
        return sorted(audit_entries, key=lambda entry: entry.created_at)

    @staticmethod
    def _audit_events(audit: List[AuditEntry], names: _NameCache) -> List[TimelineEvent]:
        events: List[TimelineEvent] = []
        for entry in audit:
            if entry.action == AuditAction.ASSIGNED:
                assignee_id = entry.details.get("assignee_id")
                events.append(AssignmentEvent(
                    timestamp=entry.created_at,
                    actor_id=entry.employee_id,
                    actor_name=names(entry.employee_id),
                    assignee_id=assignee_id,
                    assignee_name=names(assignee_id) if assignee_id is not None else UNKNOWN_ACTOR_NAME,
                    previous_assignee_id=entry.details.get("previous_assignee_id"),
                ))
            elif entry.action in (AuditAction.STATUS_CHANGED, AuditAction.REOPENED):
                events.append(StatusEvent(
                    timestamp=entry.created_at,
                    actor_id=entry.employee_id,
                    actor_name=names(entry.employee_id),
                    previous_status=entry.previous_status.value if entry.previous_status else None,
                    new_status=entry.new_status.value if entry.new_status else None,
                    reopen_reason=entry.details.get("reason") if entry.action == AuditAction.REOPENED else None,
                ))
        return events

    @staticmethod
    def _comment_events(comments: Iterable[Comment], names: _NameCache) -> List[CommentEvent]:
        return [
            CommentEvent(
                timestamp=comment.created_at,
                actor_id=comment.employee_id,
                actor_name=names(comment.employee_id),
                comment_id=comment.id,
                content=comment.content,
            )
            for comment in comments
        ]

    def _private_events(
        self,
        issue: Issue,
        audit: List[AuditEntry],
        internal_comments: Iterable[InternalComment],
        names: _NameCache
    ) -> List[PrivateCommentEvent]:
        participants = {issue.assigned_to, self.assigner_of(issue, audit)}
        participants.discard(None)
        return [
            PrivateCommentEvent(
                timestamp=comment.created_at,
                actor_id=comment.employee_id,
                actor_name=names(comment.employee_id),
                comment_id=comment.id,
                content=comment.content,
            )
            for comment in internal_comments
            if comment.employee_id in participants
        ]
