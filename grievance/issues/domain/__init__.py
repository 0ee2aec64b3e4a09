"""
Issues Domain Layer
===================

Pure Python business logic of the issue lifecycle:
- Entities: Issue, Comment, InternalComment, AuditEntry
- IssueStateMachine: status, reopen, assignment, escalation rules
- TimelineAssembler: merged, attributed issue history

This layer has no dependencies on infrastructure.
"""

from grievance.issues.domain.entities import (
    Issue,
    Comment,
    InternalComment,
    AuditEntry,
)
from grievance.issues.domain.state_machine import IssueStateMachine, TransitionResult
from grievance.issues.domain.timeline import (
    TimelineAssembler,
    TimelineEvent,
    CreationEvent,
    AssignmentEvent,
    StatusEvent,
    CommentEvent,
    PrivateCommentEvent,
)

__all__ = [
    "Issue",
    "Comment",
    "InternalComment",
    "AuditEntry",
    "IssueStateMachine",
    "TransitionResult",
    "TimelineAssembler",
    "TimelineEvent",
    "CreationEvent",
    "AssignmentEvent",
    "StatusEvent",
    "CommentEvent",
    "PrivateCommentEvent",
]
