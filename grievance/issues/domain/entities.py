"""
Issue Domain Entities
=====================

Pure Python entities of the issue lifecycle.

``Issue`` is the aggregate root and the only mutable record. Comments,
internal comments and audit entries are immutable once created and are the
sole source of truth for timeline reconstruction.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from grievance.config import IssueStatus, Priority, TERMINAL_STATUSES, AuditAction


@dataclass
class Issue:
    """
    Grievance filed by an employee.

    Invariants:
    - ``closed_at`` is set iff status is resolved or closed
    - ``reopenable_until`` is only meaningful while resolved/closed
    - ``previously_closed_at`` is append-only and records every ``closed_at``
      value, including the current one while resolved/closed
    - ``escalation_level`` never decreases
    """

    # Identity (None until persisted)
    id: Optional[int]

    # Classification
    type_id: str
    sub_type_id: str
    employee_id: int
    created_at: datetime
    description: str = ""
    mapped_type_id: Optional[str] = None
    mapped_sub_type_id: Optional[str] = None
    mapped_at: Optional[datetime] = None
    mapped_by: Optional[int] = None

    # Lifecycle
    status: IssueStatus = IssueStatus.OPEN
    priority: Priority = Priority.MEDIUM
    escalation_level: int = 0
    assigned_to: Optional[int] = None

    # Timestamps
    updated_at: Optional[datetime] = None
    last_status_change_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    reopenable_until: Optional[datetime] = None
    previously_closed_at: List[datetime] = field(default_factory=list)
    last_escalated_at: Optional[datetime] = None

    # Optimistic concurrency token
    version: int = 1

    def __post_init__(self):
        if self.updated_at is None:
            self.updated_at = self.created_at
        if self.last_status_change_at is None:
            self.last_status_change_at = self.created_at
        if self.updated_at < self.created_at:
            raise ValueError("updated_at cannot be before created_at")
        if self.escalation_level < 0:
            raise ValueError("escalation_level cannot be negative")

    @property
    def is_finished(self) -> bool:
        """Resolved or closed (terminal, but reversible through reopen)."""
        return self.status in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return not self.is_finished

    def can_reopen(self, now: datetime) -> bool:
        return (
            self.is_finished
            and self.reopenable_until is not None
            and now <= self.reopenable_until
        )


@dataclass(frozen=True)
class Comment:
    """Public comment on an issue, visible to the filing employee."""
    id: Optional[int]
    issue_id: int
    employee_id: int
    content: str
    created_at: datetime


@dataclass(frozen=True)
class InternalComment:
    """
    Staff-only message. Stored apart from ``Comment`` so it can never leak
    into the employee-facing thread.
    """
    id: Optional[int]
    issue_id: int
    employee_id: int
    content: str
    created_at: datetime


@dataclass(frozen=True)
class AuditEntry:
    """
    Append-only record of an action performed on an issue.

    ``employee_id`` is None for system actions (automatic escalation).
    """
    id: Optional[int]
    issue_id: int
    action: AuditAction
    employee_id: Optional[int]
    created_at: datetime
    previous_status: Optional[IssueStatus] = None
    new_status: Optional[IssueStatus] = None
    details: Dict[str, Any] = field(default_factory=dict)
