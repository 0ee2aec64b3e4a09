"""
Issues Application DTOs
========================

Data Transfer Objects for the issues API layer.

Status and priority labels are accepted as plain strings on input: aliases
(``pending``, ``escalated``, ``urgent``) and unknown labels are resolved by
the state machine, which reports them as validation failures.
"""

from dataclasses import asdict
from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field

from grievance.issues.domain import (
    Comment,
    InternalComment,
    Issue,
    TimelineEvent,
)
from grievance.sla.domain import SLAEvaluation


# ========== Type Aliases for Literals ==========
IssueStatusStr = Literal["open", "in_progress", "resolved", "closed"]
PriorityStr = Literal["low", "medium", "high", "critical"]
SLAStateStr = Literal["on_time", "warning", "breached", "met"]
TimelineEventTypeStr = Literal["creation", "assignment", "status", "comment", "private-comment"]
TimelineOrderStr = Literal["asc", "desc"]


# ========== Request DTOs ==========

class IssueCreateRequest(BaseModel):
    """Request model for filing a new issue."""
    type_id: str = Field(..., min_length=1, description="Issue type")
    sub_type_id: str = Field(..., min_length=1, description="Issue sub-type")
    employee_id: int = Field(..., gt=0, description="Filing employee")
    description: str = Field(default="", description="Free-text description")
    priority: str = Field(default="medium", description="low, medium, high, critical (urgent)")


class StatusChangeRequest(BaseModel):
    status: str = Field(..., description="open, in_progress, resolved, closed (pending, escalated)")
    actor_id: int = Field(..., gt=0, description="Staff member performing the change")


class AssignRequest(BaseModel):
    assignee_id: int = Field(..., description="Employee receiving the issue")
    actor_id: int = Field(..., gt=0, description="Staff member assigning the issue")


class ReopenRequest(BaseModel):
    reason: str = Field(..., description="Why the issue is being reopened (required)")
    actor_id: int = Field(..., gt=0)


class EscalateRequest(BaseModel):
    actor_id: int = Field(..., gt=0)
    reason: Optional[str] = Field(None, max_length=1000)


class PriorityChangeRequest(BaseModel):
    priority: str = Field(..., description="low, medium, high, critical (urgent)")
    actor_id: int = Field(..., gt=0)


class MappingRequest(BaseModel):
    """Recategorise an issue filed under a generic type."""
    mapped_type_id: str = Field(..., min_length=1, description="Specific issue type")
    mapped_sub_type_id: str = Field(..., min_length=1, description="Specific issue sub-type")
    actor_id: int = Field(..., gt=0, description="Staff member mapping the issue")


class CommentCreateRequest(BaseModel):
    """Request model for public and internal comments."""
    employee_id: int = Field(..., gt=0, description="Comment author")
    content: str = Field(..., min_length=1, max_length=10000)


# ========== Response DTOs ==========

class IssueResponse(BaseModel):
    """Response model for an issue."""
    id: int
    type_id: str
    sub_type_id: str
    mapped_type_id: Optional[str] = None
    mapped_sub_type_id: Optional[str] = None
    mapped_at: Optional[datetime] = None
    mapped_by: Optional[int] = None
    employee_id: int
    description: str
    status: IssueStatusStr
    priority: PriorityStr
    escalation_level: int
    assigned_to: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    last_status_change_at: datetime
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    reopenable_until: Optional[datetime] = None
    previously_closed_at: List[datetime] = Field(default_factory=list)
    last_escalated_at: Optional[datetime] = None
    version: int

    @classmethod
    def from_domain(cls, issue: Issue) -> "IssueResponse":
        return cls(
            id=issue.id,
            type_id=issue.type_id,
            sub_type_id=issue.sub_type_id,
            mapped_type_id=issue.mapped_type_id,
            mapped_sub_type_id=issue.mapped_sub_type_id,
            mapped_at=issue.mapped_at,
            mapped_by=issue.mapped_by,
            employee_id=issue.employee_id,
            description=issue.description,
            status=issue.status.value,
            priority=issue.priority.value,
            escalation_level=issue.escalation_level,
            assigned_to=issue.assigned_to,
            created_at=issue.created_at,
            updated_at=issue.updated_at,
            last_status_change_at=issue.last_status_change_at,
            resolved_at=issue.resolved_at,
            closed_at=issue.closed_at,
            reopenable_until=issue.reopenable_until,
            previously_closed_at=list(issue.previously_closed_at),
            last_escalated_at=issue.last_escalated_at,
            version=issue.version,
        )


class CommentResponse(BaseModel):
    """Response model for a public or internal comment."""
    id: int
    issue_id: int
    employee_id: int
    content: str
    created_at: datetime

    @classmethod
    def from_domain(cls, comment: Union[Comment, InternalComment]) -> "CommentResponse":
        return cls(
            id=comment.id,
            issue_id=comment.issue_id,
            employee_id=comment.employee_id,
            content=comment.content,
            created_at=comment.created_at,
        )


class SLAStatusResponse(BaseModel):
    """SLA state of an issue at one instant."""
    issue_id: int
    status: SLAStateStr = Field(..., description="Current SLA state")
    priority: PriorityStr = Field(..., description="Priority tier applied")
    tier_hours: float = Field(..., description="Working hours allowed by the tier")
    deadline: datetime = Field(..., description="SLA deadline")
    remaining_hours: float = Field(..., description="Signed working hours: negative when overdue")
    elapsed_hours: float = Field(..., description="Working hours consumed")
    is_breached: bool
    resolved_within_sla: Optional[bool] = Field(None, description="Set once the issue is resolved/closed")
    evaluated_at: datetime

    @classmethod
    def from_evaluation(cls, evaluation: SLAEvaluation) -> "SLAStatusResponse":
        return cls(
            issue_id=evaluation.issue_id,
            status=evaluation.state.value,
            priority=evaluation.priority.value,
            tier_hours=evaluation.tier_hours,
            deadline=evaluation.deadline,
            remaining_hours=evaluation.remaining_hours,
            elapsed_hours=evaluation.elapsed_hours,
            is_breached=evaluation.is_breached,
            resolved_within_sla=evaluation.resolved_within_sla,
            evaluated_at=evaluation.evaluated_at,
        )


class TimelineEventResponse(BaseModel):
    """
    One timeline event.

    Fields beyond type/timestamp/actor are filled according to ``type``.
    """
    type: TimelineEventTypeStr
    timestamp: datetime
    actor_id: Optional[int] = None
    actor_name: str

    # creation
    description: Optional[str] = None
    priority: Optional[str] = None

    # assignment
    assignee_id: Optional[int] = None
    assignee_name: Optional[str] = None
    previous_assignee_id: Optional[int] = None

    # status
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    reopen_reason: Optional[str] = None

    # comment / private-comment
    comment_id: Optional[int] = None
    content: Optional[str] = None

    @classmethod
    def from_event(cls, event: TimelineEvent) -> "TimelineEventResponse":
        return cls(type=event.event_type.value, **asdict(event))


class TimelineResponse(BaseModel):
    issue_id: int
    order: TimelineOrderStr
    includes_private: bool = Field(..., description="Whether the private assignee/assigner thread is included")
    events: List[TimelineEventResponse]


class SweepResponse(BaseModel):
    """Outcome of one escalation sweep."""
    evaluated: int = Field(..., description="Active issues evaluated")
    escalated: List[int] = Field(default_factory=list, description="Issues escalated in this sweep")
    conflicts: List[int] = Field(default_factory=list, description="Issues skipped after a concurrent write")
    notified: int = Field(default=0, description="Escalations delivered to Slack")
