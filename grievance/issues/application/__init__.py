"""
Issues Application Layer
=========================

Application layer for the issue lifecycle.

Contains:
- Services: lifecycle operations with optimistic retry, escalation sweep
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from grievance.issues.application.dto import (
    IssueCreateRequest,
    StatusChangeRequest,
    AssignRequest,
    ReopenRequest,
    EscalateRequest,
    PriorityChangeRequest,
    MappingRequest,
    CommentCreateRequest,
    IssueResponse,
    CommentResponse,
    SLAStatusResponse,
    TimelineEventResponse,
    TimelineResponse,
    SweepResponse,
)
from grievance.issues.application.services import (
    IssueLifecycleService,
    EscalationSweepService,
    SweepReport,
    IIssueRepository,
    IActorDirectory,
)

__all__ = [
    # DTOs
    "IssueCreateRequest",
    "StatusChangeRequest",
    "AssignRequest",
    "ReopenRequest",
    "EscalateRequest",
    "PriorityChangeRequest",
    "MappingRequest",
    "CommentCreateRequest",
    "IssueResponse",
    "CommentResponse",
    "SLAStatusResponse",
    "TimelineEventResponse",
    "TimelineResponse",
    "SweepResponse",
    # Services
    "IssueLifecycleService",
    "EscalationSweepService",
    "SweepReport",
    # Repository Interfaces
    "IIssueRepository",
    "IActorDirectory",
]
