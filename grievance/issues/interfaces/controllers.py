"""
Issues Controllers (API Routes)
================================

FastAPI routes for the issue lifecycle.

Controllers are thin - they delegate to application services. Typed
failures raised by the services are turned into structured responses by the
application exception handler.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from grievance.config import settings
from grievance.infrastructure.database import get_session
from grievance.issues.application import (
    AssignRequest,
    CommentCreateRequest,
    CommentResponse,
    EscalateRequest,
    EscalationSweepService,
    IssueCreateRequest,
    IssueLifecycleService,
    IssueResponse,
    MappingRequest,
    PriorityChangeRequest,
    ReopenRequest,
    SLAStatusResponse,
    StatusChangeRequest,
    SweepResponse,
    TimelineEventResponse,
    TimelineResponse,
)
from grievance.issues.infrastructure import SQLAlchemyActorDirectory, SQLAlchemyIssueRepository
from grievance.shared.clock import Clock, SystemClock
from grievance.shared.infrastructure.logging import get_logger
from grievance.sla.application import IEscalationNotifier, IPolicyProvider, SLAService
from grievance.sla.domain import PortalPolicyConfig
from grievance.sla.infrastructure import PolicyConfigManager

logger = get_logger(__name__)
router = APIRouter(prefix="/issues", tags=["Issues"])


# ========== Example payloads for Swagger ==========

ISSUE_RESPONSE_EXAMPLE = {
    "id": 42,
    "type_id": "payroll",
    "sub_type_id": "salary_delay",
    "mapped_type_id": None,
    "mapped_sub_type_id": None,
    "mapped_at": None,
    "mapped_by": None,
    "employee_id": 7,
    "description": "March salary not credited",
    "status": "open",
    "priority": "high",
    "escalation_level": 0,
    "assigned_to": None,
    "created_at": "2024-03-01T17:30:00Z",
    "updated_at": "2024-03-01T17:30:00Z",
    "last_status_change_at": "2024-03-01T17:30:00Z",
    "resolved_at": None,
    "closed_at": None,
    "reopenable_until": None,
    "previously_closed_at": [],
    "last_escalated_at": None,
    "version": 1
}

SLA_RESPONSE_EXAMPLE = {
    "issue_id": 42,
    "status": "warning",
    "priority": "high",
    "tier_hours": 24.0,
    "deadline": "2024-03-06T14:30:00Z",
    "remaining_hours": 3.5,
    "elapsed_hours": 20.5,
    "is_breached": False,
    "resolved_within_sla": None,
    "evaluated_at": "2024-03-06T11:00:00Z"
}

CONFLICT_EXAMPLE = {
    "error": "reopen_window_expired",
    "message": "Reopen window for issue 42 has expired",
    "details": {"issue_id": 42, "reopenable_until": "2024-04-05T10:00:00+00:00"},
    "correlation_id": "9f6c0a3e-1c1b-4a57-8d0c-4c1f0f3c2b11"
}


# ========== Dependencies ==========

def get_clock(request: Request) -> Clock:
    """Clock collaborator; tests pin it through app.state."""
    return getattr(request.app.state, "clock", None) or SystemClock()


def get_policy(request: Request) -> IPolicyProvider:
    """Policy loaded at startup, or the built-in defaults when none was loaded."""
    manager = getattr(request.app.state, "policy_manager", None)
    if manager is None:
        manager = PolicyConfigManager(PortalPolicyConfig())
        request.app.state.policy_manager = manager
    return manager


def get_notifier(request: Request) -> Optional[IEscalationNotifier]:
    return getattr(request.app.state, "notifier", None)


async def get_lifecycle_service(
    session: AsyncSession = Depends(get_session),
    policy: IPolicyProvider = Depends(get_policy),
    clock: Clock = Depends(get_clock),
    notifier: Optional[IEscalationNotifier] = Depends(get_notifier)
) -> IssueLifecycleService:
    """Get issue lifecycle service instance."""
    return IssueLifecycleService(
        SQLAlchemyIssueRepository(session),
        SQLAlchemyActorDirectory(session),
        SLAService(policy, clock),
        clock,
        reopen_window=timedelta(days=settings.reopen_window_days),
        max_attempts=settings.version_conflict_retries,
        notifier=notifier,
    )


async def get_sweep_service(
    session: AsyncSession = Depends(get_session),
    policy: IPolicyProvider = Depends(get_policy),
    clock: Clock = Depends(get_clock),
    notifier: Optional[IEscalationNotifier] = Depends(get_notifier)
) -> EscalationSweepService:
    """Get escalation sweep service instance."""
    return EscalationSweepService(
        SQLAlchemyIssueRepository(session),
        SLAService(policy, clock),
        clock,
        notifier=notifier,
    )


def _is_privileged(viewer_role: Optional[str]) -> bool:
    return viewer_role is not None and viewer_role.lower() in {role.lower() for role in settings.privileged_roles}


# ========== Route Handlers ==========

@router.post(
    "/escalations/sweep",
    response_model=SweepResponse,
    summary="Run one escalation sweep",
    description="""
    Evaluate every open / in-progress issue and escalate the ones whose SLA is
    breached. Each breach escalates an issue once; repeated sweeps are no-ops
    until a new breach episode starts.
    """
)
async def run_escalation_sweep(
    sweeper: EscalationSweepService = Depends(get_sweep_service)
):
    report = await sweeper.sweep()
    return SweepResponse(
        evaluated=report.evaluated,
        escalated=report.escalated,
        conflicts=report.conflicts,
        notified=report.notified,
    )


@router.post(
    "",
    response_model=IssueResponse,
    status_code=status.HTTP_201_CREATED,
    summary="File a new issue",
    description="""
    Create an issue in `open` status with escalation level 0.

    **Priorities**: `low`, `medium`, `high`, `critical` (`urgent` is accepted
    as an alias of `critical`).
    """,
    responses={201: {"content": {"application/json": {"example": ISSUE_RESPONSE_EXAMPLE}}}}
)
async def create_issue(
    request: IssueCreateRequest,
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    issue = await service.create_issue(
        request.type_id,
        request.sub_type_id,
        request.employee_id,
        request.description,
        request.priority,
    )
    return IssueResponse.from_domain(issue)


@router.get(
    "/{issue_id}",
    response_model=IssueResponse,
    summary="Get an issue",
    responses={200: {"content": {"application/json": {"example": ISSUE_RESPONSE_EXAMPLE}}}}
)
async def get_issue(
    issue_id: int,
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    return IssueResponse.from_domain(await service.get_issue(issue_id))


@router.post(
    "/{issue_id}/status",
    response_model=IssueResponse,
    summary="Change issue status",
    description="""
    Staff status override between `open`, `in_progress`, `resolved` and `closed`.

    - Entering `resolved` / `closed` opens the reopen window.
    - A resolved / closed issue goes back to `open` only through `/reopen` (409 otherwise).
    - `pending` is accepted as `open`; `escalated` as `in_progress` plus an escalation.
    """,
    responses={409: {"content": {"application/json": {"example": CONFLICT_EXAMPLE}}}}
)
async def change_status(
    issue_id: int,
    request: StatusChangeRequest,
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    issue = await service.change_status(issue_id, request.status, request.actor_id)
    return IssueResponse.from_domain(issue)


@router.post("/{issue_id}/assign", response_model=IssueResponse, summary="Assign an issue")
async def assign_issue(
    issue_id: int,
    request: AssignRequest,
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    issue = await service.assign(issue_id, request.assignee_id, request.actor_id)
    return IssueResponse.from_domain(issue)


@router.post(
    "/{issue_id}/reopen",
    response_model=IssueResponse,
    summary="Reopen a resolved or closed issue",
    description="""
    Allowed only while the issue is `resolved` / `closed` and the reopen window
    has not elapsed. A non-empty reason is required.
    """,
    responses={409: {"content": {"application/json": {"example": CONFLICT_EXAMPLE}}}}
)
async def reopen_issue(
    issue_id: int,
    request: ReopenRequest,
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    issue = await service.reopen(issue_id, request.reason, request.actor_id)
    return IssueResponse.from_domain(issue)


@router.post("/{issue_id}/escalate", response_model=IssueResponse, summary="Escalate an issue manually")
async def escalate_issue(
    issue_id: int,
    request: EscalateRequest,
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    issue = await service.escalate(issue_id, request.actor_id, request.reason)
    return IssueResponse.from_domain(issue)


@router.post("/{issue_id}/priority", response_model=IssueResponse, summary="Change issue priority")
async def change_priority(
    issue_id: int,
    request: PriorityChangeRequest,
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    issue = await service.change_priority(issue_id, request.priority, request.actor_id)
    return IssueResponse.from_domain(issue)


@router.post(
    "/{issue_id}/mapping",
    response_model=IssueResponse,
    summary="Map an issue to a specific type",
    description="""
    Recategorise an issue filed under a generic type. The filed type and
    sub-type are kept; the mapping is recorded beside them with who mapped it
    and when.
    """
)
async def map_issue_type(
    issue_id: int,
    request: MappingRequest,
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    issue = await service.map_type(issue_id, request.mapped_type_id, request.mapped_sub_type_id, request.actor_id)
    return IssueResponse.from_domain(issue)


@router.delete("/{issue_id}/mapping", response_model=IssueResponse, summary="Remove an issue type mapping")
async def unmap_issue_type(
    issue_id: int,
    actor_id: int = Query(..., gt=0, description="Staff member removing the mapping"),
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    issue = await service.unmap_type(issue_id, actor_id)
    return IssueResponse.from_domain(issue)


@router.post(
    "/{issue_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a public comment"
)
async def add_comment(
    issue_id: int,
    request: CommentCreateRequest,
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    comment = await service.add_comment(issue_id, request.employee_id, request.content)
    return CommentResponse.from_domain(comment)


@router.post(
    "/{issue_id}/internal-comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add an internal staff comment",
    description="""
    Internal comments are never shown in the public thread. Messages between
    the current assignee and the assigner appear in their private timeline.
    """
)
async def add_internal_comment(
    issue_id: int,
    request: CommentCreateRequest,
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    comment = await service.add_internal_comment(issue_id, request.employee_id, request.content)
    return CommentResponse.from_domain(comment)


@router.get(
    "/{issue_id}/sla",
    response_model=SLAStatusResponse,
    summary="Get SLA status",
    description="""
    SLA state (`on_time`, `warning`, `breached`, `met`), deadline and signed
    remaining working hours (negative when overdue).

    **Query Parameters:**
    - `at`: evaluation instant (ISO-8601, defaults to now; naive values are UTC)
    """,
    responses={200: {"content": {"application/json": {"example": SLA_RESPONSE_EXAMPLE}}}}
)
async def get_sla_status(
    issue_id: int,
    at: Optional[datetime] = Query(None, description="Evaluation instant"),
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    if at is not None and at.tzinfo is None:
        at = at.replace(tzinfo=timezone.utc)
    evaluation = await service.get_sla_status(issue_id, at)
    return SLAStatusResponse.from_evaluation(evaluation)


@router.get(
    "/{issue_id}/timeline",
    response_model=TimelineResponse,
    summary="Get the issue timeline",
    description="""
    Creation, assignment, status changes and comments merged into one history.

    Private assignee/assigner messages are included only when `viewer_id` is
    the assignee or the assigner, or when `viewer_role` is privileged.

    **Query Parameters:**
    - `order`: `desc` (most recent first, default) or `asc` (audit/export)
    """
)
async def get_timeline(
    issue_id: int,
    viewer_id: Optional[int] = Query(None, description="Employee viewing the timeline"),
    viewer_role: Optional[str] = Query(None, description="Role of the viewer"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    service: IssueLifecycleService = Depends(get_lifecycle_service)
):
    privileged = _is_privileged(viewer_role)
    events = await service.get_timeline(
        issue_id,
        viewer_id=viewer_id,
        privileged=privileged,
        descending=order == "desc"
    )
    includes_private = await service.can_view_private(issue_id, viewer_id, privileged)

    return TimelineResponse(
        issue_id=issue_id,
        order=order,
        includes_private=includes_private,
        events=[TimelineEventResponse.from_event(event) for event in events],
    )
