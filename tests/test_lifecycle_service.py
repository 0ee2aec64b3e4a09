"""Tests for IssueLifecycleService."""

from datetime import timedelta

import pytest

from grievance.config import AuditAction, IssueStatus, Priority, SLAState
from grievance.core import (
    IllegalTransitionException,
    ResourceNotFoundException,
    ValidationException,
    VersionConflictException,
)
from grievance.issues.application import IssueLifecycleService
from grievance.issues.domain import PrivateCommentEvent, StatusEvent
from grievance.sla.application import SLAService

from tests.conftest import STAFF
from tests.fakes import InMemoryActorDirectory, RacingIssueRepository, RecordingNotifier


async def file_issue(lifecycle, priority="medium"):
    return await lifecycle.create_issue("payroll", "salary_delay", 10, "Salary not credited", priority)


class TestCreate:

    async def test_new_issue_is_open_with_created_entry(self, lifecycle, repository):
        issue = await file_issue(lifecycle)

        assert issue.id == 1
        assert issue.version == 1
        assert issue.status == IssueStatus.OPEN
        [entry] = repository.audit
        assert entry.action == AuditAction.CREATED
        assert entry.employee_id == 10

    async def test_invalid_priority_creates_nothing(self, lifecycle, repository):
        with pytest.raises(ValidationException):
            await file_issue(lifecycle, priority="someday")
        assert repository.issues == {}


class TestTransitions:

    async def test_status_change_bumps_version_and_audits(self, lifecycle, repository):
        issue = await file_issue(lifecycle)

        updated = await lifecycle.change_status(issue.id, "in_progress", 20)

        assert updated.status == IssueStatus.IN_PROGRESS
        assert updated.version == 2
        assert [entry.action for entry in repository.audit] == [AuditAction.CREATED, AuditAction.STATUS_CHANGED]
        assert (await lifecycle.get_issue(issue.id)).version == 2

    async def test_missing_issue(self, lifecycle):
        with pytest.raises(ResourceNotFoundException):
            await lifecycle.change_status(404, "resolved", 20)

    async def test_rejected_transition_leaves_no_trace(self, lifecycle, repository):
        issue = await file_issue(lifecycle)
        await lifecycle.change_status(issue.id, "closed", 20)

        with pytest.raises(IllegalTransitionException):
            await lifecycle.change_status(issue.id, "in_progress", 20)

        stored = await lifecycle.get_issue(issue.id)
        assert stored.status == IssueStatus.CLOSED
        assert stored.version == 2
        assert len(repository.audit) == 2

    async def test_reopen_within_window(self, lifecycle, clock):
        issue = await file_issue(lifecycle)
        closed = await lifecycle.change_status(issue.id, "resolved", 20)
        clock.advance(timedelta(days=2))

        reopened = await lifecycle.reopen(issue.id, "Still not paid", 10)

        assert reopened.status == IssueStatus.OPEN
        assert reopened.previously_closed_at == [closed.closed_at]
        events = await lifecycle.get_timeline(issue.id)
        assert isinstance(events[0], StatusEvent)
        assert events[0].reopen_reason == "Still not paid"

    async def test_priority_change(self, lifecycle):
        issue = await file_issue(lifecycle)
        updated = await lifecycle.change_priority(issue.id, "high", 20)
        assert updated.priority == Priority.HIGH

    async def test_map_and_unmap_type(self, lifecycle, repository, clock):
        issue = await lifecycle.create_issue("other", "other", 10, "Laptop charger missing")

        mapped = await lifecycle.map_type(issue.id, "it_assets", "accessories", 20)
        assert (mapped.mapped_type_id, mapped.mapped_sub_type_id) == ("it_assets", "accessories")
        assert mapped.mapped_at == clock.now()
        assert mapped.version == 2

        unmapped = await lifecycle.unmap_type(issue.id, 30)
        assert unmapped.mapped_type_id is None
        assert unmapped.mapped_by == 30
        assert [entry.action for entry in repository.audit] == [
            AuditAction.CREATED, AuditAction.ISSUE_MAPPED, AuditAction.ISSUE_UNMAPPED
        ]
        assert len(await lifecycle.get_timeline(issue.id)) == 1


class TestConcurrency:

    @pytest.fixture
    def racing_service(self, directory, policy, clock):
        def build(races):
            repository = RacingIssueRepository(races)
            service = IssueLifecycleService(repository, directory, SLAService(policy, clock), clock)
            return repository, service
        return build

    async def test_lost_races_are_retried(self, racing_service):
        repository, service = racing_service(2)
        issue = await file_issue(service)

        updated = await service.change_status(issue.id, "in_progress", 20)

        assert updated.status == IssueStatus.IN_PROGRESS
        assert repository.save_calls == 3
        assert [entry.action for entry in repository.audit] == [AuditAction.CREATED, AuditAction.STATUS_CHANGED]

    async def test_retries_are_bounded(self, racing_service):
        repository, service = racing_service(3)
        issue = await file_issue(service)

        with pytest.raises(VersionConflictException) as exc_info:
            await service.change_status(issue.id, "in_progress", 20)

        assert exc_info.value.attempts == 3
        assert repository.save_calls == 3
        assert [entry.action for entry in repository.audit] == [AuditAction.CREATED]


class TestAssignment:

    async def test_assign_known_employee(self, lifecycle, repository):
        issue = await file_issue(lifecycle)
        updated = await lifecycle.assign(issue.id, 20, 30)

        assert updated.assigned_to == 20
        assert repository.audit[-1].details == {"assignee_id": 20, "previous_assignee_id": None}

    async def test_unknown_assignee_rejected(self, lifecycle):
        issue = await file_issue(lifecycle)
        with pytest.raises(ResourceNotFoundException):
            await lifecycle.assign(issue.id, 555, 30)

    async def test_non_positive_assignee_rejected(self, lifecycle):
        issue = await file_issue(lifecycle)
        with pytest.raises(ValidationException):
            await lifecycle.assign(issue.id, 0, 30)


class TestQueries:

    async def test_sla_status(self, lifecycle, clock):
        issue = await file_issue(lifecycle, priority="critical")
        clock.advance(timedelta(hours=5))

        evaluation = await lifecycle.get_sla_status(issue.id)

        assert evaluation.state == SLAState.BREACHED
        assert evaluation.remaining_hours == -1.0

    async def test_sla_status_at_explicit_instant(self, lifecycle, clock):
        issue = await file_issue(lifecycle, priority="critical")
        evaluation = await lifecycle.get_sla_status(issue.id, at=clock.now() + timedelta(hours=1))
        assert evaluation.state == SLAState.ON_TIME
        assert evaluation.remaining_hours == 3.0

    async def test_private_thread_visible_to_participants_only(self, lifecycle, clock):
        issue = await file_issue(lifecycle)
        await lifecycle.assign(issue.id, 20, 30)
        clock.advance(timedelta(minutes=10))
        await lifecycle.add_comment(issue.id, 10, "Any news?")
        clock.advance(timedelta(minutes=10))
        await lifecycle.add_internal_comment(issue.id, 20, "Escalating with payroll")

        def private(events):
            return [event for event in events if isinstance(event, PrivateCommentEvent)]

        assert private(await lifecycle.get_timeline(issue.id, viewer_id=10)) == []
        assert private(await lifecycle.get_timeline(issue.id, viewer_id=40)) == []
        [message] = private(await lifecycle.get_timeline(issue.id, viewer_id=30))
        assert message.actor_name == "Ravi Kumar"
        assert len(private(await lifecycle.get_timeline(issue.id, viewer_id=99, privileged=True))) == 1

        assert await lifecycle.can_view_private(issue.id, 20)
        assert not await lifecycle.can_view_private(issue.id, 10)

    async def test_timeline_survives_directory_outage(self, repository, policy, clock):
        directory = InMemoryActorDirectory(STAFF)
        service = IssueLifecycleService(repository, directory, SLAService(policy, clock), clock)
        issue = await file_issue(service)
        await service.assign(issue.id, 20, 30)
        directory.degraded = True

        events = await service.get_timeline(issue.id)

        assert len(events) == 2
        assert {event.actor_name for event in events} == {"Unknown User"}

    async def test_timeline_ascending(self, lifecycle, clock):
        issue = await file_issue(lifecycle)
        clock.advance(timedelta(minutes=5))
        await lifecycle.add_comment(issue.id, 10, "first")

        events = await lifecycle.get_timeline(issue.id, descending=False)

        assert events[0].actor_name == "Asha Rao"
        assert events[-1].content == "first"


class TestComments:

    async def test_internal_comment_is_audited(self, lifecycle, repository):
        issue = await file_issue(lifecycle)
        comment = await lifecycle.add_internal_comment(issue.id, 20, "  check bank file  ")

        assert comment.content == "check bank file"
        assert repository.comments == []
        entry = repository.audit[-1]
        assert entry.action == AuditAction.INTERNAL_COMMENT_ADDED
        assert entry.details == {"internal_comment_id": comment.id}

    async def test_empty_comment_rejected(self, lifecycle):
        issue = await file_issue(lifecycle)
        with pytest.raises(ValidationException):
            await lifecycle.add_comment(issue.id, 10, "   ")

    async def test_comment_on_missing_issue(self, lifecycle):
        with pytest.raises(ResourceNotFoundException):
            await lifecycle.add_comment(404, 10, "hello")


class TestManualEscalation:

    async def test_escalation_notifies_as_manual(self, repository, directory, policy, clock):
        notifier = RecordingNotifier()
        service = IssueLifecycleService(repository, directory, SLAService(policy, clock), clock, notifier=notifier)
        issue = await file_issue(service, priority="low")

        escalated = await service.escalate(issue.id, 30, "Raised by union rep")

        assert escalated.escalation_level == 1
        assert escalated.priority == Priority.CRITICAL
        [message] = notifier.messages
        assert message.automatic is False
        assert message.issue_id == issue.id
        assert message.priority == "critical"

    async def test_undelivered_notification_keeps_escalation(self, repository, directory, policy, clock):
        service = IssueLifecycleService(
            repository, directory, SLAService(policy, clock), clock, notifier=RecordingNotifier(delivered=False)
        )
        issue = await file_issue(service)

        await service.escalate(issue.id, 30)

        assert (await service.get_issue(issue.id)).escalation_level == 1
