"""Tests for the automatic escalation sweep."""

from datetime import timedelta

import pytest

from grievance.config import AuditAction, Priority
from grievance.issues.application import EscalationSweepService, IssueLifecycleService
from grievance.sla.application import SLAService

from tests.fakes import RacingIssueRepository, RecordingNotifier


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def sweeper(repository, policy, clock, notifier):
    return EscalationSweepService(repository, SLAService(policy, clock), clock, notifier=notifier)


async def test_breached_issue_escalated_once(lifecycle, sweeper, repository, notifier, clock):
    issue = await lifecycle.create_issue("payroll", "salary_delay", 10, priority="critical")
    clock.advance(timedelta(hours=4, minutes=30))

    report = await sweeper.sweep()

    assert report.evaluated == 1
    assert report.escalated == [issue.id]
    assert report.notified == 1
    stored = await lifecycle.get_issue(issue.id)
    assert stored.escalation_level == 1
    assert stored.last_escalated_at == clock.now()
    entry = repository.audit[-1]
    assert entry.action == AuditAction.ESCALATED
    assert entry.employee_id is None
    [message] = notifier.messages
    assert message.automatic is True
    assert message.sla_state == "breached"

    clock.advance(timedelta(hours=1))
    again = await sweeper.sweep()

    assert again.escalated == []
    assert (await lifecycle.get_issue(issue.id)).escalation_level == 1
    assert len(notifier.messages) == 1


async def test_breached_medium_issue_becomes_critical(lifecycle, sweeper, clock):
    issue = await lifecycle.create_issue("payroll", "salary_delay", 10)
    clock.advance(timedelta(days=14))

    await sweeper.sweep()

    assert (await lifecycle.get_issue(issue.id)).priority == Priority.CRITICAL


async def test_issue_within_sla_left_alone(lifecycle, sweeper, notifier, clock):
    await lifecycle.create_issue("payroll", "salary_delay", 10, priority="high")
    clock.advance(timedelta(hours=2))

    report = await sweeper.sweep()

    assert report.evaluated == 1
    assert report.escalated == []
    assert notifier.messages == []


async def test_finished_issues_are_not_swept(lifecycle, sweeper, clock):
    issue = await lifecycle.create_issue("payroll", "salary_delay", 10, priority="critical")
    await lifecycle.change_status(issue.id, "closed", 20)
    clock.advance(timedelta(days=3))

    report = await sweeper.sweep()

    assert report.evaluated == 0
    assert (await lifecycle.get_issue(issue.id)).escalation_level == 0


async def test_concurrent_write_skips_issue_until_next_sweep(directory, policy, clock):
    repository = RacingIssueRepository(races=0)
    sla = SLAService(policy, clock)
    lifecycle = IssueLifecycleService(repository, directory, sla, clock)
    sweeper = EscalationSweepService(repository, sla, clock)
    issue = await lifecycle.create_issue("payroll", "salary_delay", 10, priority="critical")
    clock.advance(timedelta(hours=5))

    repository.races = 1
    report = await sweeper.sweep()

    assert report.conflicts == [issue.id]
    assert report.escalated == []
    assert AuditAction.ESCALATED not in [entry.action for entry in repository.audit]

    report = await sweeper.sweep()
    assert report.escalated == [issue.id]
    assert (await lifecycle.get_issue(issue.id)).escalation_level == 1


async def test_failed_notification_keeps_escalation(lifecycle, repository, policy, clock):
    notifier = RecordingNotifier(delivered=False)
    sweeper = EscalationSweepService(repository, SLAService(policy, clock), clock, notifier=notifier)
    issue = await lifecycle.create_issue("payroll", "salary_delay", 10, priority="critical")
    clock.advance(timedelta(hours=5))

    report = await sweeper.sweep()

    assert report.escalated == [issue.id]
    assert report.notified == 0
    assert len(notifier.messages) == 1
    assert (await lifecycle.get_issue(issue.id)).escalation_level == 1
