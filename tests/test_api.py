"""HTTP tests for the issues API."""

from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from grievance.infrastructure.database import get_session
from grievance.issues.infrastructure.models import EmployeeModel
from grievance.main import app
from grievance.shared.clock import FixedClock
from grievance.sla.domain import PortalPolicyConfig
from grievance.sla.infrastructure import PolicyConfigManager

from tests.conftest import STAFF
from tests.fakes import RecordingNotifier, utc

NEW_ISSUE = {
    "type_id": "payroll",
    "sub_type_id": "salary_delay",
    "employee_id": 10,
    "description": "March salary not credited",
    "priority": "high",
}


@pytest.fixture
def api_clock():
    return FixedClock(utc(2024, 3, 4, 10, 0))


@pytest.fixture
async def client(session_factory, api_clock):
    async with session_factory() as session:
        session.add_all([EmployeeModel(id=employee_id, name=name) for employee_id, name in STAFF.items()])
        await session.commit()

    async def override_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_session
    app.state.clock = api_clock
    app.state.policy_manager = PolicyConfigManager(PortalPolicyConfig())
    app.state.notifier = RecordingNotifier()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
    for name in ("clock", "policy_manager", "notifier"):
        delattr(app.state, name)


async def create_issue(client, **overrides):
    response = await client.post("/issues", json={**NEW_ISSUE, **overrides})
    assert response.status_code == 201
    return response.json()


async def test_create_and_fetch(client):
    issue = await create_issue(client)

    assert issue["status"] == "open"
    assert issue["escalation_level"] == 0
    assert issue["version"] == 1

    response = await client.get(f"/issues/{issue['id']}")
    assert response.status_code == 200
    assert response.json()["description"] == "March salary not credited"


async def test_missing_issue_is_404(client):
    response = await client.get("/issues/999", headers={"X-Correlation-ID": "req-1"})

    assert response.status_code == 404
    body = response.json()
    assert body["error"] == "not_found"
    assert body["correlation_id"] == "req-1"
    assert response.headers["X-Correlation-ID"] == "req-1"


async def test_invalid_priority_is_422(client):
    response = await client.post("/issues", json={**NEW_ISSUE, "priority": "whenever"})
    assert response.status_code == 422
    assert response.json()["error"] == "validation_failure"


async def test_finished_issue_needs_reopen(client):
    issue = await create_issue(client)
    await client.post(f"/issues/{issue['id']}/status", json={"status": "resolved", "actor_id": 20})

    response = await client.post(f"/issues/{issue['id']}/status", json={"status": "open", "actor_id": 20})

    assert response.status_code == 409
    assert response.json()["error"] == "illegal_transition"


async def test_reopen_requires_reason(client):
    issue = await create_issue(client)
    await client.post(f"/issues/{issue['id']}/status", json={"status": "closed", "actor_id": 20})

    response = await client.post(f"/issues/{issue['id']}/reopen", json={"reason": "  ", "actor_id": 10})

    assert response.status_code == 422
    assert response.json()["error"] == "validation_failure"


async def test_reopen_window(client, api_clock):
    issue = await create_issue(client)
    await client.post(f"/issues/{issue['id']}/status", json={"status": "closed", "actor_id": 20})

    api_clock.advance(timedelta(days=31))
    late = await client.post(f"/issues/{issue['id']}/reopen", json={"reason": "again", "actor_id": 10})
    assert late.status_code == 409
    assert late.json()["error"] == "reopen_window_expired"

    api_clock.advance(timedelta(days=-2))
    reopened = await client.post(f"/issues/{issue['id']}/reopen", json={"reason": "again", "actor_id": 10})
    assert reopened.status_code == 200
    assert reopened.json()["status"] == "open"
    assert len(reopened.json()["previously_closed_at"]) == 1


async def test_assign_unknown_employee_is_404(client):
    issue = await create_issue(client)
    response = await client.post(f"/issues/{issue['id']}/assign", json={"assignee_id": 555, "actor_id": 30})
    assert response.status_code == 404


async def test_type_mapping(client):
    issue = await create_issue(client, type_id="other", sub_type_id="other")
    url = f"/issues/{issue['id']}/mapping"

    mapped = await client.post(
        url, json={"mapped_type_id": "payroll", "mapped_sub_type_id": "salary_delay", "actor_id": 30}
    )
    assert mapped.status_code == 200
    body = mapped.json()
    assert body["type_id"] == "other"
    assert body["mapped_type_id"] == "payroll"
    assert body["mapped_by"] == 30
    assert body["mapped_at"] is not None

    unmapped = await client.delete(url, params={"actor_id": 30})
    assert unmapped.status_code == 200
    assert unmapped.json()["mapped_type_id"] is None
    assert unmapped.json()["mapped_at"] is None

    again = await client.delete(url, params={"actor_id": 30})
    assert again.status_code == 422
    assert again.json()["error"] == "validation_failure"


async def test_type_mapping_requires_both_ids(client):
    issue = await create_issue(client)
    response = await client.post(
        f"/issues/{issue['id']}/mapping", json={"mapped_type_id": "payroll", "mapped_sub_type_id": "", "actor_id": 30}
    )
    assert response.status_code == 422


async def test_sla_status_at_instant(client):
    issue = await create_issue(client)

    # filed Monday 10:00, high tier due Wednesday 16:00
    response = await client.get(f"/issues/{issue['id']}/sla", params={"at": "2024-03-06T17:00:00"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "breached"
    assert body["is_breached"] is True
    assert body["tier_hours"] == 24.0
    assert body["remaining_hours"] == -1.0


async def test_timeline_private_thread(client, api_clock):
    issue = await create_issue(client)
    issue_id = issue["id"]
    await client.post(f"/issues/{issue_id}/assign", json={"assignee_id": 20, "actor_id": 30})
    api_clock.advance(timedelta(minutes=5))
    await client.post(f"/issues/{issue_id}/comments", json={"employee_id": 10, "content": "Any update?"})
    api_clock.advance(timedelta(minutes=5))
    posted = await client.post(
        f"/issues/{issue_id}/internal-comments", json={"employee_id": 20, "content": "Bank file rejected"}
    )
    assert posted.status_code == 201

    public = (await client.get(f"/issues/{issue_id}/timeline", params={"viewer_id": 10})).json()
    assert public["includes_private"] is False
    assert "private-comment" not in [event["type"] for event in public["events"]]
    assert public["events"][0]["type"] == "comment"

    admin = (await client.get(
        f"/issues/{issue_id}/timeline", params={"viewer_id": 99, "viewer_role": "admin", "order": "asc"}
    )).json()
    assert admin["includes_private"] is True
    assert [event["type"] for event in admin["events"]] == ["creation", "assignment", "comment", "private-comment"]
    assert admin["events"][1]["assignee_name"] == "Ravi Kumar"


async def test_timeline_rejects_unknown_order(client):
    issue = await create_issue(client)
    response = await client.get(f"/issues/{issue['id']}/timeline", params={"order": "sideways"})
    assert response.status_code == 422


async def test_escalation_sweep(client, api_clock):
    issue = await create_issue(client, priority="critical")
    api_clock.advance(timedelta(hours=5))

    first = (await client.post("/issues/escalations/sweep")).json()
    second = (await client.post("/issues/escalations/sweep")).json()

    assert first["escalated"] == [issue["id"]]
    assert second["escalated"] == []
    stored = (await client.get(f"/issues/{issue['id']}")).json()
    assert stored["escalation_level"] == 1
    assert app.state.notifier.messages[0].automatic is True


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["checks"]["policy"] == "loaded"
