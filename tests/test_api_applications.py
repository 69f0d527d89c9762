"""HTTP edge: auth, status code mapping and queue health."""

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.security import create_access_token
from app.db.session import get_db
from app.main import app
from app.models import UserRole
from app.services.delivery_queue import DeliveryQueue
from app.services.mail_transport import LogMailTransport
from app.services.notification_dispatcher import NotificationDispatcher
from app.services.application_intake import ApplicationIntake
from tests.conftest import COVER_LETTER


def _auth(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}


@pytest.fixture
async def services(session_factory):
    queue = DeliveryQueue(LogMailTransport())
    dispatcher = NotificationDispatcher(queue)
    intake = ApplicationIntake(session_factory, dispatcher)
    yield {"delivery_queue": queue, "intake": intake}
    await queue.stop(grace_seconds=1)


@pytest.fixture
async def client(session_factory, services):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.intake = services["intake"]
    app.state.delivery_queue = services["delivery_queue"]

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
async def owner(make_user):
    return await make_user(UserRole.EMPLOYER)


@pytest.fixture
async def student(make_user):
    return await make_user(UserRole.STUDENT)


@pytest.fixture
async def project(make_project, owner):
    return await make_project(owner, max_applicants=10)


async def _apply(client, project, student):
    return await client.post(
        "/api/v1/applications",
        json={"project_id": str(project.id), "cover_letter": COVER_LETTER},
        headers=_auth(student),
    )


async def test_submit_and_duplicate(client, project, student, services):
    response = await _apply(client, project, student)
    assert response.status_code == 201
    assert response.json()["status"] == "PENDING"

    duplicate = await _apply(client, project, student)
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "CONFLICT"

    await services["delivery_queue"].process()
    assert services["delivery_queue"].delivered_count == 1


async def test_submit_requires_token(client, project):
    response = await client.post(
        "/api/v1/applications",
        json={"project_id": str(project.id), "cover_letter": COVER_LETTER},
    )
    assert response.status_code in (401, 403)


async def test_only_students_apply(client, project, owner):
    response = await _apply(client, project, owner)
    assert response.status_code == 403


async def test_short_cover_letter_is_rejected(client, project, student):
    response = await client.post(
        "/api/v1/applications",
        json={"project_id": str(project.id), "cover_letter": "Hire me"},
        headers=_auth(student),
    )
    assert response.status_code == 422


async def test_review_flow(client, project, student, owner, make_user):
    application_id = (await _apply(client, project, student)).json()["id"]
    url = f"/api/v1/applications/{application_id}/status"

    missing_reason = await client.patch(url, json={"status": "REJECTED"}, headers=_auth(owner))
    assert missing_reason.status_code == 400
    assert missing_reason.json()["code"] == "VALIDATION_ERROR"

    stranger = await make_user(UserRole.MENTOR)
    forbidden = await client.patch(url, json={"status": "ACCEPTED"}, headers=_auth(stranger))
    assert forbidden.status_code == 403

    rejected = await client.patch(
        url,
        json={"status": "REJECTED", "rejection_reason": "Portfolio does not match the stack"},
        headers=_auth(owner),
    )
    assert rejected.status_code == 200
    body = rejected.json()
    assert body["status"] == "REJECTED"
    assert body["reviewer_id"] == str(owner.id)


async def test_project_owner_listing(client, project, student, owner):
    await _apply(client, project, student)

    response = await client.get(f"/api/v1/projects/{project.id}/applications", headers=_auth(owner))

    assert response.status_code == 200
    assert [item["student_id"] for item in response.json()] == [str(student.id)]


async def test_my_applications(client, project, student):
    await _apply(client, project, student)

    response = await client.get("/api/v1/applications/me", headers=_auth(student))

    assert response.status_code == 200
    assert len(response.json()) == 1


async def test_missing_application_is_404(client, student):
    response = await client.get(
        "/api/v1/applications/00000000-0000-0000-0000-000000000000", headers=_auth(student)
    )
    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


async def test_health_reports_queue(client):
    response = await client.get("/health")

    assert response.status_code == 200
    queue = response.json()["delivery_queue"]
    assert queue["queue"] == "email"
    assert queue["queue_size"] == 0


async def test_health_shows_an_idle_running_queue(client, services):
    queue = services["delivery_queue"]
    await queue.start()

    response = await client.get("/health")

    stats = response.json()["delivery_queue"]
    assert len(queue) == 0
    assert stats["running"] is True
    assert stats["queue_size"] == 0
