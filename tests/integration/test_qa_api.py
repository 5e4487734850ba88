"""Integration tests for the HTTP surface.

Runs the FastAPI app in-process over httpx's ASGI transport with the
database dependency pointed at the per-test SQLite file and the fake
collaborators installed on ``app.state``.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from expertdesk.auth import create_access_token
from expertdesk.database import get_db
from expertdesk.main import app
from tests.factories import grant
from tests.factories.users import ASKER, EXPERT_1, MODERATOR_A, OTHER_USER, OWNER, REPORTER_1


@pytest_asyncio.fixture
async def client(monkeypatch, session_factory, collab, target):
    monkeypatch.setenv("JWT_SECRET_KEY", "test-secret-key")

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.collaborators = collab
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


def auth(user_id: int) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


class TestHealthAndAuth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "expertdesk"}

    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.get("/api/questions")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_garbage_token(self, client):
        response = await client.get(
            "/api/questions", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_user_missing_from_directory(self, client):
        response = await client.get("/api/questions", headers=auth(404))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client):
        response = await client.get("/health", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"


class TestTaxonomyAPI:
    @pytest.mark.asyncio
    async def test_areas_and_tags(self, client, target):
        areas = await client.get("/api/qa/areas", params={"domain": "apologetics"}, headers=auth(ASKER))
        assert areas.status_code == 200
        assert [a["slug"] for a in areas.json()][:2] == ["evidence", "theology"]

        tags = await client.get(f"/api/qa/areas/{target.area_id}/tags", headers=auth(ASKER))
        assert tags.json()[0]["slug"] == "manuscripts"

    @pytest.mark.asyncio
    async def test_unknown_domain(self, client):
        response = await client.get("/api/qa/areas", params={"domain": "astrology"}, headers=auth(ASKER))
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"


class TestQuestionFlowAPI:
    @pytest_asyncio.fixture
    async def expert(self, session_factory, target):
        async with session_factory() as session:
            await grant(session, EXPERT_1, target.area_id, target.tag_id)
            await session.commit()

    @pytest.mark.asyncio
    async def test_submit_accept_answer(self, client, target, expert):
        submitted = await client.post(
            "/api/questions",
            json={
                "domain": target.domain,
                "area_id": target.area_id,
                "tag_id": target.tag_id,
                "text": "What is the Rylands fragment?",
            },
            headers=auth(ASKER),
        )
        assert submitted.status_code == 201
        question = submitted.json()
        assert question["status"] == "routed"
        assert question["text"] == "What is the Rylands fragment?"

        inbox = await client.get("/api/assignments/inbox", headers=auth(EXPERT_1))
        assert [a["question_id"] for a in inbox.json()] == [question["id"]]
        assignment_id = inbox.json()[0]["id"]

        accepted = await client.post(
            f"/api/assignments/{assignment_id}/respond",
            json={"decision": "accept"},
            headers=auth(EXPERT_1),
        )
        assert accepted.status_code == 200
        assert accepted.json()["status"] == "accepted"

        posted = await client.post(
            f"/api/questions/{question['id']}/messages",
            json={"body": "P52, a papyrus fragment of John."},
            headers=auth(EXPERT_1),
        )
        assert posted.status_code == 201

        current = await client.get(f"/api/questions/{question['id']}", headers=auth(ASKER))
        assert current.json()["status"] == "answered"

        messages = await client.get(f"/api/questions/{question['id']}/messages", headers=auth(ASKER))
        assert [m["sender_id"] for m in messages.json()] == [EXPERT_1]

    @pytest.mark.asyncio
    async def test_outsider_cannot_view_question(self, client, target, expert):
        submitted = await client.post(
            "/api/questions",
            json={
                "domain": target.domain,
                "area_id": target.area_id,
                "tag_id": target.tag_id,
                "text": "A private question",
            },
            headers=auth(ASKER),
        )

        response = await client.get(f"/api/questions/{submitted.json()['id']}", headers=auth(OTHER_USER))

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_triage_listing_is_admin_only(self, client, target):
        await client.post(
            "/api/questions",
            json={
                "domain": target.domain,
                "area_id": target.area_id,
                "tag_id": target.tag_id,
                "text": "Nobody can answer this yet",
            },
            headers=auth(ASKER),
        )

        assert (await client.get("/api/questions/triage", headers=auth(ASKER))).status_code == 403
        triage = await client.get("/api/questions/triage", headers=auth(MODERATOR_A))
        assert [t["reason"] for t in triage.json()] == ["no_eligible_expert"]

    @pytest.mark.asyncio
    async def test_tag_from_another_area(self, client, target):
        response = await client.post(
            "/api/questions",
            json={
                "domain": target.domain,
                "area_id": target.area_id,
                "tag_id": target.other_area_tag_id,
                "text": "Is the Trinity in the manuscripts?",
            },
            headers=auth(ASKER),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_schema_rejects_empty_text(self, client, target):
        response = await client.post(
            "/api/questions",
            json={"domain": target.domain, "area_id": target.area_id, "tag_id": target.tag_id, "text": ""},
            headers=auth(ASKER),
        )
        assert response.status_code == 422


class TestModerationAPI:
    @pytest.mark.asyncio
    async def test_report_claim_resolve(self, client):
        filed = await client.post(
            "/api/moderation/reports",
            json={"content_type": "post", "content_id": 500, "reason": "spam"},
            headers=auth(REPORTER_1),
        )
        assert filed.status_code == 201
        assert "priority" not in filed.json()

        claimed = await client.post("/api/moderation/reports/claim", headers=auth(MODERATOR_A))
        assert claimed.status_code == 200
        assert claimed.json()["status"] == "reviewing"

        resolved = await client.post(
            f"/api/moderation/reports/{claimed.json()['id']}/resolve",
            json={"decision": "resolved", "notes": "Spam link"},
            headers=auth(MODERATOR_A),
        )
        assert resolved.status_code == 200

        audit = await client.get(f"/api/admin/reputation/{OWNER}", headers=auth(MODERATOR_A))
        body = audit.json()
        assert body["score"] == 85
        assert body["consistent"] is True
        assert body["history"][0]["reason"] == "content_removed"

    @pytest.mark.asyncio
    async def test_claim_on_empty_queue(self, client):
        response = await client.post("/api/moderation/reports/claim", headers=auth(MODERATOR_A))
        assert response.status_code == 204

    @pytest.mark.asyncio
    async def test_queue_is_moderator_only(self, client):
        response = await client.get("/api/moderation/reports", headers=auth(REPORTER_1))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_missing_content_is_404(self, client):
        response = await client.post(
            "/api/moderation/reports",
            json={"content_type": "post", "content_id": 999, "reason": "spam"},
            headers=auth(REPORTER_1),
        )
        assert response.status_code == 404
        assert response.json()["error"] == "content_not_found"
