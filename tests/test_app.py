import pytest
from fastapi.testclient import TestClient

from siivi.gateway import DemoGateway
from siivi.main import create_app


@pytest.fixture
def api(remote):
    return TestClient(create_app(remote=remote, gateway=DemoGateway()))


def test_health(api):
    res = api.get("/health")

    assert res.status_code == 200
    assert res.json()["ok"] is True


def test_personalities(api):
    body = api.get("/api/personalities").json()

    assert body["default"] == "casual"
    assert set(body["personalities"]) == {"funny", "professional", "casual", "motivational"}


def test_ai_chat_endpoint(api):
    res = api.post("/functions/v1/ai-chat", json={
        "messages": [{"role": "user", "content": "/plan my week"}],
        "personality": "professional",
    })

    assert res.status_code == 200
    assert res.json()["choices"][0]["message"]["content"].startswith("Here's a simple plan")


def test_ai_chat_endpoint_errors(api):
    res = api.post("/functions/v1/ai-chat", json={"messages": []})

    assert res.status_code == 400
    assert res.json() == {"error": "Messages are required"}


def test_clear_guest_data_endpoint(api, remote):
    remote.insert("profiles", {"id": "guest-1", "guest_session_id": "guest-1", "is_guest": True})

    res = api.post("/functions/v1/clear-guest-data", json={"sessionId": "guest-1"})
    assert res.status_code == 200
    assert res.json()["deleted"]["profiles"] == 1

    assert api.post("/functions/v1/clear-guest-data", json={}).status_code == 400


def test_auto_deletion_endpoint(api):
    res = api.post("/functions/v1/auto-deletion")

    assert res.status_code == 200
    assert res.json()["success"] is True


def test_table_round_trip(api):
    created = api.post("/rest/v1/drafts", json={"user_id": "u1", "title": "b", "synced": False})
    assert created.status_code == 201
    api.post("/rest/v1/drafts", json={"user_id": "u1", "title": "a", "synced": True})
    api.post("/rest/v1/drafts", json={"user_id": "u2", "title": "c", "synced": False})

    rows = api.get("/rest/v1/drafts", params={"user_id": "u1", "order": "title"}).json()
    assert [r["title"] for r in rows] == ["a", "b"]

    unsynced = api.get("/rest/v1/drafts", params={"synced": "false"}).json()
    assert sorted(r["title"] for r in unsynced) == ["b", "c"]

    draft_id = created.json()["id"]
    updated = api.patch("/rest/v1/drafts", params={"id": draft_id}, json={"title": "renamed"}).json()
    assert updated[0]["title"] == "renamed"

    assert api.delete("/rest/v1/drafts", params={"user_id": "u2"}).json() == {"deleted": 1}


def test_table_guards(api):
    assert api.get("/rest/v1/secrets").status_code == 404
    assert api.delete("/rest/v1/drafts").status_code == 400
    assert api.patch("/rest/v1/drafts", json={"title": "x"}).status_code == 400


def test_remote_failure_is_a_bad_gateway(api, remote):
    remote.fail("select", "drafts")

    res = api.get("/rest/v1/drafts")

    assert res.status_code == 502
