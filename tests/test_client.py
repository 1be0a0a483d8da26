import pytest

from siivi.client import SiiviClient
from siivi.config import Settings
from siivi.drafts import Connectivity
from siivi.errors import SessionCreationError


@pytest.fixture
def settings(monkeypatch):
    monkeypatch.setenv("GUEST_MESSAGE_LIMIT", "3")
    monkeypatch.delenv("CHAT_HISTORY_WINDOW", raising=False)
    return Settings()


@pytest.fixture
def client(storage, remote, env, clock, settings):
    return SiiviClient(storage, remote, env, connectivity=Connectivity(online=True), clock=clock, settings=settings)


def test_settings_from_environment(settings, monkeypatch):
    assert settings.guest_message_limit == 3
    assert settings.history_window == 8

    monkeypatch.setenv("DEMO_MOCK", "true")
    monkeypatch.setenv("SIIVI_BACKEND", " Supabase ")
    fresh = Settings()
    assert fresh.demo is True
    assert fresh.backend == "supabase"


def test_nobody_signed_in(client):
    assert client.owner_id is None
    assert client.is_guest is False
    with pytest.raises(RuntimeError):
        client.conversations()


def test_guest_session_flow(client, remote):
    session = client.start_guest_session()

    assert client.owner_id == session.id
    assert client.is_guest is True

    pipeline = client.pipeline()
    conv = client.conversations().create()
    for text in ("one", "two", "three"):
        pipeline.send(conv["id"], text)
    assert client.guest.is_limit_reached() is True
    assert client.counter.count == 3

    # one guest session per device per week
    client.sign_out()
    assert remote.rows("messages") == []
    with pytest.raises(SessionCreationError):
        client.start_guest_session()


def test_guest_session_survives_restart(client, storage, remote, env, clock, settings):
    session = client.start_guest_session()

    restarted = SiiviClient(storage, remote, env, clock=clock, settings=settings)

    assert restarted.owner_id == session.id
    assert restarted.guest.message_limit == 3


def test_register_account_respects_device_limit(client):
    assert client.register_account("user-a") is True
    assert client.owner_id == "user-a"
    assert client.register_account("user-b") is True
    assert client.register_account("user-c") is False
    assert client.owner_id == "user-b"


def test_signing_in_ends_guest_session(client, remote):
    client.start_guest_session()
    client.sign_in("user-a")

    assert client.is_guest is False
    assert client.owner_id == "user-a"
    assert remote.rows("profiles") == []


def test_drafts_follow_the_signed_in_owner(client):
    client.sign_in("user-a")
    first = client.drafts()
    assert client.drafts() is first

    client.sign_in("user-b")
    second = client.drafts()
    assert second is not first
    assert second.owner_id == "user-b"


def test_owner_services_are_scoped_to_the_signed_in_user(client, remote, clock):
    client.sign_in("user-a")

    client.mood().log("calm", 4)
    client.reminders().create("stretch", clock.now)
    client.knowledge().create("work", "Standup", "notes")
    client.threads().create("Work")
    client.profile_settings().save(profile={"ai_personality": "funny"})

    for table in ("mood_logs", "reminders", "knowledge_cards", "conversation_threads"):
        assert [r["user_id"] for r in remote.rows(table)] == ["user-a"]
    assert client.profile_settings().personality == "funny"
    assert client.reminders().fetch()[0]["title"] == "stretch"


def test_delete_account_resets_counter_and_signs_out(client, remote):
    client.sign_in("user-a")
    conv = client.conversations().create()
    client.pipeline().send(conv["id"], "hello")
    client.mood().log("happy", 7)
    assert client.counter.count == 1

    deleted = client.delete_account()

    assert deleted["messages"] == 2
    assert client.counter.count == 0
    assert client.owner_id is None
    assert remote.rows("mood_logs") == []
    assert remote.rows("conversations") == []
