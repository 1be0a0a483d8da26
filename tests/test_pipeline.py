import pytest

from siivi.conversations import ConversationService
from siivi.counter import MessageCounter
from siivi.errors import GatewayError, MessageLimitError, PipelineError
from siivi.functions import install
from siivi.gateway import DemoGateway
from siivi.guest import GuestSessionManager
from siivi.pipeline import (
    INSERT_ASSISTANT_MESSAGE,
    REQUEST_COMPLETION,
    TOUCH_CONVERSATION,
    SendPipeline,
    build_turns,
)

from conftest import FlakyRemoteStore


class RecordingGateway(DemoGateway):
    def __init__(self):
        self.turns = None
        self.personality = None

    def complete(self, turns, personality="casual"):
        self.turns = turns
        self.personality = personality
        return "reply"


class RateLimitedGateway(DemoGateway):
    def complete(self, turns, personality="casual"):
        raise GatewayError(GatewayError.RATE_LIMITED, "Rate limits exceeded, please try again later.", 429)


@pytest.fixture
def conversations(remote, clock):
    return ConversationService(remote, "user-1", clock=clock)


def test_send_runs_all_stages(conversations, remote, storage, clock):
    counter = MessageCounter(storage)
    pipeline = SendPipeline(conversations, remote, counter=counter)
    conv = conversations.create()
    clock.advance(minutes=5)

    result = pipeline.send(conv["id"], "hello there")

    messages = conversations.messages(conv["id"])
    assert [(m["role"], m["content"]) for m in messages] == [
        ("user", "hello there"),
        ("assistant", result.assistant_message["content"]),
    ]
    assert conversations.get(conv["id"])["updated_at"] > conv["updated_at"]
    assert counter.count == 1
    assert result.show_donation is False


def test_completion_sees_history_and_personality(remote, clock):
    gateway = RecordingGateway()
    store = install(FlakyRemoteStore(clock), gateway, clock)
    conversations = ConversationService(store, "user-1", clock=clock)
    conv = conversations.create()
    conversations.add_message(conv["id"], "user", "earlier question")
    conversations.add_message(conv["id"], "assistant", "x" * 1000)

    SendPipeline(conversations, store).send(conv["id"], "/summarize the thread", personality="funny")

    assert gateway.personality == "funny"
    assert [t["role"] for t in gateway.turns] == ["user", "assistant", "user"]
    assert gateway.turns[1]["content"] == "x" * 800 + "..."
    # slash commands travel as typed; the gateway expands them
    assert gateway.turns[2]["content"] == "/summarize the thread"


def test_failed_completion_keeps_user_message(conversations, remote, storage):
    counter = MessageCounter(storage)
    pipeline = SendPipeline(conversations, remote, counter=counter)
    conv = conversations.create()
    remote.fail("invoke", "ai-chat")

    with pytest.raises(PipelineError) as info:
        pipeline.send(conv["id"], "hello")

    assert info.value.stage == REQUEST_COMPLETION
    assert [m["role"] for m in conversations.messages(conv["id"])] == ["user"]
    assert counter.count == 0


def test_rate_limit_code_surfaces(clock):
    store = install(FlakyRemoteStore(clock), RateLimitedGateway(), clock)
    conversations = ConversationService(store, "user-1", clock=clock)
    conv = conversations.create()

    with pytest.raises(PipelineError) as info:
        SendPipeline(conversations, store).send(conv["id"], "hello")

    assert info.value.stage == REQUEST_COMPLETION
    assert info.value.code == GatewayError.RATE_LIMITED
    # exactly one attempt, no retry
    assert store.calls.count(("invoke", "ai-chat")) == 1


def test_each_later_stage_has_its_own_boundary(conversations, remote):
    pipeline = SendPipeline(conversations, remote)
    conv = conversations.create()

    remote.fail("update", "conversations")
    with pytest.raises(PipelineError) as info:
        pipeline.send(conv["id"], "one")
    assert info.value.stage == TOUCH_CONVERSATION
    assert [m["role"] for m in conversations.messages(conv["id"])] == ["user", "assistant"]

    original_insert = remote.insert

    def fail_assistant(table, row):
        if table == "messages" and row.get("role") == "assistant":
            from siivi.errors import RemoteError
            raise RemoteError("insert failed", table)
        return original_insert(table, row)

    remote.insert = fail_assistant
    with pytest.raises(PipelineError) as info:
        pipeline.send(conv["id"], "two")
    assert info.value.stage == INSERT_ASSISTANT_MESSAGE


def test_guest_quota_blocks_send(storage, remote, clock):
    guest = GuestSessionManager(storage, remote, clock, message_limit=2)
    session = guest.create()
    conversations = ConversationService(remote, session.id, guest=True, clock=clock)
    pipeline = SendPipeline(conversations, remote, guest=guest)
    conv = conversations.create()

    pipeline.send(conv["id"], "one")
    pipeline.send(conv["id"], "two")
    with pytest.raises(MessageLimitError):
        pipeline.send(conv["id"], "three")

    assert guest.session.message_count == 2
    assert all(m["guest_session_id"] == session.id for m in remote.rows("messages"))


def test_send_image(conversations, remote):
    pipeline = SendPipeline(conversations, remote)
    conv = conversations.create()

    result = pipeline.send_image(conv["id"], "a red bicycle")

    assert result.user_message["content"] == "Generate image: a red bicycle"
    assert result.assistant_message["content"].startswith("![Generated Image](data:image/png;base64,")


def test_empty_message_rejected(conversations, remote):
    with pytest.raises(ValueError):
        SendPipeline(conversations, remote).send("c", "   ")


def test_build_turns_window():
    history = [{"role": "user" if i % 2 == 0 else "assistant", "content": str(i)} for i in range(12)]
    turns = build_turns(history)

    assert len(turns) == 8
    assert turns[0]["content"] == "4"
    assert turns[-1]["content"] == "11"
