from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, TypeVar

from .conversations import ConversationService
from .counter import MessageCounter
from .errors import GatewayError, MessageLimitError, PipelineError, RemoteError
from .guest import GuestSessionManager
from .prompts import DEFAULT_PERSONALITY
from .remote import RemoteStore


logger = logging.getLogger(__name__)

T = TypeVar("T")

INSERT_USER_MESSAGE = "insert_user_message"
REQUEST_COMPLETION = "request_completion"
INSERT_ASSISTANT_MESSAGE = "insert_assistant_message"
TOUCH_CONVERSATION = "touch_conversation"
STAGES = (INSERT_USER_MESSAGE, REQUEST_COMPLETION, INSERT_ASSISTANT_MESSAGE, TOUCH_CONVERSATION)

HISTORY_WINDOW = 8
MAX_TURN_CHARS = 800
FALLBACK_REPLY = "Sorry, I could not generate a response."
FALLBACK_IMAGE_REPLY = "Sorry, I could not generate the image."


@dataclass
class SendResult:
    user_message: Dict[str, Any]
    assistant_message: Dict[str, Any]
    show_donation: bool = False


def build_turns(messages: List[Dict[str, Any]], window: int = HISTORY_WINDOW,
                max_chars: int = MAX_TURN_CHARS) -> List[Dict[str, str]]:
    """The slice of history sent to the model: last `window` turns, long ones clipped."""
    turns = []
    for msg in messages:
        content = msg.get("content") or ""
        if len(content) > max_chars:
            content = content[:max_chars] + "..."
        turns.append({"role": msg.get("role", "user"), "content": content})
    return turns[-window:]


class SendPipeline:
    """Sending one chat message, as four stages run strictly in order.

    insert_user_message -> request_completion -> insert_assistant_message
    -> touch_conversation. A failing stage raises PipelineError naming it;
    stages that already ran are not undone.
    """

    def __init__(
        self,
        conversations: ConversationService,
        remote: RemoteStore,
        counter: Optional[MessageCounter] = None,
        guest: Optional[GuestSessionManager] = None,
        history_window: int = HISTORY_WINDOW,
    ) -> None:
        self.conversations = conversations
        self._remote = remote
        self._counter = counter
        self._guest = guest
        self.history_window = history_window

    def _stage(self, name: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except (RemoteError, GatewayError) as e:
            logger.error("Send pipeline stage %s failed: %s", name, e)
            raise PipelineError(name, e) from e

    def _check_quota(self) -> None:
        if self._guest is not None and self._guest.is_limit_reached():
            raise MessageLimitError(
                f"Guest sessions are limited to {self._guest.message_limit} messages. Sign up to keep chatting."
            )

    def _finish(self, user_message, assistant_message) -> SendResult:
        show = False
        if self._counter is not None:
            show = self._counter.increment()
        if self._guest is not None:
            self._guest.increment_message_count()
        return SendResult(user_message, assistant_message, show)

    def send(self, conversation_id: str, text: str, personality: str = DEFAULT_PERSONALITY) -> SendResult:
        text = (text or "").strip()
        if not text:
            raise ValueError("Empty input.")
        self._check_quota()

        user_message = self._stage(
            INSERT_USER_MESSAGE,
            lambda: self.conversations.add_message(conversation_id, "user", text),
        )

        def request_completion() -> str:
            history = self.conversations.messages(conversation_id)
            if not any(m.get("id") == user_message.get("id") for m in history):
                history.append(user_message)
            response = self._remote.invoke("ai-chat", {
                "messages": build_turns(history, self.history_window),
                "personality": personality,
            })
            choices = response.get("choices") or [{}]
            return (choices[0].get("message") or {}).get("content") or FALLBACK_REPLY

        reply = self._stage(REQUEST_COMPLETION, request_completion)

        assistant_message = self._stage(
            INSERT_ASSISTANT_MESSAGE,
            lambda: self.conversations.add_message(conversation_id, "assistant", reply),
        )
        self._stage(TOUCH_CONVERSATION, lambda: self.conversations.touch(conversation_id))
        return self._finish(user_message, assistant_message)

    def send_image(self, conversation_id: str, prompt: str) -> SendResult:
        prompt = (prompt or "").strip()
        if not prompt:
            raise ValueError("Empty prompt.")
        self._check_quota()

        user_message = self._stage(
            INSERT_USER_MESSAGE,
            lambda: self.conversations.add_message(conversation_id, "user", f"Generate image: {prompt}"),
        )

        def request_image() -> str:
            response = self._remote.invoke("ai-chat", {"type": "image", "prompt": prompt})
            url = response.get("imageUrl")
            if not url:
                return FALLBACK_IMAGE_REPLY
            return f"![Generated Image]({url})\n\n{response.get('message') or ''}".rstrip()

        reply = self._stage(REQUEST_COMPLETION, request_image)
        assistant_message = self._stage(
            INSERT_ASSISTANT_MESSAGE,
            lambda: self.conversations.add_message(conversation_id, "assistant", reply),
        )
        self._stage(TOUCH_CONVERSATION, lambda: self.conversations.touch(conversation_id))
        return self._finish(user_message, assistant_message)
