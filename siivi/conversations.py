from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .remote import RemoteStore
from .timeutil import Clock, to_iso, utcnow


logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Conversation"


class ConversationService:
    """Conversations and their messages for one owner.

    Rows written for a guest also carry `guest_session_id`, which is what the
    `clear-guest-data` function deletes by.
    """

    def __init__(self, remote: RemoteStore, owner_id: str, guest: bool = False, clock: Clock = utcnow) -> None:
        self._remote = remote
        self.owner_id = owner_id
        self.guest = guest
        self._clock = clock

    def _owner_fields(self) -> Dict[str, Any]:
        fields: Dict[str, Any] = {"user_id": self.owner_id}
        if self.guest:
            fields["guest_session_id"] = self.owner_id
        return fields

    def create(self, title: str = DEFAULT_TITLE) -> Dict[str, Any]:
        return self._remote.insert("conversations", dict(self._owner_fields(), title=title))

    def list(self) -> List[Dict[str, Any]]:
        return self._remote.select("conversations", {"user_id": self.owner_id}, order_by="updated_at", desc=True)

    def get(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        return self._remote.select_one("conversations", {"id": conversation_id, "user_id": self.owner_id})

    def rename(self, conversation_id: str, title: str) -> None:
        self._remote.update(
            "conversations",
            {"title": title, "updated_at": to_iso(self._clock())},
            {"id": conversation_id, "user_id": self.owner_id},
        )

    def touch(self, conversation_id: str) -> None:
        self._remote.update(
            "conversations",
            {"updated_at": to_iso(self._clock())},
            {"id": conversation_id, "user_id": self.owner_id},
        )

    def delete(self, conversation_id: str) -> None:
        self._remote.delete("messages", {"conversation_id": conversation_id})
        self._remote.delete("conversations", {"id": conversation_id, "user_id": self.owner_id})
        logger.info("Deleted conversation %s", conversation_id)

    def messages(self, conversation_id: str) -> List[Dict[str, Any]]:
        return self._remote.select(
            "messages",
            {"conversation_id": conversation_id, "user_id": self.owner_id},
            order_by="created_at",
        )

    def add_message(self, conversation_id: str, role: str, content: str) -> Dict[str, Any]:
        return self._remote.insert("messages", dict(
            self._owner_fields(),
            conversation_id=conversation_id,
            role=role,
            content=content,
        ))
