from __future__ import annotations

import csv
import io
import json
import logging
from typing import Any, Dict, List, Optional

from .counter import MessageCounter
from .remote import RemoteStore
from .timeutil import Clock, to_iso, utcnow


logger = logging.getLogger(__name__)

# everything keyed by user_id; profiles are keyed by id and go last
OWNED_TABLES = (
    "messages",
    "conversations",
    "drafts",
    "mood_logs",
    "reminders",
    "knowledge_cards",
    "conversation_threads",
    "user_preferences",
)


class DataControl:
    """Export, history clearing and account deletion for one owner."""

    def __init__(self, remote: RemoteStore, owner_id: str, clock: Clock = utcnow) -> None:
        self._remote = remote
        self.owner_id = owner_id
        self._clock = clock

    def _conversations(self) -> List[Dict[str, Any]]:
        return self._remote.select("conversations", {"user_id": self.owner_id}, order_by="created_at")

    def _messages(self, conversations: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = []
        for conv in conversations:
            messages.extend(self._remote.select("messages", {"conversation_id": conv["id"]}, order_by="created_at"))
        return messages

    def export(self, account_type: str = "registered") -> Dict[str, Any]:
        conversations = self._conversations()
        return {
            "conversations": conversations,
            "messages": self._messages(conversations),
            "profile": self._remote.select_one("profiles", {"id": self.owner_id}),
            "exported_at": to_iso(self._clock()),
            "account_type": account_type,
        }

    def export_json(self, account_type: str = "registered") -> str:
        return json.dumps(self.export(account_type), indent=2, ensure_ascii=False)

    def export_csv(self) -> str:
        """Messages only: Date, Conversation, Role, Content."""
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(["Date", "Conversation", "Role", "Content"])
        for msg in self._messages(self._conversations()):
            writer.writerow([msg.get("created_at", ""), msg.get("conversation_id", ""),
                             msg.get("role", ""), msg.get("content", "")])
        return buf.getvalue()

    def export_filename(self, fmt: str) -> str:
        day = to_iso(self._clock())[:10]
        if fmt == "csv":
            return f"siivi-messages-{day}.csv"
        return f"siivi-data-{day}.json"

    def clear_history(self) -> int:
        """Delete every conversation and its messages. Returns conversations removed."""
        conversations = self._conversations()
        for conv in conversations:
            self._remote.delete("messages", {"conversation_id": conv["id"]})
        removed = self._remote.delete("conversations", {"user_id": self.owner_id})
        logger.info("Chat history cleared for %s (%d conversations)", self.owner_id, removed)
        return removed

    def delete_account(self, counter: Optional[MessageCounter] = None) -> Dict[str, int]:
        deleted = {table: self._remote.delete(table, {"user_id": self.owner_id}) for table in OWNED_TABLES}
        deleted["profiles"] = self._remote.delete("profiles", {"id": self.owner_id})
        if counter is not None:
            counter.reset()
        logger.info("Account %s deleted", self.owner_id)
        return deleted
