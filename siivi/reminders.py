from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from .errors import RemoteError
from .owned import OwnedCollection
from .timeutil import parse_iso, to_iso


logger = logging.getLogger(__name__)


class Reminders(OwnedCollection):
    """Open reminders for one owner, soonest first."""

    table = "reminders"
    order_by = "remind_at"
    desc = False
    touch_on_update = False

    def _filters(self) -> Dict[str, Any]:
        return {"user_id": self.owner_id, "completed": False}

    def create(self, title: str, remind_at: datetime, description: Optional[str] = None,
               conversation_id: Optional[str] = None) -> Dict[str, Any]:
        created = self._insert({
            "title": title,
            "description": description,
            "remind_at": to_iso(remind_at),
            "conversation_id": conversation_id,
            "completed": False,
        }, prepend=False)
        with self._lock:
            self.items.sort(key=lambda r: parse_iso(r["remind_at"]))
        return created

    def mark_complete(self, reminder_id: str) -> None:
        self._remote.update("reminders", {"completed": True}, {"id": reminder_id, "user_id": self.owner_id})
        with self._lock:
            self.items = [r for r in self.items if r.get("id") != reminder_id]

    def due(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        now = now or self._clock()
        return [r for r in self.items if not r.get("completed") and parse_iso(r["remind_at"]) <= now]

    def fire_due(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Complete every due reminder and return the ones that fired.

        Meant to be called on a timer (once a minute in the app).
        """
        fired = []
        for reminder in self.due(now):
            try:
                self.mark_complete(reminder["id"])
            except RemoteError as e:
                logger.error("Error completing reminder %s: %s", reminder["id"], e)
                continue
            fired.append(reminder)
        return fired
