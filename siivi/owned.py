from __future__ import annotations

import logging
from threading import Lock
from typing import Any, Dict, List, Optional

from .errors import RemoteError
from .remote import RemoteStore
from .timeutil import Clock, to_iso, utcnow


logger = logging.getLogger(__name__)


class OwnedCollection:
    """A remote table whose rows belong to one user or guest (`user_id`).

    Keeps a local copy of the owner's rows in `items`, updated after every
    successful write so the UI never has to refetch.
    """

    table = ""
    order_by = "updated_at"
    desc = True
    touch_on_update = True

    def __init__(self, remote: RemoteStore, owner_id: str, clock: Clock = utcnow) -> None:
        self._remote = remote
        self.owner_id = owner_id
        self._clock = clock
        self._lock = Lock()
        self.items: List[Dict[str, Any]] = []

    def _filters(self) -> Dict[str, Any]:
        return {"user_id": self.owner_id}

    def fetch(self) -> List[Dict[str, Any]]:
        try:
            rows = self._remote.select(self.table, self._filters(), order_by=self.order_by, desc=self.desc)
        except RemoteError as e:
            logger.error("Error fetching %s: %s", self.table, e)
            raise
        with self._lock:
            self.items = rows
        return list(rows)

    def _insert(self, row: Dict[str, Any], prepend: bool = True) -> Dict[str, Any]:
        try:
            created = self._remote.insert(self.table, dict(row, user_id=self.owner_id))
        except RemoteError as e:
            logger.error("Error creating %s row: %s", self.table, e)
            raise
        with self._lock:
            if prepend:
                self.items.insert(0, created)
            else:
                self.items.append(created)
        return created

    def update(self, item_id: str, **updates: Any) -> Optional[Dict[str, Any]]:
        updates.pop("id", None)
        updates.pop("user_id", None)
        if self.touch_on_update:
            updates["updated_at"] = to_iso(self._clock())
        try:
            self._remote.update(self.table, updates, {"id": item_id, "user_id": self.owner_id})
        except RemoteError as e:
            logger.error("Error updating %s %s: %s", self.table, item_id, e)
            raise
        with self._lock:
            for item in self.items:
                if item.get("id") == item_id:
                    item.update(updates)
                    return dict(item)
        return None

    def delete(self, item_id: str) -> None:
        try:
            self._remote.delete(self.table, {"id": item_id, "user_id": self.owner_id})
        except RemoteError as e:
            logger.error("Error deleting %s %s: %s", self.table, item_id, e)
            raise
        with self._lock:
            self.items = [i for i in self.items if i.get("id") != item_id]
