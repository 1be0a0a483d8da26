from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from .errors import RemoteError
from .remote import RemoteStore
from .store import KeyValueStorage, read_json, write_json
from .timeutil import Clock, to_iso, utcnow


logger = logging.getLogger(__name__)

OFFLINE_DRAFTS_KEY = "offline_drafts"
DRAFT_TYPES = ("note", "blog", "code", "email")
EDITABLE_FIELDS = ("title", "content", "type")


@dataclass
class Draft:
    id: str
    user_id: str
    title: str
    content: str
    type: str = "note"
    synced: bool = False
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Draft":
        return cls(
            id=str(data["id"]),
            user_id=str(data["user_id"]),
            title=data.get("title") or "",
            content=data.get("content") or "",
            type=data.get("type") or "note",
            synced=bool(data.get("synced", False)),
            created_at=str(data.get("created_at") or ""),
            updated_at=str(data.get("updated_at") or ""),
        )


class Connectivity:
    """Online/offline flag; listeners only hear about actual transitions."""

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._listeners: List[Callable[[bool], None]] = []

    @property
    def online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in list(self._listeners):
            listener(online)

    def subscribe(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe


def _check_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Cannot edit draft fields: {', '.join(sorted(unknown))}")
    if "type" in fields and fields["type"] not in DRAFT_TYPES:
        raise ValueError(f"Unknown draft type: {fields['type']}")
    return dict(fields)


class DraftSyncManager:
    """Drafts for one owner (user or guest) that keep working offline.

    Drafts created offline live in a local-storage queue until `sync()` pushes
    them. Edits to drafts that already live remotely are held in memory while
    offline and replayed by the next sync.
    """

    def __init__(
        self,
        owner_id: str,
        remote: RemoteStore,
        storage: KeyValueStorage,
        connectivity: Connectivity,
        clock: Clock = utcnow,
    ) -> None:
        self.owner_id = owner_id
        self._remote = remote
        self._storage = storage
        self._connectivity = connectivity
        self._clock = clock
        self._lock = Lock()
        self._sync_lock = Lock()
        # draft id -> fields to apply, or None for a delete
        self._deferred: Dict[str, Optional[Dict[str, Any]]] = {}
        self.drafts: List[Draft] = self._queued_drafts()
        self._unsubscribe = connectivity.subscribe(self._on_connectivity)

    @property
    def offline_mode(self) -> bool:
        return not self._connectivity.online

    def close(self) -> None:
        self._unsubscribe()

    # -- offline queue -------------------------------------------------

    def _read_queue(self) -> List[Dict[str, Any]]:
        data = read_json(self._storage, OFFLINE_DRAFTS_KEY)
        if not isinstance(data, list):
            return []
        items = [d for d in data if isinstance(d, dict)]
        if len(items) != len(data):
            logger.error("Dropped %d unreadable offline drafts", len(data) - len(items))
        return items

    def _write_queue(self, queue: List[Dict[str, Any]]) -> None:
        if queue:
            write_json(self._storage, OFFLINE_DRAFTS_KEY, queue)
        else:
            self._storage.remove(OFFLINE_DRAFTS_KEY)

    def _queued_drafts(self) -> List[Draft]:
        own = []
        for item in self._read_queue():
            if item.get("user_id") != self.owner_id:
                continue
            try:
                own.append(Draft.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.error("Skipping malformed offline draft: %s", e)
        own.sort(key=lambda d: d.updated_at, reverse=True)
        return own

    def queued(self) -> List[Draft]:
        return self._queued_drafts()

    def _edit_queue(self, draft_id: str, fields: Optional[Dict[str, Any]]) -> bool:
        queue = self._read_queue()
        for i, item in enumerate(queue):
            if item.get("id") == draft_id:
                if fields is None:
                    del queue[i]
                else:
                    item.update(fields)
                self._write_queue(queue)
                return True
        return False

    # -- operations ----------------------------------------------------

    def create(self, title: str, content: str, type: str = "note") -> Draft:
        if type not in DRAFT_TYPES:
            raise ValueError(f"Unknown draft type: {type}")

        if self.offline_mode:
            now = to_iso(self._clock())
            draft = Draft(id=str(uuid.uuid4()), user_id=self.owner_id, title=title, content=content,
                          type=type, synced=False, created_at=now, updated_at=now)
            with self._lock:
                queue = self._read_queue()
                queue.append(draft.to_dict())
                self._write_queue(queue)
                self.drafts.insert(0, draft)
            logger.info("Draft %s saved offline", draft.id)
            return draft

        try:
            row = self._remote.insert("drafts", {
                "user_id": self.owner_id,
                "title": title,
                "content": content,
                "type": type,
                "synced": True,
            })
        except RemoteError as e:
            logger.error("Error creating draft: %s", e)
            raise
        draft = Draft.from_dict(row)
        with self._lock:
            self.drafts.insert(0, draft)
        return draft

    def update(self, draft_id: str, **fields: Any) -> Optional[Draft]:
        fields = _check_fields(fields)
        fields["updated_at"] = to_iso(self._clock())

        with self._lock:
            if self._edit_queue(draft_id, fields):
                pass
            elif not self.offline_mode:
                try:
                    self._remote.update("drafts", dict(fields, synced=True), {"id": draft_id})
                except RemoteError as e:
                    logger.error("Error updating draft %s: %s", draft_id, e)
                    raise
            else:
                pending = self._deferred.get(draft_id, {})
                if draft_id in self._deferred and pending is None:
                    return None
                self._deferred[draft_id] = dict(pending or {}, **fields)
                logger.info("Draft %s edited offline, deferred until sync", draft_id)

            for draft in self.drafts:
                if draft.id == draft_id:
                    for k, v in fields.items():
                        setattr(draft, k, v)
                    return draft
        return None

    def delete(self, draft_id: str) -> None:
        with self._lock:
            if self._edit_queue(draft_id, None):
                pass
            elif not self.offline_mode:
                try:
                    self._remote.delete("drafts", {"id": draft_id})
                except RemoteError as e:
                    logger.error("Error deleting draft %s: %s", draft_id, e)
                    raise
            else:
                self._deferred[draft_id] = None
            self.drafts = [d for d in self.drafts if d.id != draft_id]

    def refresh(self) -> List[Draft]:
        """Reload the authoritative list; queued drafts stay in front."""
        rows = self._remote.select("drafts", {"user_id": self.owner_id}, order_by="updated_at", desc=True)
        remote = [Draft.from_dict(r) for r in rows]
        with self._lock:
            for draft in remote:
                pending = self._deferred.get(draft.id)
                if pending:
                    for k, v in pending.items():
                        setattr(draft, k, v)
            remote = [d for d in remote if not (d.id in self._deferred and self._deferred[d.id] is None)]
            self.drafts = self._queued_drafts() + remote
            return list(self.drafts)

    def sync(self) -> int:
        """Push queued drafts and deferred edits. Returns how many drafts were inserted.

        Each queued draft leaves the queue only once its own insert succeeded,
        so a retry after a failure never inserts the same draft twice.
        """
        if self.offline_mode:
            return 0
        if not self._sync_lock.acquire(blocking=False):
            logger.debug("Draft sync already running, skipping")
            return 0
        try:
            queued = self._queued_drafts()
            queued.sort(key=lambda d: d.created_at)
            if not queued and not self._deferred:
                return 0

            inserted = 0
            for draft in queued:
                if not self._push(draft):
                    logger.error("Draft sync stopped, %d left in queue", len(queued) - inserted)
                    break
                with self._lock:
                    self._edit_queue(draft.id, None)
                inserted += 1

            self._flush_deferred()

            try:
                self.refresh()
            except RemoteError as e:
                logger.error("Error refreshing drafts after sync: %s", e)

            if inserted:
                logger.info("Synced %d offline drafts", inserted)
            return inserted
        finally:
            self._sync_lock.release()

    def _push(self, draft: Draft) -> bool:
        """Insert one queued draft. True once the draft is known to be on the server."""
        try:
            self._remote.insert("drafts", dict(draft.to_dict(), synced=True))
            return True
        except RemoteError as e:
            failure = e

        # the insert may have landed even though its reply was lost
        try:
            landed = self._remote.select_one("drafts", {"id": draft.id}) is not None
        except RemoteError as e:
            logger.error("Error checking draft %s after failed insert: %s", draft.id, e)
            return False
        if landed:
            logger.warning("Draft %s was already on the server, dropping it from the queue", draft.id)
            return True
        logger.error("Error syncing draft %s: %s", draft.id, failure)
        return False

    def _flush_deferred(self) -> None:
        for draft_id, fields in list(self._deferred.items()):
            try:
                if fields is None:
                    self._remote.delete("drafts", {"id": draft_id})
                else:
                    self._remote.update("drafts", dict(fields, synced=True), {"id": draft_id})
            except RemoteError as e:
                logger.error("Error replaying offline edit for draft %s: %s", draft_id, e)
                break
            with self._lock:
                self._deferred.pop(draft_id, None)

    def _on_connectivity(self, online: bool) -> None:
        if online:
            self.sync()
