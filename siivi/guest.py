from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import RLock
from typing import Any, Dict, Optional

from .errors import RemoteError, SessionCreationError
from .remote import RemoteStore
from .store import KeyValueStorage, read_json, write_json
from .timeutil import Clock, parse_iso, to_iso, utcnow


logger = logging.getLogger(__name__)

GUEST_SESSION_KEY = "siivi_guest_session"
MESSAGE_LIMIT = 20
SESSION_DURATION = timedelta(hours=24)
GUEST_DISPLAY_NAME = "Guest User"
CLEAR_GUEST_DATA = "clear-guest-data"


@dataclass
class GuestSession:
    id: str
    expires_at: datetime
    message_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "expiresAt": to_iso(self.expires_at), "messageCount": self.message_count}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GuestSession":
        return cls(
            id=str(data["id"]),
            expires_at=parse_iso(data["expiresAt"]),
            message_count=int(data.get("messageCount", 0)),
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


class GuestSessionManager:
    """One anonymous, time-boxed identity per device.

    The session lives in local storage; the backend only holds a profile row
    keyed by the same id, and everything referencing that id is purged by the
    `clear-guest-data` function when the session ends.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        remote: RemoteStore,
        clock: Clock = utcnow,
        message_limit: int = MESSAGE_LIMIT,
        duration: timedelta = SESSION_DURATION,
    ) -> None:
        self._storage = storage
        self._remote = remote
        self._clock = clock
        self._lock = RLock()
        self.message_limit = message_limit
        self.duration = duration
        self.session: Optional[GuestSession] = None

    def _stored(self) -> Optional[GuestSession]:
        data = read_json(self._storage, GUEST_SESSION_KEY)
        if data is None:
            return None
        try:
            return GuestSession.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.error("Error parsing guest session: %s", e)
            self._storage.remove(GUEST_SESSION_KEY)
            return None

    def load(self) -> Optional[GuestSession]:
        """Restore the persisted session, purging it if it has expired."""
        with self._lock:
            session = self._stored()
            if session is None:
                self.session = None
                return None

            if session.is_expired(self._clock()):
                logger.info("Guest session %s expired at %s", session.id, to_iso(session.expires_at))
                self._purge(session.id)
                self.session = None
                return None

            self.session = session
            return session

    def create(self) -> GuestSession:
        with self._lock:
            # a stored session nobody loaded still owns server rows
            previous = self.session or self._stored()
            if previous is not None:
                self._purge(previous.id)
                self.session = None

            now = self._clock()
            session = GuestSession(id=str(uuid.uuid4()), expires_at=now + self.duration)
            try:
                self._remote.insert("profiles", {
                    "id": session.id,
                    "display_name": GUEST_DISPLAY_NAME,
                    "guest_session_id": session.id,
                    "is_guest": True,
                    "expires_at": to_iso(session.expires_at),
                })
            except RemoteError as e:
                logger.error("Error creating guest profile: %s", e)
                raise SessionCreationError("Failed to create guest session") from e

            write_json(self._storage, GUEST_SESSION_KEY, session.to_dict())
            self.session = session
            logger.info("Created guest session %s (expires %s)", session.id, to_iso(session.expires_at))
            return session

    def increment_message_count(self) -> None:
        with self._lock:
            if self.session is None:
                return
            self.session.message_count += 1
            write_json(self._storage, GUEST_SESSION_KEY, self.session.to_dict())

    def is_limit_reached(self) -> bool:
        session = self.session
        return session is not None and session.message_count >= self.message_limit

    def remaining_messages(self) -> int:
        session = self.session
        if session is None:
            return 0
        return max(0, self.message_limit - session.message_count)

    def teardown(self) -> None:
        """End the active session. Local state is cleared even if the purge fails."""
        with self._lock:
            if self.session is None:
                return
            self._purge(self.session.id)
            self.session = None

    def _purge(self, session_id: str) -> None:
        try:
            self._remote.invoke(CLEAR_GUEST_DATA, {"sessionId": session_id})
        except RemoteError as e:
            logger.error("Error clearing guest session %s: %s", session_id, e)
        self._storage.remove(GUEST_SESSION_KEY)

    @property
    def owner_id(self) -> Optional[str]:
        return self.session.id if self.session else None
