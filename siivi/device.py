from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock
from typing import Any, Dict, Optional

from .store import KeyValueStorage, read_json, write_json
from .timeutil import Clock, parse_iso, to_iso, utcnow


logger = logging.getLogger(__name__)

DEVICE_STORAGE_KEY = "siivi_device_info"
MAX_ACCOUNTS_PER_DEVICE = 2
MAX_GUEST_SESSIONS_PER_WEEK = 1
GUEST_COOLDOWN = timedelta(days=7)
FINGERPRINT_LENGTH = 32


@dataclass(frozen=True)
class EnvironmentSnapshot:
    """The stable signals a device fingerprint is derived from."""
    canvas_data: str = ""
    user_agent: str = ""
    language: str = ""
    screen_width: int = 0
    screen_height: int = 0
    timezone_offset: int = 0


def fingerprint(env: EnvironmentSnapshot) -> str:
    """Best-effort device id. Deterministic per snapshot, not a security boundary."""
    raw = "".join([
        env.canvas_data,
        env.user_agent,
        env.language,
        str(env.screen_width),
        str(env.screen_height),
        str(env.timezone_offset),
    ])
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


@dataclass
class DeviceRecord:
    device_id: str
    account_count: int = 0
    last_guest_session: Optional[datetime] = None
    guest_sessions_this_week: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deviceId": self.device_id,
            "accountCount": self.account_count,
            "lastGuestSession": to_iso(self.last_guest_session) if self.last_guest_session else None,
            "guestSessionsThisWeek": self.guest_sessions_this_week,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], device_id: str) -> "DeviceRecord":
        last = data.get("lastGuestSession")
        return cls(
            device_id=device_id,
            account_count=int(data.get("accountCount", 0)),
            last_guest_session=parse_iso(last) if last else None,
            guest_sessions_this_week=int(data.get("guestSessionsThisWeek", 0)),
        )


class DeviceLimitTracker:
    """Per-device throttle on account and guest-session creation."""

    def __init__(
        self,
        storage: KeyValueStorage,
        env: EnvironmentSnapshot,
        clock: Clock = utcnow,
        max_accounts: int = MAX_ACCOUNTS_PER_DEVICE,
        guest_cooldown: timedelta = GUEST_COOLDOWN,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._lock = Lock()
        self.max_accounts = max_accounts
        self.guest_cooldown = guest_cooldown
        self.record = self._load(fingerprint(env))

    def _load(self, device_id: str) -> DeviceRecord:
        data = read_json(self._storage, DEVICE_STORAGE_KEY)
        if isinstance(data, dict):
            try:
                # the id is re-derived on every start, never trusted from storage
                return DeviceRecord.from_dict(data, device_id)
            except (TypeError, ValueError) as e:
                logger.error("Error parsing device info: %s", e)
        record = DeviceRecord(device_id=device_id)
        write_json(self._storage, DEVICE_STORAGE_KEY, record.to_dict())
        return record

    def _save(self) -> None:
        write_json(self._storage, DEVICE_STORAGE_KEY, self.record.to_dict())

    @property
    def device_id(self) -> str:
        return self.record.device_id

    def can_create_account(self) -> bool:
        return self.record.account_count < self.max_accounts

    def increment_account_count(self) -> bool:
        with self._lock:
            if not self.can_create_account():
                return False
            self.record.account_count += 1
            self._save()
            return True

    def can_create_guest_session(self) -> bool:
        last = self.record.last_guest_session
        if last is None:
            return True
        return last <= self._clock() - self.guest_cooldown

    def create_guest_session(self) -> bool:
        with self._lock:
            if not self.can_create_guest_session():
                return False
            self.record.last_guest_session = self._clock()
            self.record.guest_sessions_this_week += 1
            self._save()
            return True

    def next_guest_session_at(self) -> Optional[datetime]:
        last = self.record.last_guest_session
        if last is None or self.can_create_guest_session():
            return None
        return last + self.guest_cooldown
