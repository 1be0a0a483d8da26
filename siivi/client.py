from __future__ import annotations

import logging
from datetime import timedelta
from typing import Dict, Optional

from .config import Settings, get_settings
from .conversations import ConversationService
from .counter import MessageCounter
from .data_control import DataControl
from .device import DeviceLimitTracker, EnvironmentSnapshot
from .drafts import Connectivity, DraftSyncManager
from .errors import SessionCreationError
from .functions import build_remote_store
from .gateway import build_gateway
from .guest import GuestSession, GuestSessionManager
from .knowledge import KnowledgeCards
from .mood import MoodTracker
from .pipeline import SendPipeline
from .preferences import ProfileSettings
from .reminders import Reminders
from .remote import RemoteStore
from .store import JsonFileStorage, KeyValueStorage
from .threads import ConversationThreads
from .timeutil import Clock, utcnow


logger = logging.getLogger(__name__)


class SiiviClient:
    """Everything one running app instance needs, built once and passed around.

    Owns the device-scoped managers (guest session, device limits, message
    counter) and hands out per-owner services for whoever is signed in: the
    registered user if `user_id` is set, otherwise the active guest session.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        remote: RemoteStore,
        env: EnvironmentSnapshot,
        connectivity: Optional[Connectivity] = None,
        clock: Clock = utcnow,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self.storage = storage
        self.remote = remote
        self.clock = clock
        self.connectivity = connectivity or Connectivity(online=True)
        self.settings = settings
        self.user_id: Optional[str] = None

        self.guest = GuestSessionManager(
            storage, remote, clock,
            message_limit=settings.guest_message_limit,
            duration=timedelta(hours=settings.guest_session_hours),
        )
        self.device = DeviceLimitTracker(
            storage, env, clock,
            max_accounts=settings.max_accounts_per_device,
            guest_cooldown=timedelta(days=settings.guest_cooldown_days),
        )
        self.counter = MessageCounter(storage, interval=settings.donation_interval)
        self._drafts: Optional[DraftSyncManager] = None

        self.guest.load()

    @property
    def owner_id(self) -> Optional[str]:
        return self.guest.owner_id or self.user_id

    @property
    def is_guest(self) -> bool:
        return self.guest.session is not None

    def start_guest_session(self) -> GuestSession:
        """Create a guest session if this device is still allowed one."""
        if not self.device.can_create_guest_session():
            raise SessionCreationError("This device already used its guest session this week")
        session = self.guest.create()
        self.device.create_guest_session()
        return session

    def register_account(self, user_id: str) -> bool:
        """Record a new account against this device. False when the device is at its limit."""
        if not self.device.increment_account_count():
            return False
        self.sign_in(user_id)
        return True

    def sign_in(self, user_id: str) -> None:
        if self.guest.session is not None:
            self.guest.teardown()
        self.user_id = user_id
        self._reset_owner_services()

    def sign_out(self) -> None:
        if self.guest.session is not None:
            self.guest.teardown()
        self.user_id = None
        self._reset_owner_services()

    def _reset_owner_services(self) -> None:
        if self._drafts is not None:
            self._drafts.close()
            self._drafts = None

    def _require_owner(self) -> str:
        owner = self.owner_id
        if owner is None:
            raise RuntimeError("No user signed in and no active guest session")
        return owner

    def conversations(self) -> ConversationService:
        return ConversationService(self.remote, self._require_owner(), guest=self.is_guest, clock=self.clock)

    def pipeline(self) -> SendPipeline:
        return SendPipeline(
            self.conversations(),
            self.remote,
            counter=self.counter,
            guest=self.guest if self.is_guest else None,
            history_window=self.settings.history_window,
        )

    def drafts(self) -> DraftSyncManager:
        owner = self._require_owner()
        if self._drafts is None or self._drafts.owner_id != owner:
            self._reset_owner_services()
            self._drafts = DraftSyncManager(owner, self.remote, self.storage, self.connectivity, self.clock)
        return self._drafts

    def data_control(self) -> DataControl:
        return DataControl(self.remote, self._require_owner(), self.clock)

    def delete_account(self) -> Dict[str, int]:
        """Delete everything the current owner has stored, then sign out."""
        deleted = self.data_control().delete_account(counter=self.counter)
        self.sign_out()
        return deleted

    def profile_settings(self) -> ProfileSettings:
        return ProfileSettings(self.remote, self._require_owner())

    def mood(self) -> MoodTracker:
        return MoodTracker(self.remote, self._require_owner(), self.clock)

    def reminders(self) -> Reminders:
        return Reminders(self.remote, self._require_owner(), self.clock)

    def knowledge(self) -> KnowledgeCards:
        return KnowledgeCards(self.remote, self._require_owner(), self.clock)

    def threads(self) -> ConversationThreads:
        return ConversationThreads(self.remote, self._require_owner(), self.clock)


def build_client(env: EnvironmentSnapshot, settings: Optional[Settings] = None) -> SiiviClient:
    settings = settings or get_settings()
    remote = build_remote_store(settings, build_gateway(settings))
    return SiiviClient(JsonFileStorage(settings.storage_path), remote, env, settings=settings)
