from __future__ import annotations

import logging
from threading import Lock

from .store import KeyValueStorage, read_json, write_json


logger = logging.getLogger(__name__)

MESSAGE_COUNTER_KEY = "siivi_message_counter"
DONATION_INTERVAL = 5  # show the donation prompt after every 5 messages


class MessageCounter:
    """Lifetime count of sent messages; raises the donation prompt once per interval."""

    def __init__(self, storage: KeyValueStorage, interval: int = DONATION_INTERVAL) -> None:
        self._storage = storage
        self._lock = Lock()
        self.interval = interval
        self.count = 0
        self.last_donation_shown = 0
        self.show_donation = False

        stored = read_json(storage, MESSAGE_COUNTER_KEY)
        if isinstance(stored, dict):
            try:
                self.count = int(stored.get("count", 0))
                self.last_donation_shown = int(stored.get("lastDonationShown", 0))
            except (TypeError, ValueError) as e:
                logger.error("Error parsing message counter: %s", e)
                self.count = self.last_donation_shown = 0

    def _save(self) -> None:
        write_json(self._storage, MESSAGE_COUNTER_KEY,
                   {"count": self.count, "lastDonationShown": self.last_donation_shown})

    def increment(self) -> bool:
        """Count one message. Returns True when this call raised the prompt."""
        with self._lock:
            new_count = self.count + 1
            should_show = (
                new_count > 0
                and new_count % self.interval == 0
                and new_count != self.last_donation_shown
            )
            self.count = new_count
            if should_show:
                self.last_donation_shown = new_count
                self.show_donation = True
            self._save()
            return should_show

    def hide(self) -> None:
        self.show_donation = False

    def reset(self) -> None:
        with self._lock:
            self.count = 0
            self.last_donation_shown = 0
            self._save()

    def state(self):
        return {"count": self.count, "lastDonationShown": self.last_donation_shown}
