from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv


load_dotenv()


def _flag(name: str, default: str = "0") -> bool:
    return (os.getenv(name, default) or "").strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Runtime configuration read from the environment (and `.env`).

    Limits default to the values the client has always shipped with; they are
    only overridable so tests and self-hosted deployments can tune them.
    """

    def __init__(self) -> None:
        self.app_env: str = os.getenv("APP_ENV", "development")
        self.demo: bool = _flag("DEMO_MOCK")

        self.gemini_api_key: Optional[str] = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
        self.gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
        self.gemini_image_model: str = os.getenv("GEMINI_IMAGE_MODEL", "gemini-2.5-flash-image-preview")

        # "memory" keeps everything in-process; "supabase" talks to a hosted project
        self.backend: str = os.getenv("SIIVI_BACKEND", "memory").strip().lower()
        self.supabase_url: Optional[str] = os.getenv("SUPABASE_URL")
        self.supabase_key: Optional[str] = os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_KEY")

        self.storage_path: str = os.getenv("SIIVI_STORAGE_PATH", ".siivi/local_storage.json")

        self.guest_message_limit: int = int(os.getenv("GUEST_MESSAGE_LIMIT", "20"))
        self.guest_session_hours: int = int(os.getenv("GUEST_SESSION_HOURS", "24"))
        self.donation_interval: int = int(os.getenv("DONATION_INTERVAL", "5"))
        self.max_accounts_per_device: int = int(os.getenv("MAX_ACCOUNTS_PER_DEVICE", "2"))
        self.guest_cooldown_days: int = int(os.getenv("GUEST_COOLDOWN_DAYS", "7"))
        self.history_window: int = int(os.getenv("CHAT_HISTORY_WINDOW", "8"))

    @property
    def has_gemini_key(self) -> bool:
        return bool(self.gemini_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
