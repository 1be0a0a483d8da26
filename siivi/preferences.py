from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .prompts import DEFAULT_PERSONALITY, PERSONALITIES
from .remote import RemoteStore


logger = logging.getLogger(__name__)

PROFILE_DEFAULTS: Dict[str, Any] = {
    "display_name": "",
    "theme_preference": "system",
    "font_size": "medium",
    "interaction_style": "balanced",
    "language": "en",
    "ai_personality": DEFAULT_PERSONALITY,
}

PREFERENCE_DEFAULTS: Dict[str, Any] = {
    "notifications_enabled": True,
    "daily_summary": False,
    "weekly_summary": False,
    "export_format": "json",
    "privacy_level": "standard",
    "data_retention_days": None,
}


def _pick(row: Optional[Dict[str, Any]], defaults: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(defaults)
    for key in defaults:
        if row and row.get(key) is not None:
            out[key] = row[key]
    return out


def _validate(values: Dict[str, Any], defaults: Dict[str, Any], kind: str) -> Dict[str, Any]:
    unknown = set(values) - set(defaults)
    if unknown:
        raise ValueError(f"Unknown {kind} settings: {', '.join(sorted(unknown))}")
    return dict(values)


class ProfileSettings:
    """Profile (`profiles`) and preferences (`user_preferences`) of one owner."""

    def __init__(self, remote: RemoteStore, owner_id: str) -> None:
        self._remote = remote
        self.owner_id = owner_id

    def load(self) -> Dict[str, Dict[str, Any]]:
        profile = self._remote.select_one("profiles", {"id": self.owner_id})
        prefs = self._remote.select_one("user_preferences", {"user_id": self.owner_id})
        return {
            "profile": _pick(profile, PROFILE_DEFAULTS),
            "preferences": _pick(prefs, PREFERENCE_DEFAULTS),
        }

    def save(self, profile: Optional[Dict[str, Any]] = None, preferences: Optional[Dict[str, Any]] = None) -> None:
        if profile:
            values = _validate(profile, PROFILE_DEFAULTS, "profile")
            personality = values.get("ai_personality")
            if personality is not None and personality not in PERSONALITIES:
                raise ValueError(f"Unknown personality: {personality}")
            if self._remote.select_one("profiles", {"id": self.owner_id}):
                self._remote.update("profiles", values, {"id": self.owner_id})
            else:
                self._remote.insert("profiles", dict(values, id=self.owner_id, user_id=self.owner_id))

        if preferences:
            values = _validate(preferences, PREFERENCE_DEFAULTS, "preference")
            if self._remote.select_one("user_preferences", {"user_id": self.owner_id}):
                self._remote.update("user_preferences", values, {"user_id": self.owner_id})
            else:
                self._remote.insert("user_preferences", dict(values, user_id=self.owner_id))
        logger.info("Saved settings for %s", self.owner_id)

    @property
    def personality(self) -> str:
        return self.load()["profile"]["ai_personality"]
