from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List, Optional

from .owned import OwnedCollection
from .timeutil import parse_iso

MOODS = ("happy", "sad", "anxious", "calm", "excited", "tired", "stressed", "content")


class MoodTracker(OwnedCollection):
    table = "mood_logs"
    order_by = "created_at"

    def fetch(self, days: int = 30) -> List[Dict[str, Any]]:
        rows = super().fetch()
        start = self._clock() - timedelta(days=days)
        recent = [r for r in rows if r.get("created_at") and parse_iso(r["created_at"]) >= start]
        with self._lock:
            self.items = recent
        return list(recent)

    def log(self, mood: str, intensity: int, note: Optional[str] = None) -> Dict[str, Any]:
        if mood not in MOODS:
            raise ValueError(f"Unknown mood: {mood}")
        if not 1 <= int(intensity) <= 10:
            raise ValueError("Intensity must be between 1 and 10")
        return self._insert({"mood": mood, "intensity": int(intensity), "note": note})

    def insights(self) -> Optional[Dict[str, Any]]:
        logs = list(self.items)
        if not logs:
            return None

        counts = {m: 0 for m in MOODS}
        for entry in logs:
            if entry.get("mood") in counts:
                counts[entry["mood"]] += 1

        # ties go to the mood listed first
        most_common = max(MOODS, key=lambda m: counts[m])
        avg = sum(int(e.get("intensity") or 0) for e in logs) / len(logs)
        return {
            "most_common_mood": most_common,
            "avg_intensity": round(avg, 1),
            "total_logs": len(logs),
            "mood_distribution": counts,
        }
