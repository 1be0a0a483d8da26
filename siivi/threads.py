from __future__ import annotations

from typing import Any, Dict, Optional

from .owned import OwnedCollection


class ConversationThreads(OwnedCollection):
    """Folders that group conversations in the sidebar."""

    table = "conversation_threads"

    def create(self, title: str, description: Optional[str] = None, color: str = "blue",
               icon: str = "folder") -> Dict[str, Any]:
        return self._insert({"title": title, "description": description, "color": color, "icon": icon})
