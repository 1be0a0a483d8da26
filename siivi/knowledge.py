from __future__ import annotations

from typing import Any, Dict, List, Optional

from .owned import OwnedCollection


class KnowledgeCards(OwnedCollection):
    table = "knowledge_cards"

    def create(self, category: str, title: str, content: str, tags: Optional[List[str]] = None) -> Dict[str, Any]:
        return self._insert({"category": category, "title": title, "content": content, "tags": list(tags or [])})

    def search(self, query: str) -> List[Dict[str, Any]]:
        q = (query or "").lower()
        return [
            card for card in self.items
            if q in (card.get("title") or "").lower()
            or q in (card.get("content") or "").lower()
            or any(q in tag.lower() for tag in card.get("tags") or [])
        ]
