from __future__ import annotations

from typing import Any, List

from services.messages import Message


class HistoryService:
    """Read side of the message store, always in chronological order."""

    def __init__(self, store, *, default_limit: int = 50, max_limit: int = 500) -> None:
        self.store = store
        self.default_limit = default_limit
        self.max_limit = max_limit

    def clamp_limit(self, raw: Any) -> int:
        """Parse ``raw`` into ``1..max_limit``; bad or non-positive values use the default."""
        if raw is None or isinstance(raw, bool):
            return self.default_limit
        try:
            limit = int(raw)
        except (TypeError, ValueError):
            return self.default_limit
        if limit <= 0:
            return self.default_limit
        return min(limit, self.max_limit)

    def get_recent(self, limit: Any = None) -> List[Message]:
        """Return the newest ``limit`` messages, oldest first.

        Raises ``StoreError`` when the store cannot be read.
        """
        messages = self.store.recent(self.clamp_limit(limit))
        # Orden estable: mismos ts conservan el orden de inserción.
        return sorted(messages, key=lambda m: m.ts)

    def snapshot(self, limit: int) -> List[dict]:
        return [m.to_dict() for m in self.get_recent(limit)]
