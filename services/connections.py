from __future__ import annotations

import threading
from typing import List


class ConnectionRegistry:
    """Socket ids currently connected to this process.

    Used only as the fan-out target for bus deliveries. Socket.IO handlers run
    on several threads, so every access goes through the lock.
    """

    def __init__(self) -> None:
        self._sids: set[str] = set()
        self._lock = threading.Lock()

    def add(self, sid: str) -> None:
        with self._lock:
            self._sids.add(sid)

    def discard(self, sid: str) -> bool:
        """Remove ``sid``; returns ``False`` when it was already gone."""
        with self._lock:
            if sid not in self._sids:
                return False
            self._sids.remove(sid)
            return True

    def snapshot(self) -> List[str]:
        with self._lock:
            return list(self._sids)

    def __contains__(self, sid: object) -> bool:
        with self._lock:
            return sid in self._sids

    def __len__(self) -> int:
        with self._lock:
            return len(self._sids)
