"""
Per-key locks.

One lock per lead id serializes every mutation of that lead (purchase,
interest, views, funnel side effects) while leaving different leads fully
concurrent. Browsing never takes these locks.
"""

from __future__ import annotations

import threading
from typing import Dict, Hashable


class KeyedLocks:
    def __init__(self) -> None:
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._guard = threading.Lock()

    def for_key(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


__all__ = ["KeyedLocks"]
