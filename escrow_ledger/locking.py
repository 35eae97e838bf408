"""
Keyed Lock Module

One exclusive lock per record key (campaign id, identity holder) so that
mutations of the same record serialize while different records proceed
independently.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable


class KeyedLock:
    """Lazily created re-entrant lock per key"""

    def __init__(self):
        self._locks: Dict[Hashable, threading.RLock] = {}
        self._guard = threading.Lock()

    def lock_for(self, key: Hashable) -> threading.RLock:
        """Get (creating if needed) the lock guarding ``key``"""
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: Hashable):
        """Hold the lock for ``key`` for the duration of the block"""
        lock = self.lock_for(key)
        with lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
