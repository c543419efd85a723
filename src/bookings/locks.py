import threading
from contextlib import contextmanager
from typing import Dict


class StationLockRegistry:
    """One lock per station; create/modify hold it across check, write and commit"""

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, station_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(station_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[station_id] = lock
            return lock

    @contextmanager
    def hold(self, station_id: str):
        lock = self._lock_for(station_id)
        with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)


# Shared by every request handled in this process
station_locks = StationLockRegistry()
