"""
Admission controller: bounds how many jobs run at once and rejects the rest.
"""

import logging
import threading
from typing import Optional

from config import MAX_CONCURRENT_REQUESTS

# Stored as the error of every job turned away for lack of capacity
RATE_LIMIT_MESSAGE = "Rate limit exceeded (429) - too many concurrent requests"


class Slot:
    """One admitted job. Releases its capacity when the with-block exits."""

    def __init__(self, controller: "AdmissionController"):
        self._controller = controller
        self._released = False

    def release(self):
        if not self._released:
            self._released = True
            self._controller._release()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


class AdmissionController:
    def __init__(self, capacity: int = MAX_CONCURRENT_REQUESTS):
        self.capacity = capacity
        self._semaphore = threading.BoundedSemaphore(capacity)
        self._lock = threading.Lock()
        self._active = 0

    @property
    def active(self) -> int:
        return self._active

    def try_acquire(self) -> Optional[Slot]:
        """Returns a Slot, or None when every slot is taken."""
        if not self._semaphore.acquire(blocking=False):
            logging.warning(f"⚠️ Rate limit: {self._active}/{self.capacity} active requests")
            return None
        with self._lock:
            self._active += 1
        logging.info(f"📊 Active requests: {self._active}/{self.capacity}")
        return Slot(self)

    def _release(self):
        with self._lock:
            self._active -= 1
        self._semaphore.release()
        logging.info(f"📊 Active requests: {self._active}/{self.capacity}")
