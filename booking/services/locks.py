"""
locks.py
--------
Per-staff serialization scope for check-then-commit sequences.

One lock per staff id, created on first use, so bookings for different staff
never wait on each other. Acquisition is bounded: callers that cannot enter
the scope within the timeout get BusyError and are expected to retry.

This guards a single process. BookingManager additionally takes a
select_for_update() row lock on the staff row inside its transaction, which
extends the guarantee across processes on databases that support it.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Optional

from ..conf import engine_setting
from ..exceptions import BusyError

logger = logging.getLogger(__name__)


class StaffLockArena:
    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.Lock] = {}

    def _lock_for(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, key: Hashable, timeout: Optional[float] = None):
        """Hold the lock for `key`; raise BusyError after `timeout` seconds."""
        if timeout is None:
            timeout = float(engine_setting("LOCK_TIMEOUT_SECONDS"))
        lock = self._lock_for(key)
        if not lock.acquire(timeout=timeout):
            logger.warning("Serialization scope for staff %s busy after %.2fs", key, timeout)
            raise BusyError()
        try:
            yield
        finally:
            lock.release()


# Shared by every BookingManager in the process.
staff_locks = StaffLockArena()
