"""
Per-key mutual exclusion.

Mutations of one invoice (API edits, webhook reconciliation, scheduler sweeps)
are serialized on that invoice's id. Different invoices never contend.
"""

import threading
from contextlib import contextmanager


class KeyedLock:
    """
    Reentrant lock per key, created on demand and dropped when unused.

    Usage:
        locks = KeyedLock()
        with locks.hold(invoice.id):
            ...
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}
        self._refcounts: dict[str, int] = {}

    @contextmanager
    def hold(self, key):
        key = str(key)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            self._refcounts[key] = self._refcounts.get(key, 0) + 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._refcounts[key] -= 1
                if self._refcounts[key] == 0:
                    del self._refcounts[key]
                    del self._locks[key]

    def active_keys(self) -> int:
        """Number of keys currently held or waited on."""
        with self._guard:
            return len(self._locks)
