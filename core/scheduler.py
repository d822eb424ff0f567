"""
Periodic billing sweep.

One background thread runs overdue marking, reminders and late fees every
sweep_interval_seconds. A Valkey lease makes sure only one process sweeps at
a time when several API workers are running.
"""

import logging
import os
import socket
import threading
from datetime import datetime
from uuid import uuid4

from clients.valkey_client import ValkeyClient
from core.services.reminder_service import ReminderService
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

LEASE_KEY = "billing:sweep"


class SweepScheduler:
    """
    Background runner for ReminderService sweeps.

    Usage:
        scheduler = SweepScheduler(reminder_service, valkey, interval_seconds=3600)
        scheduler.start()
        ...
        scheduler.stop()

    run_once() can also be called directly (manual triggers, tests).
    """

    def __init__(
        self,
        reminder_service: ReminderService,
        valkey: ValkeyClient | None = None,
        interval_seconds: int = 3600,
        lease_seconds: int = 900,
    ):
        self.reminder_service = reminder_service
        self.valkey = valkey
        self.interval_seconds = interval_seconds
        self.lease_seconds = lease_seconds
        self.owner = f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._run_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self, now: datetime | None = None) -> dict | None:
        """
        One sweep: overdue -> reminders -> late fees.

        Returns the sweep summary, or None if another process holds the lease
        or a sweep is already running in this process.
        """
        if not self._run_lock.acquire(blocking=False):
            logger.info("Sweep already running in this process; skipped")
            return None
        try:
            if self.valkey is not None and not self.valkey.acquire_lease(
                LEASE_KEY, self.owner, self.lease_seconds
            ):
                logger.info("Sweep lease held by another process; skipped")
                return None
            try:
                now = now or now_utc()
                return {
                    "overdue": self.reminder_service.process_overdue(now),
                    "reminders": self.reminder_service.process_reminders(now),
                    "late_fees": self.reminder_service.process_late_fees(now),
                }
            finally:
                if self.valkey is not None:
                    self.valkey.release_lease(LEASE_KEY, self.owner)
        finally:
            self._run_lock.release()

    def _loop(self) -> None:
        logger.info(f"Sweep scheduler started (every {self.interval_seconds}s, owner {self.owner})")
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                # Next tick retries
                logger.exception("Billing sweep failed")
            self._stop.wait(self.interval_seconds)
        logger.info("Sweep scheduler stopped")

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="billing-sweep", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 10) -> None:
        """Signal the loop to exit and wait for the current sweep to finish."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
