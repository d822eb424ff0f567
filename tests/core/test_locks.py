"""Tests for KeyedLock."""

import threading
import time

from core.locks import KeyedLock


class TestKeyedLock:

    def test_reentrant_for_same_thread(self):
        locks = KeyedLock()

        with locks.hold("inv-1"):
            with locks.hold("inv-1"):
                assert locks.active_keys() == 1

    def test_released_keys_are_dropped(self):
        locks = KeyedLock()

        with locks.hold("inv-1"):
            pass

        assert locks.active_keys() == 0

    def test_uuid_and_string_keys_are_the_same_lock(self):
        from uuid import uuid4

        locks = KeyedLock()
        key = uuid4()
        with locks.hold(key):
            with locks.hold(str(key)):
                assert locks.active_keys() == 1

    def test_same_key_serializes_threads(self):
        """Read-modify-write under the lock never loses an update."""
        locks = KeyedLock()
        counter = {"value": 0}

        def bump():
            for _ in range(50):
                with locks.hold("inv-1"):
                    current = counter["value"]
                    time.sleep(0)
                    counter["value"] = current + 1

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert counter["value"] == 200
        assert locks.active_keys() == 0

    def test_different_keys_do_not_contend(self):
        locks = KeyedLock()
        entered = threading.Event()

        def other():
            with locks.hold("inv-2"):
                entered.set()

        with locks.hold("inv-1"):
            t = threading.Thread(target=other)
            t.start()
            assert entered.wait(timeout=2)
            t.join()
