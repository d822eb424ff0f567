"""
Valkey (Redis-compatible) lease store for the billing sweep.

Only one process may run overdue marking, reminders and late fees at a time.
The sweep takes a lease with SET NX EX and gives it back with an
owner-checked delete, so a worker whose lease already expired cannot release
the lease of the worker that replaced it.
"""

import logging

import redis

logger = logging.getLogger(__name__)

_RELEASE_IF_OWNER = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class ValkeyClient:
    """
    Usage:
        valkey = ValkeyClient(get_valkey_url())
        if valkey.acquire_lease("billing:sweep", owner, ttl_seconds=900):
            try:
                ...
            finally:
                valkey.release_lease("billing:sweep", owner)
    """

    def __init__(self, url: str):
        """Connect and ping. Raises redis.ConnectionError when Valkey is unreachable."""
        self._client = redis.from_url(url, decode_responses=True)
        self._client.ping()
        logger.info("ValkeyClient connected")

    def acquire_lease(self, key: str, owner: str, ttl_seconds: int) -> bool:
        """True if `owner` now holds `key` for ttl_seconds, False if another owner does."""
        return bool(self._client.set(key, owner, nx=True, ex=ttl_seconds))

    def release_lease(self, key: str, owner: str) -> bool:
        released = bool(self._client.eval(_RELEASE_IF_OWNER, 1, key, owner))
        if not released:
            logger.warning(f"Lease {key} was no longer held by {owner} at release")
        return released

    def close(self) -> None:
        self._client.close()
        logger.info("ValkeyClient closed")
