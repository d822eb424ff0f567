"""Tests for ValkeyClient - sweep lease on a Redis-compatible store."""

from unittest.mock import patch

import pytest
import redis

from clients.valkey_client import ValkeyClient


@pytest.fixture
def redis_mock():
    with patch("clients.valkey_client.redis.from_url") as from_url:
        yield from_url.return_value


class TestValkeyClientInit:
    """Connection initialization."""

    def test_pings_on_connect(self, redis_mock):
        """Fail-fast: connectivity is verified immediately."""
        ValkeyClient("redis://localhost:6379/0")

        redis_mock.ping.assert_called_once()

    def test_connection_failure_raises(self, redis_mock):
        redis_mock.ping.side_effect = redis.ConnectionError("refused")

        with pytest.raises(redis.ConnectionError):
            ValkeyClient("redis://localhost:6379/0")

    def test_decodes_responses(self):
        with patch("clients.valkey_client.redis.from_url") as from_url:
            ValkeyClient("redis://valkey:6379/1")

        from_url.assert_called_once_with("redis://valkey:6379/1", decode_responses=True)


class TestLease:
    """SET NX EX lease with owner-checked release."""

    def test_acquire_uses_set_nx_ex(self, redis_mock):
        redis_mock.set.return_value = True
        client = ValkeyClient("redis://localhost:6379/0")

        assert client.acquire_lease("billing:sweep", "host:1", 900) is True
        redis_mock.set.assert_called_once_with("billing:sweep", "host:1", nx=True, ex=900)

    def test_acquire_fails_when_held(self, redis_mock):
        redis_mock.set.return_value = None
        client = ValkeyClient("redis://localhost:6379/0")

        assert client.acquire_lease("billing:sweep", "host:2", 900) is False

    def test_release_is_compare_and_delete(self, redis_mock):
        redis_mock.eval.return_value = 1
        client = ValkeyClient("redis://localhost:6379/0")

        assert client.release_lease("billing:sweep", "host:1") is True
        script, numkeys, key, owner = redis_mock.eval.call_args[0]
        assert 'redis.call("get", KEYS[1]) == ARGV[1]' in script
        assert (numkeys, key, owner) == (1, "billing:sweep", "host:1")

    def test_release_of_foreign_lease_returns_false(self, redis_mock):
        redis_mock.eval.return_value = 0
        client = ValkeyClient("redis://localhost:6379/0")

        assert client.release_lease("billing:sweep", "host:1") is False


class TestLifecycle:

    def test_close(self, redis_mock):
        ValkeyClient("redis://localhost:6379/0").close()
        redis_mock.close.assert_called_once()
