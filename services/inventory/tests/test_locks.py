import time

import pytest
import redis

from app.application.errors import BackendError, ContentionError
from app.domain.models import StockKey
from app.infrastructure.locks import RedisLockCoordinator

KEY = "lock:inventory:test"

class BrokenRedis:
    """Client whose every command fails like an unreachable server"""

    def set(self, *args, **kwargs):
        raise redis.ConnectionError("connection refused")

    def get(self, *args, **kwargs):
        raise redis.ConnectionError("connection refused")

def test_acquire_is_exclusive(locks):
    assert locks.acquire(KEY, "a")
    assert not locks.acquire(KEY, "b")
    assert locks.holder(KEY) == "a"

def test_release_frees_the_key(locks):
    assert locks.acquire(KEY, "a")
    assert locks.release(KEY, "a")
    assert locks.holder(KEY) is None
    assert locks.acquire(KEY, "b")

def test_release_with_wrong_token_keeps_lease(locks):
    assert locks.acquire(KEY, "a")
    assert not locks.release(KEY, "b")
    assert locks.holder(KEY) == "a"

def test_release_of_missing_lease_returns_false(locks):
    assert not locks.release(KEY, "a")

def test_stale_holder_cannot_release_new_lease(locks):
    assert locks.acquire(KEY, "a", lease_seconds=0.05)
    time.sleep(0.2)
    assert locks.acquire(KEY, "b")
    assert not locks.release(KEY, "a")
    assert locks.holder(KEY) == "b"

def test_lease_released_on_normal_exit(locks):
    with locks.lease(KEY) as token:
        assert locks.holder(KEY) == token
    assert locks.holder(KEY) is None

def test_lease_released_when_block_raises(locks):
    with pytest.raises(RuntimeError):
        with locks.lease(KEY):
            raise RuntimeError("boom")
    assert locks.holder(KEY) is None

def test_lease_contention_after_bounded_attempts(redis_client):
    locks = RedisLockCoordinator(redis_client, attempts=3, backoff_seconds=0.01)
    assert locks.acquire(KEY, "other")
    started = time.monotonic()
    with pytest.raises(ContentionError) as info:
        with locks.lease(KEY):
            pass
    assert info.value.attempts == 3
    assert time.monotonic() - started < 1
    assert locks.holder(KEY) == "other"

def test_lease_store_failure_is_backend_error():
    locks = RedisLockCoordinator(BrokenRedis(), attempts=2, backoff_seconds=0)
    with pytest.raises(BackendError):
        locks.acquire(KEY, "a")
    with pytest.raises(BackendError):
        with locks.lease(KEY):
            pass

def test_lock_names_keep_keys_apart():
    prefix = "lock:inventory"
    unscoped = StockKey("m", "p").lock_name(prefix)
    empty_store = StockKey("m", "p", store_id="").lock_name(prefix)
    store = StockKey("m", "p", store_id="s1").lock_name(prefix)
    variant = StockKey("m", "p", variant_id="s1").lock_name(prefix)
    assert len({unscoped, empty_store, store, variant}) == 4
    assert StockKey("m", "p", "s1").lock_name(prefix) == store
