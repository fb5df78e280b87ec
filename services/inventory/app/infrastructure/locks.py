"""Per-key leases held in Redis.

A lease is a key set with ``SET NX PX`` holding a random token. Release is a
compare-and-delete guarded by WATCH, so a holder whose lease already expired
(and was granted to someone else) cannot delete the new holder's key.
"""

import time
import uuid
from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator, Optional

import redis

from app.application.errors import BackendError, ContentionError
from app.core_settings import get_settings
from app.infrastructure.redis_client import get_redis
from shared.core import get_logger

logger = get_logger(__name__)

def _as_text(value) -> str:
    return value.decode() if isinstance(value, bytes) else value

class RedisLockCoordinator:
    def __init__(
        self,
        client: redis.Redis,
        lease_seconds: float = 5.0,
        attempts: int = 3,
        backoff_seconds: float = 0.1,
    ):
        self.client = client
        self.lease_seconds = lease_seconds
        self.attempts = max(1, attempts)
        self.backoff_seconds = backoff_seconds

    def acquire(self, key: str, token: str, lease_seconds: Optional[float] = None) -> bool:
        """Non-blocking; True only if no live lease exists for ``key``."""
        ttl_ms = max(1, int((lease_seconds or self.lease_seconds) * 1000))
        try:
            return bool(self.client.set(key, token, nx=True, px=ttl_ms))
        except redis.RedisError as exc:
            raise BackendError(f"lock store unavailable: {exc}") from exc

    def release(self, key: str, token: str) -> bool:
        """Delete ``key`` only while it still holds ``token``.

        Returns False when the lease is gone or owned by another holder.
        """
        try:
            with self.client.pipeline() as pipe:
                while True:
                    try:
                        pipe.watch(key)
                        current = pipe.get(key)
                        if current is None or _as_text(current) != token:
                            pipe.unwatch()
                            return False
                        pipe.multi()
                        pipe.delete(key)
                        pipe.execute()
                        return True
                    except redis.WatchError:
                        # key was touched between GET and DELETE; check ownership again
                        continue
        except redis.RedisError as exc:
            raise BackendError(f"lock store unavailable: {exc}") from exc

    def holder(self, key: str) -> Optional[str]:
        try:
            current = self.client.get(key)
        except redis.RedisError as exc:
            raise BackendError(f"lock store unavailable: {exc}") from exc
        return None if current is None else _as_text(current)

    @contextmanager
    def lease(self, key: str) -> Iterator[str]:
        """Hold ``key`` for the duration of the block.

        Tries ``attempts`` times with a fixed pause, then raises ContentionError
        (or BackendError when every attempt failed on the store). The lease is
        released on every exit path.
        """
        token = uuid.uuid4().hex
        contended = False
        last_error: Optional[BackendError] = None
        acquired = False
        for attempt in range(1, self.attempts + 1):
            try:
                if self.acquire(key, token):
                    acquired = True
                    break
                contended = True
            except BackendError as exc:
                last_error = exc
                logger.error(
                    "Failed to acquire lock, lock store error",
                    extra={'extra_fields': {'lock': key, 'attempt': attempt, 'error': str(exc)}}
                )
            if attempt < self.attempts:
                time.sleep(self.backoff_seconds)

        if not acquired:
            if last_error is not None and not contended:
                raise last_error
            logger.warning(
                "Lock busy, giving up",
                extra={'extra_fields': {'lock': key, 'attempts': self.attempts}}
            )
            raise ContentionError(key, self.attempts)

        try:
            yield token
        finally:
            try:
                if not self.release(key, token):
                    logger.warning(
                        "Lease expired before release",
                        extra={'extra_fields': {'lock': key, 'lease_seconds': self.lease_seconds}}
                    )
            except BackendError:
                # The key still expires on its own after lease_seconds
                logger.error("Failed to release lock", exc_info=True, extra={'extra_fields': {'lock': key}})

@lru_cache
def get_lock_coordinator() -> RedisLockCoordinator:
    settings = get_settings()
    return RedisLockCoordinator(
        get_redis(),
        lease_seconds=settings.LOCK_LEASE_SECONDS,
        attempts=settings.LOCK_ACQUIRE_ATTEMPTS,
        backoff_seconds=settings.LOCK_RETRY_BACKOFF_SECONDS,
    )
