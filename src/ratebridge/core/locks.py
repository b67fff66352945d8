from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

import redis

from ratebridge.core.config import settings
from ratebridge.core.logging import get_logger, log_event

logger = get_logger(__name__)


class RunLock:
    def acquire(self, *, name: str, ttl_seconds: int) -> str | None:  # pragma: no cover
        raise NotImplementedError

    def release(self, *, name: str, token: str) -> None:  # pragma: no cover
        raise NotImplementedError


class LocalRunLock(RunLock):
    """Process-local lock table; enough for dev and tests."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._held: dict[str, tuple[str, float]] = {}

    def acquire(self, *, name: str, ttl_seconds: int) -> str | None:
        now = time.monotonic()
        with self._guard:
            held = self._held.get(name)
            if held is not None and held[1] > now:
                return None
            token = uuid.uuid4().hex
            self._held[name] = (token, now + ttl_seconds)
            return token

    def release(self, *, name: str, token: str) -> None:
        with self._guard:
            held = self._held.get(name)
            if held is not None and held[0] == token:
                del self._held[name]


_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class RedisRunLock(RunLock):
    def __init__(self, url: str) -> None:
        self._client = redis.Redis.from_url(url)
        self._release = self._client.register_script(_RELEASE_SCRIPT)

    def acquire(self, *, name: str, ttl_seconds: int) -> str | None:
        token = uuid.uuid4().hex
        ok = self._client.set(f"ratebridge:lock:{name}", token, nx=True, ex=ttl_seconds)
        return token if ok else None

    def release(self, *, name: str, token: str) -> None:
        self._release(keys=[f"ratebridge:lock:{name}"], args=[token])


_lock: RunLock | None = None


def get_run_lock() -> RunLock:
    global _lock  # noqa: PLW0603
    if _lock is not None:
        return _lock
    if settings.lock_backend == "redis":
        _lock = RedisRunLock(settings.redis_url)
    else:
        _lock = LocalRunLock()
    return _lock


@contextmanager
def single_run(name: str, *, ttl_seconds: int | None = None) -> Iterator[bool]:
    """Yield True when this caller holds `name`, False if another run has it."""
    lock = get_run_lock()
    token = lock.acquire(name=name, ttl_seconds=ttl_seconds or settings.sync_lock_ttl_seconds)
    if token is None:
        log_event(logger, "lock.busy", lock_name=name)
        yield False
        return
    try:
        yield True
    finally:
        lock.release(name=name, token=token)
