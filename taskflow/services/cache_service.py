"""
Settings Cache — explicit TTL cache owned by the application instance.

Provides:
  - SettingsCache: get / set / invalidate of JSON-serialisable values
  - an in-memory backend with an injectable clock (dev / testing)
  - a Redis backend when REDIS_URL points at a real server, so that an
    invalidation in one worker is seen by every other worker

One SettingsCache is built per process in ``create_app`` and stored on
``app.extensions["settings_cache"]``.  Nothing here is module-global.
"""

import json
import logging
import time

logger = logging.getLogger(__name__)

DEFAULT_TTL = 30


class _MemoryBackend:
    """Dict cache for dev/testing.  ``clock`` returns seconds."""

    def __init__(self, clock=time.monotonic):
        self._store: dict = {}  # key → (value_json, expire_ts)
        self._clock = clock

    def get(self, key):
        entry = self._store.get(key)
        if entry is None:
            return None
        val, expires = entry
        if self._clock() >= expires:
            self._store.pop(key, None)
            return None
        return val

    def setex(self, key, ttl_seconds, value):
        self._store[key] = (value, self._clock() + ttl_seconds)

    def delete(self, *keys):
        for k in keys:
            self._store.pop(k, None)

    def flushdb(self):
        self._store.clear()

    def ping(self):
        return True


def build_backend(redis_url: str | None, clock=time.monotonic):
    """Redis when configured and reachable, otherwise the memory backend."""
    if redis_url and not redis_url.startswith("memory://"):
        try:
            import redis as _redis
            backend = _redis.from_url(redis_url, decode_responses=True)
            backend.ping()
            logger.info("Settings cache: using Redis at %s", redis_url.split("@")[-1])
            return backend
        except Exception as exc:
            logger.warning("Redis unavailable (%s) — falling back to memory cache", exc)
    return _MemoryBackend(clock=clock)


class SettingsCache:
    """Cache-aside wrapper with a fixed TTL and explicit invalidation."""

    def __init__(self, ttl: int = DEFAULT_TTL, backend=None, clock=time.monotonic, prefix: str = "taskflow:"):
        self.ttl = ttl
        self.prefix = prefix
        self._backend = backend if backend is not None else _MemoryBackend(clock=clock)

    @classmethod
    def from_config(cls, config: dict) -> "SettingsCache":
        return cls(
            ttl=config.get("SETTINGS_CACHE_TTL", DEFAULT_TTL),
            backend=build_backend(config.get("REDIS_URL")),
        )

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str):
        """Return the cached value, or None on miss / undecodable entry."""
        raw = self._backend.get(self._key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return None

    def set(self, key: str, value) -> None:
        if self.ttl <= 0:
            return
        self._backend.setex(self._key(key), self.ttl, json.dumps(value, default=str))

    def get_or_load(self, key: str, loader):
        value = self.get(key)
        if value is not None:
            return value
        value = loader()
        if value is not None:
            self.set(key, value)
        return value

    def invalidate(self, key: str) -> None:
        self._backend.delete(self._key(key))

    def clear(self) -> None:
        """Flush the whole backend (use sparingly — mainly for testing)."""
        self._backend.flushdb()

    def health_check(self) -> dict:
        try:
            self._backend.ping()
            backend_type = "memory" if isinstance(self._backend, _MemoryBackend) else "redis"
            return {"status": "ok", "backend": backend_type}
        except Exception as exc:
            return {"status": "error", "detail": str(exc)}
