"""SettingsCache TTL behaviour with an injected clock."""

from taskflow.services.cache_service import SettingsCache, build_backend


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_entry_expires_after_ttl():
    clock = FakeClock()
    cache = SettingsCache(ttl=30, clock=clock)
    cache.set("k", {"v": 1})

    clock.now += 29
    assert cache.get("k") == {"v": 1}
    clock.now += 1
    assert cache.get("k") is None


def test_get_or_load_calls_loader_once_per_ttl():
    clock = FakeClock()
    cache = SettingsCache(ttl=10, clock=clock)
    calls = []

    def loader():
        calls.append(1)
        return {"n": len(calls)}

    assert cache.get_or_load("k", loader) == {"n": 1}
    assert cache.get_or_load("k", loader) == {"n": 1}
    clock.now += 10
    assert cache.get_or_load("k", loader) == {"n": 2}
    assert len(calls) == 2


def test_invalidate_forces_reload():
    cache = SettingsCache(ttl=60, clock=FakeClock())
    cache.set("k", "old")
    cache.invalidate("k")
    assert cache.get_or_load("k", lambda: "new") == "new"


def test_zero_ttl_never_stores():
    cache = SettingsCache(ttl=0, clock=FakeClock())
    cache.set("k", "v")
    assert cache.get("k") is None


def test_memory_url_builds_memory_backend():
    cache = SettingsCache(backend=build_backend("memory://"))
    assert cache.health_check() == {"status": "ok", "backend": "memory"}


def test_unreachable_redis_falls_back_to_memory():
    backend = build_backend("redis://127.0.0.1:1/0")
    cache = SettingsCache(backend=backend)
    assert cache.health_check()["backend"] == "memory"
