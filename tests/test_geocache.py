import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dentalhub import database
from dentalhub.geocache import (
    DEFAULT_TTL_SECONDS,
    MemoryKeyValueStore,
    SQLiteKeyValueStore,
    TTLCache,
    cache_key,
)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class BrokenStore:
    def get(self, key):
        raise OSError("storage unavailable")

    def set(self, key, value):
        raise OSError("quota exceeded")


def test_cache_key_uses_literal_address():
    assert cache_key("123 Main St") == "geocode:123 Main St"
    assert cache_key("123 main st") != cache_key("123 Main St")


def test_entry_is_valid_until_ttl_elapses():
    clock = FakeClock()
    cache = TTLCache(MemoryKeyValueStore(), clock=clock)
    cache.set("geocode:1 A St", {"lng": 1.0, "lat": 2.0})

    clock.now += DEFAULT_TTL_SECONDS
    assert cache.get("geocode:1 A St") == {"lng": 1.0, "lat": 2.0}

    clock.now += 1
    assert cache.get("geocode:1 A St") is None


def test_expired_entries_are_not_deleted():
    clock = FakeClock()
    store = MemoryKeyValueStore()
    cache = TTLCache(store, ttl_seconds=60, clock=clock)
    cache.set("geocode:x", {"lng": 0, "lat": 0})
    clock.now += 120

    assert cache.get("geocode:x") is None
    assert "geocode:x" in store.data


def test_entries_are_stored_with_millisecond_timestamps():
    clock = FakeClock(1000.0)
    store = MemoryKeyValueStore()
    TTLCache(store, clock=clock).set("geocode:y", {"lng": 3, "lat": 4})

    assert json.loads(store.data["geocode:y"]) == {"timestamp": 1_000_000.0, "value": {"lng": 3, "lat": 4}}


def test_corrupt_or_incomplete_entries_are_misses():
    store = MemoryKeyValueStore()
    cache = TTLCache(store, clock=FakeClock())
    store.data["geocode:bad-json"] = "{not json"
    store.data["geocode:no-timestamp"] = json.dumps({"value": {"lng": 1, "lat": 1}})
    store.data["geocode:list"] = json.dumps([1, 2])

    assert cache.get("geocode:bad-json") is None
    assert cache.get("geocode:no-timestamp") is None
    assert cache.get("geocode:list") is None
    assert cache.get("geocode:missing") is None


def test_store_failures_are_swallowed():
    cache = TTLCache(BrokenStore())
    cache.set("geocode:z", {"lng": 1, "lat": 1})
    assert cache.get("geocode:z") is None


def test_sqlite_store_round_trips_entries(tmp_path, monkeypatch):
    monkeypatch.setattr(database, "DB_PATH", tmp_path / "cache.db")
    database.init_db()
    cache = TTLCache(SQLiteKeyValueStore(), clock=FakeClock())

    cache.set(cache_key("1 A St"), {"lng": 1.5, "lat": 2.5})
    cache.set(cache_key("1 A St"), {"lng": 9.0, "lat": 8.0})

    assert cache.get(cache_key("1 A St")) == {"lng": 9.0, "lat": 8.0}
    assert database.cache_get("geocode:unknown") is None
