"""
Shared fixtures for directory service tests.
"""

from typing import Any, Dict, List, Optional

import pytest

from shared.config import get_directory_config
from shared.errors import ItemNotFoundError
from service_directory.app.caching.memory_tier import MemoryTier, glob_to_regex
from service_directory.app.caching.remote_cache import RemoteCache


class FakeRedis:
    """In-memory stand-in for the redis.asyncio client commands we use."""

    def __init__(self):
        self.store: Dict[str, Any] = {}
        self.hashes: Dict[str, Dict[str, int]] = {}
        self.ttls: Dict[str, int] = {}
        self.fail = False
        self.closed = False

    def _check(self):
        if self.fail:
            raise ConnectionError("redis unavailable")

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.store[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.hashes.pop(key, None)
        return removed

    async def keys(self, pattern):
        self._check()
        regex = glob_to_regex(pattern)
        return [key for key in self.store if regex.match(key)]

    async def hincrby(self, name, field, amount=1):
        self._check()
        bucket = self.hashes.setdefault(name, {})
        bucket[field] = bucket.get(field, 0) + amount
        return bucket[field]

    async def hget(self, name, field):
        self._check()
        value = self.hashes.get(name, {}).get(field)
        return None if value is None else str(value)

    async def expire(self, key, seconds):
        self._check()
        self.ttls[key] = seconds
        return True

    async def ping(self):
        self._check()
        return True

    async def aclose(self):
        self.closed = True


class FakeRepository:
    """In-memory index item store with the repository's filter semantics."""

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None):
        self.rows: Dict[int, Dict[str, Any]] = {}
        self.find_many_calls = 0
        self.count_calls = 0
        self.fail = False
        self._next_id = 1
        for row in rows or []:
            self._insert(dict(row))

    def _insert(self, row: Dict[str, Any]) -> Dict[str, Any]:
        if "id" not in row:
            row["id"] = self._next_id
        self._next_id = max(self._next_id, row["id"]) + 1
        self.rows[row["id"]] = row
        return dict(row)

    def _matches(self, row, filters) -> bool:
        if filters.campus and row["campus"] != filters.campus:
            return False
        if filters.letter and row["letter"] != filters.letter:
            return False
        if filters.search and filters.search.lower() not in row["title"].lower():
            return False
        return True

    async def find_many(self, filters):
        self.find_many_calls += 1
        if self.fail:
            raise RuntimeError("database unavailable")
        matched = [dict(row) for row in self.rows.values() if self._matches(row, filters)]
        return sorted(matched, key=lambda row: (row["letter"], row["title"]))

    async def count(self, filters):
        self.count_calls += 1
        if self.fail:
            raise RuntimeError("database unavailable")
        return sum(1 for row in self.rows.values() if self._matches(row, filters))

    async def get(self, item_id):
        row = self.rows.get(item_id)
        return dict(row) if row else None

    async def create(self, fields):
        return self._insert(dict(fields))

    async def update(self, item_id, fields):
        if item_id not in self.rows:
            raise ItemNotFoundError(item_id)
        self.rows[item_id].update(fields)
        return dict(self.rows[item_id])

    async def delete(self, item_id):
        row = self.rows.pop(item_id, None)
        if row is None:
            raise ItemNotFoundError(item_id)
        return row


class DummyMetrics:
    """Minimal metrics collector stub."""

    def __init__(self):
        self.counters = []
        self.histograms = []
        self.gauges = []

    def increment_counter(self, metric_name: str, **labels):
        self.counters.append((metric_name, labels))

    def observe_histogram(self, metric_name: str, value: float, **labels):
        self.histograms.append((metric_name, value, labels))

    def set_gauge(self, metric_name: str, value: float, **labels):
        self.gauges.append((metric_name, value, labels))


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def remote(fake_redis):
    return RemoteCache("redis://fake:6379/0", client=fake_redis)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory(clock):
    return MemoryTier(capacity=500, clock=clock)


@pytest.fixture
def metrics():
    return DummyMetrics()


@pytest.fixture
def directory_config(tmp_path):
    return get_directory_config(
        warm_plan_file=str(tmp_path / "missing-plan.json"),
        memory_sweep_interval_seconds=0,
    )


@pytest.fixture
def sample_rows():
    return [
        {"id": 1, "title": "Admissions", "url": "https://collegeofsanmateo.edu/admissions", "letter": "A", "campus": "College of San Mateo"},
        {"id": 2, "title": "Athletics", "url": "https://skylinecollege.edu/athletics", "letter": "A", "campus": "Skyline College"},
        {"id": 3, "title": "Bookstore", "url": "https://skylinecollege.edu/bookstore", "letter": "B", "campus": "Skyline College"},
        {"id": 4, "title": "Financial Aid", "url": "https://canadacollege.edu/financialaid", "letter": "F", "campus": "Cañada College"},
    ]


@pytest.fixture
def repository(sample_rows):
    return FakeRepository(sample_rows)


@pytest.fixture
def make_repository():
    return FakeRepository
