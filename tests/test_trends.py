"""Tests for the trend history."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from infrawatch.models import TrendPoint
from infrawatch.trends import DEFAULT_CAPACITY, TrendStore

from conftest import make_snapshot

BASE = datetime(2024, 1, 1, tzinfo=timezone.utc)


def point(minute: int, cpu: float = 0.0) -> TrendPoint:
    return TrendPoint(
        timestamp=BASE + timedelta(minutes=minute),
        cpu=cpu,
        memory=0.0,
        disk=0.0,
        network=0,
        database_connections=0,
        cache_hit_rate=0.0,
    )


def test_default_capacity_is_one_week_of_minutes():
    """Test the default capacity."""
    assert TrendStore().capacity == DEFAULT_CAPACITY == 10080


def test_capacity_must_be_positive():
    """Test capacity validation."""
    with pytest.raises(ValueError):
        TrendStore(capacity=0)


def test_oldest_points_are_evicted_first():
    """Test FIFO eviction."""
    store = TrendStore(capacity=3)
    for minute in range(5):
        store.append(point(minute))

    points = store.query()
    assert len(store) == 3
    assert [p.timestamp for p in points] == [BASE + timedelta(minutes=m) for m in (2, 3, 4)]
    assert store.evicted == 2


def test_query_since_is_inclusive_and_ordered():
    """Test querying from a start time."""
    store = TrendStore(capacity=10)
    for minute in range(6):
        store.append(point(minute))

    points = store.query(since=BASE + timedelta(minutes=3))
    assert [p.timestamp.minute for p in points] == [3, 4, 5]


def test_latest_and_clear():
    """Test latest point and clear."""
    store = TrendStore(capacity=5)
    assert store.latest() is None

    store.append(point(1, cpu=12.5))
    store.append(point(2, cpu=40.0))
    assert store.latest().cpu == 40.0

    store.clear()
    assert len(store) == 0
    assert store.query() == []


def test_point_from_snapshot():
    """Test building a trend point from a snapshot."""
    snapshot = make_snapshot(cpu=42.0, memory=55.0, disk=70.0, active_connections=12, hits=75, misses=25)
    trend = TrendPoint.from_snapshot(snapshot)

    assert trend.timestamp == snapshot.timestamp
    assert trend.cpu == 42.0
    assert trend.memory == 55.0
    assert trend.disk == 70.0
    assert trend.database_connections == 12
    assert trend.cache_hit_rate == 75.0


def test_concurrent_appends_respect_capacity():
    """Test concurrent appends."""
    store = TrendStore(capacity=1000)

    def writer(offset: int):
        for i in range(500):
            store.append(point(offset * 500 + i))

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(store) == 1000
    assert store.evicted == 1000


def test_evicted_count_read_during_appends_never_goes_backwards():
    """Test reading the eviction count during concurrent appends."""
    store = TrendStore(capacity=100)
    done = threading.Event()
    seen = []

    def reader():
        while not done.is_set():
            seen.append(store.evicted)

    def writer(offset: int):
        for i in range(500):
            store.append(point(offset * 500 + i))

    watcher = threading.Thread(target=reader)
    writers = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    watcher.start()
    for t in writers:
        t.start()
    for t in writers:
        t.join()
    done.set()
    watcher.join()

    assert seen == sorted(seen)
    assert all(0 <= count <= 1900 for count in seen)
    assert store.evicted == 1900
