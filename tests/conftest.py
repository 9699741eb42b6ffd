"""Shared fixtures and fake collaborators."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from infrawatch.config import InfraWatchConfig
from infrawatch.models import (
    CacheMetrics,
    CPUMetrics,
    ComponentHealth,
    ComponentStatus,
    DatabaseConnections,
    DatabaseMetrics,
    DiskMetrics,
    MemoryMetrics,
    MetricSnapshot,
    RedisMetrics,
    ServerMetrics,
)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeDatabase:
    def __init__(self, healthy: bool = True, delay: float = 0.0, error: Optional[Exception] = None,
                 rows: Optional[Dict[str, Dict[str, Any]]] = None, query_error: Optional[Exception] = None):
        self.healthy = healthy
        self.delay = delay
        self.error = error
        self.rows = rows or {}
        self.query_error = query_error
        self.queries: List[str] = []

    async def health_check(self) -> bool:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.healthy

    async def query_raw(self, sql: str) -> List[Dict[str, Any]]:
        self.queries.append(sql)
        if self.query_error:
            raise self.query_error
        for marker, row in self.rows.items():
            if marker in sql:
                return [row]
        return []


class FakeCache:
    def __init__(self, connected: bool = True, info: Optional[Dict[str, Any]] = None,
                 stats: Optional[Dict[str, int]] = None, stats_error: Optional[Exception] = None):
        self.connected = connected
        self._info = info or {}
        self._stats = stats or {"hits": 0, "misses": 0, "evictions": 0}
        self.stats_error = stats_error

    def is_connected(self) -> bool:
        return self.connected

    def get_stats(self) -> Dict[str, int]:
        if self.stats_error:
            raise self.stats_error
        return self._stats

    async def info(self) -> Dict[str, Any]:
        return self._info


class FakePerformance:
    def __init__(self, stats=None, error: Optional[Exception] = None):
        self.stats = stats or []
        self.error = error

    def get_all_endpoint_stats(self):
        if self.error:
            raise self.error
        return self.stats


class FakeHealthChecker:
    def __init__(self, result=None, delay: float = 0.0, error: Optional[Exception] = None):
        self.result = result
        self.delay = delay
        self.error = error

    async def perform_health_check(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result


class RecordingTransport:
    def __init__(self, error: Optional[Exception] = None, delay: float = 0.0):
        self.error = error
        self.delay = delay
        self.sent = []

    async def send(self, channel, alert) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        self.sent.append((channel.id, alert.id))


class FakeMessageBus:
    """Stands in for MessageBusClient without a NATS server."""

    def __init__(self, fail_connect: bool = False):
        self.fail_connect = fail_connect
        self.connected = False
        self.published = []
        self.handlers = {}

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        if self.fail_connect:
            raise ConnectionError("nats unavailable")
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def publish(self, subject, message, headers=None) -> None:
        self.published.append((subject, message))

    async def reply_handler(self, subject, handler) -> None:
        self.handlers[subject] = handler


def make_snapshot(
    cpu: float = 10.0,
    memory: float = 20.0,
    disk: float = 30.0,
    db_healthy: bool = True,
    cache_healthy: bool = True,
    active_connections: int = 5,
    max_connections: int = 100,
    hits: int = 0,
    misses: int = 0,
    timestamp: Optional[datetime] = None,
) -> MetricSnapshot:
    lookups = hits + misses
    snapshot = MetricSnapshot(
        server=ServerMetrics(
            cpu=CPUMetrics(usage=cpu, cores=4),
            memory=MemoryMetrics(total=1000, used=int(memory * 10), percentage=memory),
            disk=DiskMetrics(total=1000, used=int(disk * 10), percentage=disk),
        ),
        database=DatabaseMetrics(
            connections=DatabaseConnections(active=active_connections, total=active_connections, max=max_connections),
            health=ComponentHealth(
                is_healthy=db_healthy,
                status=ComponentStatus.UP if db_healthy else ComponentStatus.DOWN,
            ),
        ),
        cache=CacheMetrics(
            redis=RedisMetrics(
                keyspace_hits=hits,
                keyspace_misses=misses,
                hit_rate=(hits / lookups * 100) if lookups else 0.0,
            ),
            health=ComponentHealth(
                is_healthy=cache_healthy,
                status=ComponentStatus.UP if cache_healthy else ComponentStatus.DOWN,
            ),
        ),
    )
    if timestamp is not None:
        snapshot.timestamp = timestamp
    return snapshot


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return InfraWatchConfig(
        cpu_sample_interval=0.0,
        collection_interval=3600.0,
        evaluation_interval=3600.0,
        initial_collection_delay=3600.0,
        collaborator_timeout=0.5,
        notification_timeout=0.5,
        shutdown_grace_period=0.5,
    )
