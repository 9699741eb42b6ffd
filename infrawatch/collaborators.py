"""Interfaces of the external systems the monitoring core talks to.

The core never owns these. The database client and cache client are
sampled for health and statistics, the performance source and health checker
feed alert evaluation, and notification transports deliver alerts.
"""

from typing import Any, Dict, List, Mapping, Protocol, runtime_checkable

from .models import Alert, EndpointStats, HealthCheckResult, NotificationChannel


@runtime_checkable
class DatabaseClient(Protocol):
    async def health_check(self) -> bool:
        ...

    async def query_raw(self, sql: str) -> List[Mapping[str, Any]]:
        ...


@runtime_checkable
class CacheClient(Protocol):
    def is_connected(self) -> bool:
        ...

    def get_stats(self) -> Mapping[str, int]:
        """Application-level counters: ``hits``, ``misses``, ``evictions``."""
        ...

    async def info(self) -> Mapping[str, Any]:
        """Server statistics in redis ``INFO`` field names."""
        ...


@runtime_checkable
class PerformanceSource(Protocol):
    def get_all_endpoint_stats(self) -> List[EndpointStats]:
        ...


@runtime_checkable
class HealthChecker(Protocol):
    async def perform_health_check(self) -> HealthCheckResult:
        ...


@runtime_checkable
class NotificationTransport(Protocol):
    async def send(self, channel: NotificationChannel, alert: Alert) -> None:
        ...


def coerce_endpoint_stats(raw: Any) -> EndpointStats:
    """Accept either an ``EndpointStats`` or a plain mapping."""
    if isinstance(raw, EndpointStats):
        return raw
    if isinstance(raw, Mapping):
        return EndpointStats(**raw)
    return EndpointStats.model_validate(raw, from_attributes=True)


def coerce_health_result(raw: Any) -> HealthCheckResult:
    if isinstance(raw, HealthCheckResult):
        return raw
    if isinstance(raw, Mapping):
        data: Dict[str, Any] = dict(raw)
        return HealthCheckResult(**data)
    return HealthCheckResult.model_validate(raw, from_attributes=True)
