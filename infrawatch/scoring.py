"""Infrastructure health scoring."""

from typing import Iterable, Optional

from .models import (
    Alert,
    AlertSeverity,
    AlertStatus,
    HealthScore,
    MetricSnapshot,
    OverallStatus,
)

CPU_LIMIT = 90.0
MEMORY_LIMIT = 90.0
DISK_LIMIT = 85.0

CPU_PENALTY = 20
MEMORY_PENALTY = 20
DISK_PENALTY = 15
DATABASE_PENALTY = 30
CACHE_PENALTY = 15
CRITICAL_ALERT_PENALTY = 25
HIGH_ALERT_PENALTY = 10

HEALTHY_FLOOR = 80
DEGRADED_FLOOR = 50


def overall_status(score: int) -> OverallStatus:
    if score >= HEALTHY_FLOOR:
        return OverallStatus.HEALTHY
    if score >= DEGRADED_FLOOR:
        return OverallStatus.DEGRADED
    return OverallStatus.UNHEALTHY


def calculate_health_score(
    snapshot: Optional[MetricSnapshot],
    active_alerts: Iterable[Alert],
) -> HealthScore:
    """Score the infrastructure from 0 to 100.

    Deductions are additive and the result is clamped, so adding a
    degradation never raises the score. Without a snapshot only the active
    alerts count. Alerts that are not ACTIVE are ignored even if passed in.
    """
    score = 100

    if snapshot is not None:
        server = snapshot.server
        if server.cpu.usage > CPU_LIMIT:
            score -= CPU_PENALTY
        if server.memory.percentage > MEMORY_LIMIT:
            score -= MEMORY_PENALTY
        if server.disk.percentage > DISK_LIMIT:
            score -= DISK_PENALTY
        if not snapshot.database.health.is_healthy:
            score -= DATABASE_PENALTY
        if not snapshot.cache.health.is_healthy:
            score -= CACHE_PENALTY

    for alert in active_alerts:
        if alert.status != AlertStatus.ACTIVE:
            continue
        if alert.severity == AlertSeverity.CRITICAL:
            score -= CRITICAL_ALERT_PENALTY
        elif alert.severity == AlertSeverity.HIGH:
            score -= HIGH_ALERT_PENALTY

    score = max(0, min(100, score))
    return HealthScore(score=score, status=overall_status(score))
