"""Threshold rules and their evaluation."""

import threading
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import structlog
from pydantic import BaseModel, Field

from .config import InfraWatchConfig
from .models import (
    AlertCategory,
    AlertRequest,
    AlertSeverity,
    AlertThreshold,
    EndpointStats,
    HealthCheckResult,
    MetricSnapshot,
    Operator,
    OverallStatus,
    utcnow,
)

logger = structlog.get_logger(__name__)

_MISSING = object()


class RuleScope(str, Enum):
    SNAPSHOT = "snapshot"
    ENDPOINT = "endpoint"
    HEALTH = "health"


class RuleGuard(BaseModel):
    """Extra condition that must hold before the rule may fire."""
    path: str
    operator: Operator
    value: float


class AlertRule(BaseModel):
    """Static threshold definition evaluated on every tick."""
    model_config = {"frozen": True}

    name: str
    description: str
    source: str
    metric: str
    path: str
    operator: Operator
    threshold: Union[float, str]
    severity: AlertSeverity
    critical_threshold: Optional[float] = None
    relative_to: Optional[str] = None
    guard: Optional[RuleGuard] = None
    value_path: Optional[str] = None
    metadata_paths: Dict[str, str] = Field(default_factory=dict)
    category: AlertCategory = AlertCategory.SYSTEM
    scope: RuleScope = RuleScope.SNAPSHOT
    cooldown_minutes: int = 0
    enabled: bool = True


def compare(value: Any, operator: Operator, threshold: Any) -> bool:
    if operator == Operator.EQ:
        return value == threshold
    if operator == Operator.GT:
        return value > threshold
    if operator == Operator.GTE:
        return value >= threshold
    if operator == Operator.LT:
        return value < threshold
    if operator == Operator.LTE:
        return value <= threshold
    raise ValueError(f"Unknown operator: {operator}")


def resolve_path(context: Mapping[str, Any], path: str) -> Any:
    """Look up a dotted path in nested mappings; ``_MISSING`` if absent."""
    current: Any = context
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def build_default_rules(config: Optional[InfraWatchConfig] = None) -> List[AlertRule]:
    """The built-in rule set, with thresholds taken from ``config``."""
    config = config or InfraWatchConfig()
    cooldown = config.rule_cooldown_minutes

    return [
        AlertRule(
            name="High CPU Usage",
            description="CPU usage is {value:.2f}%",
            source="server",
            metric="cpu.usage",
            path="server.cpu.usage",
            operator=Operator.GT,
            threshold=config.cpu_threshold,
            severity=AlertSeverity.HIGH,
            critical_threshold=config.cpu_critical_threshold,
            metadata_paths={"load_average": "server.cpu.load_average"},
            cooldown_minutes=cooldown,
        ),
        AlertRule(
            name="High Memory Usage",
            description="Memory usage is {value:.2f}%",
            source="server",
            metric="memory.percentage",
            path="server.memory.percentage",
            operator=Operator.GT,
            threshold=config.memory_threshold,
            severity=AlertSeverity.HIGH,
            critical_threshold=config.memory_critical_threshold,
            metadata_paths={"used": "server.memory.used", "total": "server.memory.total"},
            cooldown_minutes=cooldown,
        ),
        AlertRule(
            name="High Disk Usage",
            description="Disk usage is {value:.2f}%",
            source="server",
            metric="disk.percentage",
            path="server.disk.percentage",
            operator=Operator.GT,
            threshold=config.disk_threshold,
            severity=AlertSeverity.HIGH,
            critical_threshold=config.disk_critical_threshold,
            metadata_paths={
                "mount_point": "server.disk.mount_point",
                "used": "server.disk.used",
                "total": "server.disk.total",
            },
            cooldown_minutes=cooldown,
        ),
        AlertRule(
            name="High Database Connections",
            description="Database has {value:.0f} active connections (limit {threshold:.0f})",
            source="database",
            metric="connections.active",
            path="database.connections.active",
            operator=Operator.GT,
            threshold=config.db_connection_ratio,
            relative_to="database.connections.max",
            severity=config.db_connection_severity,
            metadata_paths={
                "max_connections": "database.connections.max",
                "total_connections": "database.connections.total",
                "idle_connections": "database.connections.idle",
            },
            cooldown_minutes=cooldown,
        ),
        AlertRule(
            name="Low Cache Hit Rate",
            description="Cache hit rate is {value:.2f}%",
            source="cache",
            metric="redis.hitRate",
            path="cache.redis.hit_rate",
            operator=Operator.LT,
            threshold=config.cache_hit_rate_threshold,
            guard=RuleGuard(path="cache.redis.lookups", operator=Operator.GT, value=config.cache_min_operations),
            severity=config.cache_hit_rate_severity,
            metadata_paths={"hits": "cache.redis.keyspace_hits", "misses": "cache.redis.keyspace_misses"},
            cooldown_minutes=cooldown,
        ),
        AlertRule(
            name="High Response Time",
            description="Average response time of {subject} is {value:.0f}ms",
            source="performance",
            metric="response_time:{subject}",
            path="average_response_time",
            operator=Operator.GT,
            threshold=config.response_time_threshold_ms,
            severity=config.response_time_severity,
            category=AlertCategory.PERFORMANCE,
            scope=RuleScope.ENDPOINT,
            metadata_paths={"endpoint": "path", "total_requests": "total_requests"},
            cooldown_minutes=cooldown,
        ),
        AlertRule(
            name="High Error Rate",
            description="Error rate of {subject} is {value:.2f}%",
            source="performance",
            metric="error_rate:{subject}",
            path="error_rate",
            operator=Operator.GT,
            threshold=config.error_rate_threshold,
            severity=config.error_rate_severity,
            category=AlertCategory.PERFORMANCE,
            scope=RuleScope.ENDPOINT,
            metadata_paths={"endpoint": "path", "total_requests": "total_requests"},
            cooldown_minutes=cooldown,
        ),
        AlertRule(
            name="Low Cache Hit Rate",
            description="Cache hit rate of {subject} is {value:.2f}%",
            source="performance",
            metric="cache_hit_rate:{subject}",
            path="cache_hit_rate",
            operator=Operator.LT,
            threshold=config.endpoint_cache_hit_rate_threshold,
            guard=RuleGuard(path="total_requests", operator=Operator.GT, value=config.endpoint_cache_min_requests),
            severity=config.endpoint_cache_severity,
            category=AlertCategory.PERFORMANCE,
            scope=RuleScope.ENDPOINT,
            metadata_paths={"endpoint": "path", "total_requests": "total_requests"},
            cooldown_minutes=cooldown,
        ),
        AlertRule(
            name="System Unhealthy",
            description="Health check reports the system as unhealthy (score {value:.0f})",
            source="health",
            metric="health.status",
            path="status",
            operator=Operator.EQ,
            threshold=OverallStatus.UNHEALTHY.value,
            value_path="overall_score",
            severity=config.unhealthy_severity,
            category=AlertCategory.AVAILABILITY,
            scope=RuleScope.HEALTH,
            metadata_paths={"checks": "checks"},
            cooldown_minutes=cooldown,
        ),
        AlertRule(
            name="System Degraded",
            description="Health check reports the system as degraded (score {value:.0f})",
            source="health",
            metric="health.status",
            path="status",
            operator=Operator.EQ,
            threshold=OverallStatus.DEGRADED.value,
            value_path="overall_score",
            severity=config.degraded_severity,
            category=AlertCategory.AVAILABILITY,
            scope=RuleScope.HEALTH,
            metadata_paths={"checks": "checks"},
            cooldown_minutes=cooldown,
        ),
    ]


def snapshot_context(snapshot: MetricSnapshot) -> Dict[str, Any]:
    context = snapshot.model_dump(mode="json")
    redis = context["cache"]["redis"]
    redis["lookups"] = redis["keyspace_hits"] + redis["keyspace_misses"]
    return context


class AlertRuleEngine:
    """Evaluates rules against the current metrics and yields AlertRequests.

    Rules are independent of each other. Each firing rule produces one
    request; creating, deduplicating and notifying is left to the AlertStore.
    """

    def __init__(
        self,
        rules: Optional[Iterable[AlertRule]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.rules: List[AlertRule] = list(rules) if rules is not None else build_default_rules()
        self._clock = clock
        self._last_fired: Dict[Tuple[str, str], datetime] = {}
        self._lock = threading.Lock()

    def evaluate(
        self,
        snapshot: Optional[MetricSnapshot] = None,
        performance_stats: Optional[Iterable[EndpointStats]] = None,
        health_check: Optional[HealthCheckResult] = None,
    ) -> List[AlertRequest]:
        """Check every enabled rule; inputs given as None skip their rules."""
        requests: List[AlertRequest] = []

        if snapshot is not None:
            context = snapshot_context(snapshot)
            for rule in self._rules_for(RuleScope.SNAPSHOT):
                requests.extend(self._check(rule, context, subject=""))

        if performance_stats is not None:
            endpoints = list(performance_stats)
            for rule in self._rules_for(RuleScope.ENDPOINT):
                for stats in endpoints:
                    requests.extend(self._check(rule, stats.model_dump(mode="json"), subject=stats.path))

        if health_check is not None:
            context = health_check.model_dump(mode="json")
            for rule in self._rules_for(RuleScope.HEALTH):
                requests.extend(self._check(rule, context, subject=""))

        if requests:
            logger.info("Alert rules fired", count=len(requests), rules=[r.name for r in requests])
        return requests

    def _rules_for(self, scope: RuleScope) -> List[AlertRule]:
        return [rule for rule in self.rules if rule.enabled and rule.scope == scope]

    def _check(self, rule: AlertRule, context: Mapping[str, Any], subject: str) -> List[AlertRequest]:
        value = resolve_path(context, rule.path)
        if value is _MISSING or value is None:
            logger.debug("Rule metric not available", rule=rule.name, path=rule.path)
            return []

        threshold: Any = rule.threshold
        if rule.relative_to is not None:
            base = resolve_path(context, rule.relative_to)
            if base is _MISSING or not base:
                return []
            threshold = base * float(rule.threshold)

        if not compare(value, rule.operator, threshold):
            return []

        if rule.guard is not None:
            guard_value = resolve_path(context, rule.guard.path)
            if guard_value is _MISSING or not compare(guard_value, rule.guard.operator, rule.guard.value):
                return []

        if not self._cooldown_elapsed(rule, subject):
            logger.debug("Rule in cooldown", rule=rule.name, subject=subject)
            return []

        return [self._build_request(rule, context, subject, value, threshold)]

    def _cooldown_elapsed(self, rule: AlertRule, subject: str) -> bool:
        if rule.cooldown_minutes <= 0:
            return True
        key = (rule.name, subject)
        now = self._clock()
        with self._lock:
            last = self._last_fired.get(key)
            if last is not None and now - last < timedelta(minutes=rule.cooldown_minutes):
                return False
            self._last_fired[key] = now
        return True

    def _build_request(
        self,
        rule: AlertRule,
        context: Mapping[str, Any],
        subject: str,
        value: Any,
        threshold: Any,
    ) -> AlertRequest:
        current = value
        if rule.value_path is not None:
            current = resolve_path(context, rule.value_path)
            if current is _MISSING:
                current = None

        severity = rule.severity
        if rule.critical_threshold is not None and compare(value, rule.operator, rule.critical_threshold):
            severity = AlertSeverity.CRITICAL

        metadata = {}
        for key, path in rule.metadata_paths.items():
            found = resolve_path(context, path)
            if found is not _MISSING:
                metadata[key] = found

        numeric_threshold = isinstance(threshold, (int, float))
        fmt = {
            "value": current if isinstance(current, (int, float)) else 0,
            "threshold": threshold if numeric_threshold else 0,
            "subject": subject,
        }
        metric = rule.metric.format(subject=subject)

        return AlertRequest(
            name=rule.name,
            description=rule.description.format(**fmt),
            severity=severity,
            category=rule.category,
            source=rule.source,
            metric=metric,
            threshold=AlertThreshold(
                metric=metric,
                operator=rule.operator,
                value=float(threshold),
                severity=severity,
            ) if numeric_threshold else None,
            current_value=float(current) if isinstance(current, (int, float)) else None,
            tags=[rule.source, rule.category.value.lower()],
            metadata=metadata,
        )
