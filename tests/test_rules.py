"""Tests for the alert rule engine."""

import pytest

from infrawatch.config import InfraWatchConfig
from infrawatch.models import (
    AlertCategory,
    AlertSeverity,
    EndpointStats,
    HealthCheckResult,
    Operator,
    OverallStatus,
)
from infrawatch.rules import AlertRule, AlertRuleEngine, build_default_rules, compare, resolve_path

from conftest import make_snapshot


@pytest.fixture
def engine(clock):
    return AlertRuleEngine(build_default_rules(InfraWatchConfig()), clock=clock)


def names(requests):
    return [r.name for r in requests]


def test_default_rule_set():
    """Test the built-in rule set."""
    rules = build_default_rules(InfraWatchConfig())
    assert len(rules) == 10
    assert {r.name for r in rules} == {
        "High CPU Usage",
        "High Memory Usage",
        "High Disk Usage",
        "High Database Connections",
        "Low Cache Hit Rate",
        "High Response Time",
        "High Error Rate",
        "System Unhealthy",
        "System Degraded",
    }


def test_quiet_snapshot_fires_nothing(engine):
    """Test that a quiet snapshot fires no rules."""
    assert engine.evaluate(make_snapshot()) == []


def test_no_inputs_fires_nothing(engine):
    """Test evaluation with no inputs."""
    assert engine.evaluate() == []


def test_high_cpu(engine):
    """Test the CPU warning threshold."""
    [alert] = engine.evaluate(make_snapshot(cpu=92.0))

    assert alert.name == "High CPU Usage"
    assert alert.severity == AlertSeverity.HIGH
    assert alert.source == "server"
    assert alert.metric == "cpu.usage"
    assert alert.current_value == 92.0
    assert alert.threshold.value == 90.0
    assert alert.threshold.operator == Operator.GT
    assert alert.tags == ["server", "system"]


def test_cpu_escalates_to_critical(engine):
    """Test CPU escalation to critical."""
    [alert] = engine.evaluate(make_snapshot(cpu=96.0))
    assert alert.severity == AlertSeverity.CRITICAL
    assert alert.threshold.severity == AlertSeverity.CRITICAL


def test_server_thresholds_are_strict(engine):
    """Test that values equal to a threshold do not fire."""
    assert engine.evaluate(make_snapshot(cpu=90.0, memory=90.0, disk=85.0)) == []


def test_memory_and_disk(engine):
    """Test the memory and disk rules."""
    requests = engine.evaluate(make_snapshot(memory=93.0, disk=97.0))
    by_name = {r.name: r for r in requests}

    assert by_name["High Memory Usage"].severity == AlertSeverity.HIGH
    assert by_name["High Disk Usage"].severity == AlertSeverity.CRITICAL
    assert by_name["High Disk Usage"].metadata["mount_point"] == "/"


def test_database_connections_relative_to_max(engine):
    """Test the connection rule against max connections."""
    assert engine.evaluate(make_snapshot(active_connections=80, max_connections=100)) == []

    [alert] = engine.evaluate(make_snapshot(active_connections=81, max_connections=100))
    assert alert.name == "High Database Connections"
    assert alert.severity == AlertSeverity.HIGH
    assert alert.source == "database"
    assert alert.metric == "connections.active"
    assert alert.threshold.value == 80.0
    assert alert.metadata["max_connections"] == 100


def test_cache_hit_rate_needs_traffic(engine):
    """Test that the hit rate rule needs cache traffic."""
    assert engine.evaluate(make_snapshot(hits=100, misses=200)) == []

    [alert] = engine.evaluate(make_snapshot(hits=400, misses=700))
    assert alert.name == "Low Cache Hit Rate"
    assert alert.source == "cache"
    assert alert.metric == "redis.hitRate"
    assert alert.severity == AlertSeverity.MEDIUM
    assert alert.current_value == pytest.approx(36.36, abs=0.01)


def test_endpoint_rules_fire_per_endpoint(engine):
    """Test that endpoint rules fire per endpoint."""
    stats = [
        EndpointStats(path="/api/orders", average_response_time=3000, total_requests=50),
        EndpointStats(path="/api/users", error_rate=10, total_requests=50),
        EndpointStats(path="/api/search", cache_hit_rate=30, total_requests=250),
        EndpointStats(path="/api/ping", average_response_time=20, cache_hit_rate=90, total_requests=5000),
    ]
    requests = engine.evaluate(performance_stats=stats)
    by_metric = {r.metric: r for r in requests}

    assert set(by_metric) == {
        "response_time:/api/orders",
        "error_rate:/api/users",
        "cache_hit_rate:/api/search",
    }
    assert by_metric["response_time:/api/orders"].severity == AlertSeverity.HIGH
    assert by_metric["response_time:/api/orders"].category == AlertCategory.PERFORMANCE
    assert by_metric["response_time:/api/orders"].metadata["endpoint"] == "/api/orders"
    assert by_metric["cache_hit_rate:/api/search"].severity == AlertSeverity.MEDIUM


def test_endpoint_cache_rule_ignores_low_traffic(engine):
    """Test the endpoint cache rule traffic guard."""
    stats = [EndpointStats(path="/api/rare", cache_hit_rate=10, total_requests=100)]
    assert engine.evaluate(performance_stats=stats) == []


def test_unhealthy_health_check(engine):
    """Test the unhealthy health check rule."""
    result = HealthCheckResult(status=OverallStatus.UNHEALTHY, overall_score=35)
    [alert] = engine.evaluate(health_check=result)

    assert alert.name == "System Unhealthy"
    assert alert.severity == AlertSeverity.CRITICAL
    assert alert.current_value == 35
    assert alert.threshold is None
    assert alert.category == AlertCategory.AVAILABILITY


def test_degraded_health_check(engine):
    """Test the degraded health check rule."""
    result = HealthCheckResult(status=OverallStatus.DEGRADED, overall_score=65)
    [alert] = engine.evaluate(health_check=result)

    assert alert.name == "System Degraded"
    assert alert.severity == AlertSeverity.MEDIUM
    assert alert.current_value == 65


def test_healthy_health_check(engine):
    """Test that a healthy check fires nothing."""
    result = HealthCheckResult(status=OverallStatus.HEALTHY, overall_score=98)
    assert engine.evaluate(health_check=result) == []


def test_rules_are_independent(engine):
    """Test that rules fire independently."""
    requests = engine.evaluate(
        make_snapshot(cpu=99.0, memory=99.0, db_healthy=False),
        [EndpointStats(path="/x", error_rate=50)],
        HealthCheckResult(status=OverallStatus.UNHEALTHY, overall_score=10),
    )
    assert set(names(requests)) == {
        "High CPU Usage",
        "High Memory Usage",
        "High Error Rate",
        "System Unhealthy",
    }


def test_cooldown_suppresses_repeat_firing(clock):
    """Test the per-rule cooldown."""
    rules = build_default_rules(InfraWatchConfig(rule_cooldown_minutes=5))
    engine = AlertRuleEngine(rules, clock=clock)
    hot = make_snapshot(cpu=95.5)

    assert names(engine.evaluate(hot)) == ["High CPU Usage"]
    clock.advance(minutes=4)
    assert engine.evaluate(hot) == []
    clock.advance(minutes=2)
    assert names(engine.evaluate(hot)) == ["High CPU Usage"]


def test_disabled_rule_is_skipped(clock):
    """Test that disabled rules are skipped."""
    rule = AlertRule(
        name="High CPU Usage",
        description="CPU usage is {value:.2f}%",
        source="server",
        metric="cpu.usage",
        path="server.cpu.usage",
        operator=Operator.GT,
        threshold=90.0,
        severity=AlertSeverity.HIGH,
        enabled=False,
    )
    engine = AlertRuleEngine([rule], clock=clock)
    assert engine.evaluate(make_snapshot(cpu=99.0)) == []


def test_thresholds_follow_config(clock):
    """Test thresholds taken from configuration."""
    engine = AlertRuleEngine(build_default_rules(InfraWatchConfig(cpu_threshold=50.0)), clock=clock)
    assert names(engine.evaluate(make_snapshot(cpu=60.0))) == ["High CPU Usage"]


def test_compare_and_resolve_path():
    """Test operator comparison and value lookup."""
    assert compare(5, Operator.GTE, 5)
    assert compare(4, Operator.LTE, 5)
    assert not compare(5, Operator.LT, 5)
    assert compare("UNHEALTHY", Operator.EQ, "UNHEALTHY")

    context = {"a": {"b": {"c": 3}}}
    assert resolve_path(context, "a.b.c") == 3
    assert resolve_path(context, "a.x") is not None
    assert resolve_path(context, "a.x") is resolve_path(context, "z")
