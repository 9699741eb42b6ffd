"""
InfraWatch - Infrastructure Monitoring and Alerting

Samples server, database and cache health, keeps a rolling trend history,
scores overall health and raises, deduplicates and dispatches alerts.
"""

__version__ = "0.1.0"
__author__ = "Neuralux Team"

# Core components
from .config import InfraWatchConfig, get_config
from .models import (
    Alert,
    AlertCategory,
    AlertFilter,
    AlertRequest,
    AlertSeverity,
    AlertStatus,
    MetricSnapshot,
    TransitionOutcome,
    TransitionResult,
    TrendPoint,
)

# Monitoring and alerting
from .alerts import AlertStore
from .collector import MetricsCollector
from .notifier import NotificationDispatcher
from .rules import AlertRule, AlertRuleEngine, build_default_rules
from .scheduler import MonitoringScheduler, PeriodicTask
from .scoring import calculate_health_score
from .trends import TrendStore

from .service import InfrastructureService

__all__ = [
    "InfraWatchConfig",
    "get_config",
    "Alert",
    "AlertCategory",
    "AlertFilter",
    "AlertRequest",
    "AlertSeverity",
    "AlertStatus",
    "MetricSnapshot",
    "TrendPoint",
    "AlertStore",
    "TransitionOutcome",
    "TransitionResult",
    "MetricsCollector",
    "NotificationDispatcher",
    "AlertRule",
    "AlertRuleEngine",
    "build_default_rules",
    "MonitoringScheduler",
    "PeriodicTask",
    "calculate_health_score",
    "TrendStore",
    "InfrastructureService",
]
