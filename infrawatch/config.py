"""Configuration for the infrastructure monitoring service."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import AlertSeverity


class InfraWatchConfig(BaseSettings):
    """Configuration for infrastructure monitoring and alerting."""

    model_config = SettingsConfigDict(
        env_prefix="INFRA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service
    service_name: str = "infrawatch"
    service_port: int = 8010
    host: str = "0.0.0.0"

    # Message Bus
    nats_url: str = "nats://localhost:4222"
    nats_max_reconnect_attempts: int = 10

    # Logging
    log_level: str = "INFO"

    # Scheduling (seconds)
    collection_interval: float = 60.0
    initial_collection_delay: float = 5.0
    evaluation_interval: float = 30.0
    shutdown_grace_period: float = 10.0

    # Collaborator calls are bounded by these timeouts (seconds)
    collaborator_timeout: float = 5.0
    notification_timeout: float = 10.0
    slow_health_check_ms: float = 1000.0

    # Trend history: 7 days at 1-minute resolution
    trend_capacity: int = 10080

    # Server sampling
    disk_path: str = "/"
    cpu_sample_interval: float = 0.1

    # Server thresholds (%)
    cpu_threshold: float = 90.0
    cpu_critical_threshold: float = 95.0
    memory_threshold: float = 90.0
    memory_critical_threshold: float = 95.0
    disk_threshold: float = 85.0
    disk_critical_threshold: float = 95.0

    # Database: fraction of max connections in use
    db_connection_ratio: float = 0.8
    db_connection_severity: AlertSeverity = AlertSeverity.HIGH

    # Cache: hit rate (%) and the traffic needed before it is meaningful
    cache_hit_rate_threshold: float = 50.0
    cache_min_operations: int = 1000
    cache_hit_rate_severity: AlertSeverity = AlertSeverity.MEDIUM

    # Application performance, evaluated per endpoint
    response_time_threshold_ms: float = 2000.0
    response_time_severity: AlertSeverity = AlertSeverity.HIGH
    error_rate_threshold: float = 5.0
    error_rate_severity: AlertSeverity = AlertSeverity.HIGH
    endpoint_cache_hit_rate_threshold: float = 50.0
    endpoint_cache_min_requests: int = 200
    endpoint_cache_severity: AlertSeverity = AlertSeverity.MEDIUM

    # Aggregate health check
    unhealthy_severity: AlertSeverity = AlertSeverity.CRITICAL
    degraded_severity: AlertSeverity = AlertSeverity.MEDIUM

    # 0 leaves repetition control to alert deduplication
    rule_cooldown_minutes: int = 0

    # Notification channels
    alert_email: Optional[str] = None
    alert_webhook_url: Optional[str] = None
    alert_webhook_token: Optional[str] = None
    email_subject: str = "infra.notify.email"


def get_config() -> InfraWatchConfig:
    """Get a configuration instance from the environment."""
    return InfraWatchConfig()
