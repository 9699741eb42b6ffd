"""Data models for the infrastructure monitoring service."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_id() -> str:
    return str(uuid.uuid4())


class AlertSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AlertCategory(str, Enum):
    SYSTEM = "SYSTEM"
    PERFORMANCE = "PERFORMANCE"
    SECURITY = "SECURITY"
    BUSINESS = "BUSINESS"
    AVAILABILITY = "AVAILABILITY"


class AlertStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"
    SUPPRESSED = "SUPPRESSED"


class TransitionOutcome(str, Enum):
    APPLIED = "APPLIED"
    NOT_FOUND = "NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"


class ComponentStatus(str, Enum):
    UP = "UP"
    DEGRADED = "DEGRADED"
    DOWN = "DOWN"


class OverallStatus(str, Enum):
    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"
    UNHEALTHY = "UNHEALTHY"


class Operator(str, Enum):
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"


# --- Metric snapshot -------------------------------------------------------


class CPUMetrics(BaseModel):
    """CPU metrics."""
    usage: float = 0.0
    load_average: List[float] = Field(default_factory=lambda: [0.0, 0.0, 0.0])  # 1, 5, 15 minutes
    cores: int = 0


class MemoryMetrics(BaseModel):
    """Memory metrics (bytes)."""
    total: int = 0
    used: int = 0
    free: int = 0
    available: int = 0
    percentage: float = 0.0
    process_rss: int = 0
    process_vms: int = 0


class DiskMetrics(BaseModel):
    """Disk usage of the monitored mount point."""
    total: int = 0
    used: int = 0
    free: int = 0
    percentage: float = 0.0
    mount_point: str = "/"


class NetworkMetrics(BaseModel):
    """Network counters since boot."""
    bytes_sent: int = 0
    bytes_recv: int = 0
    packets_sent: int = 0
    packets_recv: int = 0
    errors_in: int = 0
    errors_out: int = 0
    connections: int = 0


class SystemInfo(BaseModel):
    uptime: float = 0.0
    hostname: str = ""
    platform: str = ""
    python_version: str = ""
    process_id: int = 0
    process_uptime: float = 0.0


class ServerMetrics(BaseModel):
    cpu: CPUMetrics = Field(default_factory=CPUMetrics)
    memory: MemoryMetrics = Field(default_factory=MemoryMetrics)
    disk: DiskMetrics = Field(default_factory=DiskMetrics)
    network: NetworkMetrics = Field(default_factory=NetworkMetrics)
    system: SystemInfo = Field(default_factory=SystemInfo)


class ComponentHealth(BaseModel):
    """Result of a dependency health check."""
    is_healthy: bool = False
    last_check: datetime = Field(default_factory=utcnow)
    response_time: float = 0.0  # ms
    status: ComponentStatus = ComponentStatus.DOWN


class DatabaseConnections(BaseModel):
    active: int = 0
    idle: int = 0
    total: int = 0
    max: int = 100
    waiting: int = 0


class DatabasePerformance(BaseModel):
    average_query_time: float = 0.0  # ms
    slow_queries: int = 0
    total_queries: int = 0


class DatabaseStorage(BaseModel):
    size: int = 0  # bytes
    tables_count: int = 0


class DatabaseMetrics(BaseModel):
    connections: DatabaseConnections = Field(default_factory=DatabaseConnections)
    performance: DatabasePerformance = Field(default_factory=DatabasePerformance)
    storage: DatabaseStorage = Field(default_factory=DatabaseStorage)
    health: ComponentHealth = Field(default_factory=ComponentHealth)


class RedisMetrics(BaseModel):
    connected_clients: int = 0
    used_memory: int = 0
    max_memory: int = 0
    memory_percentage: float = 0.0
    hit_rate: float = 0.0
    keyspace_hits: int = 0
    keyspace_misses: int = 0
    operations_per_second: float = 0.0
    evicted_keys: int = 0
    expired_keys: int = 0
    uptime: int = 0
    version: str = "unknown"


class ApplicationCacheMetrics(BaseModel):
    hit_rate: float = 0.0
    miss_rate: float = 0.0
    evictions: int = 0
    operations: int = 0


class CacheMetrics(BaseModel):
    redis: RedisMetrics = Field(default_factory=RedisMetrics)
    application: ApplicationCacheMetrics = Field(default_factory=ApplicationCacheMetrics)
    health: ComponentHealth = Field(default_factory=ComponentHealth)


class MetricSnapshot(BaseModel):
    """Point-in-time view of server, database and cache."""
    timestamp: datetime = Field(default_factory=utcnow)
    server: ServerMetrics = Field(default_factory=ServerMetrics)
    database: DatabaseMetrics = Field(default_factory=DatabaseMetrics)
    cache: CacheMetrics = Field(default_factory=CacheMetrics)


class TrendPoint(BaseModel):
    """One sample of the bounded resource history."""
    model_config = {"frozen": True}

    timestamp: datetime
    cpu: float
    memory: float
    disk: float
    network: int
    database_connections: int
    cache_hit_rate: float

    @classmethod
    def from_snapshot(cls, snapshot: MetricSnapshot) -> "TrendPoint":
        server = snapshot.server
        return cls(
            timestamp=snapshot.timestamp,
            cpu=server.cpu.usage,
            memory=server.memory.percentage,
            disk=server.disk.percentage,
            network=server.network.bytes_recv + server.network.bytes_sent,
            database_connections=snapshot.database.connections.active,
            cache_hit_rate=snapshot.cache.redis.hit_rate,
        )


# --- Collaborator payloads ---------------------------------------------------


class EndpointStats(BaseModel):
    """Request statistics for one HTTP endpoint."""
    path: str = "*"
    average_response_time: float = 0.0  # ms
    error_rate: float = 0.0  # %
    cache_hit_rate: float = 0.0  # %
    total_requests: int = 0


class HealthCheckEntry(BaseModel):
    name: str
    status: str
    response_time: float = 0.0


class HealthCheckResult(BaseModel):
    """Aggregate result of the application health check."""
    status: OverallStatus
    overall_score: float
    checks: List[HealthCheckEntry] = Field(default_factory=list)
    duration: float = 0.0


# --- Alerts ------------------------------------------------------------------


class AlertThreshold(BaseModel):
    metric: str
    operator: Operator
    value: float
    severity: AlertSeverity


class AlertRequest(BaseModel):
    """Everything needed to raise an alert; unset fields get defaults."""
    name: str
    description: str = ""
    severity: Optional[AlertSeverity] = None
    category: Optional[AlertCategory] = None
    source: Optional[str] = None
    metric: Optional[str] = None
    threshold: Optional[AlertThreshold] = None
    current_value: Optional[float] = None
    tags: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None
    correlation_id: Optional[str] = None


class Alert(BaseModel):
    id: str = Field(default_factory=generate_id)
    name: str
    description: str = ""
    severity: AlertSeverity = AlertSeverity.MEDIUM
    category: AlertCategory = AlertCategory.SYSTEM
    source: str = "system"
    metric: Optional[str] = None
    threshold: Optional[AlertThreshold] = None
    current_value: Optional[float] = None
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    correlation_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    status: AlertStatus = AlertStatus.ACTIVE
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    notes: Optional[str] = None
    resolved_at: Optional[datetime] = None
    suppressed_until: Optional[datetime] = None
    sequence: int = Field(default=0, exclude=True)

    @property
    def dedup_key(self) -> tuple:
        return (self.name, self.source, self.metric)


class TransitionResult(BaseModel):
    """Outcome of a lifecycle transition; ``alert`` is the updated copy when applied."""

    model_config = {"frozen": True}

    outcome: TransitionOutcome
    alert: Optional[Alert] = None

    @property
    def ok(self) -> bool:
        return self.outcome == TransitionOutcome.APPLIED

    def alert_if_ok(self) -> Optional[Alert]:
        return self.alert if self.ok else None


class AlertFilter(BaseModel):
    severity: Optional[AlertSeverity] = None
    category: Optional[AlertCategory] = None
    status: Optional[AlertStatus] = None
    source: Optional[str] = None
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)


class AlertPage(BaseModel):
    alerts: List[Alert]
    total: int
    has_more: bool


class TopAlert(BaseModel):
    name: str
    category: AlertCategory
    count: int
    last_occurred: datetime


class ResolutionTime(BaseModel):
    category: AlertCategory
    avg_time: float  # seconds
    count: int


class AlertStatistics(BaseModel):
    window_hours: float
    total: int = 0
    active: int = 0
    acknowledged: int = 0
    resolved: int = 0
    suppressed: int = 0
    by_severity: Dict[str, int] = Field(default_factory=dict)
    by_category: Dict[str, int] = Field(default_factory=dict)
    by_source: Dict[str, int] = Field(default_factory=dict)
    average_resolution_time: Optional[float] = None  # seconds
    resolution_times: List[ResolutionTime] = Field(default_factory=list)
    top_alerts: List[TopAlert] = Field(default_factory=list)
    recent_alerts: List[Alert] = Field(default_factory=list)


# --- Health and summary --------------------------------------------------------


class HealthScore(BaseModel):
    score: int
    status: OverallStatus


class ServiceType(str, Enum):
    INTERNAL = "INTERNAL"
    DATABASE = "DATABASE"
    CACHE = "CACHE"


class ServiceMetrics(BaseModel):
    name: str
    type: ServiceType
    status: ComponentStatus
    response_time: float = 0.0
    last_check: datetime = Field(default_factory=utcnow)
    uptime: float = 0.0
    version: Optional[str] = None
    endpoint: Optional[str] = None
    metadata: Dict[str, Union[int, float, str]] = Field(default_factory=dict)


class InfrastructureSummary(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    server: ServerMetrics
    database: DatabaseMetrics
    cache: CacheMetrics
    services: List[ServiceMetrics]
    alerts: List[Alert]
    health_score: int
    overall_status: OverallStatus


# --- Notifications -------------------------------------------------------------


class ChannelType(str, Enum):
    EMAIL = "EMAIL"
    WEBHOOK = "WEBHOOK"


class NotificationChannel(BaseModel):
    id: str
    name: str
    type: ChannelType
    config: Dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True
    severities: List[AlertSeverity] = Field(default_factory=lambda: list(AlertSeverity))

    def accepts(self, alert: Alert) -> bool:
        return self.enabled and alert.severity in self.severities
