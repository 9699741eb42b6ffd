"""Infrastructure monitoring service: wiring, operations and entry point."""

import asyncio
import os
import threading
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

import structlog

from . import __version__
from .alerts import AlertStore
from .collaborators import (
    CacheClient,
    DatabaseClient,
    HealthChecker,
    NotificationTransport,
    PerformanceSource,
    coerce_endpoint_stats,
    coerce_health_result,
)
from .collector import MetricsCollector
from .config import InfraWatchConfig
from .logger import setup_logging
from .messaging import MessageBusClient
from .models import (
    Alert,
    AlertFilter,
    AlertPage,
    AlertRequest,
    AlertStatistics,
    ChannelType,
    ComponentStatus,
    EndpointStats,
    HealthCheckResult,
    HealthScore,
    InfrastructureSummary,
    MetricSnapshot,
    NotificationChannel,
    ServiceMetrics,
    ServiceType,
    TrendPoint,
    utcnow,
)
from .notifier import MessageBusTransport, NotificationDispatcher, WebhookTransport, default_channels
from .rules import AlertRule, AlertRuleEngine, build_default_rules
from .scheduler import MonitoringScheduler
from .scoring import calculate_health_score
from .trends import TrendStore

logger = structlog.get_logger(__name__)

INFRASTRUCTURE_SOURCES = {"server", "database", "cache"}


class InfrastructureService:
    """Samples infrastructure health and manages the resulting alerts.

    Collaborators are injected; any of them may be omitted, in which case the
    matching metrics are reported as DOWN and the matching rules are skipped.
    """

    def __init__(
        self,
        config: Optional[InfraWatchConfig] = None,
        database: Optional[DatabaseClient] = None,
        cache: Optional[CacheClient] = None,
        performance: Optional[PerformanceSource] = None,
        health_checker: Optional[HealthChecker] = None,
        message_bus: Optional[MessageBusClient] = None,
        transports: Optional[Dict[ChannelType, NotificationTransport]] = None,
        rules: Optional[List[AlertRule]] = None,
        clock: Callable = utcnow,
    ):
        self.config = config or InfraWatchConfig()
        self.message_bus = message_bus or MessageBusClient(self.config)
        self.performance = performance
        self.health_checker = health_checker
        self._clock = clock

        self.collector = MetricsCollector(
            database=database,
            cache=cache,
            timeout=self.config.collaborator_timeout,
            disk_path=self.config.disk_path,
            cpu_sample_interval=self.config.cpu_sample_interval,
            slow_health_check_ms=self.config.slow_health_check_ms,
        )
        self.trends = TrendStore(self.config.trend_capacity)
        self.alerts = AlertStore(clock=clock)
        self.rule_engine = AlertRuleEngine(
            rules if rules is not None else build_default_rules(self.config),
            clock=clock,
        )

        if transports is None:
            transports = {
                ChannelType.EMAIL: MessageBusTransport(self.message_bus, self.config.email_subject),
                ChannelType.WEBHOOK: WebhookTransport(timeout=self.config.notification_timeout),
            }
        self.dispatcher = NotificationDispatcher(
            default_channels(self.config),
            transports,
            timeout=self.config.notification_timeout,
        )
        self.alerts.add_listener(self.dispatcher.notify)

        self.scheduler = MonitoringScheduler(
            collect=self.collect_metrics,
            evaluate=self.evaluate_alerts,
            collection_interval=self.config.collection_interval,
            evaluation_interval=self.config.evaluation_interval,
            initial_collection_delay=self.config.initial_collection_delay,
            shutdown_grace_period=self.config.shutdown_grace_period,
        )

        self._last_snapshot: Optional[MetricSnapshot] = None
        self._snapshot_lock = threading.Lock()

    # --- periodic work ---------------------------------------------------------

    @property
    def last_snapshot(self) -> Optional[MetricSnapshot]:
        with self._snapshot_lock:
            return self._last_snapshot

    async def collect_metrics(self) -> MetricSnapshot:
        """One collection tick: sample, remember, append to the trend history.

        Snapshot rules are checked here, once per fresh sample.
        """
        logger.debug("Collecting infrastructure metrics")
        snapshot = await self.collector.collect()
        with self._snapshot_lock:
            self._last_snapshot = snapshot
        self.trends.append(TrendPoint.from_snapshot(snapshot))
        logger.debug(
            "Infrastructure metrics collected",
            cpu=snapshot.server.cpu.usage,
            memory=snapshot.server.memory.percentage,
            database=snapshot.database.health.status.value,
            cache=snapshot.cache.health.status.value,
        )
        for request in self.rule_engine.evaluate(snapshot=snapshot):
            self.alerts.create_alert(request)
        return snapshot

    async def evaluate_alerts(self) -> List[Alert]:
        """One evaluation tick: check endpoint and health-check rules and raise what fires."""
        performance = await self._endpoint_stats()
        health = await self._health_check()
        requests = self.rule_engine.evaluate(performance_stats=performance, health_check=health)
        return [self.alerts.create_alert(request) for request in requests]

    async def _endpoint_stats(self) -> Optional[List[EndpointStats]]:
        if self.performance is None:
            return None
        loop = asyncio.get_running_loop()
        try:
            stats = await asyncio.wait_for(
                loop.run_in_executor(None, self.performance.get_all_endpoint_stats),
                self.config.collaborator_timeout,
            )
            return [coerce_endpoint_stats(s) for s in stats]
        except asyncio.TimeoutError:
            logger.error("Performance statistics timed out", timeout=self.config.collaborator_timeout)
        except Exception as e:
            logger.error("Performance statistics unavailable", error=str(e))
        return None

    async def _health_check(self) -> Optional[HealthCheckResult]:
        if self.health_checker is None:
            return None
        try:
            result = await asyncio.wait_for(
                self.health_checker.perform_health_check(),
                self.config.collaborator_timeout,
            )
            return coerce_health_result(result)
        except asyncio.TimeoutError:
            logger.error("Health check timed out", timeout=self.config.collaborator_timeout)
        except Exception as e:
            logger.error("Health check failed", error=str(e))
        return None

    # --- read operations -------------------------------------------------------

    async def get_summary(self) -> InfrastructureSummary:
        snapshot = self.last_snapshot
        if snapshot is None:
            snapshot = await self.collect_metrics()

        active = self.alerts.get_active_alerts()
        health = calculate_health_score(snapshot, active)
        return InfrastructureSummary(
            timestamp=self._clock(),
            server=snapshot.server,
            database=snapshot.database,
            cache=snapshot.cache,
            services=self._service_metrics(snapshot),
            alerts=active,
            health_score=health.score,
            overall_status=health.status,
        )

    def _service_metrics(self, snapshot: MetricSnapshot) -> List[ServiceMetrics]:
        database = snapshot.database
        cache = snapshot.cache
        server = snapshot.server
        return [
            ServiceMetrics(
                name="PostgreSQL Database",
                type=ServiceType.DATABASE,
                status=database.health.status,
                response_time=database.health.response_time,
                last_check=database.health.last_check,
                metadata={
                    "connections": database.connections.active,
                    "slow_queries": database.performance.slow_queries,
                },
            ),
            ServiceMetrics(
                name="Redis Cache",
                type=ServiceType.CACHE,
                status=cache.health.status,
                response_time=cache.health.response_time,
                last_check=cache.health.last_check,
                uptime=cache.redis.uptime,
                version=cache.redis.version,
                metadata={
                    "memory_usage": cache.redis.used_memory,
                    "hit_rate": cache.redis.hit_rate,
                    "connected_clients": cache.redis.connected_clients,
                },
            ),
            ServiceMetrics(
                name=self.config.service_name,
                type=ServiceType.INTERNAL,
                status=ComponentStatus.UP,
                uptime=server.system.process_uptime,
                version=__version__,
                endpoint=f"http://{self.config.host}:{self.config.service_port}",
                metadata={
                    "python_version": server.system.python_version,
                    "platform": server.system.platform,
                    "memory_usage": server.memory.percentage,
                    "cpu_usage": server.cpu.usage,
                },
            ),
        ]

    def get_trends(self, hours: float = 24) -> List[TrendPoint]:
        return self.trends.query(since=self._clock() - timedelta(hours=hours))

    def get_health_score(self) -> HealthScore:
        return calculate_health_score(self.last_snapshot, self.alerts.get_active_alerts())

    def get_alerts(self, alert_filter: Optional[AlertFilter] = None) -> AlertPage:
        return self.alerts.get_alerts(alert_filter)

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        return self.alerts.get_alert(alert_id)

    def get_active_alerts(self) -> List[Alert]:
        return self.alerts.get_active_alerts()

    def get_statistics(self, hours: float = 24) -> AlertStatistics:
        return self.alerts.get_statistics(hours)

    def get_rules(self) -> List[AlertRule]:
        return list(self.rule_engine.rules)

    def get_channels(self) -> List[NotificationChannel]:
        """Configured channels with secrets masked."""
        channels = []
        for channel in self.dispatcher.channels:
            config = {k: ("***" if k == "token" and v else v) for k, v in channel.config.items()}
            channels.append(channel.model_copy(update={"config": config}))
        return channels

    # --- write operations ------------------------------------------------------

    def create_alert(self, request: AlertRequest) -> Alert:
        return self.alerts.create_alert(request)

    def acknowledge_alert(self, alert_id: str, acknowledged_by: str, notes: Optional[str] = None) -> Optional[Alert]:
        return self.alerts.acknowledge_alert(alert_id, acknowledged_by, notes)

    def resolve_alert(
        self,
        alert_id: str,
        resolved_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Optional[Alert]:
        return self.alerts.resolve_alert(alert_id, resolved_by, notes)

    def suppress_alert(self, alert_id: str, duration_minutes: int, reason: Optional[str] = None) -> Optional[Alert]:
        return self.alerts.suppress_alert(alert_id, duration_minutes, reason)

    def resolve_infrastructure_alert(self, alert_id: str, resolved_by: str) -> bool:
        """Resolve an alert raised from server, database or cache metrics."""
        alert = self.alerts.get_alert(alert_id)
        if alert is None or alert.source not in INFRASTRUCTURE_SOURCES:
            return False
        resolved = self.alerts.resolve_alert(alert_id, resolved_by)
        if resolved is not None:
            logger.info(
                f"Infrastructure alert resolved: {resolved.name}",
                category="INFRASTRUCTURE",
                alert_id=alert_id,
                resolved_by=resolved_by,
            )
        return resolved is not None

    async def trigger_alert_checks(self) -> Dict[str, Any]:
        triggered = await self.scheduler.trigger_evaluation()
        return {"triggered": triggered, "timestamp": self._clock().isoformat()}

    # --- lifecycle -------------------------------------------------------------

    async def connect_to_message_bus(self) -> None:
        """Connect to NATS and register request/reply handlers."""
        await self.message_bus.connect()
        await self.message_bus.reply_handler("infra.summary", self._handle_summary_request)
        await self.message_bus.reply_handler("infra.trends", self._handle_trends_request)
        await self.message_bus.reply_handler("infra.alerts", self._handle_alerts_request)
        await self.message_bus.reply_handler("infra.statistics", self._handle_statistics_request)
        await self.message_bus.reply_handler("infra.alerts.check", self._handle_check_request)
        logger.info("Infrastructure service connected to NATS and handlers registered")

    async def start(self) -> None:
        try:
            await self.connect_to_message_bus()
        except Exception as e:
            logger.error("Message bus unavailable, continuing without it", error=str(e))
        self.scheduler.start()
        logger.info("Infrastructure service started")

    async def stop(self) -> None:
        logger.info("Stopping infrastructure service")
        await self.scheduler.stop()
        await self.dispatcher.drain()
        if self.message_bus.is_connected:
            await self.message_bus.disconnect()
        logger.info("Infrastructure service stopped")

    # --- NATS handlers ---------------------------------------------------------

    async def _handle_summary_request(self, data: dict) -> dict:
        summary = await self.get_summary()
        return summary.model_dump(mode="json")

    async def _handle_trends_request(self, data: dict) -> dict:
        points = self.get_trends(float(data.get("hours", 24)))
        return {"trends": [p.model_dump(mode="json") for p in points], "count": len(points)}

    async def _handle_alerts_request(self, data: dict) -> dict:
        page = self.get_alerts(AlertFilter(**data))
        return page.model_dump(mode="json")

    async def _handle_statistics_request(self, data: dict) -> dict:
        return self.get_statistics(float(data.get("hours", 24))).model_dump(mode="json")

    async def _handle_check_request(self, data: dict) -> dict:
        return await self.trigger_alert_checks()


def main() -> None:
    import uvicorn

    from .api import create_app

    config = InfraWatchConfig()
    setup_logging(config.service_name, config.log_level, json_logs=bool(os.getenv("INFRA_JSON_LOGS")))

    service = InfrastructureService(config)
    app = create_app(service, manage_lifecycle=True)
    uvicorn.run(app, host=config.host, port=config.service_port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
