"""Metrics collection for server, database and cache."""

import asyncio
import os
import platform
import socket
import time
from datetime import datetime
from typing import Any, Mapping, Optional

import psutil
import structlog

from .collaborators import CacheClient, DatabaseClient
from .models import (
    ApplicationCacheMetrics,
    CacheMetrics,
    ComponentHealth,
    ComponentStatus,
    CPUMetrics,
    DatabaseConnections,
    DatabaseMetrics,
    DatabasePerformance,
    DatabaseStorage,
    DiskMetrics,
    MemoryMetrics,
    MetricSnapshot,
    NetworkMetrics,
    RedisMetrics,
    ServerMetrics,
    SystemInfo,
    utcnow,
)

logger = structlog.get_logger(__name__)

CONNECTION_STATS_SQL = """
    SELECT
      count(*) AS total_connections,
      count(*) FILTER (WHERE state = 'active') AS active_connections,
      count(*) FILTER (WHERE state = 'idle') AS idle_connections,
      count(*) FILTER (WHERE wait_event IS NOT NULL) AS waiting_connections,
      current_setting('max_connections')::int AS max_connections
    FROM pg_stat_activity
"""

PERFORMANCE_STATS_SQL = """
    SELECT
      avg(mean_exec_time) AS avg_query_time,
      count(*) FILTER (WHERE mean_exec_time > 1000) AS slow_queries,
      sum(calls) AS total_queries
    FROM pg_stat_statements
"""

STORAGE_STATS_SQL = """
    SELECT
      pg_database_size(current_database()) AS size,
      (SELECT count(*) FROM pg_tables
        WHERE schemaname NOT IN ('pg_catalog', 'information_schema')) AS tables_count
"""


def _number(row: Mapping[str, Any], key: str, default: float = 0) -> float:
    value = row.get(key)
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


class MetricsCollector:
    """Collects a point-in-time MetricSnapshot.

    Server metrics come from psutil and are gathered in a worker thread since
    the CPU sample blocks. Database and cache collaborators are awaited with
    ``timeout`` seconds each; a collaborator that fails or does not answer in
    time yields zeroed metrics with a DOWN health status instead of an error.
    """

    def __init__(
        self,
        database: Optional[DatabaseClient] = None,
        cache: Optional[CacheClient] = None,
        timeout: float = 5.0,
        disk_path: str = "/",
        cpu_sample_interval: float = 0.1,
        slow_health_check_ms: float = 1000.0,
    ):
        self.database = database
        self.cache = cache
        self.timeout = timeout
        self.disk_path = disk_path
        self.cpu_sample_interval = cpu_sample_interval
        self.slow_health_check_ms = slow_health_check_ms
        self._process = psutil.Process()
        self._started_at = time.time()

    async def collect(self) -> MetricSnapshot:
        """Collect a full snapshot. Never raises on collaborator failure."""
        loop = asyncio.get_running_loop()
        server = await loop.run_in_executor(None, self.collect_server_metrics)
        database = await self.collect_database_metrics()
        cache = await self.collect_cache_metrics()
        return MetricSnapshot(
            timestamp=utcnow(),
            server=server,
            database=database,
            cache=cache,
        )

    # --- server ---------------------------------------------------------------

    def collect_server_metrics(self) -> ServerMetrics:
        """Collect all server metrics. Blocks for the CPU sample interval."""
        return ServerMetrics(
            cpu=self.collect_cpu_metrics(),
            memory=self.collect_memory_metrics(),
            disk=self.collect_disk_metrics(),
            network=self.collect_network_metrics(),
            system=self.collect_system_info(),
        )

    def collect_cpu_metrics(self) -> CPUMetrics:
        """Collect CPU usage, load average and core count."""
        try:
            usage = psutil.cpu_percent(interval=self.cpu_sample_interval)
            load_avg = psutil.getloadavg() if hasattr(psutil, "getloadavg") else (0.0, 0.0, 0.0)
            return CPUMetrics(
                usage=usage,
                load_average=list(load_avg),
                cores=psutil.cpu_count() or 0,
            )
        except Exception as e:
            logger.error("Error collecting CPU metrics", error=str(e))
            return CPUMetrics()

    def collect_memory_metrics(self) -> MemoryMetrics:
        """Collect system memory and this process's resident and virtual size."""
        try:
            mem = psutil.virtual_memory()
            proc = self._process.memory_info()
            return MemoryMetrics(
                total=mem.total,
                used=mem.total - mem.available,
                free=mem.free,
                available=mem.available,
                percentage=mem.percent,
                process_rss=proc.rss,
                process_vms=proc.vms,
            )
        except Exception as e:
            logger.error("Error collecting memory metrics", error=str(e))
            return MemoryMetrics()

    def collect_disk_metrics(self) -> DiskMetrics:
        """Collect usage of the monitored mount point."""
        try:
            usage = psutil.disk_usage(self.disk_path)
            return DiskMetrics(
                total=usage.total,
                used=usage.used,
                free=usage.free,
                percentage=usage.percent,
                mount_point=self.disk_path,
            )
        except (PermissionError, OSError) as e:
            logger.error("Error collecting disk metrics", path=self.disk_path, error=str(e))
            return DiskMetrics(mount_point=self.disk_path)

    def collect_network_metrics(self) -> NetworkMetrics:
        """Collect network I/O counters and the open connection count."""
        try:
            net_io = psutil.net_io_counters()
            try:
                connections = len(psutil.net_connections())
            except (psutil.AccessDenied, PermissionError):
                connections = 0
            return NetworkMetrics(
                bytes_sent=net_io.bytes_sent,
                bytes_recv=net_io.bytes_recv,
                packets_sent=net_io.packets_sent,
                packets_recv=net_io.packets_recv,
                errors_in=net_io.errin,
                errors_out=net_io.errout,
                connections=connections,
            )
        except Exception as e:
            logger.error("Error collecting network metrics", error=str(e))
            return NetworkMetrics()

    def collect_system_info(self) -> SystemInfo:
        """Collect host uptime, hostname, platform and process details."""
        try:
            boot_time = datetime.fromtimestamp(psutil.boot_time())
            return SystemInfo(
                uptime=(datetime.now() - boot_time).total_seconds(),
                hostname=socket.gethostname(),
                platform=platform.system().lower(),
                python_version=platform.python_version(),
                process_id=os.getpid(),
                process_uptime=time.time() - self._started_at,
            )
        except Exception as e:
            logger.error("Error collecting system info", error=str(e))
            return SystemInfo(process_id=os.getpid())

    # --- database -------------------------------------------------------------

    async def collect_database_metrics(self) -> DatabaseMetrics:
        """Collect database health and statistics. DOWN defaults when unavailable."""
        if self.database is None:
            return self.default_database_metrics()
        try:
            start = time.perf_counter()
            is_healthy = await asyncio.wait_for(self.database.health_check(), self.timeout)
            response_time = (time.perf_counter() - start) * 1000

            if not is_healthy:
                status = ComponentStatus.DOWN
            elif response_time > self.slow_health_check_ms:
                status = ComponentStatus.DEGRADED
            else:
                status = ComponentStatus.UP

            return DatabaseMetrics(
                connections=await self._database_connections(),
                performance=await self._database_performance(),
                storage=await self._database_storage(),
                health=ComponentHealth(
                    is_healthy=bool(is_healthy),
                    last_check=utcnow(),
                    response_time=response_time,
                    status=status,
                ),
            )
        except asyncio.TimeoutError:
            logger.error("Database health check timed out", timeout=self.timeout)
            return self.default_database_metrics()
        except Exception as e:
            logger.error("Failed to collect database metrics", error=str(e))
            return self.default_database_metrics()

    async def _query_one(self, sql: str) -> Optional[Mapping[str, Any]]:
        try:
            rows = await asyncio.wait_for(self.database.query_raw(sql), self.timeout)
        except Exception as e:
            logger.warning("Database statistics query failed", error=str(e))
            return None
        return rows[0] if rows else None

    async def _database_connections(self) -> DatabaseConnections:
        row = await self._query_one(CONNECTION_STATS_SQL)
        if row is None:
            return DatabaseConnections()
        return DatabaseConnections(
            active=int(_number(row, "active_connections")),
            idle=int(_number(row, "idle_connections")),
            total=int(_number(row, "total_connections")),
            max=int(_number(row, "max_connections", 100)) or 100,
            waiting=int(_number(row, "waiting_connections")),
        )

    async def _database_performance(self) -> DatabasePerformance:
        row = await self._query_one(PERFORMANCE_STATS_SQL)
        if row is None:
            return DatabasePerformance()
        return DatabasePerformance(
            average_query_time=_number(row, "avg_query_time"),
            slow_queries=int(_number(row, "slow_queries")),
            total_queries=int(_number(row, "total_queries")),
        )

    async def _database_storage(self) -> DatabaseStorage:
        row = await self._query_one(STORAGE_STATS_SQL)
        if row is None:
            return DatabaseStorage()
        return DatabaseStorage(
            size=int(_number(row, "size")),
            tables_count=int(_number(row, "tables_count")),
        )

    @staticmethod
    def default_database_metrics() -> DatabaseMetrics:
        return DatabaseMetrics(
            health=ComponentHealth(is_healthy=False, status=ComponentStatus.DOWN),
        )

    # --- cache ----------------------------------------------------------------

    async def collect_cache_metrics(self) -> CacheMetrics:
        """Collect Redis and application cache metrics. DOWN defaults when unavailable."""
        if self.cache is None:
            return self.default_cache_metrics()
        try:
            start = time.perf_counter()
            connected = bool(self.cache.is_connected())
            redis = RedisMetrics()
            if connected:
                redis = await self._redis_metrics()
            response_time = (time.perf_counter() - start) * 1000

            return CacheMetrics(
                redis=redis,
                application=self._application_cache_metrics(),
                health=ComponentHealth(
                    is_healthy=connected,
                    last_check=utcnow(),
                    response_time=response_time,
                    status=ComponentStatus.UP if connected else ComponentStatus.DOWN,
                ),
            )
        except Exception as e:
            logger.error("Failed to collect cache metrics", error=str(e))
            return self.default_cache_metrics()

    async def _redis_metrics(self) -> RedisMetrics:
        try:
            info = await asyncio.wait_for(self.cache.info(), self.timeout)
        except Exception as e:
            logger.warning("Cache INFO request failed", error=str(e))
            return RedisMetrics()

        hits = int(_number(info, "keyspace_hits"))
        misses = int(_number(info, "keyspace_misses"))
        used_memory = int(_number(info, "used_memory"))
        max_memory = int(_number(info, "maxmemory"))
        return RedisMetrics(
            connected_clients=int(_number(info, "connected_clients")),
            used_memory=used_memory,
            max_memory=max_memory,
            memory_percentage=(used_memory / max_memory * 100) if max_memory else 0.0,
            hit_rate=(hits / (hits + misses) * 100) if hits + misses else 0.0,
            keyspace_hits=hits,
            keyspace_misses=misses,
            operations_per_second=_number(info, "instantaneous_ops_per_sec"),
            evicted_keys=int(_number(info, "evicted_keys")),
            expired_keys=int(_number(info, "expired_keys")),
            uptime=int(_number(info, "uptime_in_seconds")),
            version=str(info.get("redis_version", "unknown")),
        )

    def _application_cache_metrics(self) -> ApplicationCacheMetrics:
        stats = self.cache.get_stats()
        hits = int(stats.get("hits", 0))
        misses = int(stats.get("misses", 0))
        operations = hits + misses
        return ApplicationCacheMetrics(
            hit_rate=(hits / operations * 100) if operations else 0.0,
            miss_rate=(misses / operations * 100) if operations else 0.0,
            evictions=int(stats.get("evictions", 0)),
            operations=operations,
        )

    @staticmethod
    def default_cache_metrics() -> CacheMetrics:
        return CacheMetrics(
            health=ComponentHealth(is_healthy=False, status=ComponentStatus.DOWN),
        )
