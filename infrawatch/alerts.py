"""Alert store: creation, deduplication, lifecycle and statistics."""

import itertools
import threading
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set

import structlog

from .models import (
    Alert,
    AlertCategory,
    AlertFilter,
    AlertPage,
    AlertRequest,
    AlertSeverity,
    AlertStatistics,
    AlertStatus,
    ResolutionTime,
    TopAlert,
    TransitionOutcome,
    TransitionResult,
    utcnow,
)

logger = structlog.get_logger(__name__)

MAX_SUPPRESSION_MINUTES = 10080  # 7 days
RECENT_ALERTS = 10

AlertListener = Callable[[Alert], None]


# Legal source states for each target state
_TRANSITIONS: Dict[AlertStatus, Set[AlertStatus]] = {
    AlertStatus.ACKNOWLEDGED: {AlertStatus.ACTIVE},
    AlertStatus.RESOLVED: {AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED},
    AlertStatus.SUPPRESSED: {AlertStatus.ACTIVE},
}


def _top_alert_key(alert: Alert) -> str:
    return f"{alert.name.strip().lower()}|{alert.category.value}"


class AlertStore:
    """Authoritative collection of alerts for the lifetime of the process.

    All reads and writes go through one lock so concurrent collection and
    evaluation ticks, and API readers, always see a consistent collection.
    Callers get copies; stored alerts are only mutated here.

    A SUPPRESSED alert returns to ACTIVE once its ``suppressed_until`` has
    passed. The check runs at the start of every read and create, so no
    timer is needed to keep the state current.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._alerts: Dict[str, Alert] = {}
        self._lock = threading.RLock()
        self._sequence = itertools.count(1)
        self._listeners: List[AlertListener] = []

    def add_listener(self, listener: AlertListener) -> None:
        """Register a callback invoked for every newly created alert."""
        self._listeners.append(listener)

    # --- creation ----------------------------------------------------------

    def create_alert(self, request: AlertRequest) -> Alert:
        """Create an alert, or return the open alert it duplicates.

        An alert duplicates another when name, source and metric match and
        the other is ACTIVE or still inside a suppression window.
        """
        metric = request.metric
        if metric is None and request.threshold is not None:
            metric = request.threshold.metric

        alert = Alert(
            name=request.name,
            description=request.description,
            severity=request.severity or AlertSeverity.MEDIUM,
            category=request.category or AlertCategory.SYSTEM,
            source=request.source or "system",
            metric=metric,
            threshold=request.threshold,
            current_value=request.current_value,
            tags=list(dict.fromkeys(request.tags or [])),
            metadata=dict(request.metadata or {}),
            correlation_id=request.correlation_id,
        )

        with self._lock:
            now = self._clock()
            self._expire_suppressions(now)
            existing = self._find_open(alert.dedup_key)
            if existing is not None:
                logger.debug(
                    "Duplicate alert ignored",
                    alert_name=alert.name,
                    existing_id=existing.id,
                    existing_status=existing.status.value,
                )
                return existing.model_copy(deep=True)

            alert.timestamp = now
            alert.sequence = next(self._sequence)
            self._alerts[alert.id] = alert
            created = alert.model_copy(deep=True)

        logger.warning(
            f"Alert triggered: {created.name}",
            category="ALERT",
            alert_id=created.id,
            severity=created.severity.value,
            alert_category=created.category.value,
            source=created.source,
            metric=created.metric,
            current_value=created.current_value,
            correlation_id=created.correlation_id,
        )
        self._notify(created)
        return created

    def _find_open(self, key: tuple) -> Optional[Alert]:
        for alert in self._alerts.values():
            if alert.dedup_key != key:
                continue
            if alert.status in (AlertStatus.ACTIVE, AlertStatus.SUPPRESSED):
                return alert
        return None

    def _notify(self, alert: Alert) -> None:
        for listener in list(self._listeners):
            try:
                listener(alert)
            except Exception as e:
                logger.error("Alert listener failed", alert_id=alert.id, error=str(e))

    # --- transitions -------------------------------------------------------

    def transition(
        self,
        alert_id: str,
        target: AlertStatus,
        actor: Optional[str] = None,
        notes: Optional[str] = None,
        duration_minutes: Optional[int] = None,
    ) -> TransitionResult:
        """Move an alert to ``target`` if the lifecycle allows it."""
        if target not in _TRANSITIONS:
            raise ValueError(f"Cannot transition an alert to {target.value}")
        if target == AlertStatus.SUPPRESSED:
            if duration_minutes is None or not 1 <= duration_minutes <= MAX_SUPPRESSION_MINUTES:
                raise ValueError(
                    f"Suppression duration must be between 1 and {MAX_SUPPRESSION_MINUTES} minutes"
                )

        with self._lock:
            now = self._clock()
            self._expire_suppressions(now)
            alert = self._alerts.get(alert_id)
            if alert is None:
                return TransitionResult(outcome=TransitionOutcome.NOT_FOUND)
            if alert.status not in _TRANSITIONS[target]:
                logger.info(
                    "Alert transition rejected",
                    alert_id=alert_id,
                    current_status=alert.status.value,
                    requested_status=target.value,
                )
                return TransitionResult(
                    outcome=TransitionOutcome.INVALID_TRANSITION,
                    alert=alert.model_copy(deep=True),
                )

            if target == AlertStatus.ACKNOWLEDGED:
                alert.acknowledged_by = actor
                alert.acknowledged_at = now
            elif target == AlertStatus.RESOLVED:
                alert.resolved_at = now
                alert.suppressed_until = None
                if actor is not None:
                    alert.acknowledged_by = actor
                if alert.acknowledged_at is None:
                    alert.acknowledged_at = now
            elif target == AlertStatus.SUPPRESSED:
                alert.suppressed_until = now + timedelta(minutes=duration_minutes)
                alert.metadata["suppression"] = {
                    "duration_minutes": duration_minutes,
                    "reason": notes,
                    "suppressed_at": now.isoformat(),
                    "suppressed_until": alert.suppressed_until.isoformat(),
                }

            if notes is not None:
                alert.notes = notes
            alert.status = target
            updated = alert.model_copy(deep=True)

        logger.info(
            f"Alert {target.value.lower()}: {updated.name}",
            category="ALERT",
            alert_id=updated.id,
            actor=actor,
            notes=notes,
            duration_minutes=duration_minutes,
        )
        return TransitionResult(outcome=TransitionOutcome.APPLIED, alert=updated)

    def acknowledge_alert(self, alert_id: str, acknowledged_by: str, notes: Optional[str] = None) -> Optional[Alert]:
        return self.transition(alert_id, AlertStatus.ACKNOWLEDGED, actor=acknowledged_by, notes=notes).alert_if_ok()

    def resolve_alert(
        self,
        alert_id: str,
        resolved_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Optional[Alert]:
        return self.transition(alert_id, AlertStatus.RESOLVED, actor=resolved_by, notes=notes).alert_if_ok()

    def suppress_alert(self, alert_id: str, duration_minutes: int, reason: Optional[str] = None) -> Optional[Alert]:
        return self.transition(
            alert_id,
            AlertStatus.SUPPRESSED,
            notes=reason,
            duration_minutes=duration_minutes,
        ).alert_if_ok()

    def _expire_suppressions(self, now: datetime) -> None:
        for alert in self._alerts.values():
            if (
                alert.status == AlertStatus.SUPPRESSED
                and alert.suppressed_until is not None
                and alert.suppressed_until <= now
            ):
                alert.status = AlertStatus.ACTIVE
                alert.suppressed_until = None
                logger.info("Alert suppression expired", alert_id=alert.id, alert_name=alert.name)

    # --- queries -----------------------------------------------------------

    def _sorted(self) -> List[Alert]:
        """All alerts newest first; ties keep the most recently inserted first."""
        return sorted(
            self._alerts.values(),
            key=lambda a: (a.timestamp, a.sequence),
            reverse=True,
        )

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        with self._lock:
            self._expire_suppressions(self._clock())
            alert = self._alerts.get(alert_id)
            return alert.model_copy(deep=True) if alert else None

    def get_active_alerts(self) -> List[Alert]:
        with self._lock:
            self._expire_suppressions(self._clock())
            return [a.model_copy(deep=True) for a in self._sorted() if a.status == AlertStatus.ACTIVE]

    def get_alerts(self, alert_filter: Optional[AlertFilter] = None) -> AlertPage:
        alert_filter = alert_filter or AlertFilter()
        with self._lock:
            self._expire_suppressions(self._clock())
            matching = [
                a for a in self._sorted()
                if (alert_filter.severity is None or a.severity == alert_filter.severity)
                and (alert_filter.category is None or a.category == alert_filter.category)
                and (alert_filter.status is None or a.status == alert_filter.status)
                and (alert_filter.source is None or a.source == alert_filter.source)
            ]
            start = alert_filter.offset
            page = matching[start:start + alert_filter.limit]
            return AlertPage(
                alerts=[a.model_copy(deep=True) for a in page],
                total=len(matching),
                has_more=start + len(page) < len(matching),
            )

    def get_statistics(self, window_hours: float = 24) -> AlertStatistics:
        """Aggregate alerts created within the last ``window_hours``."""
        with self._lock:
            now = self._clock()
            self._expire_suppressions(now)
            cutoff = now - timedelta(hours=window_hours)
            alerts = [a.model_copy(deep=True) for a in self._sorted() if a.timestamp >= cutoff]

        stats = AlertStatistics(window_hours=window_hours, total=len(alerts))
        by_severity: Dict[str, int] = defaultdict(int)
        by_category: Dict[str, int] = defaultdict(int)
        by_source: Dict[str, int] = defaultdict(int)
        durations: Dict[AlertCategory, List[float]] = defaultdict(list)
        groups: Dict[str, TopAlert] = {}

        for alert in alerts:
            by_severity[alert.severity.value] += 1
            by_category[alert.category.value] += 1
            by_source[alert.source] += 1

            if alert.status == AlertStatus.ACTIVE:
                stats.active += 1
            elif alert.status == AlertStatus.ACKNOWLEDGED:
                stats.acknowledged += 1
            elif alert.status == AlertStatus.RESOLVED:
                stats.resolved += 1
                if alert.resolved_at is not None:
                    durations[alert.category].append((alert.resolved_at - alert.timestamp).total_seconds())
            elif alert.status == AlertStatus.SUPPRESSED:
                stats.suppressed += 1

            # alerts are newest first, so the first of a group sets name and last_occurred
            key = _top_alert_key(alert)
            if key in groups:
                groups[key].count += 1
            else:
                groups[key] = TopAlert(
                    name=alert.name,
                    category=alert.category,
                    count=1,
                    last_occurred=alert.timestamp,
                )

        stats.by_severity = dict(by_severity)
        stats.by_category = dict(by_category)
        stats.by_source = dict(by_source)

        all_durations = [d for values in durations.values() for d in values]
        if all_durations:
            stats.average_resolution_time = sum(all_durations) / len(all_durations)
        stats.resolution_times = [
            ResolutionTime(category=category, avg_time=sum(values) / len(values), count=len(values))
            for category, values in sorted(durations.items(), key=lambda item: item[0].value)
        ]

        stats.top_alerts = sorted(
            groups.values(),
            key=lambda t: (t.count, t.last_occurred),
            reverse=True,
        )
        stats.recent_alerts = alerts[:RECENT_ALERTS]
        return stats

    def __len__(self) -> int:
        with self._lock:
            return len(self._alerts)
