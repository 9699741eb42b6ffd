"""HTTP routes for the infrastructure monitoring service."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from . import __version__
from .alerts import MAX_SUPPRESSION_MINUTES
from .models import (
    Alert,
    AlertCategory,
    AlertFilter,
    AlertRequest,
    AlertSeverity,
    AlertStatus,
)
from .service import InfrastructureService


class AcknowledgeRequest(BaseModel):
    acknowledged_by: str = Field(min_length=1)
    notes: Optional[str] = None


class ResolveRequest(BaseModel):
    resolved_by: Optional[str] = None
    notes: Optional[str] = None


class InfrastructureResolveRequest(BaseModel):
    resolved_by: str = Field(min_length=1)


class SuppressRequest(BaseModel):
    duration: int = Field(ge=1, le=MAX_SUPPRESSION_MINUTES)  # minutes
    reason: Optional[str] = None


class AlertActionResponse(BaseModel):
    success: bool
    message: str
    alert: Optional[Alert] = None


def _not_found(alert_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Alert {alert_id} not found")


def create_app(service: InfrastructureService, manage_lifecycle: bool = False) -> FastAPI:
    """Build the FastAPI app; with ``manage_lifecycle`` it also starts and stops the service."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_lifecycle:
            await service.start()
        try:
            yield
        finally:
            if manage_lifecycle:
                await service.stop()

    app = FastAPI(
        title="InfraWatch",
        version=__version__,
        description="Infrastructure monitoring and alerting",
        lifespan=lifespan,
    )

    @app.get("/")
    async def read_root():
        return {
            "service": service.config.service_name,
            "version": __version__,
            "status": "running" if service.scheduler.is_running else "idle",
        }

    # --- infrastructure ----------------------------------------------------

    @app.get("/infrastructure/summary")
    async def get_summary():
        return await service.get_summary()

    @app.get("/infrastructure/trends")
    async def get_trends(hours: float = Query(24, gt=0, le=168)):
        points = service.get_trends(hours)
        return {"trends": points, "count": len(points)}

    @app.get("/infrastructure/health-score")
    async def get_health_score():
        return service.get_health_score()

    @app.put("/infrastructure/alerts/{alert_id}/resolve")
    async def resolve_infrastructure_alert(alert_id: str, request: InfrastructureResolveRequest):
        success = service.resolve_infrastructure_alert(alert_id, request.resolved_by)
        return {"success": success}

    # --- alerts ------------------------------------------------------------

    @app.get("/alerts")
    async def list_alerts(
        severity: Optional[AlertSeverity] = None,
        category: Optional[AlertCategory] = None,
        status: Optional[AlertStatus] = None,
        source: Optional[str] = None,
        limit: int = Query(100, ge=1, le=1000),
        offset: int = Query(0, ge=0),
    ):
        return service.get_alerts(
            AlertFilter(
                severity=severity,
                category=category,
                status=status,
                source=source,
                limit=limit,
                offset=offset,
            )
        )

    @app.post("/alerts", response_model=Alert, status_code=201)
    async def create_alert(request: AlertRequest):
        return service.create_alert(request)

    @app.get("/alerts/active")
    async def get_active_alerts():
        alerts = service.get_active_alerts()
        return {"alerts": alerts, "count": len(alerts)}

    @app.get("/alerts/statistics")
    async def get_statistics(hours: float = Query(24, gt=0, le=720)):
        return service.get_statistics(hours)

    @app.get("/alerts/rules")
    async def get_rules():
        return {"rules": service.get_rules()}

    @app.get("/alerts/channels")
    async def get_channels():
        return {"channels": service.get_channels()}

    @app.post("/alerts/check")
    async def trigger_alert_checks():
        return await service.trigger_alert_checks()

    @app.get("/alerts/{alert_id}", response_model=Alert)
    async def get_alert(alert_id: str):
        alert = service.get_alert(alert_id)
        if alert is None:
            raise _not_found(alert_id)
        return alert

    @app.put("/alerts/{alert_id}/acknowledge", response_model=AlertActionResponse)
    async def acknowledge_alert(alert_id: str, request: AcknowledgeRequest):
        if service.get_alert(alert_id) is None:
            raise _not_found(alert_id)
        alert = service.acknowledge_alert(alert_id, request.acknowledged_by, request.notes)
        if alert is None:
            return AlertActionResponse(success=False, message="Alert cannot be acknowledged in its current state")
        return AlertActionResponse(success=True, message="Alert acknowledged", alert=alert)

    @app.put("/alerts/{alert_id}/resolve", response_model=AlertActionResponse)
    async def resolve_alert(alert_id: str, request: ResolveRequest):
        if service.get_alert(alert_id) is None:
            raise _not_found(alert_id)
        alert = service.resolve_alert(alert_id, request.resolved_by, request.notes)
        if alert is None:
            return AlertActionResponse(success=False, message="Alert cannot be resolved in its current state")
        return AlertActionResponse(success=True, message="Alert resolved", alert=alert)

    @app.put("/alerts/{alert_id}/suppress", response_model=AlertActionResponse)
    async def suppress_alert(alert_id: str, request: SuppressRequest):
        if service.get_alert(alert_id) is None:
            raise _not_found(alert_id)
        try:
            alert = service.suppress_alert(alert_id, request.duration, request.reason)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        if alert is None:
            return AlertActionResponse(success=False, message="Alert cannot be suppressed in its current state")
        return AlertActionResponse(
            success=True,
            message=f"Alert suppressed for {request.duration} minutes",
            alert=alert,
        )

    return app
