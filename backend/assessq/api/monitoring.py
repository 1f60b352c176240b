"""Monitoring API endpoints."""
from typing import Any, Dict, List
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..errors import QueueStoreError
from ..monitoring import HealthMonitor, get_health_monitor

router = APIRouter()


class CleanupResponse(BaseModel):
    """Response for an emergency cleanup."""
    message: str
    reset: int


@router.get("/status")
def system_status(monitor: HealthMonitor = Depends(get_health_monitor)) -> Dict[str, Any]:
    """Overall health, latest metrics and active alerts."""
    return monitor.get_system_status()


@router.get("/metrics")
def metrics(monitor: HealthMonitor = Depends(get_health_monitor)) -> Dict[str, Any]:
    """Latest queue metrics from the last health check."""
    return monitor.get_metrics().to_dict()


@router.get("/queue")
def queue_counts(monitor: HealthMonitor = Depends(get_health_monitor)) -> Dict[str, int]:
    """Live queue counts read straight from the store."""
    try:
        return monitor.get_queue_status()
    except QueueStoreError:
        raise HTTPException(status_code=503, detail="Queue store unavailable")


@router.get("/alerts")
def alerts(
    active_only: bool = False,
    monitor: HealthMonitor = Depends(get_health_monitor),
) -> List[Dict[str, Any]]:
    """Alerts, newest first."""
    found = monitor.get_active_alerts() if active_only else monitor.get_alerts()
    return [alert.to_dict() for alert in found]


@router.post("/alerts/{alert_id}/resolve")
def resolve_alert(alert_id: str, monitor: HealthMonitor = Depends(get_health_monitor)):
    """Mark an alert resolved."""
    if not monitor.resolve_alert(alert_id):
        raise HTTPException(status_code=404, detail="Alert not found")
    return {"message": "Alert resolved", "alert_id": alert_id}


@router.post("/cleanup", response_model=CleanupResponse)
def emergency_cleanup(monitor: HealthMonitor = Depends(get_health_monitor)):
    """Reset items stuck in processing back to pending."""
    try:
        reset = monitor.emergency_queue_cleanup()
    except QueueStoreError:
        raise HTTPException(status_code=503, detail="Queue store unavailable")
    return CleanupResponse(message=f"Reset {reset} stuck item(s)", reset=reset)
