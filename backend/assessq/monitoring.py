"""Queue health monitoring, alerting and stuck-item recovery."""
import logging
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .config import settings
from .errors import QueueStoreError
from .events import QueueEventManager, queue_events
from .queue_store import QueueStore
from .queue_worker import get_queue_store

logger = logging.getLogger(__name__)

STUCK_ALERT_MESSAGE = "Recovered stuck assessments"


class AlertType(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class SystemHealth(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class Alert:
    """A raised system alert."""
    id: str
    type: AlertType
    message: str
    timestamp: datetime
    resolved: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class MonitoringMetrics:
    """Latest aggregate view of the queue."""
    active_assessments: int = 0
    queue_length: int = 0
    pending: int = 0
    failed_assessments: int = 0
    permanently_failed: int = 0
    error_rate: float = 0.0
    last_error_time: Optional[datetime] = None
    last_check_at: Optional[datetime] = None
    system_health: SystemHealth = SystemHealth.HEALTHY

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["system_health"] = self.system_health.value
        for key in ("last_error_time", "last_check_at"):
            data[key] = data[key].isoformat() if data[key] else None
        return data


class HealthMonitor:
    """
    Audits the queue on its own schedule.

    Each tick refreshes metrics, raises threshold alerts, checks database
    latency and resets items stranded in ``processing`` back to ``pending``.
    Alerts are kept in memory, newest first, and deduplicated by message.
    """

    def __init__(
        self,
        store: QueueStore,
        events: QueueEventManager = queue_events,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.events = events
        self._clock = clock

        self.stuck_after = timedelta(minutes=settings.stuck_item_minutes)
        self.dedup_window = timedelta(minutes=settings.alert_dedup_minutes)
        self.retention = timedelta(hours=settings.alert_retention_hours)
        self.max_alerts = settings.max_alerts
        self.queue_length_warning = settings.queue_length_warning
        self.queue_length_critical = settings.queue_length_critical
        self.error_rate_threshold = settings.error_rate_threshold
        self.db_slow_response_ms = settings.db_slow_response_ms

        self._alerts: List[Alert] = []
        self._metrics = MonitoringMetrics()
        self._lock = threading.Lock()
        self._started_at = time.monotonic()

    # ==================== Tick ====================

    def tick(self):
        """Run every health check once."""
        try:
            self.check_queue_health()
            self.check_database_health()
            self.recover_stuck_items()
        except Exception as e:
            logger.error(f"Error during system health check: {e}", exc_info=True)
            self.create_alert(AlertType.ERROR, "System health check failed", {"error": str(e)})

        self.update_system_health()
        self.log_metrics()

    def check_queue_health(self):
        """Refresh counts and raise queue length / error rate alerts."""
        try:
            counts = self.store.counts()
        except QueueStoreError as e:
            logger.warning(f"Queue health check failed: {e}")
            self.create_alert(AlertType.ERROR, "Queue health check failed", {"error": str(e)})
            return

        total = counts.active_total
        error_rate = counts.failed / total if total > 0 else 0.0

        with self._lock:
            self._metrics.queue_length = total
            self._metrics.pending = counts.pending
            self._metrics.active_assessments = counts.processing
            self._metrics.failed_assessments = counts.failed
            self._metrics.permanently_failed = counts.permanently_failed
            self._metrics.error_rate = error_rate
            self._metrics.last_check_at = self._clock()

        breakdown = {
            "queue_length": total,
            "pending": counts.pending,
            "processing": counts.processing,
            "failed": counts.failed,
        }
        if total >= self.queue_length_critical:
            self.create_alert(AlertType.ERROR, f"Critical queue length: {total} items", breakdown)
        elif total >= self.queue_length_warning:
            self.create_alert(AlertType.WARNING, f"High queue length: {total} items", breakdown)

        if error_rate > self.error_rate_threshold:
            self.create_alert(
                AlertType.WARNING,
                f"High error rate: {round(error_rate * 100)}%",
                {"error_rate": error_rate, "failed_count": counts.failed, "total_count": total},
            )

    def check_database_health(self):
        """Time a trivial query against the store."""
        start = time.monotonic()
        try:
            self.store.ping()
        except QueueStoreError as e:
            self.create_alert(AlertType.ERROR, "Database health check failed", {"error": str(e)})
            return
        response_ms = int((time.monotonic() - start) * 1000)
        if response_ms > self.db_slow_response_ms:
            self.create_alert(
                AlertType.WARNING,
                f"Database response time high: {response_ms}ms",
                {"response_time_ms": response_ms},
            )

    def recover_stuck_items(self) -> List[int]:
        """Reset processing items with no update inside the staleness window."""
        minutes = int(self.stuck_after.total_seconds() // 60)
        reset_ids = self.store.reset_stuck(
            older_than=self._clock() - self.stuck_after,
            message=f"Reset by health monitor: no progress for over {minutes} minutes",
        )
        if reset_ids:
            logger.warning(f"Reset {len(reset_ids)} stuck queue item(s): {reset_ids}")
            self.create_alert(
                AlertType.WARNING,
                STUCK_ALERT_MESSAGE,
                {"reset_count": len(reset_ids), "item_ids": reset_ids},
            )
            self.events.broadcast({"type": "stuck_reset", "item_ids": reset_ids})
        return reset_ids

    def update_system_health(self):
        """Derive overall health from recent unresolved alerts and the error rate."""
        cutoff = self._clock() - self.dedup_window
        with self._lock:
            recent = [a for a in self._alerts if not a.resolved and a.timestamp >= cutoff]
            if any(a.type == AlertType.ERROR for a in recent):
                health = SystemHealth.CRITICAL
            elif any(a.type == AlertType.WARNING for a in recent) or \
                    self._metrics.error_rate > self.error_rate_threshold:
                health = SystemHealth.WARNING
            else:
                health = SystemHealth.HEALTHY
            self._metrics.system_health = health

    def log_metrics(self):
        metrics = self.get_metrics()
        logger.info(
            f"System metrics: health={metrics.system_health.value} queue={metrics.queue_length} "
            f"active={metrics.active_assessments} failed={metrics.failed_assessments} "
            f"error_rate={round(metrics.error_rate * 100)}% alerts={len(self.get_active_alerts())}"
        )

    # ==================== Alerts ====================

    def create_alert(
        self,
        alert_type: AlertType,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Alert:
        """
        Raise an alert, or merge into an identical unresolved one raised
        within the dedup window.
        """
        now = self._clock()
        with self._lock:
            for existing in self._alerts:
                if (
                    existing.message == message
                    and not existing.resolved
                    and now - existing.timestamp < self.dedup_window
                ):
                    existing.metadata = {**existing.metadata, **(metadata or {})}
                    return existing

            alert = Alert(
                id=uuid.uuid4().hex,
                type=alert_type,
                message=message,
                timestamp=now,
                metadata=dict(metadata or {}),
            )
            self._alerts.insert(0, alert)
            del self._alerts[self.max_alerts:]

            if alert_type == AlertType.ERROR:
                self._metrics.last_error_time = now

        log = logger.error if alert_type == AlertType.ERROR else logger.warning
        log(f"ALERT [{alert_type.value.upper()}]: {message} {metadata or ''}")
        return alert

    def get_alerts(self) -> List[Alert]:
        with self._lock:
            return list(self._alerts)

    def get_active_alerts(self) -> List[Alert]:
        with self._lock:
            return [a for a in self._alerts if not a.resolved]

    def resolve_alert(self, alert_id: str) -> bool:
        with self._lock:
            for alert in self._alerts:
                if alert.id == alert_id:
                    alert.resolved = True
                    logger.info(f"Alert resolved: {alert.message}")
                    return True
        return False

    def clear_old_alerts(self) -> int:
        """Drop alerts older than the retention period."""
        cutoff = self._clock() - self.retention
        with self._lock:
            before = len(self._alerts)
            self._alerts = [a for a in self._alerts if a.timestamp > cutoff]
            removed = before - len(self._alerts)
        if removed:
            logger.info(f"Cleared {removed} old alerts")
        return removed

    # ==================== Read API ====================

    def get_metrics(self) -> MonitoringMetrics:
        with self._lock:
            return replace(self._metrics)

    def get_queue_status(self) -> Dict[str, int]:
        counts = self.store.counts()
        return {
            "pending": counts.pending,
            "processing": counts.processing,
            "failed": counts.failed,
            "permanently_failed": counts.permanently_failed,
        }

    def get_system_status(self) -> Dict[str, Any]:
        metrics = self.get_metrics()
        return {
            "health": metrics.system_health.value,
            "metrics": metrics.to_dict(),
            "active_alerts": [a.to_dict() for a in self.get_active_alerts()],
            "uptime_minutes": round((time.monotonic() - self._started_at) / 60),
            "timestamp": self._clock().isoformat(),
        }

    # ==================== Recovery ====================

    def emergency_queue_cleanup(self) -> int:
        """Reset stuck processing items on demand. Returns how many were reset."""
        logger.warning("Starting emergency queue cleanup")
        try:
            reset_ids = self.store.reset_stuck(
                older_than=self._clock() - self.stuck_after,
                message="Reset by emergency cleanup",
            )
        except QueueStoreError as e:
            logger.error(f"Emergency queue cleanup failed: {e}")
            self.create_alert(AlertType.ERROR, "Emergency queue cleanup failed", {"error": str(e)})
            raise

        if reset_ids:
            self.create_alert(
                AlertType.INFO,
                f"Emergency cleanup: Reset {len(reset_ids)} stuck items",
                {"reset_count": len(reset_ids), "item_ids": reset_ids},
            )
            self.events.broadcast({"type": "stuck_reset", "item_ids": reset_ids})
        logger.info(f"Emergency cleanup reset {len(reset_ids)} item(s)")
        return len(reset_ids)


# Global monitor instance
_monitor: Optional[HealthMonitor] = None


def get_health_monitor() -> HealthMonitor:
    """Get or create the global health monitor."""
    global _monitor
    if _monitor is None:
        _monitor = HealthMonitor(get_queue_store())
    return _monitor
