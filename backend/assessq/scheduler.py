"""Background scheduling for queue dispatch and health monitoring."""
import argparse
import json
import logging
import time

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .config import settings
from .database import init_db
from .monitoring import HealthMonitor, get_health_monitor
from .queue_worker import get_dispatcher

logger = logging.getLogger(__name__)


def setup_logging(level: str = settings.log_level):
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def create_scheduler(monitor: HealthMonitor) -> BackgroundScheduler:
    """Build a scheduler running the monitor's periodic jobs."""
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        monitor.tick,
        trigger=IntervalTrigger(seconds=settings.monitor_interval_seconds),
        id="health_monitor",
        name="Queue health monitor",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        monitor.clear_old_alerts,
        trigger=IntervalTrigger(hours=1),
        id="alert_pruning",
        name="Prune old alerts",
        replace_existing=True,
    )
    return scheduler


# Global scheduler instance
scheduler = None


def start_scheduler():
    """Start the dispatcher and the health monitor."""
    global scheduler
    monitor = get_health_monitor()
    if scheduler is None:
        scheduler = create_scheduler(monitor)
    if not scheduler.running:
        scheduler.start()
        # Initial check without waiting a full interval
        monitor.tick()
    get_dispatcher().start()
    logger.info(
        f"Scheduler started. Health checks every {settings.monitor_interval_seconds}s, "
        f"dispatch every {settings.dispatcher_poll_interval_seconds}s."
    )


def stop_scheduler():
    """Stop the health monitor and the dispatcher."""
    global scheduler
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=True)
    scheduler = None
    get_dispatcher().stop()
    logger.info("Scheduler stopped.")


def main(argv=None):
    """Command line entry point."""
    parser = argparse.ArgumentParser(description="Assessment queue commands")
    parser.add_argument("command", choices=["check", "cleanup", "status", "daemon"],
                        help="Command to run")

    args = parser.parse_args(argv)
    setup_logging()
    init_db()

    if args.command == "check":
        monitor = get_health_monitor()
        monitor.tick()
        print(json.dumps(monitor.get_system_status(), indent=2, default=str))
    elif args.command == "cleanup":
        reset = get_health_monitor().emergency_queue_cleanup()
        print(f"Reset {reset} stuck item(s)")
    elif args.command == "status":
        print(json.dumps(get_dispatcher().get_status(), indent=2))
    elif args.command == "daemon":
        print("Starting queue daemon...")
        start_scheduler()
        try:
            while True:
                time.sleep(60)
        except KeyboardInterrupt:
            stop_scheduler()


# CLI entry point
if __name__ == "__main__":
    main()

