"""Background dispatcher for the assessment queue."""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Dict, List, Optional, Set

from .config import settings
from .errors import QueueStoreError
from .events import QueueEventManager, queue_events
from .processor import ItemProcessor
from .queue_store import QueueStore
from .schemas import QueueItemView
from .scorer import get_scorer
from .storage import ArtifactStore

logger = logging.getLogger(__name__)


class QueueDispatcher:
    """
    Polls the queue and fans eligible items out to a bounded worker pool.

    The pool size is the concurrency cap: a slot is reserved from a bounded
    semaphore before an item is claimed and released when its attempt ends,
    so no more than ``concurrency`` items are ever in flight.
    """

    def __init__(
        self,
        store: QueueStore,
        processor: ItemProcessor,
        concurrency: Optional[int] = None,
        poll_interval: Optional[float] = None,
        events: QueueEventManager = queue_events,
    ):
        self.store = store
        self.processor = processor
        self.concurrency = concurrency or settings.max_concurrent_assessments
        self.poll_interval = (
            settings.dispatcher_poll_interval_seconds if poll_interval is None else poll_interval
        )
        self.events = events

        self._slots = threading.BoundedSemaphore(self.concurrency)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lifecycle_lock = threading.Lock()
        self._tick_lock = threading.Lock()

        self._in_flight_lock = threading.Lock()
        self._in_flight: Dict[int, Future] = {}

    # ==================== Lifecycle ====================

    def start(self):
        """Start the polling loop. Calling it while running is a no-op."""
        with self._lifecycle_lock:
            if self.is_running:
                logger.debug("Queue dispatcher already running")
                return

            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run, name="queue-dispatcher", daemon=True)
            self._thread.start()
            logger.info(
                f"Queue dispatcher started (concurrency={self.concurrency}, "
                f"poll every {self.poll_interval}s)"
            )

    def stop(self, timeout: Optional[float] = None):
        """Stop polling and wait for in-flight attempts to finish."""
        with self._lifecycle_lock:
            self._stop_event.set()
            if self._thread:
                self._thread.join(timeout=timeout)
                self._thread = None
            self.drain(timeout=timeout)
            if self._executor:
                self._executor.shutdown(wait=True)
                self._executor = None
        logger.info("Queue dispatcher stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self):
        """Main dispatcher loop."""
        logger.info("Queue dispatcher loop started")

        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Error in queue dispatcher: {e}", exc_info=True)

            self._stop_event.wait(self.poll_interval)

        logger.info("Queue dispatcher loop ended")

    # ==================== Dispatch ====================

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.concurrency,
                thread_name_prefix="assessment-worker",
            )
        return self._executor

    def _reserve_slots(self) -> int:
        reserved = 0
        while reserved < self.concurrency and self._slots.acquire(blocking=False):
            reserved += 1
        return reserved

    def _release_slots(self, count: int):
        for _ in range(count):
            self._slots.release()

    def tick(self) -> List[QueueItemView]:
        """
        Run one dispatch round.

        Returns:
            The items dispatched, in dispatch order
        """
        with self._tick_lock:
            available = self._reserve_slots()
            if available <= 0:
                logger.debug("All workers busy, skipping tick")
                return []

            try:
                items = self.store.claim_next(available)
            except QueueStoreError as e:
                self._release_slots(available)
                logger.error(f"Queue store unavailable, abandoning tick: {e}")
                return []
            except Exception:
                self._release_slots(available)
                raise

            # Return the slots we could not fill
            self._release_slots(available - len(items))

            executor = self._get_executor()
            for index, item in enumerate(items):
                try:
                    # Held across submit so the task cannot unregister before it is registered
                    with self._in_flight_lock:
                        self._in_flight[item.id] = executor.submit(self._process, item)
                except RuntimeError as e:
                    # Executor shut down; unsubmitted items are left for stuck-item recovery
                    self._release_slots(len(items) - index)
                    logger.error(f"Could not dispatch queue items {[i.id for i in items[index:]]}: {e}")
                    items = items[:index]
                    break

            if items:
                logger.info(f"Dispatched {len(items)} queue item(s): {[item.id for item in items]}")
            return items

    def _process(self, item: QueueItemView):
        try:
            return self.processor.process(item)
        except Exception as e:
            logger.error(f"Unexpected error processing queue item {item.id}: {e}", exc_info=True)
        finally:
            with self._in_flight_lock:
                self._in_flight.pop(item.id, None)
            self._slots.release()

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for every in-flight attempt. Returns False on timeout."""
        with self._in_flight_lock:
            futures = list(self._in_flight.values())
        if not futures:
            return True
        _, not_done = wait(futures, timeout=timeout)
        return not not_done

    # ==================== Status ====================

    @property
    def in_flight_ids(self) -> Set[int]:
        with self._in_flight_lock:
            return set(self._in_flight)

    @property
    def in_flight_count(self) -> int:
        with self._in_flight_lock:
            return len(self._in_flight)

    def get_status(self) -> Dict[str, Any]:
        """Get current queue status."""
        counts = self.store.counts()
        return {
            "worker_running": self.is_running,
            "concurrency": self.concurrency,
            "in_flight": sorted(self.in_flight_ids),
            "pending": counts.pending,
            "processing": counts.processing,
            "completed": counts.completed,
            "failed": counts.failed,
            "permanently_failed": counts.permanently_failed,
            "total": counts.pending + counts.processing + counts.completed + counts.failed,
        }


# Global dispatcher instance
_dispatcher: Optional[QueueDispatcher] = None
_store: Optional[QueueStore] = None


def get_queue_store() -> QueueStore:
    """Get or create the global queue store."""
    global _store
    if _store is None:
        _store = QueueStore()
    return _store


def get_dispatcher() -> QueueDispatcher:
    """Get or create the global dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        store = get_queue_store()
        processor = ItemProcessor(
            store=store,
            scorer=get_scorer(),
            artifacts=ArtifactStore.from_settings(),
        )
        _dispatcher = QueueDispatcher(store, processor)
    return _dispatcher
