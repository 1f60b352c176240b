"""Fan-out of queue events to SSE listeners."""
import asyncio
import logging
import threading
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)


class QueueEventManager:
    """Manages SSE connections for queue updates."""

    def __init__(self, maxsize: int = 100):
        self._listeners: List[Tuple[asyncio.AbstractEventLoop, asyncio.Queue]] = []
        self._lock = threading.Lock()
        self._maxsize = maxsize

    def add_listener(self) -> asyncio.Queue:
        """Add a new listener and return their queue. Must run on an event loop."""
        queue = asyncio.Queue(maxsize=self._maxsize)
        loop = asyncio.get_running_loop()
        with self._lock:
            self._listeners.append((loop, queue))
        return queue

    def remove_listener(self, queue: asyncio.Queue):
        """Remove a listener."""
        with self._lock:
            self._listeners = [(loop, q) for loop, q in self._listeners if q is not queue]

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def broadcast(self, event: Dict[str, Any]):
        """Broadcast an event to all listeners; callable from any thread."""
        with self._lock:
            listeners = list(self._listeners)
        for loop, queue in listeners:
            try:
                loop.call_soon_threadsafe(self._deliver, queue, event)
            except RuntimeError:
                # Listener's loop already closed
                self.remove_listener(queue)

    @staticmethod
    def _deliver(queue: asyncio.Queue, event: Dict[str, Any]):
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            pass  # Slow consumer, drop


# Global event manager
queue_events = QueueEventManager()
