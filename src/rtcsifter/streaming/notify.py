"""Fire-and-forget delivery of engine notifications to subscribers."""

import logging
import queue
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)

SESSION_FINALIZED = "session_finalized"
EVENT_CORRELATED = "event_correlated"


class NotificationDispatcher:
    """Bounded queue drained by one worker thread.

    publish() never blocks: when the queue is full the notification is
    dropped with a warning. Subscribers run on the worker thread, so a slow
    or failing subscriber only delays other notifications, never the engine.
    """

    def __init__(self, maxsize: int):
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._subscribers: dict[str, list[Callable[[Any], None]]] = {}
        self._lock = threading.Lock()
        self._stopping = threading.Event()
        self.dropped = 0

        self._worker = threading.Thread(target=self._drain, name="rtcsifter-notify", daemon=True)
        self._worker.start()

    # Public API

    def subscribe(self, topic: str, callback: Callable[[Any], None]):
        with self._lock:
            self._subscribers.setdefault(topic, []).append(callback)

    def publish(self, topic: str, payload: Any) -> bool:
        """Queue a notification. Returns False if it had to be dropped."""
        try:
            self._queue.put_nowait((topic, payload))
            return True
        except queue.Full:
            self.dropped += 1
            logger.warning("Notification queue full, dropping %s notification", topic)
            return False

    def join(self):
        """Block until every queued notification has been delivered."""
        self._queue.join()

    def stop(self, timeout: float = 5.0):
        """Deliver what is queued, then stop the worker."""
        self._stopping.set()
        self._worker.join(timeout=timeout)

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    # Internal helpers

    def _drain(self):
        while not (self._stopping.is_set() and self._queue.empty()):
            try:
                topic, payload = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                self._deliver(topic, payload)
            finally:
                self._queue.task_done()

    def _deliver(self, topic: str, payload: Any):
        with self._lock:
            callbacks = list(self._subscribers.get(topic, ()))
        for callback in callbacks:
            try:
                callback(payload)
            except Exception:
                logger.exception("Subscriber for %s failed", topic)
