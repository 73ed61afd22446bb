"""In-process progress broker between the orchestrator and its listeners."""

import logging
import queue
import threading
from typing import Dict, List, Optional

from ..core.models import ProgressEvent

logger = logging.getLogger(__name__)


class ProgressBroker:
    """Fan progress events out to per-task subscriber queues.

    One broker lives for the whole process and is handed to the orchestrator
    and to whatever transport pushes events to clients. ``current`` never
    decreases within a task: a lower value is raised to the last one seen.
    """

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[queue.Queue]] = {}
        self._last: Dict[str, ProgressEvent] = {}

    def subscribe(self, task_id: str) -> queue.Queue:
        """Register a listener; it immediately receives the last known event."""
        q: queue.Queue = queue.Queue(maxsize=self.queue_size)
        with self._lock:
            self._subscribers.setdefault(task_id, []).append(q)
            last = self._last.get(task_id)
        if last is not None:
            q.put_nowait(last)
        return q

    def unsubscribe(self, task_id: str, q: queue.Queue):
        with self._lock:
            subs = self._subscribers.get(task_id, [])
            if q in subs:
                subs.remove(q)
            if not subs:
                self._subscribers.pop(task_id, None)

    def publish(self, event: ProgressEvent) -> ProgressEvent:
        with self._lock:
            last = self._last.get(event.task_id)
            if last is not None and event.current < last.current:
                event = ProgressEvent(event.task_id, event.stage, last.current, event.total, event.message)
            self._last[event.task_id] = event
            subs = list(self._subscribers.get(event.task_id, []))

        for q in subs:
            try:
                q.put_nowait(event)
            except queue.Full:
                logger.debug(f"Dropping progress event for slow subscriber of task {event.task_id}")
        return event

    def last_event(self, task_id: str) -> Optional[ProgressEvent]:
        with self._lock:
            return self._last.get(task_id)

    def close(self, task_id: str):
        """Forget a finished task and detach its subscribers."""
        with self._lock:
            self._subscribers.pop(task_id, None)
            self._last.pop(task_id, None)
