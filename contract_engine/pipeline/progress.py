"""
Progress events for batch jobs.

Each observer gets its own bounded queue. Publishing never blocks: when an
observer's queue is full the oldest event is dropped and counted.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging
import queue
import threading

logger = logging.getLogger(__name__)

JOB_STARTED = "job:started"
DOCUMENT_PROCESSED = "document:processed"
JOB_COMPLETED = "job:completed"


@dataclass(frozen=True)
class ProgressEvent:
    type: str
    job_id: str
    sequence: int
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "job_id": self.job_id,
            "sequence": self.sequence,
            "payload": dict(self.payload),
            "timestamp": self.timestamp.isoformat(),
        }


class Subscription:
    """One observer's bounded event queue."""

    def __init__(self, maxsize: int):
        self._queue: "queue.Queue[ProgressEvent]" = queue.Queue(maxsize=maxsize)
        self._lock = threading.Lock()
        self.dropped = 0
        self.closed = False

    def offer(self, event: ProgressEvent) -> None:
        """Enqueue without blocking, evicting the oldest event when full."""
        with self._lock:
            while True:
                try:
                    self._queue.put_nowait(event)
                    return
                except queue.Full:
                    try:
                        self._queue.get_nowait()
                        self.dropped += 1
                    except queue.Empty:
                        pass

    def get(self, timeout: Optional[float] = None) -> Optional[ProgressEvent]:
        """Next event, or None if none arrives within timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[ProgressEvent]:
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events


class ProgressBroadcaster:
    """Fan out progress events to any number of subscribers."""

    def __init__(self, default_queue_size: int = 100):
        self.default_queue_size = default_queue_size
        self._subscribers: List[Subscription] = []
        self._lock = threading.Lock()
        self._sequence = 0

    def subscribe(self, maxsize: Optional[int] = None) -> Subscription:
        subscription = Subscription(maxsize or self.default_queue_size)
        with self._lock:
            self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)
            subscription.closed = True

    def publish(self, event_type: str, job_id: str, payload: Optional[Dict[str, Any]] = None) -> ProgressEvent:
        with self._lock:
            self._sequence += 1
            event = ProgressEvent(event_type, job_id, self._sequence, dict(payload or {}))
            # offer() never blocks, so delivery stays in sequence order
            for subscription in self._subscribers:
                subscription.offer(event)
            count = len(self._subscribers)
        logger.debug(f"[PROGRESS] {event_type} {job_id} -> {count} subscribers")
        return event
