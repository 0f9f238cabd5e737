from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

LOGGER = logging.getLogger("pixelpilot.progress")


class EventType(str, Enum):
    test_progress = "test-progress"
    test_warning = "test-warning"
    test_complete = "test-complete"
    report_enhanced = "report-enhanced"
    report_enhancement_failed = "report-enhancement-failed"
    backup_created = "backup-created"


@dataclass(frozen=True)
class ProgressEvent:
    type: EventType
    data: Dict[str, Any] = field(default_factory=dict)
    project_id: Optional[str] = None
    emitted_at: float = field(default_factory=time.time)

    def as_message(self) -> Dict[str, Any]:
        payload = dict(self.data)
        if self.project_id is not None:
            payload.setdefault("projectId", self.project_id)
        return {"event": self.type.value, "data": payload}


class Subscription:
    """Bounded mailbox for one connected client."""

    def __init__(self, maxsize: int = 1000) -> None:
        self._queue: "queue.Queue[ProgressEvent]" = queue.Queue(maxsize=maxsize)
        self.dropped = 0

    def offer(self, event: ProgressEvent) -> bool:
        try:
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            self.dropped += 1
            return False

    def get(self, timeout: Optional[float] = None) -> Optional[ProgressEvent]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[ProgressEvent]:
        events: List[ProgressEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events


class ProgressChannel:
    """Fan progress events out to every current subscriber.

    Delivery is best effort and at most once: there is no replay for late
    subscribers and a full mailbox drops the event for that subscriber only.
    The persisted report stays authoritative.
    """

    def __init__(self, mailbox_size: int = 1000) -> None:
        self._mailbox_size = mailbox_size
        self._subscribers: List[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(self) -> Subscription:
        subscription = Subscription(self._mailbox_size)
        with self._lock:
            self._subscribers.append(subscription)
        LOGGER.debug("Progress subscriber added (%s active)", len(self._subscribers))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)
        LOGGER.debug("Progress subscriber removed (%s active)", len(self._subscribers))

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: ProgressEvent) -> int:
        with self._lock:
            subscribers = list(self._subscribers)
        delivered = 0
        for subscription in subscribers:
            if subscription.offer(event):
                delivered += 1
            else:
                LOGGER.warning("Dropped %s event for a slow progress subscriber", event.type.value)
        return delivered

    def emit(self, event_type: EventType, project_id: Optional[str] = None, **data: Any) -> int:
        return self.publish(ProgressEvent(type=event_type, data=data, project_id=project_id))


_channel: Optional[ProgressChannel] = None


def get_progress_channel() -> ProgressChannel:
    global _channel
    if _channel is None:
        _channel = ProgressChannel()
    return _channel
