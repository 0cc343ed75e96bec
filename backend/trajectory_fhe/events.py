"""In-process notification bus with sequenced, bounded history for polling."""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any, Callable, Deque

from trajectory_fhe.models import Notification, NotificationType

logger = logging.getLogger(__name__)

Subscriber = Callable[[Notification], None]


class NotificationBus:
    def __init__(self, max_history: int = 5000):
        self.subscribers: list[Subscriber] = []
        self.history: Deque[Notification] = deque(maxlen=max_history)
        self.sequence = 0
        self.lock = threading.RLock()

    def subscribe(self, cb: Subscriber) -> None:
        with self.lock:
            self.subscribers.append(cb)

    def unsubscribe(self, cb: Subscriber) -> None:
        with self.lock:
            if cb in self.subscribers:
                self.subscribers.remove(cb)

    def emit(self, type_: NotificationType, mission_id: int, **data: Any) -> Notification:
        """Assign the next sequence id, record the notification and fan it out."""
        with self.lock:
            self.sequence += 1
            note = Notification(type=type_, mission_id=mission_id, sequence_id=self.sequence, data=data)
            self.history.append(note)
            subscribers = list(self.subscribers)

        logger.info("Notification #%d %s mission=%d %s", note.sequence_id, type_.value, mission_id, data)
        for cb in subscribers:
            try:
                cb(note)
            except Exception:
                # A broken observer must not roll back a committed mutation
                logger.exception("Notification subscriber %r failed", cb)
        return note

    def replay(self, since_seq: int = 0) -> list[Notification]:
        """Notifications with sequence id greater than ``since_seq``, oldest first."""
        with self.lock:
            return [n for n in self.history if n.sequence_id > since_seq]
