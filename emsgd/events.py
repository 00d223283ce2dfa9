"""Append-only audit log of group state transitions."""

import logging
import time
from typing import Callable, Optional

from .models import SystemEvent

logger = logging.getLogger(__name__)

GROUP_CREATED = "group_created"
USER_JOINED = "user_joined"
USER_LEFT = "user_left"
USER_REMOVED = "user_removed"
ADMIN_ASSIGNED = "admin_assigned"
ADMIN_REVOKED = "admin_revoked"
GROUP_RENAMED = "group_renamed"
DESCRIPTION_UPDATED = "description_updated"
DP_UPDATED = "dp_updated"

EVENT_KINDS = (
    GROUP_CREATED,
    USER_JOINED,
    USER_LEFT,
    USER_REMOVED,
    ADMIN_ASSIGNED,
    ADMIN_REVOKED,
    GROUP_RENAMED,
    DESCRIPTION_UPDATED,
    DP_UPDATED,
)

EventSubscriber = Callable[[SystemEvent], None]


class SystemEventLog:
    """Persists events through the store and hands them to subscribers.

    The log is an audit trail, not a delivery queue: subscribers see an
    event only after it has been stored, and a failing subscriber does not
    undo it.
    """

    def __init__(self, store, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock
        self._subscribers: list[EventSubscriber] = []

    def subscribe(self, fn: EventSubscriber):
        self._subscribers.append(fn)

    def append(self, kind: str, group_id: str, subject: Optional[str] = "") -> SystemEvent:
        if kind not in EVENT_KINDS:
            raise ValueError(f"unknown system event kind: {kind}")
        event = SystemEvent(kind=kind, group_id=group_id, subject=subject or "",
                            timestamp=self.clock())
        stored = self.store.append_event(event)
        logger.info(f"[SYSTEM] {kind}: group={group_id} subject={subject or '-'}")
        return stored

    def notify(self, event: SystemEvent):
        for fn in self._subscribers:
            try:
                fn(event)
            except Exception:
                logger.exception(f"System event subscriber failed for {event.kind} in {event.group_id}")

    def list(self, group_id: str) -> list[SystemEvent]:
        return self.store.list_events(group_id)
