"""
Sync lifecycle events.

Coordinators publish SyncEvents to whatever channel they were given; the
channel decides where they go (log, console, nowhere).
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from accountsync.models.account import SyncType


logger = logging.getLogger(__name__)

STARTED = "started"
PROGRESS = "progress"
COMPLETED = "completed"
FAILED = "failed"


@dataclass
class SyncEvent:
    kind: str
    account_id: str
    sync_type: SyncType
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)


class EventChannel(Protocol):
    def publish(self, event: SyncEvent) -> None: ...


class LoggingEventChannel:
    """Default channel: every event becomes a log record."""

    def publish(self, event: SyncEvent) -> None:
        level = logging.ERROR if event.kind == FAILED else logging.INFO
        if event.kind == PROGRESS:
            level = logging.DEBUG
        logger.log(level, "[%s/%s] %s %s", event.account_id, event.sync_type.value, event.kind, event.message)


class CollectingEventChannel:
    """Keeps every event in memory."""

    def __init__(self):
        self.events: list[SyncEvent] = []

    def publish(self, event: SyncEvent) -> None:
        self.events.append(event)

    def kinds(self, sync_type: Optional[SyncType] = None) -> list[str]:
        return [e.kind for e in self.events if sync_type is None or e.sync_type == sync_type]


class Publisher:
    """Small helper bound to one (channel, sync type) pair."""

    def __init__(self, channel: EventChannel, sync_type: SyncType):
        self._channel = channel
        self._sync_type = sync_type

    def __call__(self, kind: str, account_id: str, message: str = "", **data: Any) -> None:
        self._channel.publish(SyncEvent(kind, account_id, self._sync_type, message, data))
