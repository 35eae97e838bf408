"""
Domain Events

Observers (notification feeds, UI refreshers) subscribe here instead of
polling the registry and the ledger. Events are published only after the
change they describe has committed.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock


class DomainEvent(Enum):
    KYC_SUBMITTED = "KYCSubmitted"
    KYC_APPROVED = "KYCApproved"
    KYC_REJECTED = "KYCRejected"

    CAMPAIGN_CREATED = "CampaignCreated"
    CONTRIBUTION_MADE = "ContributionMade"
    FUNDS_WITHDRAWN = "FundsWithdrawn"


EventHandler = Callable[['EventPayload'], None]


@dataclass
class EventPayload:
    """A committed change, as seen by observers"""
    event_type: DomainEvent
    entity_type: str
    entity_id: str
    data: Dict[str, Any]
    actor: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        document = dict(self.__dict__)
        document['event_type'] = self.event_type.value
        document['timestamp'] = self.timestamp.isoformat()
        return document

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EventPayload':
        data = dict(data)
        data['event_type'] = DomainEvent(data['event_type'])
        if isinstance(data.get('timestamp'), str):
            data['timestamp'] = datetime.fromisoformat(data['timestamp'])
        return cls(**data)


def _name(handler: EventHandler) -> str:
    return getattr(handler, '__name__', type(handler).__name__)


class EventDispatcher:
    """
    Synchronous publish/subscribe hub.

    Handlers run on the publishing thread, outside the dispatcher lock, so a
    handler may itself call back into the registry or the ledger. A failing
    handler is logged and skipped; it never undoes the committed change.
    """

    def __init__(self):
        self._by_type: Dict[DomainEvent, List[EventHandler]] = {}
        self._catch_all: List[EventHandler] = []
        self._lock = RLock()
        self.logger = logging.getLogger("escrow.events")

    def subscribe(self, event_type: DomainEvent, handler: EventHandler) -> None:
        with self._lock:
            self._by_type.setdefault(event_type, []).append(handler)
        self.logger.debug(f"{_name(handler)} subscribed to {event_type.value}")

    def subscribe_all(self, handler: EventHandler) -> None:
        """Receive every event type"""
        with self._lock:
            self._catch_all.append(handler)
        self.logger.debug(f"{_name(handler)} subscribed to all events")

    def unsubscribe(self, event_type: DomainEvent, handler: EventHandler) -> None:
        with self._lock:
            handlers = self._by_type.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)
                return
        self.logger.warning(f"{_name(handler)} was not subscribed to {event_type.value}")

    def unsubscribe_all(self, handler: EventHandler) -> None:
        with self._lock:
            if handler in self._catch_all:
                self._catch_all.remove(handler)
                return
        self.logger.warning(f"{_name(handler)} was not a catch-all subscriber")

    def publish(self, event: EventPayload) -> None:
        with self._lock:
            handlers = self._by_type.get(event.event_type, []) + self._catch_all

        self.logger.debug(f"{event.event_type.value} {event.entity_type}:{event.entity_id} -> {len(handlers)} handler(s)")
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                self.logger.exception(f"Handler {_name(handler)} failed on {event.event_type.value}")

    def clear(self) -> None:
        with self._lock:
            self._by_type = {}
            self._catch_all = []

    def get_handler_count(self, event_type: Optional[DomainEvent] = None) -> int:
        """Handlers for one event type, or every handler when no type is given"""
        with self._lock:
            if event_type is not None:
                return len(self._by_type.get(event_type, []))
            return sum(map(len, self._by_type.values())) + len(self._catch_all)


class EventRecorder:
    """Catch-all handler keeping the most recent events, oldest first"""

    def __init__(self, max_events: int = 1000):
        self.max_events = max_events
        self.events: List[EventPayload] = []
        self._lock = RLock()

    def __call__(self, event: EventPayload) -> None:
        with self._lock:
            self.events.append(event)
            del self.events[:-self.max_events]

    def of_type(self, event_type: DomainEvent) -> List[EventPayload]:
        with self._lock:
            return [e for e in self.events if e.event_type == event_type]

    def recent(self, limit: int) -> List[EventPayload]:
        with self._lock:
            return self.events[-limit:]
