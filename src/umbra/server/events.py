"""
Engine notifications.

Events are appended to an in-memory log and handed to subscribers
synchronously, in emission order.
"""
import logging
import threading
from dataclasses import asdict, dataclass
from typing import Callable, List, Optional, Type

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    """Base class for engine notifications."""

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {"event": self.name, **asdict(self)}


@dataclass(frozen=True)
class TransactionProcessed(Event):
    transaction_id: int
    timestamp: float


@dataclass(frozen=True)
class ClusterUpdated(Event):
    cluster_id: int


@dataclass(frozen=True)
class DecryptionRequested(Event):
    request_id: int
    cluster_id: int


@dataclass(frozen=True)
class ClusterDecrypted(Event):
    """Aggregate of one cluster as decrypted by the oracle."""
    request_id: int
    cluster_id: int
    centroid_amount: int
    centroid_frequency: int
    centroid_risk: int
    member_count: int


Subscriber = Callable[[Event], None]


class EventLog:
    """Append-only event log with synchronous subscribers."""

    def __init__(self):
        self._events: List[Event] = []
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._events)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, event: Event) -> None:
        with self._lock:
            self._events.append(event)
        logger.debug("event %s", event.name)
        for callback in list(self._subscribers):
            callback(event)

    def since(self, offset: int = 0, kind: Optional[Type[Event]] = None) -> List[Event]:
        """Events from ``offset`` on, optionally filtered by type."""
        events = self._events[offset:]
        if kind is not None:
            events = [e for e in events if isinstance(e, kind)]
        return events
