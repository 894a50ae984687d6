"""
govcore/protocol/notifications.py

Outbound notification channel for governance state changes.

Components publish events to a NotificationHub; subscribers (relays,
notification delivery, metrics) receive them fire-and-forget:
- Delivery is synchronous and in publication order
- A failing subscriber is logged and skipped, never affecting the
  publisher or the other subscribers
- A bounded history is kept for audit/read access

Usage:
    hub = NotificationHub()
    hub.subscribe(my_callback, {EventType.ITEM_VALIDATED, EventType.ITEM_REJECTED})
"""

import time
import logging
import itertools
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Set, Tuple

logger = logging.getLogger("govcore.protocol.notifications")


# ============================================================================
# CONSTANTS
# ============================================================================

DEFAULT_HISTORY_SIZE = 1000


class EventType(Enum):
    """Governance state transitions."""
    DELEGATION_CREATED = "delegation_created"
    DELEGATION_UPDATED = "delegation_updated"
    DELEGATION_REVOKED = "delegation_revoked"
    QUORUM_UPDATED = "quorum_updated"
    QUORUM_REACHED = "quorum_reached"
    QUORUM_FAILED = "quorum_failed"
    ITEM_SUBMITTED = "item_submitted"
    VOTE_CAST = "vote_cast"
    ITEM_VALIDATED = "item_validated"
    ITEM_REJECTED = "item_rejected"
    CHECK_FAILED = "check_failed"


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class GovernanceEvent:
    """A single published state change."""
    event_type: EventType
    subject_id: str                      # delegation, decision or item id
    sequence: int                        # publication order, starting at 1
    timestamp: float
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type.value,
            "subject_id": self.subject_id,
            "sequence": self.sequence,
            "timestamp": self.timestamp,
            "data": self.data,
        }


Subscriber = Callable[[GovernanceEvent], None]


# ============================================================================
# NOTIFICATION HUB
# ============================================================================

class NotificationHub:
    """Observer registry delivering governance events in order."""

    def __init__(
        self,
        history_size: int = DEFAULT_HISTORY_SIZE,
        clock: Callable[[], float] = time.time,
    ):
        self._clock = clock
        self._subscribers: List[Tuple[Subscriber, Optional[Set[EventType]]]] = []
        self._history: Deque[GovernanceEvent] = deque(maxlen=history_size)
        self._sequence = itertools.count(1)
        self._delivery_failures = 0

    def subscribe(
        self,
        callback: Subscriber,
        event_types: Optional[Iterable[EventType]] = None,
    ) -> None:
        """
        Register a subscriber.

        Args:
            callback: Called with each matching GovernanceEvent
            event_types: Restrict delivery to these types (None = all)
        """
        types = set(event_types) if event_types is not None else None
        self._subscribers.append((callback, types))

    def unsubscribe(self, callback: Subscriber) -> None:
        """Remove every registration of a subscriber."""
        self._subscribers = [(cb, types) for cb, types in self._subscribers if cb is not callback]

    def publish(
        self,
        event_type: EventType,
        subject_id: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> GovernanceEvent:
        """Publish an event to all matching subscribers."""
        event = GovernanceEvent(
            event_type=event_type,
            subject_id=subject_id,
            sequence=next(self._sequence),
            timestamp=self._clock(),
            data=data or {},
        )
        self._history.append(event)

        for callback, types in list(self._subscribers):
            if types is not None and event_type not in types:
                continue
            try:
                callback(event)
            except Exception as e:
                self._delivery_failures += 1
                logger.error(f"Subscriber error for {event_type.value} ({subject_id}): {e}")

        return event

    def get_history(
        self,
        event_type: Optional[EventType] = None,
        subject_id: Optional[str] = None,
    ) -> List[GovernanceEvent]:
        """Recent events, oldest first, optionally filtered."""
        return [
            e for e in self._history
            if (event_type is None or e.event_type == event_type)
            and (subject_id is None or e.subject_id == subject_id)
        ]

    def get_stats(self) -> dict:
        return {
            "subscribers": len(self._subscribers),
            "history_size": len(self._history),
            "delivery_failures": self._delivery_failures,
        }
