"""
Event Bus for Ticker Momentum

Publish-subscribe notifications between the streaming core and its
consumers. The connection manager and update batcher publish; the session
tracker and the UI layer listen.

All components share one asyncio event loop, so delivery is synchronous:
emit() has called every handler by the time it returns.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, DefaultDict, Dict, List, Optional
from loguru import logger


class EventType(Enum):
    """
    Notifications published by the tracker core.

    CONNECTION_STATE_CHANGED carries state, error and attempts.
    PRICE_BOOK_UPDATED carries the flushed symbols and the point count.
    ERROR carries the reporting component and a message.

    Examples:
        >>> str(EventType.PRICE_BOOK_UPDATED)
        'PRICE_BOOK_UPDATED'
    """

    CONNECTION_STATE_CHANGED = "connection_state_changed"
    PRICE_BOOK_UPDATED = "price_book_updated"
    ERROR = "error"

    def __str__(self) -> str:
        return self.name


Handler = Callable[["Event"], None]


@dataclass
class Event:
    """
    One notification travelling over the bus.

    Attributes:
        event_type (EventType): What happened
        data (Dict[str, Any]): Payload; keys depend on event_type
        source (str): Name of the publishing component
        timestamp (datetime): UTC creation time
    """

    event_type: EventType
    data: Dict[str, Any]
    source: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if not isinstance(self.event_type, EventType):
            raise TypeError(
                f"event_type must be EventType enum, got {type(self.event_type).__name__}"
            )
        if not isinstance(self.data, dict):
            raise TypeError(f"data must be dict, got {type(self.data).__name__}")


class EventBus:
    """
    Synchronous fan-out of events to registered handlers.

    A handler that raises is logged and skipped; the rest still run.

    Examples:
        >>> bus = EventBus()
        >>> bus.subscribe(EventType.ERROR, lambda e: print(e.data['message']))
        >>> bus.emit(Event(EventType.ERROR, {'message': 'boom'}, 'doc'))
        boom
    """

    def __init__(self):
        self._handlers: DefaultDict[EventType, List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: EventType, handler: Handler) -> None:
        """
        Register handler for event_type. Registering twice is a no-op.

        Raises:
            TypeError: If event_type is not an EventType member
        """
        if not isinstance(event_type, EventType):
            raise TypeError(f"event_type must be EventType enum, got {type(event_type).__name__}")

        handlers = self._handlers[event_type]
        if handler not in handlers:
            handlers.append(handler)

    def unsubscribe(self, event_type: EventType, handler: Handler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: "Event") -> None:
        """
        Deliver event to every handler registered for its type.

        Raises:
            TypeError: If event is not an Event
        """
        if not isinstance(event, Event):
            raise TypeError(f"event must be Event instance, got {type(event).__name__}")

        # Snapshot: handlers may unsubscribe while being called
        for handler in tuple(self._handlers[event.event_type]):
            try:
                handler(event)
            except Exception as e:
                name = getattr(handler, '__qualname__', repr(handler))
                logger.error(f"Handler {name} failed on {event.event_type}: {e}")

    def subscriber_count(self, event_type: EventType) -> int:
        return len(self._handlers[event_type])

    def clear_subscribers(self, event_type: Optional[EventType] = None) -> None:
        """Drop handlers for one event type, or for all types when None."""
        if event_type is None:
            self._handlers.clear()
        else:
            self._handlers.pop(event_type, None)
