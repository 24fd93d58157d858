"""
Lightweight event bus for decoupled graph delta notifications.

Follows publisher-subscriber pattern so the watch pipeline never knows who
renders its changes.

Design Principles:
- Publisher-subscriber pattern (decoupled)
- Supports both sync and async handlers
- Async handlers run on a bound event loop, so a publisher on a plain
  thread (the watcher worker) can still feed WebSocket clients
- Type-safe events via msgspec

Architecture:
    ChangeEmitter (watcher thread) -> EventBus -> [WebSocket broadcast, DeltaJournal]

Usage:
    bus = get_event_bus()

    def on_node_added(event: GraphEvent):
        print(event.payload["node"]["id"])

    bus.subscribe(EventType.NODE_ADDED, on_node_added)

    # From an async server
    bus.bind_loop(asyncio.get_running_loop())
    bus.subscribe_async(EventType.EDGE_ADDED, broadcast)
"""
from typing import Callable, List, Dict, Any, Optional
from enum import Enum
import msgspec
import asyncio
from collections import defaultdict
import logging


logger = logging.getLogger("mdgraph.event_bus")


class EventType(str, Enum):
    """Delta event kinds, named as they appear on the wire."""
    NODE_ADDED = "node-added"
    NODE_REMOVED = "node-removed"
    NODE_UPDATED = "node-updated"
    EDGE_ADDED = "edge-added"
    EDGE_REMOVED = "edge-removed"


class GraphEvent(msgspec.Struct, kw_only=True):
    """
    One published graph change.

    Attributes:
        type: Kind of change
        payload: Wire form of the change, e.g. {"type": "node-removed", "node_id": "B"}
        sequence: Monotonic emission number
        timestamp: Unix timestamp when the event was emitted
        source: Emitter name ("watcher", "api")
    """
    type: EventType
    payload: Dict[str, Any]
    sequence: int
    timestamp: float
    source: str


class EventBus:
    """
    Event bus for graph change notifications.

    Thread Safety:
        Subscribe/unsubscribe are expected at startup. publish() may be
        called from any thread; async handlers are handed to the bound loop
        with run_coroutine_threadsafe, or scheduled on the caller's running
        loop if none is bound.
    """

    def __init__(self):
        """Initialize empty subscriber lists."""
        self._subscribers: Dict[EventType, List[Callable]] = defaultdict(list)
        self._async_subscribers: Dict[EventType, List[Callable]] = defaultdict(list)
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def bind_loop(self, loop: Optional[asyncio.AbstractEventLoop]) -> None:
        """Run async handlers on `loop` (None unbinds)."""
        self._loop = loop

    def subscribe(self, event_type: EventType, handler: Callable[[GraphEvent], None]):
        """Subscribe to events with a synchronous handler."""
        if handler not in self._subscribers[event_type]:
            self._subscribers[event_type].append(handler)
            logger.debug(f"Subscribed sync handler to {event_type.value}")

    def subscribe_async(self, event_type: EventType, handler: Callable[[GraphEvent], Any]):
        """Subscribe to events with an async handler."""
        if handler not in self._async_subscribers[event_type]:
            self._async_subscribers[event_type].append(handler)
            logger.debug(f"Subscribed async handler to {event_type.value}")

    def subscribe_all(self, handler: Callable[[GraphEvent], None]):
        """Subscribe a synchronous handler to every event kind."""
        for event_type in EventType:
            self.subscribe(event_type, handler)

    def subscribe_all_async(self, handler: Callable[[GraphEvent], Any]):
        """Subscribe an async handler to every event kind."""
        for event_type in EventType:
            self.subscribe_async(event_type, handler)

    def publish(self, event: GraphEvent):
        """
        Publish an event to all subscribers.

        Note:
            - Sync handlers run immediately, in subscription order
            - Async handlers are scheduled and run in the background
            - Exceptions in handlers are logged but don't propagate
        """
        logger.debug(f"Publishing {event.type.value} #{event.sequence} from {event.source}")

        for handler in self._subscribers[event.type]:
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    f"Error in sync handler for {event.type.value}: {e}",
                    exc_info=True
                )

        for handler in self._async_subscribers[event.type]:
            try:
                self._schedule(handler, event)
            except Exception as e:
                logger.error(
                    f"Error scheduling async handler for {event.type.value}: {e}",
                    exc_info=True
                )

    def _schedule(self, handler: Callable[[GraphEvent], Any], event: GraphEvent) -> None:
        if self._loop is not None and not self._loop.is_closed():
            asyncio.run_coroutine_threadsafe(handler(event), self._loop)
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                f"Cannot schedule async handler for {event.type.value}: "
                "no event loop running"
            )
            return
        loop.create_task(handler(event))

    def unsubscribe(self, event_type: EventType, handler: Callable):
        """Unsubscribe a handler (must be the same instance)."""
        if handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)
            logger.debug(f"Unsubscribed sync handler from {event_type.value}")

        if handler in self._async_subscribers[event_type]:
            self._async_subscribers[event_type].remove(handler)
            logger.debug(f"Unsubscribed async handler from {event_type.value}")

    def clear_subscribers(self, event_type: EventType = None):
        """
        Clear all subscribers for an event type (or all types).

        Warning:
            This is primarily for testing.
        """
        if event_type is None:
            self._subscribers.clear()
            self._async_subscribers.clear()
            logger.info("Cleared all event subscribers")
        else:
            self._subscribers[event_type].clear()
            self._async_subscribers[event_type].clear()
            logger.info(f"Cleared subscribers for {event_type.value}")

    def subscriber_count(self, event_type: EventType = None) -> int:
        """Get count of sync + async subscribers for one type (or all)."""
        if event_type is None:
            total = sum(len(handlers) for handlers in self._subscribers.values())
            total += sum(len(handlers) for handlers in self._async_subscribers.values())
            return total
        return (
            len(self._subscribers[event_type]) +
            len(self._async_subscribers[event_type])
        )


# =============================================================================
# SINGLETON INSTANCE
# =============================================================================

_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get the global event bus instance (singleton)."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
        logger.info("Initialized global event bus")
    return _event_bus


def reset_event_bus() -> None:
    """Drop the global instance. Used by tests."""
    global _event_bus
    _event_bus = None
