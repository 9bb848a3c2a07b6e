"""
Internal Event Bus

Simple synchronous publish-subscribe bus for domain events. Engines emit
only after a transaction has committed, so handlers always observe
durable state.

Handler failures are logged and swallowed: a broken subscriber must never
undo or block a committed ledger operation.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class EventHandler:
    """Registered event handler."""
    event_type: str
    handler: Callable[[Any], None]
    priority: int = 0


class EventBus:
    """
    In-process event bus.

    All operations are synchronous.
    """

    def __init__(self):
        """Initialize empty event bus."""
        self._handlers: Dict[str, List[EventHandler]] = {}

    def emit(self, event_type: str, payload: Any) -> None:
        """
        Emit an event to all registered handlers.

        Args:
            event_type: String identifier for the event type
            payload: Event payload (usually a dict of primitives)
        """
        handlers = sorted(
            self._handlers.get(event_type, []),
            key=lambda h: h.priority,
            reverse=True,
        )
        for handler in handlers:
            try:
                handler.handler(payload)
            except Exception:
                logger.error("Event handler failed", event_type=event_type, exc_info=True)

    def subscribe(self, event_type: str, handler: Callable[[Any], None], priority: int = 0) -> None:
        """
        Subscribe to an event type.

        Args:
            event_type: Event type to subscribe to
            handler: Function to call when event is emitted
            priority: Handler priority (higher numbers called first)
        """
        self._handlers.setdefault(event_type, []).append(EventHandler(event_type, handler, priority))

    def unsubscribe(self, event_type: str, handler: Callable[[Any], None]) -> None:
        """Remove a handler from an event type."""
        if event_type in self._handlers:
            self._handlers[event_type] = [
                h for h in self._handlers[event_type]
                if h.handler != handler
            ]

    def get_handler_count(self, event_type: Optional[str] = None) -> int:
        """Number of registered handlers, for one event type or in total."""
        if event_type:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())
