"""
Event system for Sidecar.

The execution engine publishes what it is doing on an injected bus; a
presentation controller (CLI, web UI, extension bridge) subscribes and
renders progress, toasts and previews. The engine itself never touches a
widget.
"""

from typing import Any, Callable, Dict, List, Optional, Union, Awaitable
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum, auto
import asyncio
import inspect
import logging

logger = logging.getLogger(__name__)

EventHandler = Union[Callable[[Any], None], Callable[[Any], Awaitable[None]]]


class EventPriority(Enum):
    """Priority levels for event handling."""
    HIGH = auto()
    NORMAL = auto()
    LOW = auto()


class EngineEvent(Enum):
    """Events published by the execution engine."""
    EXECUTION_STARTED = "execution_started"
    EXECUTION_SUCCEEDED = "execution_succeeded"
    EXECUTION_FAILED = "execution_failed"
    BATCH_LOADED = "batch_loaded"
    BATCH_STARTED = "batch_started"
    BATCH_PROGRESS = "batch_progress"
    BATCH_COMPLETED = "batch_completed"
    BATCH_FAILED = "batch_failed"
    BATCH_CANCELLED = "batch_cancelled"
    COMMAND_REMOVED = "command_removed"
    SERVERS_DISCOVERED = "servers_discovered"


@dataclass
class EventPayload:
    """Data carried with an engine event."""
    title: str
    message: str = ""
    level: str = "info"
    data: Dict[str, Any] = field(default_factory=dict)


class EventBus:
    """
    Event bus for Sidecar engine events.

    Features:
    - Supports both sync and async subscribers
    - Prioritized event handling
    - Handler errors are logged and never interrupt the publisher
    """

    def __init__(self):
        self._handlers: Dict[str, Dict[EventPriority, List[EventHandler]]] = defaultdict(
            lambda: {
                EventPriority.HIGH: [],
                EventPriority.NORMAL: [],
                EventPriority.LOW: []
            }
        )
        self._lock = asyncio.Lock()

    @staticmethod
    def _key(event_type: Union[str, Enum]) -> str:
        return event_type.value if isinstance(event_type, Enum) else str(event_type)

    def subscribe(
        self,
        event_type: Union[str, Enum],
        handler: EventHandler,
        priority: EventPriority = EventPriority.NORMAL
    ) -> None:
        """
        Subscribe to an event with a handler function.

        Args:
            event_type: The name/type of the event
            handler: The function to call when event occurs (sync or async)
            priority: Execution priority for this handler
        """
        key = self._key(event_type)
        self._handlers[key][priority].append(handler)
        logger.debug(f"Subscribed to {key} with {priority.name} priority")

    def unsubscribe(self, event_type: Union[str, Enum], handler: EventHandler) -> None:
        key = self._key(event_type)
        if key not in self._handlers:
            return
        for priority in EventPriority:
            self._handlers[key][priority] = [
                h for h in self._handlers[key][priority] if h != handler
            ]
        logger.debug(f"Unsubscribed from {key}")

    async def publish(self, event_type: Union[str, Enum], data: Optional[Any] = None) -> None:
        """
        Publish an event to all subscribers.

        Args:
            event_type: The name/type of the event
            data: Optional data to pass to handlers
        """
        key = self._key(event_type)
        if key not in self._handlers:
            return

        async with self._lock:
            for priority in [EventPriority.HIGH, EventPriority.NORMAL, EventPriority.LOW]:
                for handler in list(self._handlers[key][priority]):
                    try:
                        if inspect.iscoroutinefunction(handler):
                            await handler(data)
                        else:
                            handler(data)
                    except Exception as e:
                        logger.error(f"Error in event handler for {key}: {e}")

    def clear_all_handlers(self) -> None:
        """Clear all event handlers - useful for testing."""
        self._handlers.clear()

    def get_subscriber_count(self, event_type: Union[str, Enum]) -> int:
        key = self._key(event_type)
        if key not in self._handlers:
            return 0
        return sum(len(self._handlers[key][priority]) for priority in EventPriority)
