"""Event system for agentic-loop.

Every component publishes lifecycle events through an EventEmitter so
callers can observe a run in real time.

Architecture:
- Events are small dataclasses tagged by an EventType
- EventEmitter dispatches synchronously, in emission order, with no buffering
- EventChannel turns the callback stream into an async iterator for
  consumers that prefer `async for`
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Callable, ClassVar, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Event tags emitted during a loop invocation."""

    PROCESSING_START = "processing:start"
    PROCESSING_END = "processing:end"

    ITERATION_START = "iteration:start"
    ITERATION_COMPLETE = "iteration:complete"

    CONTENT_DELTA = "content:delta"
    CONTENT_DISCARDED = "content:discarded"

    TOOL_CALL = "tool:call"
    TOOL_COMPLETE = "tool:complete"
    TOOL_ERROR = "tool:error"

    KNOWLEDGE_RETRIEVED = "knowledge:retrieved"
    CONFIRMATION_REQUIRED = "confirmation:required"


# ============================================================================
# Event Data Classes
# ============================================================================


class Event:
    type: ClassVar[EventType]


@dataclass
class ProcessingStartEvent(Event):
    """Emitted once when an invocation (or a resume) begins."""

    type: ClassVar[EventType] = EventType.PROCESSING_START
    message: str
    resumed: bool = False
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class ProcessingEndEvent(Event):
    """Emitted exactly once when an invocation stops, whatever the outcome."""

    type: ClassVar[EventType] = EventType.PROCESSING_END
    status: str
    result: Any = None  # LoopResult, unless the run failed
    error: Optional[BaseException] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class IterationStartEvent(Event):
    type: ClassVar[EventType] = EventType.ITERATION_START
    iteration: int  # 1-based
    max_iterations: int
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class IterationCompleteEvent(Event):
    type: ClassVar[EventType] = EventType.ITERATION_COMPLETE
    iteration: int
    duration_ms: float
    tool_call_count: int
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class ContentDeltaEvent(Event):
    """A piece of assistant text, in arrival order.

    `iteration` and `attempt` identify the model call that produced it; see
    ContentDiscardedEvent.
    """

    type: ClassVar[EventType] = EventType.CONTENT_DELTA
    delta: str
    iteration: int = 0
    attempt: int = 1
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class ContentDiscardedEvent(Event):
    """The model call for (iteration, attempt) was unusable and will be retried
    or abandoned. Deltas already emitted for it are not part of the answer."""

    type: ClassVar[EventType] = EventType.CONTENT_DISCARDED
    iteration: int
    attempt: int
    reason: str
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class ToolCallEvent(Event):
    """Emitted right before a tool handler is invoked."""

    type: ClassVar[EventType] = EventType.TOOL_CALL
    tool_name: str
    call_id: str
    arguments: Dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class ToolCompleteEvent(Event):
    type: ClassVar[EventType] = EventType.TOOL_COMPLETE
    call_id: str
    result: Any
    tool_name: str = ""
    duration_ms: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class ToolErrorEvent(Event):
    type: ClassVar[EventType] = EventType.TOOL_ERROR
    call_id: str
    error: str
    tool_name: str = ""
    duration_ms: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class KnowledgeRetrievedEvent(Event):
    """Retriever results, passed through unchanged."""

    type: ClassVar[EventType] = EventType.KNOWLEDGE_RETRIEVED
    results: List[Any]
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class ConfirmationRequiredEvent(Event):
    type: ClassVar[EventType] = EventType.CONFIRMATION_REQUIRED
    requests: List[Any]  # every ToolCall of the suspended turn
    call_ids: List[str] = field(default_factory=list)  # ids that need a decision
    risk_levels: Dict[str, Optional[str]] = field(default_factory=dict)  # by call id
    timestamp: datetime = field(default_factory=datetime.now)


EventCallback = Callable[[Event], Any]


# ============================================================================
# Event Emitter
# ============================================================================


class EventEmitter:
    """Synchronous, in-order event dispatcher.

    Supports catch-all listeners and per-event handlers, registered either
    with the decorator or directly.

    Usage:
        events = EventEmitter()

        @events.on('tool:complete')
        def log_tool(event):
            print(f"Tool finished: {event.call_id}")

        # Or a catch-all listener
        events.subscribe(lambda event: print(event.type))
    """

    def __init__(self, on_event: Optional[EventCallback] = None):
        self._listeners: List[EventCallback] = []
        self._handlers: Dict[str, List[EventCallback]] = {
            event.value: [] for event in EventType
        }
        if on_event is not None:
            self._listeners.append(on_event)

    def on(self, event_type: str):
        """Decorator for registering a handler for one event type."""

        def decorator(func: EventCallback) -> EventCallback:
            self.register_handler(event_type, func)
            return func

        return decorator

    def register_handler(self, event_type: str, handler: EventCallback) -> None:
        """Register a handler for one event type.

        Raises:
            ValueError: If event_type is not valid
        """
        key = event_type.value if isinstance(event_type, EventType) else event_type
        if key not in self._handlers:
            valid_events = [e.value for e in EventType]
            raise ValueError(
                f"Invalid event type '{event_type}'. Valid events: {valid_events}"
            )
        self._handlers[key].append(handler)

    def subscribe(self, listener: EventCallback) -> None:
        """Register a listener that receives every event."""
        self._listeners.append(listener)

    def bind(self, on_event: Optional[EventCallback]) -> "EventEmitter":
        """Return a copy of this emitter with an extra per-invocation listener."""
        emitter = EventEmitter()
        emitter._listeners = list(self._listeners)
        emitter._handlers = {k: list(v) for k, v in self._handlers.items()}
        if on_event is not None:
            emitter._listeners.append(on_event)
        return emitter

    def emit(self, event: Event) -> None:
        """Deliver an event to every listener, then to type-specific handlers."""
        for handler in self._listeners + self._handlers[event.type.value]:
            try:
                handler(event)
            except Exception as e:
                # Log but don't fail execution
                logger.warning(f"Event handler for '{event.type.value}' raised exception: {e}")

    def has_handlers(self, event_type: str) -> bool:
        key = event_type.value if isinstance(event_type, EventType) else event_type
        return bool(self._listeners) or len(self._handlers.get(key, [])) > 0

    def clear(self) -> None:
        """Clear all handlers (useful for testing)."""
        self._listeners = []
        for key in self._handlers:
            self._handlers[key] = []


# ============================================================================
# Event Channel
# ============================================================================


class EventChannel:
    """Async, in-order view of the events of a single invocation.

    `put` is a valid EventEmitter listener. The channel is unbounded because
    emission is synchronous and must never block the loop.
    """

    _CLOSED = object()

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def put(self, event: Event) -> None:
        if self._closed:
            raise RuntimeError("EventChannel is closed")
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._CLOSED)

    async def __aiter__(self) -> AsyncIterator[Event]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item
