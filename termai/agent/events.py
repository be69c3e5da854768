"""Typed, per-session event channel between the loop, the runner and the UI."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Notifications published on a session channel."""

    # Command lifecycle
    COMMAND_DISPATCH_REQUEST = "command-dispatch-request"
    COMMAND_STARTED = "command-started"
    COMMAND_OUTPUT = "command-output"
    COMMAND_FINISHED = "command-finished"
    CANCEL_COMMAND = "cancel-command"

    # Loop control
    STATUS = "status"
    MESSAGE = "message"
    AI_THINKING = "ai-thinking"
    AI_NEEDS_INPUT = "ai-needs-input"
    TOOL_EXECUTED = "tool-executed"
    STUCK_DETECTED = "stuck-detected"
    BUDGET_EXCEEDED = "budget-exceeded"
    SAFETY_CHECK_REQUIRED = "safety-check-required"
    PROVIDER_FAILURE = "provider-failure"
    TASK_COMPLETE = "task-complete"
    NEW_TAB = "new-tab"

    # Watchdog
    STALL_SUSPECTED = "stall-suspected"
    INTERVENTION_PERFORMED = "intervention-performed"


@dataclass
class SessionEvent:
    """A single notification on a session channel."""

    type: EventType
    session_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "session_id": self.session_id,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }


EventListener = Callable[[SessionEvent], None]


class EventStream:
    """Async iterator over events, backed by a bounded queue."""

    def __init__(self, channel: "EventChannel", maxsize: int) -> None:
        self._channel = channel
        self._queue: asyncio.Queue[SessionEvent] = asyncio.Queue(maxsize=maxsize)

    def offer(self, event: SessionEvent) -> None:
        if self._queue.full():
            # Slow consumer: drop the oldest event rather than block publishers
            self._queue.get_nowait()
            logger.warning(f"Event stream for {event.session_id} overflowed; dropped oldest event")
        self._queue.put_nowait(event)

    async def get(self) -> SessionEvent:
        return await self._queue.get()

    def close(self) -> None:
        self._channel.remove_stream(self)

    def __aiter__(self) -> AsyncIterator[SessionEvent]:
        return self

    async def __anext__(self) -> SessionEvent:
        return await self._queue.get()


class EventChannel:
    """
    Fire-and-forget publish/subscribe channel scoped to one session.

    Listeners are called synchronously in subscription order; a failing
    listener is logged and never prevents delivery to the others. Streams
    receive a copy of every event through their own queue.
    """

    def __init__(self, session_id: str, stream_queue_size: int = 1000) -> None:
        self.session_id = session_id
        self._listeners: list[EventListener] = []
        self._streams: list[EventStream] = []
        self._stream_queue_size = stream_queue_size

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """
        Register a listener.

        Args:
            listener: Callable invoked with each published event

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def stream(self) -> EventStream:
        """Open an async stream of subsequent events."""
        stream = EventStream(self, self._stream_queue_size)
        self._streams.append(stream)
        return stream

    def remove_stream(self, stream: EventStream) -> None:
        if stream in self._streams:
            self._streams.remove(stream)

    def publish(self, event_type: EventType, **payload: Any) -> SessionEvent:
        """Publish an event to all listeners and streams."""
        event = SessionEvent(type=event_type, session_id=self.session_id, payload=payload)
        logger.debug(f"[{self.session_id}] {event_type.value}: {payload}")

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Event listener failed on {event_type.value}: {e}")

        for stream in list(self._streams):
            stream.offer(event)

        return event

    def close(self) -> None:
        self._listeners.clear()
        self._streams.clear()
