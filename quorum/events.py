"""Progress events emitted by the deliberation engine.

Events are transient. The engine hands each one to every registered
handler in registration order and keeps nothing. Consumers that need
durability persist events as they arrive.
"""

import asyncio
import inspect
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class DeliberationEventType(str, Enum):
    """Event kinds, in the order they first appear during a run."""

    STARTED = "deliberation.started"
    ROUND_STARTED = "round.started"
    EXPERT_THINKING = "expert.thinking"
    OPINION_SUBMITTED = "opinion.submitted"
    QUALITY_ASSESSED = "quality.assessed"
    ROUND_COMPLETED = "round.completed"
    CONSENSUS_CALCULATED = "consensus.calculated"
    COMPLETED = "deliberation.completed"
    ERROR = "error.occurred"


TERMINAL_EVENT_TYPES = frozenset(
    {DeliberationEventType.COMPLETED, DeliberationEventType.ERROR}
)


@dataclass(frozen=True)
class DeliberationEvent:
    """One progress notification."""

    type: DeliberationEventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENT_TYPES

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
            "data": _jsonable(self.data),
        }


EventHandler = Callable[[DeliberationEvent], Awaitable[None] | None]


def _jsonable(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def format_sse_event(event: DeliberationEvent) -> str:
    """Format an event as a server-sent events ``data:`` frame."""
    return f"data: {json.dumps(event.to_dict())}\n\n"


class EventEmitter:
    """Ordered list of event handlers.

    Handlers may be plain callables or coroutine functions. A handler that
    raises is logged and skipped; the remaining handlers still run and the
    error never reaches the caller of ``emit``.
    """

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []

    def add_handler(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    async def emit(
        self, event_type: DeliberationEventType, data: dict[str, Any] | None = None
    ) -> DeliberationEvent:
        event = DeliberationEvent(type=event_type, data=data or {})
        for handler in self._handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Event handler %r failed on %s", handler, event_type.value
                )
        return event


class QueueEventSink:
    """Event handler that buffers events on a bounded asyncio queue.

    Lets a consumer in another task read events without slowing the rounds
    down. When the queue is full the oldest event is dropped.
    """

    def __init__(self, maxsize: int = 100) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self._queue: asyncio.Queue[DeliberationEvent] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def __call__(self, event: DeliberationEvent) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            logger.debug("Event queue full, dropped oldest event")
        self._queue.put_nowait(event)

    async def get(self) -> DeliberationEvent:
        return await self._queue.get()

    def qsize(self) -> int:
        return self._queue.qsize()

    async def __aiter__(self) -> AsyncIterator[DeliberationEvent]:
        while True:
            event = await self._queue.get()
            yield event
            if event.is_terminal:
                return
