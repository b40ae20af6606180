"""EventChannel — ordered, per-session event fan-out."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime

from tether.session.models import SessionEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SessionEvent], None]


class EventChannel:
    """Delivers one session's events, in emission order, to its consumers.

    Every event is stamped with ``ts`` and a monotonic ``seq`` before
    delivery.  Consumers either register a synchronous handler with
    :meth:`subscribe` or iterate :meth:`listen` from a task.  Each session
    owns its own channel, so several sessions can live in one process
    without sharing emitter state.
    """

    def __init__(self) -> None:
        self._seq = 0
        self._closed = False
        self._handlers: list[EventHandler] = []
        self._queues: list[asyncio.Queue[SessionEvent | None]] = []

    @property
    def event_count(self) -> int:
        """Number of events emitted so far."""
        return self._seq

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Call *handler* for every future event.  Returns an unsubscribe callable."""
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    def emit(self, event: SessionEvent) -> None:
        """Stamp *event* and deliver it to every consumer.

        Silently drops events after the channel has been closed.
        """
        if self._closed:
            return
        event.seq = self._seq
        event.ts = iso_now()
        self._seq += 1

        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed on %s", event.type)
        for queue in self._queues:
            queue.put_nowait(event)

    async def listen(self) -> AsyncIterator[SessionEvent]:
        """Yield events as they are emitted until the channel is closed."""
        queue: asyncio.Queue[SessionEvent | None] = asyncio.Queue()
        self._queues.append(queue)
        try:
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
        finally:
            if queue in self._queues:
                self._queues.remove(queue)

    def close(self) -> None:
        """Stop delivery and end every :meth:`listen` iterator.  Idempotent."""
        if self._closed:
            return
        self._closed = True
        for queue in self._queues:
            queue.put_nowait(None)


def iso_now() -> str:
    """Return the current UTC time as ISO 8601 with milliseconds."""
    return datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
