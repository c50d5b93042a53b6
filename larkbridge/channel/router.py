"""Event routing -- acknowledge now, process later.

Feishu treats an event as unacknowledged if the long-connection callback
has not returned within 3 seconds and then pushes it again.  The router's
``dispatch`` is therefore synchronous: it decodes the envelope, picks the
handler and hands the coroutine to :class:`TaskSpawner`, which starts it on
the bot's event loop.  Handler failures are logged there and never travel
back into the transport callback.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from ..util.async_helpers import current_loop
from .events import LarkEvent, UnrecognizedEvent, decode_event

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Awaitable[None]]


class TaskSpawner:
    """Owns fire-and-forget tasks: start on the bot loop, log on failure."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._tasks: set[asyncio.Task[None]] = set()

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, None], *, label: str) -> None:
        """Schedule *coro*; safe to call from the SDK's connection thread."""
        loop = self._loop or current_loop()
        if loop is None:
            coro.close()
            logger.error("%s no event loop bound, dropping task", label)
            return
        if current_loop() is loop:
            self._start(coro, label)
            return
        try:
            loop.call_soon_threadsafe(self._start, coro, label)
        except RuntimeError as exc:
            coro.close()
            logger.error("%s event loop unavailable, dropping task: %s", label, exc)

    def _start(self, coro: Coroutine[Any, Any, None], label: str) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._finished(t, label))

    def _finished(self, task: asyncio.Task[None], label: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug("%s task cancelled", label)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("%s error handling event: %s", label, exc, exc_info=exc)

    async def drain(self) -> None:
        """Wait until every spawned task (including late spawns) has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class EventRouter:
    """Per-account map from decoded event class to handler coroutine."""

    def __init__(self, account_id: str, spawner: TaskSpawner) -> None:
        self.account_id = account_id
        self._spawner = spawner
        self._handlers: dict[type, EventHandler] = {}

    def on(self, event_cls: type, handler: EventHandler) -> EventRouter:
        self._handlers[event_cls] = handler
        return self

    def dispatch(self, envelope: dict[str, Any]) -> None:
        """Transport entry point.  Returns immediately and never raises."""
        prefix = f"[feishu:{self.account_id}]"
        try:
            event: LarkEvent = decode_event(envelope)
        except Exception as exc:
            logger.info("%s dropping undecodable event: %s", prefix, exc)
            return

        if isinstance(event, UnrecognizedEvent):
            logger.info("%s ignoring unrecognized event type %r", prefix, event.event_type)
            return

        handler = self._handlers.get(type(event))
        if handler is None:
            logger.debug("%s no handler for %s", prefix, event.event_type)
            return

        logger.info("%s received %s (%s)", prefix, event.event_type, event.event_id)
        self._spawner.spawn(handler(event), label=f"{prefix} {event.event_type}")
