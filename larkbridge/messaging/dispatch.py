"""Reply dispatch -- the collaborator that turns an inbound message into replies.

The ingestion pipeline only knows the :class:`ReplyRuntime` protocol: it
creates one :class:`ReplyTurn` per message with a ``deliver`` callback,
dispatches the context, waits for the turn to go idle and finally marks it
idle.  :class:`ResponderReplyRuntime` implements that protocol around a
plain async responder function, which is what the server loads from
``LARKBRIDGE_RESPONDER``.
"""

from __future__ import annotations

import asyncio
import importlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, Union

if TYPE_CHECKING:
    from ..channel.ingest import InboundContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReplyPayload:
    text: str | None = None


DeliverFn = Callable[[ReplyPayload], Awaitable[None]]
ResponderOutput = Union[str, list[str], None]
Responder = Callable[["InboundContext"], Awaitable[ResponderOutput]]


class ReplyTurn(Protocol):
    async def dispatch(self, ctx: InboundContext) -> None: ...

    async def wait_for_idle(self) -> None: ...

    def mark_idle(self) -> None: ...


class ReplyRuntime(Protocol):
    def create_turn(self, deliver: DeliverFn) -> ReplyTurn: ...


def _as_texts(output: ResponderOutput) -> list[str]:
    if output is None:
        return []
    if isinstance(output, str):
        return [output]
    return [t for t in output if isinstance(t, str)]


class ResponderTurn:
    """One inbound message's worth of responder work."""

    def __init__(self, responder: Responder, deliver: DeliverFn) -> None:
        self._responder = responder
        self._deliver = deliver
        self._pending: set[asyncio.Task[None]] = set()
        self.idle = False

    async def dispatch(self, ctx: InboundContext) -> None:
        task = asyncio.get_running_loop().create_task(self._respond(ctx))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _respond(self, ctx: InboundContext) -> None:
        try:
            output = await self._responder(ctx)
        except Exception as exc:
            logger.error("[feishu:%s] responder failed: %s", ctx.account_id, exc, exc_info=True)
            return
        for text in _as_texts(output):
            await self._deliver(ReplyPayload(text=text))

    async def wait_for_idle(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def mark_idle(self) -> None:
        for task in list(self._pending):
            task.cancel()
        self.idle = True


class ResponderReplyRuntime:
    def __init__(self, responder: Responder) -> None:
        self.responder = responder

    def create_turn(self, deliver: DeliverFn) -> ResponderTurn:
        return ResponderTurn(self.responder, deliver)


async def echo_responder(ctx: InboundContext) -> str:
    """Default responder: repeat the message back."""
    return ctx.body


def load_responder(path: str) -> Responder:
    """Import a responder from a ``package.module:attribute`` path."""
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Responder path must look like 'module:attribute', got {path!r}")
    module = importlib.import_module(module_name)
    responder = getattr(module, attr, None)
    if not callable(responder):
        raise ValueError(f"{path!r} is not callable")
    return responder
