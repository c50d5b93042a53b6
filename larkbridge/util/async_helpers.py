"""Async helpers for calling the blocking Lark SDK from the bot loop."""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable
from typing import TypeVar

T = TypeVar("T")


async def run_sync(fn: Callable[..., T], *args: object, **kwargs: object) -> T:
    """Run a blocking *fn* (an SDK request) in the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))


def current_loop() -> asyncio.AbstractEventLoop | None:
    """Return the running loop of the calling thread, or ``None`` off-loop."""
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None
