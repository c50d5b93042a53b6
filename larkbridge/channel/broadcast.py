"""Fan one text message out to many chats (or users) concurrently."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..config.accounts import ResolvedAccount
    from .api import LarkApi

logger = logging.getLogger(__name__)


@dataclass
class BroadcastResult:
    success_count: int = 0
    failed_count: int = 0
    errors: list[str] = field(default_factory=list)


async def broadcast(
    api: LarkApi,
    account: ResolvedAccount,
    destinations: list[str],
    text: str,
    receive_id_type: str = "chat_id",
) -> BroadcastResult:
    """Send *text* to every destination; one failure never affects the others."""
    outcomes = await asyncio.gather(
        *(api.send_text(account, dest, text, receive_id_type) for dest in destinations),
        return_exceptions=True,
    )

    result = BroadcastResult()
    for dest, outcome in zip(destinations, outcomes):
        if isinstance(outcome, BaseException):
            result.failed_count += 1
            result.errors.append(f"{dest}: {outcome}")
        elif outcome:
            result.success_count += 1
        else:
            result.failed_count += 1
            result.errors.append(f"{dest}: {outcome.error}")

    if result.failed_count:
        logger.warning(
            "%s broadcast: %d sent, %d failed",
            account.log_prefix, result.success_count, result.failed_count,
        )
    return result
