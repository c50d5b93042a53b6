"""Inbound message pipeline -- from ``im.message.receive_v1`` to replies.

A received text message either matches a group command, in which case the
:class:`~larkbridge.messaging.commands.CommandExecutor` answers it directly,
or it is wrapped into an :class:`InboundContext` and handed to a reply turn
from the configured :class:`~larkbridge.messaging.dispatch.ReplyRuntime`.
Replies produced by the turn are sent back as replies to the original
message.  Anything malformed is dropped with an INFO log line.
"""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..messaging.commands import CommandContext, CommandExecutor, ParsedCommand, parse_command
from ..messaging.dispatch import ReplyPayload

if TYPE_CHECKING:
    from ..config.accounts import ResolvedAccount
    from ..messaging.dispatch import ReplyRuntime
    from .api import LarkApi
    from .dedup import DedupCache
    from .events import Mention, MessageReceived

logger = logging.getLogger(__name__)

StatusPatchFn = Callable[[dict[str, Any]], None]

_ID_PREFIX = re.compile(r"^(feishu|user|ou_):", re.IGNORECASE)


@dataclass(frozen=True)
class InboundContext:
    from_: str
    to: str
    chat_type: str
    reply_to_id: str
    body: str
    account_id: str
    provider: str = "feishu"
    surface: str = "feishu"

    def as_dict(self) -> dict[str, str]:
        return {
            "Provider": self.provider,
            "Surface": self.surface,
            "From": self.from_,
            "To": self.to,
            "ChatType": self.chat_type,
            "ReplyToId": self.reply_to_id,
            "Body": self.body,
            "AccountId": self.account_id,
        }


def normalize_sender_id(value: str) -> str:
    return _ID_PREFIX.sub("", value.lower(), count=1)


def is_sender_allowed(sender_id: str, allow_from: Iterable[str] | None) -> bool:
    """An empty allow-list admits everyone."""
    entries = list(allow_from or ())
    if not entries:
        return True
    normalized = normalize_sender_id(sender_id)
    return any(normalize_sender_id(entry) == normalized for entry in entries)


def extract_text(content: str | None) -> str | None:
    """Pull ``text`` out of a text message's JSON content; ``None`` if malformed."""
    if content is None:
        return None
    try:
        parsed = json.loads(content)
    except (TypeError, ValueError):
        return None
    if not isinstance(parsed, dict):
        return None
    text = parsed.get("text")
    if text is None:
        return ""
    return text if isinstance(text, str) else None


class MessagePipeline:
    def __init__(
        self,
        account: ResolvedAccount,
        *,
        api: LarkApi,
        dedup: DedupCache,
        replies: ReplyRuntime,
        commands: CommandExecutor | None = None,
        on_status: StatusPatchFn | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.account = account
        self._api = api
        self._dedup = dedup
        self._replies = replies
        self._commands = commands if commands is not None else CommandExecutor(api)
        self._on_status = on_status
        self._clock = clock

    def _patch(self, key: str) -> None:
        if self._on_status is not None:
            self._on_status({key: self._clock()})

    async def handle(self, event: MessageReceived) -> None:
        prefix = self.account.log_prefix

        if self._dedup.is_processed(event.event_id):
            logger.info("%s skipping duplicate event %s", prefix, event.event_id)
            return

        sender, message = event.sender, event.message
        if sender is None or message is None:
            logger.info("%s dropping event %s without sender or message", prefix, event.event_id)
            return
        if message.message_type != "text":
            logger.info("%s ignoring non-text message: %s", prefix, message.message_type)
            return

        text = extract_text(message.content)
        if text is None:
            logger.info("%s dropping message with malformed content", prefix)
            return
        if not text.strip():
            logger.info("%s ignoring empty text message", prefix)
            return

        sender_id = (sender.sender_id.preferred if sender.sender_id else None) or "unknown"
        chat_id = message.chat_id or ""
        message_id = message.message_id or ""
        chat_type = "group" if message.chat_type == "group" else "direct"

        if (
            chat_type == "direct"
            and self.account.dm_policy == "allowlist"
            and not is_sender_allowed(sender_id, self.account.allow_from)
        ):
            logger.info("%s sender %s not in allowFrom, dropping", prefix, sender_id)
            return

        logger.info("%s received message from %s: %s...", prefix, sender_id, text[:50])
        self._patch("last_inbound_at")

        command_text, mentions = await self._without_bot_mentions(text, message.mentions)
        command = parse_command(command_text, mentions)
        if command is not None:
            await self._run_command(command, CommandContext(
                chat_id=chat_id, sender_id=sender_id, message_id=message_id, mentions=list(mentions),
            ))
            return

        ctx = InboundContext(
            from_=sender_id,
            to=chat_id,
            chat_type=chat_type,
            reply_to_id=message_id,
            body=text,
            account_id=self.account.account_id,
        )
        await self._dispatch(ctx)

    async def _without_bot_mentions(
        self, text: str, mentions: Sequence[Mention],
    ) -> tuple[str, list[Mention]]:
        """Remove the bot's own @-placeholders and mention entries."""
        if not mentions:
            return text, []
        bot = await self._api.get_bot_info(self.account)
        if not bot:
            logger.debug("%s bot info unavailable: %s", self.account.log_prefix, bot.error)
            return text, list(mentions)

        bot_open_id = bot.value.open_id
        others: list[Mention] = []
        for mention in mentions:
            if mention.open_id == bot_open_id:
                if mention.key:
                    text = re.sub(re.escape(mention.key) + r"(?!\d)", "", text)
            else:
                others.append(mention)
        return text.strip(), others

    async def _run_command(self, command: ParsedCommand, ctx: CommandContext) -> None:
        prefix = self.account.log_prefix
        logger.info("%s command %s from %s in %s", prefix, command.type, ctx.sender_id, ctx.chat_id)
        result = await self._commands.execute(self.account, command, ctx)
        sent = await self._api.reply_text(self.account, ctx.message_id, result.message)
        if sent:
            self._patch("last_outbound_at")
        else:
            logger.error("%s failed to send command reply: %s", prefix, sent.error)

    async def _dispatch(self, ctx: InboundContext) -> None:
        prefix = self.account.log_prefix

        async def deliver(payload: ReplyPayload) -> None:
            text = payload.text or ""
            if not text.strip():
                return
            sent = await self._api.reply_text(self.account, ctx.reply_to_id, text)
            if sent:
                self._patch("last_outbound_at")
                logger.info("%s reply sent: %s...", prefix, text[:50])
            else:
                logger.error("%s failed to send message: %s", prefix, sent.error)

        turn = self._replies.create_turn(deliver)
        try:
            await turn.dispatch(ctx)
            await turn.wait_for_idle()
        finally:
            turn.mark_idle()
