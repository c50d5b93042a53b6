"""Handlers for membership, drive file and calendar events."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from .broadcast import broadcast
from .events import (
    CalendarChanged,
    CalendarEventChanged,
    FileChanged,
    UserAddedToGroup,
    UserEnteredChat,
)

if TYPE_CHECKING:
    from ..config.accounts import ResolvedAccount
    from .api import LarkApi
    from .dedup import DedupCache
    from .router import EventRouter

logger = logging.getLogger(__name__)

WELCOME_DIRECT = "你好！我是飞书机器人，直接发消息给我就可以开始对话。"
WELCOME_GROUP = "欢迎加入群聊！"
CALENDAR_NOTICE = "你的日历有更新，请及时查看。"
CALENDAR_EVENT_NOTICE = "你的日程有变更，请及时查看。"

_FILE_ACTION_LABELS = {"created": "新建", "deleted": "删除", "edited": "编辑"}


def file_notice(event: FileChanged) -> str:
    label = _FILE_ACTION_LABELS.get(event.action, event.action)
    kind = event.file_type or "文件"
    token = f" {event.file_token}" if event.file_token else ""
    return f"云文档通知：{kind}{token} 已{label}"


class EventHandlers:
    """Non-message event handlers for one account."""

    def __init__(
        self,
        account: ResolvedAccount,
        *,
        api: LarkApi,
        dedup: DedupCache,
        on_status: Callable[[dict[str, Any]], None] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.account = account
        self._api = api
        self._dedup = dedup
        self._on_status = on_status
        self._clock = clock

    def register(self, router: EventRouter) -> EventRouter:
        return (
            router.on(UserEnteredChat, self.on_user_entered)
            .on(UserAddedToGroup, self.on_user_added)
            .on(FileChanged, self.on_file_changed)
            .on(CalendarChanged, self.on_calendar_changed)
            .on(CalendarEventChanged, self.on_calendar_changed)
        )

    def _is_duplicate(self, event_id: str | None) -> bool:
        if self._dedup.is_processed(event_id):
            logger.info("%s skipping duplicate event %s", self.account.log_prefix, event_id)
            return True
        return False

    def _sent(self, count: int = 1) -> None:
        if count and self._on_status is not None:
            self._on_status({"last_outbound_at": self._clock()})

    async def on_user_entered(self, event: UserEnteredChat) -> None:
        if self._is_duplicate(event.event_id):
            return
        if not event.chat_id:
            logger.info("%s user-entered event without chat id", self.account.log_prefix)
            return
        result = await self._api.send_text(self.account, event.chat_id, WELCOME_DIRECT)
        if result:
            self._sent()
        else:
            logger.error("%s failed to send welcome: %s", self.account.log_prefix, result.error)

    async def on_user_added(self, event: UserAddedToGroup) -> None:
        if self._is_duplicate(event.event_id):
            return
        if not event.chat_id:
            logger.info("%s user-added event without chat id", self.account.log_prefix)
            return
        sent = 0
        for user in event.users:
            open_id = user.user_id.open_id if user.user_id else None
            if not open_id:
                continue
            result = await self._api.send_mention(
                self.account, event.chat_id, WELCOME_GROUP, open_id, user.name,
            )
            if result:
                sent += 1
            else:
                logger.error(
                    "%s failed to welcome %s: %s", self.account.log_prefix, open_id, result.error,
                )
        self._sent(sent)

    async def on_file_changed(self, event: FileChanged) -> None:
        if self._is_duplicate(event.event_id):
            return
        chats = await self._api.list_bot_chats(self.account)
        if not chats:
            logger.error("%s failed to list chats: %s", self.account.log_prefix, chats.error)
            return
        destinations = [c.chat_id for c in chats.value]
        if not destinations:
            logger.info("%s bot is in no chats, file notice dropped", self.account.log_prefix)
            return
        result = await broadcast(self._api, self.account, destinations, file_notice(event))
        logger.info(
            "%s file %s notice: %d sent, %d failed",
            self.account.log_prefix, event.action, result.success_count, result.failed_count,
        )
        self._sent(result.success_count)

    async def on_calendar_changed(self, event: CalendarChanged | CalendarEventChanged) -> None:
        if self._is_duplicate(event.event_id):
            return
        open_ids = [u.open_id for u in event.users if u.open_id]
        if not open_ids:
            logger.info("%s calendar event without users", self.account.log_prefix)
            return
        text = CALENDAR_EVENT_NOTICE if isinstance(event, CalendarEventChanged) else CALENDAR_NOTICE
        result = await broadcast(self._api, self.account, open_ids, text, receive_id_type="open_id")
        self._sent(result.success_count)
