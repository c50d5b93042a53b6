"""In-chat group administration commands.

Text that starts with one of ``COMMAND_PREFIXES`` is parsed into a
:class:`ParsedCommand` and executed by :class:`CommandExecutor` instead of
being handed to the reply runtime.  Mutating commands are gated on the
sender being the chat owner or a chat manager.  Every outcome is a
:class:`~larkbridge.util.result.Result` whose message goes straight back to
the chat, so the executor itself never raises.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from ..util.result import Result

if TYPE_CHECKING:
    from ..channel.api import LarkApi
    from ..channel.events import Mention
    from ..config.accounts import ResolvedAccount

logger = logging.getLogger(__name__)

CommandType = Literal["announcement", "add_member", "remove_member", "list_members"]

COMMAND_PREFIXES: tuple[tuple[CommandType, tuple[str, ...]], ...] = (
    ("announcement", ("/公告", "/announcement")),
    ("add_member", ("/拉人", "/add")),
    ("remove_member", ("/踢人", "/kick", "/remove")),
    ("list_members", ("/成员", "/members")),
)

ADMIN_REQUIRED: frozenset[str] = frozenset({"announcement", "add_member", "remove_member"})

MEMBER_LIST_LIMIT = 50


@dataclass(frozen=True)
class ParsedCommand:
    type: str
    args: str = ""
    mentioned_user_ids: tuple[str, ...] = ()


@dataclass
class CommandContext:
    chat_id: str
    sender_id: str
    message_id: str
    mentions: list[Mention] = field(default_factory=list)


def parse_command(text: str, mentions: Sequence[Mention] = ()) -> ParsedCommand | None:
    """Match *text* against the command prefixes; ``None`` when it is not a command."""
    trimmed = text.strip()
    for cmd_type, prefixes in COMMAND_PREFIXES:
        for prefix in prefixes:
            if trimmed.startswith(prefix):
                return ParsedCommand(
                    type=cmd_type,
                    args=trimmed[len(prefix):].strip(),
                    mentioned_user_ids=tuple(m.open_id for m in mentions if m.open_id),
                )
    return None


def requires_admin_permission(cmd_type: str) -> bool:
    return cmd_type in ADMIN_REQUIRED


class CommandExecutor:
    _HANDLERS: dict[str, str] = {
        "announcement": "_cmd_announcement",
        "add_member": "_cmd_add_member",
        "remove_member": "_cmd_remove_member",
        "list_members": "_cmd_list_members",
    }

    def __init__(self, api: LarkApi) -> None:
        self._api = api

    async def execute(
        self,
        account: ResolvedAccount,
        command: ParsedCommand,
        ctx: CommandContext,
    ) -> Result:
        handler_name = self._HANDLERS.get(command.type)
        if handler_name is None:
            return Result.fail("未知命令")

        try:
            if requires_admin_permission(command.type):
                denied = await self._check_permission(account, ctx)
                if denied is not None:
                    return denied
            return await getattr(self, handler_name)(account, command, ctx)
        except Exception as exc:
            logger.error(
                "%s command %s failed: %s", account.log_prefix, command.type, exc, exc_info=True,
            )
            return Result.fail(str(exc) or exc.__class__.__name__)

    async def _check_permission(self, account: ResolvedAccount, ctx: CommandContext) -> Result | None:
        role = await self._api.check_group_admin(account, ctx.chat_id, ctx.sender_id)
        if not role:
            return Result.fail(f"权限检查失败：{role.error}")
        if not (role.value.is_owner or role.value.is_admin):
            logger.info(
                "%s %s denied admin command in %s", account.log_prefix, ctx.sender_id, ctx.chat_id,
            )
            return Result.fail("抱歉，只有群主或管理员才能执行此操作。")
        return None

    async def _cmd_announcement(
        self, account: ResolvedAccount, command: ParsedCommand, ctx: CommandContext,
    ) -> Result:
        if not command.args:
            return Result.fail("请提供公告内容。用法：/公告 <公告内容>")
        result = await self._api.update_announcement(account, ctx.chat_id, command.args)
        if not result:
            return Result.fail(f"更新公告失败：{result.error}")
        return Result.ok("群公告已更新。")

    async def _cmd_add_member(
        self, account: ResolvedAccount, command: ParsedCommand, ctx: CommandContext,
    ) -> Result:
        member_ids = list(command.mentioned_user_ids)
        if not member_ids:
            return Result.fail("请@要拉入群聊的用户。用法：/拉人 @用户1 @用户2")
        result = await self._api.add_chat_members(account, ctx.chat_id, member_ids)
        if not result:
            return Result.fail(f"拉人失败：{result.error}")
        invalid = result.value or []
        note = f"（{len(invalid)} 个用户无效或已在群内）" if invalid else ""
        return Result.ok(f"已拉入 {len(member_ids)} 个用户{note}")

    async def _cmd_remove_member(
        self, account: ResolvedAccount, command: ParsedCommand, ctx: CommandContext,
    ) -> Result:
        member_ids = list(command.mentioned_user_ids)
        if not member_ids:
            return Result.fail("请@要移除的用户。用法：/踢人 @用户")
        result = await self._api.remove_chat_members(account, ctx.chat_id, member_ids)
        if not result:
            return Result.fail(f"移除用户失败：{result.error}")
        invalid = result.value or []
        note = f"（{len(invalid)} 个用户无效或不在群内）" if invalid else ""
        return Result.ok(f"已移除 {len(member_ids)} 个用户{note}")

    async def _cmd_list_members(
        self, account: ResolvedAccount, command: ParsedCommand, ctx: CommandContext,
    ) -> Result:
        result = await self._api.get_chat_members(account, ctx.chat_id)
        if not result:
            return Result.fail(f"获取成员列表失败：{result.error}")
        members = result.value or []
        if not members:
            return Result.ok("群内暂无成员信息。")

        lines = [
            f"{i}. {m.name or m.member_id}"
            for i, m in enumerate(members[:MEMBER_LIST_LIMIT], start=1)
        ]
        total = len(members)
        more = f"\n... 共 {total} 人" if total > MEMBER_LIST_LIMIT else f"\n共 {total} 人"
        return Result.ok("群成员列表：\n" + "\n".join(lines) + more)
