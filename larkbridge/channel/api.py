"""Feishu Open Platform REST operations over the ``lark-oapi`` SDK.

Every public coroutine returns a :class:`~larkbridge.util.result.Result` and
never raises: transport exceptions and non-zero platform codes both become
``Result.fail(<reason>)``.  Nothing here retries.

The SDK client is synchronous, so each request is pushed to the default
executor with :func:`~larkbridge.util.async_helpers.run_sync`.  Clients and
the bot identity are cached per app id for the lifetime of the owning
``LarkApi``; ``clear_caches`` is the only invalidation.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import lark_oapi as lark

from ..config.accounts import ResolvedAccount, require_credentials
from ..util.async_helpers import run_sync
from ..util.result import Result

logger = logging.getLogger(__name__)

PAGE_SIZE = "100"
DOCX_ANNOUNCEMENT_CODE = 232097
_PAGE_BLOCK = 1
_TEXT_BLOCK = 2

Queries = list[tuple[str, str]]


class LarkApiError(Exception):
    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class BotInfo:
    open_id: str
    name: str | None = None


@dataclass(frozen=True)
class ChatSummary:
    chat_id: str
    name: str | None = None


@dataclass(frozen=True)
class ChatInfo:
    owner_id: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class ChatRole:
    is_owner: bool = False
    is_admin: bool = False


@dataclass(frozen=True)
class GroupMember:
    member_id: str
    name: str | None = None


@dataclass(frozen=True)
class Announcement:
    """Current chat announcement; ``docx`` marks the block-based variant."""

    revision: str | None = None
    content: str | None = None
    docx: bool = False


# -- caches ----------------------------------------------------------------


def build_client(account: ResolvedAccount) -> Any:
    domain = lark.LARK_DOMAIN if account.domain == "lark" else lark.FEISHU_DOMAIN
    return (
        lark.Client.builder()
        .app_id(account.app_id)
        .app_secret(account.app_secret)
        .domain(domain)
        .log_level(lark.LogLevel.INFO)
        .build()
    )


class ClientCache:
    """One SDK client per app id (the SDK keeps the tenant token inside)."""

    def __init__(self, factory: Callable[[ResolvedAccount], Any] = build_client) -> None:
        self._factory = factory
        self._clients: dict[str, Any] = {}

    def get(self, account: ResolvedAccount) -> Any:
        key = account.app_id or ""
        client = self._clients.get(key)
        if client is None:
            require_credentials(account)
            client = self._factory(account)
            self._clients[key] = client
        return client

    def clear(self, app_id: str | None = None) -> None:
        if app_id:
            self._clients.pop(app_id, None)
        else:
            self._clients.clear()

    def __len__(self) -> int:
        return len(self._clients)


class BotInfoCache:
    def __init__(self) -> None:
        self._entries: dict[str, BotInfo] = {}

    def get(self, app_id: str) -> BotInfo | None:
        return self._entries.get(app_id)

    def put(self, app_id: str, info: BotInfo) -> None:
        self._entries[app_id] = info

    def clear(self, app_id: str | None = None) -> None:
        if app_id:
            self._entries.pop(app_id, None)
        else:
            self._entries.clear()


# -- request plumbing ------------------------------------------------------


def _build_request(method: str, uri: str, queries: Queries | None, body: Any) -> Any:
    builder = (
        lark.BaseRequest.builder()
        .http_method(lark.HttpMethod[method])
        .uri(uri)
        .token_types({lark.AccessTokenType.TENANT})
    )
    if queries:
        builder = builder.queries(queries)
    if body is not None:
        builder = builder.body(body)
    return builder.build()


def _decode_response(response: Any) -> dict[str, Any]:
    raw = getattr(response, "raw", None)
    content = getattr(raw, "content", None)
    payload: Any = {}
    if content:
        try:
            payload = json.loads(content)
        except (TypeError, ValueError):
            payload = {}
    if not isinstance(payload, dict):
        payload = {}
    if payload.get("code") is None:
        payload["code"] = getattr(response, "code", None)
    if not payload.get("msg") and getattr(response, "msg", None):
        payload["msg"] = response.msg
    return payload


def _data(payload: dict[str, Any]) -> dict[str, Any]:
    data = payload.get("data")
    return data if isinstance(data, dict) else {}


def _platform_error(payload: dict[str, Any]) -> str:
    return payload.get("msg") or f"Lark API error: {payload.get('code')}"


def _describe(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


def _text_content(text: str) -> str:
    return json.dumps({"text": text}, ensure_ascii=False)


def _is_docx_announcement(payload: dict[str, Any]) -> bool:
    msg = str(payload.get("msg") or "")
    return (
        payload.get("code") == DOCX_ANNOUNCEMENT_CODE
        or "docx type" in msg
        or str(DOCX_ANNOUNCEMENT_CODE) in msg
    )


class LarkApi:
    """Async facade over the SDK's raw request interface."""

    def __init__(
        self,
        clients: ClientCache | None = None,
        bot_info: BotInfoCache | None = None,
    ) -> None:
        self.clients = clients if clients is not None else ClientCache()
        self.bot_info = bot_info if bot_info is not None else BotInfoCache()

    def clear_caches(self, app_id: str | None = None) -> None:
        self.clients.clear(app_id)
        self.bot_info.clear(app_id)

    async def _call(
        self,
        account: ResolvedAccount,
        method: str,
        uri: str,
        *,
        queries: Queries | None = None,
        body: Any = None,
    ) -> dict[str, Any]:
        client = self.clients.get(account)
        request = _build_request(method, uri, queries, body)
        response = await run_sync(client.request, request)
        payload = _decode_response(response)
        logger.debug("%s %s %s -> code=%s", account.log_prefix, method, uri, payload.get("code"))
        return payload

    async def _checked(self, account: ResolvedAccount, method: str, uri: str, **kwargs: Any) -> dict[str, Any]:
        payload = await self._call(account, method, uri, **kwargs)
        if payload.get("code") != 0:
            raise LarkApiError(_platform_error(payload), code=payload.get("code"))
        return payload

    async def _paginate(
        self,
        account: ResolvedAccount,
        uri: str,
        queries: Queries,
        item_keys: tuple[str, ...] = ("items",),
    ) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page_token: str | None = None
        while True:
            page_queries = list(queries)
            if page_token:
                page_queries.append(("page_token", page_token))
            data = _data(await self._checked(account, "GET", uri, queries=page_queries))
            for key in item_keys:
                if data.get(key) is not None:
                    items.extend(i for i in data[key] if isinstance(i, dict))
                    break
            page_token = data.get("page_token") if data.get("has_more") else None
            if not page_token:
                return items

    # -- messages ----------------------------------------------------------

    async def send_text(
        self,
        account: ResolvedAccount,
        receive_id: str,
        text: str,
        receive_id_type: str = "chat_id",
    ) -> Result:
        try:
            payload = await self._checked(
                account,
                "POST",
                "/open-apis/im/v1/messages",
                queries=[("receive_id_type", receive_id_type)],
                body={"receive_id": receive_id, "msg_type": "text", "content": _text_content(text)},
            )
        except Exception as exc:
            return Result.fail(_describe(exc))
        return Result.ok(value=_data(payload).get("message_id"))

    async def reply_text(self, account: ResolvedAccount, message_id: str, text: str) -> Result:
        try:
            payload = await self._checked(
                account,
                "POST",
                f"/open-apis/im/v1/messages/{message_id}/reply",
                body={"msg_type": "text", "content": _text_content(text)},
            )
        except Exception as exc:
            return Result.fail(_describe(exc))
        return Result.ok(value=_data(payload).get("message_id"))

    async def send_mention(
        self,
        account: ResolvedAccount,
        chat_id: str,
        text: str,
        user_open_id: str,
        user_name: str | None = None,
    ) -> Result:
        """Send a rich-text post that @-mentions one user ahead of *text*."""
        content = {
            "zh_cn": {
                "title": "",
                "content": [[
                    {"tag": "at", "user_id": user_open_id, "user_name": user_name or ""},
                    {"tag": "text", "text": f" {text}"},
                ]],
            },
        }
        try:
            payload = await self._checked(
                account,
                "POST",
                "/open-apis/im/v1/messages",
                queries=[("receive_id_type", "chat_id")],
                body={
                    "receive_id": chat_id,
                    "msg_type": "post",
                    "content": json.dumps(content, ensure_ascii=False),
                },
            )
        except Exception as exc:
            return Result.fail(_describe(exc))
        return Result.ok(value=_data(payload).get("message_id"))

    # -- bot identity ------------------------------------------------------

    async def probe(self, account: ResolvedAccount) -> Result:
        try:
            payload = await self._call(account, "GET", "/open-apis/bot/v3/info")
        except Exception as exc:
            return Result.fail(_describe(exc))
        if payload.get("code") != 0:
            return Result.fail(payload.get("msg") or "Unknown error")
        return Result.ok()

    async def get_bot_info(self, account: ResolvedAccount) -> Result:
        key = account.app_id or ""
        cached = self.bot_info.get(key)
        if cached:
            return Result.ok(value=cached)
        try:
            payload = await self._checked(account, "GET", "/open-apis/bot/v3/info")
        except Exception as exc:
            return Result.fail(_describe(exc))
        # the bot object sits at the top level of this response, not under data
        bot = payload.get("bot") if isinstance(payload.get("bot"), dict) else {}
        open_id = bot.get("open_id")
        if not open_id:
            return Result.fail("bot info response carried no open_id")
        info = BotInfo(open_id=open_id, name=bot.get("app_name"))
        self.bot_info.put(key, info)
        return Result.ok(value=info)

    # -- chats -------------------------------------------------------------

    async def list_bot_chats(self, account: ResolvedAccount) -> Result:
        try:
            items = await self._paginate(
                account, "/open-apis/im/v1/chats", [("page_size", PAGE_SIZE)],
            )
        except Exception as exc:
            return Result.fail(_describe(exc))
        chats = [
            ChatSummary(chat_id=i["chat_id"], name=i.get("name"))
            for i in items if i.get("chat_id")
        ]
        return Result.ok(value=chats)

    async def get_chat_members(self, account: ResolvedAccount, chat_id: str) -> Result:
        try:
            items = await self._paginate(
                account,
                f"/open-apis/im/v1/chats/{chat_id}/members",
                [("member_id_type", "open_id"), ("page_size", PAGE_SIZE)],
                item_keys=("items", "member_list"),
            )
        except Exception as exc:
            return Result.fail(_describe(exc))
        members = [
            GroupMember(member_id=i["member_id"], name=i.get("name"))
            for i in items if i.get("member_id")
        ]
        return Result.ok(value=members)

    async def get_chat_info(self, account: ResolvedAccount, chat_id: str) -> Result:
        try:
            payload = await self._checked(
                account,
                "GET",
                f"/open-apis/im/v1/chats/{chat_id}",
                queries=[("user_id_type", "open_id")],
            )
        except Exception as exc:
            return Result.fail(_describe(exc))
        data = _data(payload)
        return Result.ok(value=ChatInfo(owner_id=data.get("owner_id"), name=data.get("name")))

    async def check_group_admin(self, account: ResolvedAccount, chat_id: str, user_id: str) -> Result:
        """Resolve *user_id*'s role in *chat_id*; a failed Result means the check failed."""
        info = await self.get_chat_info(account, chat_id)
        if not info:
            return Result.fail(info.message)
        if info.value.owner_id == user_id:
            return Result.ok(value=ChatRole(is_owner=True, is_admin=True))

        try:
            payload = await self._checked(
                account,
                "GET",
                f"/open-apis/im/v1/chats/{chat_id}/managers",
                queries=[("user_id_type", "open_id")],
            )
        except Exception as exc:
            return Result.fail(_describe(exc))
        managers = _data(payload).get("items") or []
        is_admin = any(isinstance(m, dict) and m.get("manager_id") == user_id for m in managers)
        return Result.ok(value=ChatRole(is_owner=False, is_admin=is_admin))

    async def add_chat_members(self, account: ResolvedAccount, chat_id: str, member_ids: list[str]) -> Result:
        """Invite members; ``value`` lists ids the platform rejected."""
        if not member_ids:
            return Result.fail("没有指定要添加的用户")
        try:
            payload = await self._checked(
                account,
                "POST",
                f"/open-apis/im/v1/chats/{chat_id}/members",
                queries=[("member_id_type", "open_id")],
                body={"id_list": list(member_ids)},
            )
        except Exception as exc:
            return Result.fail(_describe(exc))
        data = _data(payload)
        invalid = list(data.get("invalid_id_list") or []) + list(data.get("not_existed_id_list") or [])
        return Result.ok(value=invalid)

    async def remove_chat_members(self, account: ResolvedAccount, chat_id: str, member_ids: list[str]) -> Result:
        if not member_ids:
            return Result.fail("没有指定要移除的用户")
        try:
            payload = await self._checked(
                account,
                "DELETE",
                f"/open-apis/im/v1/chats/{chat_id}/members",
                queries=[("member_id_type", "open_id")],
                body={"id_list": list(member_ids)},
            )
        except Exception as exc:
            return Result.fail(_describe(exc))
        return Result.ok(value=list(_data(payload).get("invalid_id_list") or []))

    # -- announcements -----------------------------------------------------

    async def get_announcement(self, account: ResolvedAccount, chat_id: str) -> Result:
        """Read the legacy announcement, or report that the chat uses docx."""
        try:
            payload = await self._call(
                account,
                "GET",
                f"/open-apis/im/v1/chats/{chat_id}/announcement",
                queries=[("user_id_type", "open_id")],
            )
        except Exception as exc:
            return Result.fail(_describe(exc))
        if _is_docx_announcement(payload):
            return Result.ok(value=Announcement(docx=True))
        if payload.get("code") != 0:
            return Result.fail(_platform_error(payload))
        data = _data(payload)
        return Result.ok(value=Announcement(revision=data.get("revision"), content=data.get("content")))

    async def _update_docx_announcement(self, account: ResolvedAccount, chat_id: str, content: str) -> Result:
        base = f"/open-apis/docx/v1/chat_announcements/{chat_id}/blocks"
        try:
            blocks = await self._call(account, "GET", base, queries=[("page_size", "50")])
            if blocks.get("code") != 0:
                return Result.fail(blocks.get("msg") or f"获取公告失败: {blocks.get('code')}")

            page = next(
                (b for b in _data(blocks).get("items") or []
                 if isinstance(b, dict) and b.get("block_type") == _PAGE_BLOCK and b.get("block_id")),
                None,
            )
            if page is None:
                return Result.fail("无法找到群公告的根 block，请确保群公告已初始化")

            paragraph = {
                "block_type": _TEXT_BLOCK,
                "text": {"elements": [{"text_run": {"content": content}}]},
            }
            created = await self._call(
                account,
                "POST",
                f"{base}/{page['block_id']}/children",
                body={"children": [paragraph], "index": 0},
            )
        except Exception as exc:
            return Result.fail(_describe(exc))
        if created.get("code") != 0:
            return Result.fail(created.get("msg") or f"创建公告失败: {created.get('code')}")
        return Result.ok()

    async def update_announcement(self, account: ResolvedAccount, chat_id: str, content: str) -> Result:
        """Write *content* as the chat announcement, whichever variant the chat uses."""
        if not content.strip():
            return Result.fail("公告内容不能为空")

        current = await self.get_announcement(account, chat_id)
        if not current:
            return Result.fail(f"获取当前公告失败：{current.message}")
        if current.value.docx:
            return await self._update_docx_announcement(account, chat_id, content)

        try:
            await self._checked(
                account,
                "PATCH",
                f"/open-apis/im/v1/chats/{chat_id}/announcement",
                body={"revision": current.value.revision or "0", "content": content},
            )
        except Exception as exc:
            return Result.fail(_describe(exc))
        return Result.ok()
