"""Tests for the platform API facade."""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any

import pytest

from larkbridge.channel.api import (
    Announcement,
    BotInfo,
    ChatRole,
    ClientCache,
    GroupMember,
    LarkApi,
)
from larkbridge.config.accounts import MissingCredentialsError, ResolvedAccount


class FakeClient:
    """Replays canned JSON responses keyed by (method, uri)."""

    def __init__(self, responses: dict[tuple[str, str], Any]) -> None:
        self.responses = responses
        self.requests: list[Any] = []

    def request(self, req: Any) -> SimpleNamespace:
        self.requests.append(req)
        key = (req.http_method.name, req.uri)
        payload = self.responses[key]
        if isinstance(payload, list):
            payload = payload.pop(0)
        if isinstance(payload, Exception):
            raise payload
        content = json.dumps(payload).encode()
        return SimpleNamespace(raw=SimpleNamespace(content=content), code=payload.get("code"), msg=payload.get("msg"))


def _api(responses: dict) -> tuple[LarkApi, FakeClient]:
    client = FakeClient(responses)
    return LarkApi(clients=ClientCache(factory=lambda _a: client)), client


@pytest.fixture()
def account() -> ResolvedAccount:
    return ResolvedAccount(account_id="default", app_id="cli_a", app_secret="s")


class TestMessages:
    @pytest.mark.asyncio
    async def test_send_text(self, account: ResolvedAccount) -> None:
        api, client = _api({("POST", "/open-apis/im/v1/messages"): {"code": 0, "data": {"message_id": "om_1"}}})
        result = await api.send_text(account, "oc_1", "你好")
        assert result
        assert result.value == "om_1"
        req = client.requests[0]
        assert ("receive_id_type", "chat_id") in req.queries
        assert json.loads(req.body["content"]) == {"text": "你好"}

    @pytest.mark.asyncio
    async def test_platform_error(self, account: ResolvedAccount) -> None:
        api, _ = _api({("POST", "/open-apis/im/v1/messages"): {"code": 230002, "msg": "bot not in chat"}})
        result = await api.send_text(account, "oc_1", "hi")
        assert not result
        assert result.error == "bot not in chat"

    @pytest.mark.asyncio
    async def test_platform_error_without_msg(self, account: ResolvedAccount) -> None:
        api, _ = _api({("POST", "/open-apis/im/v1/messages/om_1/reply"): {"code": 99}})
        result = await api.reply_text(account, "om_1", "hi")
        assert result.error == "Lark API error: 99"

    @pytest.mark.asyncio
    async def test_transport_exception_becomes_failure(self, account: ResolvedAccount) -> None:
        api, _ = _api({("POST", "/open-apis/im/v1/messages"): ConnectionError("reset")})
        result = await api.send_text(account, "oc_1", "hi")
        assert not result
        assert result.error == "reset"

    @pytest.mark.asyncio
    async def test_missing_credentials_become_failure(self) -> None:
        api = LarkApi()
        result = await api.send_text(ResolvedAccount(account_id="x"), "oc_1", "hi")
        assert not result
        assert "appId and appSecret" in result.error

    @pytest.mark.asyncio
    async def test_send_mention_posts_rich_text(self, account: ResolvedAccount) -> None:
        api, client = _api({("POST", "/open-apis/im/v1/messages"): {"code": 0, "data": {"message_id": "om_2"}}})
        assert await api.send_mention(account, "oc_1", "欢迎", "ou_a", "Ann")
        body = client.requests[0].body
        assert body["msg_type"] == "post"
        first = json.loads(body["content"])["zh_cn"]["content"][0][0]
        assert first == {"tag": "at", "user_id": "ou_a", "user_name": "Ann"}


class TestBotInfo:
    @pytest.mark.asyncio
    async def test_probe(self, account: ResolvedAccount) -> None:
        api, _ = _api({("GET", "/open-apis/bot/v3/info"): [{"code": 0, "bot": {}}, {"code": 1, "msg": "bad secret"}]})
        assert await api.probe(account)
        result = await api.probe(account)
        assert result.error == "bad secret"

    @pytest.mark.asyncio
    async def test_bot_info_is_cached(self, account: ResolvedAccount) -> None:
        api, client = _api({("GET", "/open-apis/bot/v3/info"): {"code": 0, "bot": {"open_id": "ou_bot", "app_name": "b"}}})
        first = await api.get_bot_info(account)
        second = await api.get_bot_info(account)
        assert first.value == BotInfo(open_id="ou_bot", name="b")
        assert second.value is first.value
        assert len(client.requests) == 1

    @pytest.mark.asyncio
    async def test_bot_info_without_open_id_not_cached(self, account: ResolvedAccount) -> None:
        api, client = _api({("GET", "/open-apis/bot/v3/info"): {"code": 0, "bot": {}}})
        assert not await api.get_bot_info(account)
        assert not await api.get_bot_info(account)
        assert len(client.requests) == 2

    @pytest.mark.asyncio
    async def test_clear_caches(self, account: ResolvedAccount) -> None:
        api, client = _api({("GET", "/open-apis/bot/v3/info"): {"code": 0, "bot": {"open_id": "ou_bot"}}})
        await api.get_bot_info(account)
        api.clear_caches("cli_a")
        assert len(api.clients) == 0
        await api.get_bot_info(account)
        assert len(client.requests) == 2

    def test_injected_empty_cache_is_kept(self) -> None:
        cache = ClientCache(factory=lambda _a: FakeClient({}))
        assert len(cache) == 0
        assert LarkApi(clients=cache).clients is cache


class TestChats:
    @pytest.mark.asyncio
    async def test_members_follow_pagination(self, account: ResolvedAccount) -> None:
        uri = "/open-apis/im/v1/chats/oc_1/members"
        api, client = _api({("GET", uri): [
            {"code": 0, "data": {"items": [{"member_id": "ou_a", "name": "Ann"}], "has_more": True, "page_token": "p2"}},
            {"code": 0, "data": {"items": [{"member_id": "ou_b"}], "has_more": False}},
        ]})
        result = await api.get_chat_members(account, "oc_1")
        assert result.value == [GroupMember("ou_a", "Ann"), GroupMember("ou_b")]
        assert ("page_token", "p2") in client.requests[1].queries

    @pytest.mark.asyncio
    async def test_list_bot_chats(self, account: ResolvedAccount) -> None:
        api, _ = _api({("GET", "/open-apis/im/v1/chats"): {"code": 0, "data": {"items": [
            {"chat_id": "oc_1", "name": "ops"}, {"name": "no id"},
        ]}}})
        result = await api.list_bot_chats(account)
        assert [c.chat_id for c in result.value] == ["oc_1"]

    @pytest.mark.asyncio
    async def test_owner_is_admin(self, account: ResolvedAccount) -> None:
        api, client = _api({("GET", "/open-apis/im/v1/chats/oc_1"): {"code": 0, "data": {"owner_id": "ou_a"}}})
        result = await api.check_group_admin(account, "oc_1", "ou_a")
        assert result.value == ChatRole(is_owner=True, is_admin=True)
        assert len(client.requests) == 1

    @pytest.mark.asyncio
    async def test_manager_is_admin(self, account: ResolvedAccount) -> None:
        api, _ = _api({
            ("GET", "/open-apis/im/v1/chats/oc_1"): {"code": 0, "data": {"owner_id": "ou_owner"}},
            ("GET", "/open-apis/im/v1/chats/oc_1/managers"): {"code": 0, "data": {"items": [{"manager_id": "ou_m"}]}},
        })
        assert (await api.check_group_admin(account, "oc_1", "ou_m")).value.is_admin
        assert not (await api.check_group_admin(account, "oc_1", "ou_x")).value.is_admin

    @pytest.mark.asyncio
    async def test_admin_check_failure(self, account: ResolvedAccount) -> None:
        api, _ = _api({("GET", "/open-apis/im/v1/chats/oc_1"): {"code": 232011, "msg": "no permission"}})
        result = await api.check_group_admin(account, "oc_1", "ou_a")
        assert result.error == "no permission"

    @pytest.mark.asyncio
    async def test_add_members_reports_invalid(self, account: ResolvedAccount) -> None:
        api, client = _api({("POST", "/open-apis/im/v1/chats/oc_1/members"): {"code": 0, "data": {
            "invalid_id_list": ["ou_x"], "not_existed_id_list": ["ou_y"],
        }}})
        result = await api.add_chat_members(account, "oc_1", ["ou_a", "ou_x", "ou_y"])
        assert result.value == ["ou_x", "ou_y"]
        assert client.requests[0].body == {"id_list": ["ou_a", "ou_x", "ou_y"]}

    @pytest.mark.asyncio
    async def test_empty_member_lists_rejected(self, account: ResolvedAccount) -> None:
        api, client = _api({})
        assert not await api.add_chat_members(account, "oc_1", [])
        assert not await api.remove_chat_members(account, "oc_1", [])
        assert client.requests == []


class TestAnnouncements:
    ANN = "/open-apis/im/v1/chats/oc_1/announcement"
    BLOCKS = "/open-apis/docx/v1/chat_announcements/oc_1/blocks"

    @pytest.mark.asyncio
    async def test_legacy_update_uses_revision(self, account: ResolvedAccount) -> None:
        api, client = _api({("GET", self.ANN): {"code": 0, "data": {"revision": "7", "content": "old"}},
                            ("PATCH", self.ANN): {"code": 0}})
        assert await api.update_announcement(account, "oc_1", "new text")
        assert client.requests[1].body == {"revision": "7", "content": "new text"}

    @pytest.mark.asyncio
    async def test_docx_detected_by_code(self, account: ResolvedAccount) -> None:
        api, _ = _api({("GET", self.ANN): {"code": 232097, "msg": "chat announcement is docx type"}})
        result = await api.get_announcement(account, "oc_1")
        assert result.value == Announcement(docx=True)

    @pytest.mark.asyncio
    async def test_docx_update_inserts_paragraph(self, account: ResolvedAccount) -> None:
        api, client = _api({
            ("GET", self.ANN): {"code": 232097, "msg": "docx type"},
            ("GET", self.BLOCKS): {"code": 0, "data": {"items": [
                {"block_id": "b_text", "block_type": 2}, {"block_id": "b_page", "block_type": 1},
            ]}},
            ("POST", f"{self.BLOCKS}/b_page/children"): {"code": 0},
        })
        assert await api.update_announcement(account, "oc_1", "公告")
        body = client.requests[-1].body
        assert body["index"] == 0
        assert body["children"][0]["text"]["elements"][0]["text_run"]["content"] == "公告"

    @pytest.mark.asyncio
    async def test_docx_without_page_block(self, account: ResolvedAccount) -> None:
        api, _ = _api({
            ("GET", self.ANN): {"code": 232097},
            ("GET", self.BLOCKS): {"code": 0, "data": {"items": []}},
        })
        result = await api.update_announcement(account, "oc_1", "x")
        assert "根 block" in result.error

    @pytest.mark.asyncio
    async def test_blank_content_rejected(self, account: ResolvedAccount) -> None:
        api, client = _api({})
        result = await api.update_announcement(account, "oc_1", "   ")
        assert result.error == "公告内容不能为空"
        assert client.requests == []

    @pytest.mark.asyncio
    async def test_fetch_failure_is_reported(self, account: ResolvedAccount) -> None:
        api, _ = _api({("GET", self.ANN): {"code": 5, "msg": "chat not found"}})
        result = await api.update_announcement(account, "oc_1", "x")
        assert result.error == "获取当前公告失败：chat not found"


def test_client_cache_requires_credentials() -> None:
    cache = ClientCache(factory=lambda _a: object())
    with pytest.raises(MissingCredentialsError):
        cache.get(ResolvedAccount(account_id="x", app_id="cli_a"))
