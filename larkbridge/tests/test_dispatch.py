"""Tests for the responder-backed reply runtime."""

from __future__ import annotations

import asyncio
import logging

import pytest

from larkbridge.channel.ingest import InboundContext
from larkbridge.messaging.dispatch import (
    ReplyPayload,
    ResponderReplyRuntime,
    echo_responder,
    load_responder,
)


def _ctx(body: str = "hello") -> InboundContext:
    return InboundContext(
        from_="ou_user", to="oc_1", chat_type="direct", reply_to_id="om_1", body=body, account_id="default",
    )


async def _run(responder, ctx: InboundContext | None = None) -> list[ReplyPayload]:
    delivered: list[ReplyPayload] = []

    async def deliver(payload: ReplyPayload) -> None:
        delivered.append(payload)

    turn = ResponderReplyRuntime(responder).create_turn(deliver)
    try:
        await turn.dispatch(ctx or _ctx())
        await turn.wait_for_idle()
    finally:
        turn.mark_idle()
    return delivered


class TestResponderTurn:
    @pytest.mark.asyncio
    async def test_string_output(self) -> None:
        assert await _run(echo_responder, _ctx("ping")) == [ReplyPayload(text="ping")]

    @pytest.mark.asyncio
    async def test_list_output(self) -> None:
        async def responder(ctx):
            return ["one", "two"]

        assert [p.text for p in await _run(responder)] == ["one", "two"]

    @pytest.mark.asyncio
    async def test_none_output(self) -> None:
        async def responder(ctx):
            return None

        assert await _run(responder) == []

    @pytest.mark.asyncio
    async def test_responder_error_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        async def responder(ctx):
            raise RuntimeError("model offline")

        with caplog.at_level(logging.ERROR, logger="larkbridge.messaging.dispatch"):
            assert await _run(responder) == []
        assert "model offline" in caplog.text

    @pytest.mark.asyncio
    async def test_mark_idle_cancels_pending(self) -> None:
        started = asyncio.Event()

        async def responder(ctx):
            started.set()
            await asyncio.sleep(60)
            return "late"

        async def deliver(payload: ReplyPayload) -> None:
            raise AssertionError("should not deliver")

        turn = ResponderReplyRuntime(responder).create_turn(deliver)
        await turn.dispatch(_ctx())
        await started.wait()
        turn.mark_idle()
        await turn.wait_for_idle()
        assert turn.idle


class TestLoadResponder:
    def test_valid_path(self) -> None:
        assert load_responder("larkbridge.messaging.dispatch:echo_responder") is echo_responder

    @pytest.mark.parametrize("path", ["echo_responder", ":echo", "larkbridge.messaging.dispatch:"])
    def test_malformed_path(self, path: str) -> None:
        with pytest.raises(ValueError):
            load_responder(path)

    def test_not_callable(self) -> None:
        with pytest.raises(ValueError, match="not callable"):
            load_responder("larkbridge.messaging.formatting:TEXT_CHUNK_LIMIT")

    def test_missing_module(self) -> None:
        with pytest.raises(ImportError):
            load_responder("larkbridge.does_not_exist:fn")
