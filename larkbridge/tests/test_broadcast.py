"""Tests for broadcast fan-out."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from larkbridge.channel.broadcast import broadcast
from larkbridge.config.accounts import ResolvedAccount
from larkbridge.util.result import Result


class TestBroadcast:
    @pytest.mark.asyncio
    async def test_one_failure_among_three(self, account: ResolvedAccount, api: MagicMock) -> None:
        async def send(_account, dest, _text, _id_type):
            return Result.fail("bot removed") if dest == "B" else Result.ok(value=f"om_{dest}")

        api.send_text = AsyncMock(side_effect=send)
        result = await broadcast(api, account, ["A", "B", "C"], "notice")
        assert result.success_count == 2
        assert result.failed_count == 1
        assert result.errors == ["B: bot removed"]

    @pytest.mark.asyncio
    async def test_exception_does_not_cancel_others(self, account: ResolvedAccount, api: MagicMock) -> None:
        sent: list[str] = []

        async def send(_account, dest, _text, _id_type):
            if dest == "A":
                raise ConnectionError("reset")
            await asyncio.sleep(0)
            sent.append(dest)
            return Result.ok()

        api.send_text = AsyncMock(side_effect=send)
        result = await broadcast(api, account, ["A", "B", "C"], "notice")
        assert sent == ["B", "C"]
        assert result.errors == ["A: reset"]

    @pytest.mark.asyncio
    async def test_receive_id_type_passed(self, account: ResolvedAccount, api: MagicMock) -> None:
        await broadcast(api, account, ["ou_a"], "hi", receive_id_type="open_id")
        api.send_text.assert_awaited_once_with(account, "ou_a", "hi", "open_id")

    @pytest.mark.asyncio
    async def test_no_destinations(self, account: ResolvedAccount, api: MagicMock) -> None:
        result = await broadcast(api, account, [], "hi")
        assert (result.success_count, result.failed_count, result.errors) == (0, 0, [])
