"""Shared pytest fixtures for larkbridge tests."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from larkbridge.config.accounts import ResolvedAccount


@pytest.fixture(autouse=True)
def _isolate_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    monkeypatch.setenv("LARKBRIDGE_DATA_DIR", str(data_dir))
    monkeypatch.setenv("DOTENV_PATH", str(tmp_path / ".env"))
    for key in ("LARK_APP_ID", "LARK_APP_SECRET", "LARK_DOMAIN", "LARK_DM_POLICY",
                "LARK_ALLOW_FROM", "LARKBRIDGE_CONFIG", "LARKBRIDGE_RESPONDER"):
        monkeypatch.delenv(key, raising=False)
    return data_dir


@pytest.fixture(autouse=True)
def _reset_singletons(_isolate_data_dir: Path):
    from larkbridge.util.singletons import reset_all_singletons

    reset_all_singletons()
    yield
    reset_all_singletons()


@pytest.fixture()
def data_dir(_isolate_data_dir: Path) -> Path:
    return _isolate_data_dir


@pytest.fixture()
def account() -> ResolvedAccount:
    return ResolvedAccount(account_id="default", app_id="cli_test", app_secret="secret")


@pytest.fixture()
def api() -> MagicMock:
    """A ``LarkApi`` stand-in whose coroutines all succeed by default."""
    from larkbridge.channel.api import BotInfo, ChatRole
    from larkbridge.util.result import Result

    mock = MagicMock()
    mock.send_text = AsyncMock(return_value=Result.ok(value="om_sent"))
    mock.reply_text = AsyncMock(return_value=Result.ok(value="om_reply"))
    mock.send_mention = AsyncMock(return_value=Result.ok(value="om_mention"))
    mock.probe = AsyncMock(return_value=Result.ok())
    mock.get_bot_info = AsyncMock(return_value=Result.ok(value=BotInfo(open_id="ou_bot", name="bot")))
    mock.list_bot_chats = AsyncMock(return_value=Result.ok(value=[]))
    mock.get_chat_members = AsyncMock(return_value=Result.ok(value=[]))
    mock.check_group_admin = AsyncMock(return_value=Result.ok(value=ChatRole(is_owner=True, is_admin=True)))
    mock.add_chat_members = AsyncMock(return_value=Result.ok(value=[]))
    mock.remove_chat_members = AsyncMock(return_value=Result.ok(value=[]))
    mock.update_announcement = AsyncMock(return_value=Result.ok())
    return mock

