"""Interactive operator console -- alternative to the status server."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from rich.console import Console
from rich.table import Table

from . import __version__
from .channel.broadcast import broadcast
from .channel.gateway import LarkGateway
from .config.accounts import (
    ResolvedAccount,
    is_account_configured,
    list_account_ids,
    resolve_account,
    resolve_default_account_id,
)
from .config.settings import cfg
from .server.app import create_gateway

console = Console()

HELP = (
    "[bold]/status[/bold]             account runtime status\n"
    "[bold]/probe[/bold] \\[account]    check credentials against the platform\n"
    "[bold]/groups[/bold] \\[account]   chats the bot is a member of\n"
    "[bold]/broadcast[/bold] <text>   send text to every chat of the default account\n"
    "[bold]/quit[/bold]               stop all accounts and exit"
)


def _ts(value: float | None) -> str:
    if value is None:
        return "-"
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(value))


class ConsoleCommands:
    """Operator commands; ``handle`` returns ``False`` once the console should exit."""

    def __init__(
        self,
        gateway: LarkGateway,
        config_loader: Callable[[], dict[str, Any]],
        out: Console | None = None,
    ) -> None:
        self._gateway = gateway
        self._load = config_loader
        self._out = out or console

    def _account(self, account_id: str | None) -> ResolvedAccount | None:
        raw = self._load()
        account_id = account_id or resolve_default_account_id(raw)
        if account_id not in list_account_ids(raw):
            self._out.print(f"[red]Unknown account:[/red] {account_id}")
            return None
        return resolve_account(raw, account_id)

    async def handle(self, text: str) -> bool:
        command, _, rest = text.strip().partition(" ")
        command = command.lower()
        rest = rest.strip()

        if command in ("/quit", "/exit"):
            return False
        if command == "/status":
            self._status()
        elif command == "/probe":
            await self._probe(rest or None)
        elif command == "/groups":
            await self._groups(rest or None)
        elif command == "/broadcast":
            await self._broadcast(rest)
        else:
            self._out.print(HELP)
        return True

    def _status(self) -> None:
        statuses = self._gateway.snapshot()
        if not statuses:
            self._out.print("[dim]No accounts started.[/dim]")
            return
        table = Table(title="Feishu accounts")
        for column in ("account", "running", "started", "last inbound", "last outbound", "error"):
            table.add_column(column)
        for s in statuses:
            table.add_row(
                s.account_id,
                "[green]yes[/green]" if s.running else "[red]no[/red]",
                _ts(s.last_start_at),
                _ts(s.last_inbound_at),
                _ts(s.last_outbound_at),
                s.last_error or "",
            )
        self._out.print(table)

    async def _probe(self, account_id: str | None) -> None:
        account = self._account(account_id)
        if account is None:
            return
        outcome = await self._gateway.probe(account)
        if outcome.get("ok"):
            self._out.print(f"[green]{account.account_id}: ok[/green]")
        else:
            self._out.print(f"[red]{account.account_id}: {outcome.get('error')}[/red]")

    async def _groups(self, account_id: str | None) -> None:
        account = self._account(account_id)
        if account is None:
            return
        chats = await self._gateway.api.list_bot_chats(account)
        if not chats:
            self._out.print(f"[red]Failed to list chats:[/red] {chats.error}")
            return
        table = Table(title=f"Chats for {account.account_id}")
        table.add_column("chat_id")
        table.add_column("name")
        for chat in chats.value:
            table.add_row(chat.chat_id, chat.name or "")
        self._out.print(table)

    async def _broadcast(self, text: str) -> None:
        if not text:
            self._out.print("Usage: /broadcast <text>")
            return
        account = self._account(None)
        if account is None:
            return
        chats = await self._gateway.api.list_bot_chats(account)
        if not chats:
            self._out.print(f"[red]Failed to list chats:[/red] {chats.error}")
            return
        result = await broadcast(
            self._gateway.api, account, [c.chat_id for c in chats.value], text,
        )
        self._out.print(f"Sent to {result.success_count} chat(s), {result.failed_count} failed.")
        for error in result.errors:
            self._out.print(f"  [red]{error}[/red]")


async def _start_accounts(gateway: LarkGateway, raw: dict[str, Any]) -> None:
    for account_id in list_account_ids(raw):
        account = resolve_account(raw, account_id)
        if not (account.enabled and is_account_configured(account)):
            continue
        try:
            await gateway.start_account(account)
            console.print(f"[green]started[/green] {account.account_id}")
        except Exception as exc:
            console.print(f"[red]failed to start {account.account_id}:[/red] {exc}")


async def _shutdown(gateway: LarkGateway) -> None:
    """Stop every connection, then let in-flight event tasks finish."""
    gateway.stop_all()
    await gateway.drain()


async def _main() -> None:
    cfg.ensure_dirs()
    console.print(
        f"[bold green]larkbridge[/bold green] v{__version__}\n"
        "Type [bold]/help[/bold] for commands, [bold]/quit[/bold] to exit.\n"
    )

    gateway = create_gateway()
    await _start_accounts(gateway, cfg.channel_config())
    commands = ConsoleCommands(gateway, cfg.channel_config)

    prompt_session: PromptSession[str] = PromptSession(history=FileHistory(str(cfg.cli_history_path)))

    try:
        while True:
            try:
                user_input = await asyncio.to_thread(prompt_session.prompt, HTML("<b>lark &gt;</b> "))
            except (EOFError, KeyboardInterrupt):
                break

            if not user_input.strip():
                continue
            if not await commands.handle(user_input):
                break
    finally:
        await _shutdown(gateway)
        console.print("[dim]Goodbye.[/dim]")


def main() -> None:
    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
