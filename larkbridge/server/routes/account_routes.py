"""Account status API routes -- /api/status, /api/probe/*, /api/send."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from aiohttp import web

from ...channel.gateway import LarkGateway
from ...config.accounts import (
    ResolvedAccount,
    list_account_ids,
    resolve_account,
    resolve_default_account_id,
)

ConfigLoader = Callable[[], dict[str, Any]]


class AccountRoutes:
    """REST handler for per-account runtime status, probing and sending."""

    def __init__(self, gateway: LarkGateway, config_loader: ConfigLoader) -> None:
        self._gateway = gateway
        self._load = config_loader

    def register(self, router: web.UrlDispatcher) -> None:
        router.add_get("/api/status", self._status)
        router.add_get("/api/probe/{account_id}", self._probe)
        router.add_post("/api/send", self._send)

    def _account(self, account_id: str) -> ResolvedAccount | None:
        raw = self._load()
        if account_id not in list_account_ids(raw):
            return None
        return resolve_account(raw, account_id)

    @staticmethod
    def _not_found(account_id: str) -> web.Response:
        return web.json_response(
            {"status": "error", "message": f"Unknown account: {account_id}"}, status=404
        )

    async def _status(self, _req: web.Request) -> web.Response:
        accounts = [s.as_dict() for s in self._gateway.snapshot()]
        return web.json_response({"accounts": accounts})

    async def _probe(self, req: web.Request) -> web.Response:
        account_id = req.match_info["account_id"]
        account = self._account(account_id)
        if account is None:
            return self._not_found(account_id)
        return web.json_response(await self._gateway.probe(account))

    async def _send(self, req: web.Request) -> web.Response:
        try:
            body = await req.json()
        except ValueError:
            return web.json_response(
                {"status": "error", "message": "Invalid JSON body"}, status=400
            )
        if not isinstance(body, dict):
            body = {}
        to = str(body.get("to") or "").strip()
        text = str(body.get("text") or "")
        if not to or not text.strip():
            return web.json_response(
                {"status": "error", "message": "'to' and 'text' are required"}, status=400
            )

        account_id = str(body.get("account_id") or "") or self._default_account_id()
        account = self._account(account_id)
        if account is None:
            return self._not_found(account_id)

        result = await self._gateway.send_text(account, to, text)
        if not result:
            return web.json_response({"status": "error", "message": result.error}, status=502)
        return web.json_response({"status": "ok", "message_id": result.value})

    def _default_account_id(self) -> str:
        return resolve_default_account_id(self._load())
