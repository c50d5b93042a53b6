"""Status server -- app factory and process entry point.

The aiohttp application owns the gateway: every enabled, configured Feishu
account is started on startup and all connections are stopped on cleanup.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from aiohttp import web
from aiohttp.abc import AbstractAccessLogger

from .. import __version__
from ..channel.dedup import DedupCache
from ..channel.gateway import LarkGateway
from ..config.accounts import is_account_configured, list_account_ids, resolve_account
from ..config.settings import cfg
from ..messaging.dispatch import ResponderReplyRuntime, load_responder
from .routes.account_routes import AccountRoutes

logger = logging.getLogger(__name__)

_QUIET_PATHS = frozenset({"/health", "/api/status"})


class QuietAccessLogger(AbstractAccessLogger):
    """Demotes polling-endpoint log entries to DEBUG."""

    def log(self, request: web.BaseRequest, response: web.StreamResponse, time: float) -> None:
        level = logging.DEBUG if request.path in _QUIET_PATHS else logging.INFO
        self.logger.log(
            level,
            "%s %s %s %s %.3fs",
            request.remote,
            request.method,
            request.path,
            response.status,
            time,
        )


def create_gateway() -> LarkGateway:
    responder = load_responder(cfg.responder)
    logger.info("Reply responder: %s", cfg.responder)
    return LarkGateway(
        ResponderReplyRuntime(responder),
        dedup=DedupCache(ttl=cfg.dedup_ttl),
    )


async def create_app() -> web.Application:
    factory = AppFactory()
    return await factory.build()


class AppFactory:
    """Builds the aiohttp application with the gateway wired in."""

    def __init__(
        self,
        gateway: LarkGateway | None = None,
        config_loader: Callable[[], dict[str, Any]] | None = None,
    ) -> None:
        self._gateway = gateway
        self._load = config_loader or cfg.channel_config

    async def build(self) -> web.Application:
        if self._gateway is None:
            cfg.ensure_dirs()
            self._gateway = create_gateway()

        app = web.Application()
        app["gateway"] = self._gateway
        self._register_routes(app)
        app.on_startup.append(self._on_startup)
        app.on_cleanup.append(self._on_cleanup)
        return app

    def _register_routes(self, app: web.Application) -> None:
        router = app.router
        AccountRoutes(self._gateway, self._load).register(router)
        router.add_get("/health", _health)

    async def _on_startup(self, app: web.Application) -> None:
        gateway: LarkGateway = app["gateway"]
        raw = self._load()
        account_ids = list_account_ids(raw)
        if not account_ids:
            logger.warning("No Feishu accounts configured -- set LARK_APP_ID / LARK_APP_SECRET")
            return

        for account_id in account_ids:
            account = resolve_account(raw, account_id)
            if not account.enabled:
                logger.info("%s disabled, not starting", account.log_prefix)
                continue
            if not is_account_configured(account):
                logger.warning("%s missing appId or appSecret, not starting", account.log_prefix)
                continue
            try:
                await gateway.start_account(account)
            except Exception as exc:
                logger.error("%s failed to start: %s", account.log_prefix, exc, exc_info=True)

    async def _on_cleanup(self, app: web.Application) -> None:
        gateway: LarkGateway = app["gateway"]
        gateway.stop_all()
        await gateway.drain()


async def _health(_req: web.Request) -> web.Response:
    return web.json_response({"status": "ok", "version": __version__})


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    cfg.reload()
    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s  %(name)s  %(levelname)s  %(message)s",
    )
    logging.getLogger("Lark").setLevel(logging.WARNING)
    port = cfg.port
    logger.info("Starting larkbridge status server on port %d ...", port)
    web.run_app(create_app(), host="0.0.0.0", port=port, access_log_class=QuietAccessLogger)


if __name__ == "__main__":
    main()
