"""Gateway -- the surface an orchestrator drives the Feishu channel through.

``start_account`` wires one account's router, message pipeline and event
handlers onto a fresh long connection; the gateway also keeps per-account
runtime status and exposes probing and outbound text sending.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

from ..config.accounts import ResolvedAccount, is_account_configured
from ..messaging.dispatch import ReplyRuntime
from ..messaging.formatting import TEXT_CHUNK_LIMIT, split_message
from ..util.result import Result
from .api import LarkApi
from .connection import ConnectionHandle, ConnectionManager
from .dedup import DedupCache
from .events import MessageReceived
from .handlers import EventHandlers
from .ingest import MessagePipeline
from .router import EventRouter, TaskSpawner

logger = logging.getLogger(__name__)

StatusSink = Callable[[str, dict[str, Any]], None]


@dataclass
class AccountStatus:
    account_id: str
    name: str | None = None
    enabled: bool = True
    configured: bool = False
    running: bool = False
    last_start_at: float | None = None
    last_stop_at: float | None = None
    last_error: str | None = None
    last_inbound_at: float | None = None
    last_outbound_at: float | None = None
    probe: dict[str, Any] | None = None
    last_probe_at: float | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class LarkGateway:
    def __init__(
        self,
        replies: ReplyRuntime,
        *,
        api: LarkApi | None = None,
        dedup: DedupCache | None = None,
        connections: ConnectionManager | None = None,
        status_sink: StatusSink | None = None,
        spawner: TaskSpawner | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.replies = replies
        self.api = api if api is not None else LarkApi()
        self.dedup = dedup if dedup is not None else DedupCache()
        self.connections = connections if connections is not None else ConnectionManager()
        self.spawner = spawner if spawner is not None else TaskSpawner()
        self._status_sink = status_sink
        self._clock = clock
        self._status: dict[str, AccountStatus] = {}
        self.connections.add_stop_listener(self._on_connection_stopped)

    # -- status ------------------------------------------------------------

    def _status_for(self, account: ResolvedAccount) -> AccountStatus:
        status = self._status.get(account.account_id)
        if status is None:
            status = self._status[account.account_id] = AccountStatus(account_id=account.account_id)
        status.name = account.name
        status.enabled = account.enabled
        status.configured = is_account_configured(account)
        return status

    def _status_patcher(self, account_id: str) -> Callable[[dict[str, Any]], None]:
        def patch(values: dict[str, Any]) -> None:
            status = self._status.get(account_id)
            if status is not None:
                for key, value in values.items():
                    setattr(status, key, value)
            if self._status_sink is not None:
                try:
                    self._status_sink(account_id, values)
                except Exception as exc:
                    logger.warning("[feishu:%s] status sink failed: %s", account_id, exc)

        return patch

    def _on_connection_stopped(self, handle: ConnectionHandle) -> None:
        account_id = handle.account.account_id
        status = self._status.get(account_id)
        if status is None or self.connections.is_running(account_id):
            return
        status.running = False
        status.last_stop_at = self._clock()
        if handle.error:
            status.last_error = handle.error

    def snapshot(self) -> list[AccountStatus]:
        return list(self._status.values())

    def status(self, account_id: str) -> AccountStatus | None:
        return self._status.get(account_id)

    # -- lifecycle ---------------------------------------------------------

    async def start_account(
        self,
        account: ResolvedAccount,
        cancel: asyncio.Event | None = None,
    ) -> ConnectionHandle:
        """Start (or restart) *account*.  Raises ``MissingCredentialsError``."""
        self.spawner.bind(asyncio.get_running_loop())
        status = self._status_for(account)
        on_status = self._status_patcher(account.account_id)

        logger.info("%s starting Feishu provider", account.log_prefix)
        router = EventRouter(account.account_id, self.spawner)
        pipeline = MessagePipeline(
            account, api=self.api, dedup=self.dedup, replies=self.replies, on_status=on_status,
        )
        router.on(MessageReceived, pipeline.handle)
        EventHandlers(account, api=self.api, dedup=self.dedup, on_status=on_status).register(router)

        try:
            handle = self.connections.start(account, router.dispatch, cancel)
        except Exception as exc:
            status.running = False
            status.last_error = str(exc)
            logger.error("%s failed to start: %s", account.log_prefix, exc)
            raise

        status.running = True
        status.last_start_at = self._clock()
        status.last_error = None
        return handle

    def stop_account(self, account_id: str) -> None:
        logger.info("[feishu:%s] stopping Feishu provider", account_id)
        self.connections.stop(account_id)

    def stop_all(self) -> None:
        self.connections.stop_all()

    async def drain(self) -> None:
        """Wait for in-flight event tasks."""
        await self.spawner.drain()

    # -- probe / outbound --------------------------------------------------

    async def probe(self, account: ResolvedAccount) -> dict[str, Any]:
        if not is_account_configured(account):
            outcome: dict[str, Any] = {"ok": False, "error": "missing appId or appSecret"}
        else:
            result = await self.api.probe(account)
            outcome = {"ok": True} if result else {"ok": False, "error": result.error}
        status = self._status_for(account)
        status.probe = outcome
        status.last_probe_at = self._clock()
        return outcome

    async def send_text(self, account: ResolvedAccount, to: str, text: str) -> Result:
        """Send *text* to chat *to*, split into platform-sized chunks."""
        last = Result.fail("nothing to send")
        for chunk in split_message(text, TEXT_CHUNK_LIMIT):
            last = await self.api.send_text(account, to, chunk)
            if not last:
                logger.error("%s outbound send to %s failed: %s", account.log_prefix, to, last.error)
                return last
        self._status_patcher(account.account_id)({"last_outbound_at": self._clock()})
        return last

    def clear_caches(self) -> None:
        self.api.clear_caches()
        self.dedup.clear()
