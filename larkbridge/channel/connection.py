"""Long-connection lifecycle -- one live websocket per (account, app id).

``ConnectionManager.start`` replaces any live connection for the same
handle, so restarting an account never leaves two sockets delivering the
same events.  Connections come from a factory; the default wraps
``lark_oapi.ws.Client``.

``lark_oapi.ws.client`` schedules all of its work on one module-level
``loop``, so every client in the process shares a single :class:`SdkLoop`
running on a daemon thread.  Clients are driven through their connect and
ping coroutines on that loop instead of the blocking ``Client.start()``.
The SDK callbacks only forward the decoded envelope to the router, which
returns immediately.  A connection that dies on its own reports back to its
handle, which then stops and records the error.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import threading
from collections.abc import Callable
from typing import Any, Protocol

import lark_oapi as lark
from lark_oapi.ws import client as lark_ws_client
from lark_oapi.ws.exception import ClientException

from ..config.accounts import ResolvedAccount, require_credentials
from ..util.async_helpers import current_loop
from .events import EVENT_TYPES

logger = logging.getLogger(__name__)

EnvelopeCallback = Callable[[dict[str, Any]], None]
ExitCallback = Callable[[str], None]


class ConnectionState(str, enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    LIVE = "live"
    STOPPED = "stopped"


class Connection(Protocol):
    def start(self, on_event: EnvelopeCallback, on_exit: ExitCallback) -> None: ...

    def stop(self) -> None: ...


ConnectionFactory = Callable[[ResolvedAccount], Connection]


def build_event_handler(on_event: EnvelopeCallback) -> Any:
    """Register every recognized event type as a raw (customized) event."""

    def _forward(data: Any) -> None:
        try:
            on_event(json.loads(lark.JSON.marshal(data)))
        except Exception as exc:
            logger.error("Failed to forward Feishu event: %s", exc, exc_info=True)

    builder = lark.EventDispatcherHandler.builder("", "")
    for event_type in EVENT_TYPES:
        builder = builder.register_p2_customized_event(event_type, _forward)
    return builder.build()


def _describe(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class SdkLoop:
    """The event loop thread shared by every ``lark_oapi.ws.Client``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None

    def get(self) -> asyncio.AbstractEventLoop:
        """Return the running SDK loop, starting its thread on first use."""
        with self._lock:
            if self._loop is None or self._thread is None or not self._thread.is_alive():
                loop = asyncio.new_event_loop()
                ready = threading.Event()
                thread = threading.Thread(
                    target=self._run, args=(loop, ready), name="lark-ws-loop", daemon=True,
                )
                thread.start()
                ready.wait()
                self._loop, self._thread = loop, thread
                lark_ws_client.loop = loop
            return self._loop

    @staticmethod
    def _run(loop: asyncio.AbstractEventLoop, ready: threading.Event) -> None:
        asyncio.set_event_loop(loop)
        loop.call_soon(ready.set)
        loop.run_forever()

    def close(self, timeout: float = 5.0) -> None:
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = self._thread = None
        if loop is None or thread is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout)
        if not thread.is_alive():
            loop.close()


shared_sdk_loop = SdkLoop()


class SupervisedWsClient(lark.ws.Client):
    """``ws.Client`` that reports when its receive loop gives up."""

    on_exit: Callable[[BaseException], None] | None = None

    async def _receive_message_loop(self) -> None:
        try:
            await super()._receive_message_loop()
        except Exception as exc:
            if self.on_exit is not None:
                self.on_exit(exc)


class LarkConnection:
    """One ``lark_oapi.ws.Client`` session on the shared :class:`SdkLoop`."""

    def __init__(self, account: ResolvedAccount, sdk_loop: SdkLoop | None = None) -> None:
        self._account = account
        self._sdk = sdk_loop if sdk_loop is not None else shared_sdk_loop
        self._client: SupervisedWsClient | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._session: asyncio.Task[None] | None = None
        self._ping: asyncio.Task[None] | None = None
        self._on_exit: ExitCallback | None = None
        self._exited = False
        self._stopping = False

    def start(self, on_event: EnvelopeCallback, on_exit: ExitCallback) -> None:
        domain = lark.LARK_DOMAIN if self._account.domain == "lark" else lark.FEISHU_DOMAIN
        self._on_exit = on_exit
        self._loop = self._sdk.get()
        self._client = SupervisedWsClient(
            self._account.app_id,
            self._account.app_secret,
            event_handler=build_event_handler(on_event),
            log_level=lark.LogLevel.INFO,
            domain=domain,
        )
        self._client.on_exit = self._lost
        self._loop.call_soon_threadsafe(self._begin)
        logger.info(
            "%s WebSocket client started with appId %s...",
            self._account.log_prefix, (self._account.app_id or "")[:10],
        )

    def _begin(self) -> None:
        if self._stopping:
            return
        self._session = asyncio.get_running_loop().create_task(self._open())

    async def _open(self) -> None:
        client = self._client
        try:
            try:
                await client._connect()
            except ClientException:
                raise
            except Exception as exc:
                logger.warning("%s connect failed: %s", self._account.log_prefix, exc)
                await client._disconnect()
                if not client._auto_reconnect:
                    raise
                await client._reconnect()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._lost(exc)
            return
        self._ping = asyncio.get_running_loop().create_task(client._ping_loop())

    def _lost(self, exc: BaseException) -> None:
        if self._stopping or self._exited:
            return
        self._exited = True
        logger.error("%s WebSocket client exited: %s", self._account.log_prefix, exc)
        if self._on_exit is not None:
            self._on_exit(_describe(exc))

    def stop(self) -> None:
        self._stopping = True
        client, loop = self._client, self._loop
        if client is None or loop is None:
            return
        client._auto_reconnect = False
        try:
            asyncio.run_coroutine_threadsafe(self._shutdown(), loop)
        except RuntimeError as exc:
            logger.debug("%s SDK loop already closed: %s", self._account.log_prefix, exc)

    async def _shutdown(self) -> None:
        for task in (self._session, self._ping):
            if task is not None and not task.done():
                task.cancel()
        await self._client._disconnect()

class ConnectionHandle:
    """One connection generation for an account handle."""

    def __init__(
        self,
        account: ResolvedAccount,
        connection: Connection,
        on_stopped: Callable[[ConnectionHandle], None],
    ) -> None:
        self.account = account
        self.connection = connection
        self.state = ConnectionState.IDLE
        self.error: str | None = None
        self._on_stopped = on_stopped
        self._watcher: asyncio.Task[None] | None = None
        self._loop = current_loop()

    @property
    def key(self) -> str:
        return self.account.handle_key

    def watch(self, cancel: asyncio.Event) -> None:
        """Stop this handle once *cancel* is set.  Needs a running loop."""

        async def _wait() -> None:
            await cancel.wait()
            if self.state is not ConnectionState.STOPPED:
                logger.info("%s stopping due to cancellation", self.account.log_prefix)
                self.stop()

        self._watcher = asyncio.get_running_loop().create_task(_wait())

    def connection_lost(self, error: str) -> None:
        """Report a connection that died on its own; safe from any thread."""
        loop = self._loop
        if loop is not None and current_loop() is not loop:
            try:
                loop.call_soon_threadsafe(self._lost, error)
            except RuntimeError:
                logger.warning("%s connection lost after shutdown: %s", self.account.log_prefix, error)
            return
        self._lost(error)

    def _lost(self, error: str) -> None:
        if self.state is ConnectionState.STOPPED:
            return
        logger.error("%s connection lost: %s", self.account.log_prefix, error)
        self.error = error
        self.stop()

    def stop(self) -> None:
        if self.state is ConnectionState.STOPPED:
            return
        logger.info("%s stopping WebSocket client", self.account.log_prefix)
        self.state = ConnectionState.STOPPED
        try:
            self.connection.stop()
        except Exception as exc:
            logger.warning("%s error stopping WebSocket client: %s", self.account.log_prefix, exc)
        finally:
            self._on_stopped(self)
            watcher = self._watcher
            if watcher is not None and not watcher.done():
                running = asyncio.current_task() if current_loop() else None
                if watcher is not running:
                    watcher.cancel()


class ConnectionManager:
    def __init__(self, factory: ConnectionFactory = LarkConnection) -> None:
        self._factory = factory
        self._live: dict[str, ConnectionHandle] = {}
        self._stop_listeners: list[Callable[[ConnectionHandle], None]] = []

    def add_stop_listener(self, listener: Callable[[ConnectionHandle], None]) -> None:
        self._stop_listeners.append(listener)

    def start(
        self,
        account: ResolvedAccount,
        on_event: EnvelopeCallback,
        cancel: asyncio.Event | None = None,
    ) -> ConnectionHandle:
        require_credentials(account)

        existing = self._live.get(account.handle_key)
        if existing is not None:
            logger.info("%s stopping existing client", account.log_prefix)
            existing.stop()

        logger.info("%s starting WebSocket client", account.log_prefix)
        handle = ConnectionHandle(account, self._factory(account), self._release)
        handle.state = ConnectionState.CONNECTING
        self._live[handle.key] = handle
        try:
            handle.connection.start(on_event, handle.connection_lost)
        except Exception:
            handle.state = ConnectionState.STOPPED
            self._release(handle)
            raise
        handle.state = ConnectionState.LIVE

        if cancel is not None:
            handle.watch(cancel)
        return handle

    def _release(self, handle: ConnectionHandle) -> None:
        if self._live.get(handle.key) is handle:
            del self._live[handle.key]
        for listener in self._stop_listeners:
            listener(handle)

    def stop(self, account_id: str) -> int:
        """Stop every generation registered under *account_id*."""
        handles = [h for h in self._live.values() if h.account.account_id == account_id]
        for handle in handles:
            handle.stop()
        return len(handles)

    def stop_all(self) -> None:
        for handle in list(self._live.values()):
            handle.stop()

    def get(self, key: str) -> ConnectionHandle | None:
        return self._live.get(key)

    def is_running(self, account_id: str) -> bool:
        return any(h.account.account_id == account_id for h in self._live.values())

    def __len__(self) -> int:
        return len(self._live)
