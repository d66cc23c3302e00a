# infra/ws_client.py
from __future__ import annotations

import asyncio
import contextlib
import json
import secrets
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed

from infra.config import BybitSettings, WSSettings
from infra.endpoints import build_ws_url
from infra.enums import ChannelType, ConnState, RequestKind
from infra.errors import (
    AlreadyConnectedError,
    AuthError,
    ClosedConnectionError,
    DialError,
    NoAvailableConnectionError,
    ReadError,
    ReconnectExhausted,
    StaleRequestError,
    WriteError,
    WSClientError,
)
from infra.pending import PendingRequests
from infra.registry import Callback, Subscription, SubscriptionRegistry
from infra.router import MessageRouter
from infra.signer import auth_frame
from utils.logger import logger, mask

Json = Dict[str, Any]
Connector = Callable[..., Awaitable[Any]]

JSON_SEPARATORS = (",", ":")


def _default_connector(url: str, **kwargs):
    return websockets.connect(url, **kwargs)


@dataclass
class _Epoch:
    """One transport's lifetime: its handle plus the two loops bound to it."""
    epoch: int
    ws: Any
    stop: asyncio.Event = field(default_factory=asyncio.Event)
    tasks: List[asyncio.Task] = field(default_factory=list)

    def cancel(self) -> None:
        self.stop.set()
        current = asyncio.current_task()
        for t in self.tasks:
            if t is not current and not t.done():
                t.cancel()


class WSClient:
    """
    One Bybit v5 stream connection.

    Lifecycle: IDLE -> CONNECTING -> (AUTHENTICATING) -> CONNECTED -> CLOSING -> CLOSED,
    with CONNECTED -> RECONNECTING -> CONNECTING on transport failure. Each transport
    gets an epoch; the receive loop and the keepalive loop of an epoch are cancelled
    together when it is retired, and anything they report afterwards is ignored.

    Subscriptions live in a registry and are resent after every successful connect.
    State, epoch and the transport handle are only changed in code that does not
    suspend, so the loops and callers always observe a consistent triple.
    """

    def __init__(self,
                 channel: ChannelType = ChannelType.PUBLIC,
                 category: str = "linear",
                 *,
                 is_testnet: bool = False,
                 api_key: str = "",
                 api_secret: str = "",
                 max_active_time: str = "",
                 settings: Optional[WSSettings] = None,
                 on_connected: Optional[Callable[[], None]] = None,
                 on_connection_error: Optional[Callable[[Exception], None]] = None,
                 url: Optional[str] = None,
                 connector: Optional[Connector] = None,
                 name: str = "",
                 ):
        if channel is ChannelType.PRIVATE and not (api_key and api_secret):
            raise ValueError("private channel requires api_key and api_secret")

        self.channel = channel
        self.category = category
        self.is_testnet = is_testnet
        self.api_key = api_key
        self.api_secret = api_secret
        self.max_active_time = max_active_time
        self.settings = settings or WSSettings()
        self.name = name or (f"{channel.value}-{category}" if category else channel.value)

        self._url_override = url
        self._connector = connector or _default_connector
        self._on_connected = on_connected
        self._on_connection_error = on_connection_error

        # stable for the client's lifetime, used as the ping req_id
        self.req_id = secrets.token_hex(8)

        self._state = ConnState.IDLE
        self._epoch = 0
        self._ws: Any = None
        self._scope: Optional[_Epoch] = None
        self._closing = False
        self._closed_event = asyncio.Event()
        self._write_lock = asyncio.Lock()
        self._dial_task: Optional[asyncio.Future] = None
        self._reconnect_task: Optional[asyncio.Task] = None

        self._registry = SubscriptionRegistry()
        self._pending = PendingRequests(prefix=self.req_id)
        self._router = MessageRouter(self._registry, self._pending, name=self.name)

        self.pings_sent = 0
        self.reconnects = 0

        logger.info(f"WSClient {self.name} init url={self.url} testnet={is_testnet} "
                    f"key={mask(api_key)} ping_interval={self.settings.ping_interval_s}s "
                    f"retries={self.settings.reconnect_retries} delay={self.settings.reconnect_delay_s}s")

    # ---- constructors ------------------------------------------------------------
    @classmethod
    def public(cls, is_testnet: bool, category: str, **kwargs) -> "WSClient":
        return cls(ChannelType.PUBLIC, category, is_testnet=is_testnet, **kwargs)

    @classmethod
    def private(cls, api_key: str, api_secret: str, is_testnet: bool,
                max_active_time: str = "", category: str = "", **kwargs) -> "WSClient":
        return cls(ChannelType.PRIVATE, category, is_testnet=is_testnet,
                   api_key=api_key, api_secret=api_secret,
                   max_active_time=max_active_time, **kwargs)

    @classmethod
    def from_settings(cls, settings: BybitSettings, channel: ChannelType, **kwargs) -> "WSClient":
        creds = {}
        if channel is ChannelType.PRIVATE:
            creds = dict(api_key=settings.api_key, api_secret=settings.api_secret,
                         max_active_time=settings.max_active_time)
        return cls(channel, settings.category, is_testnet=settings.testnet,
                   settings=settings.ws, **creds, **kwargs)

    # ---- read-only view ----------------------------------------------------------
    @property
    def url(self) -> str:
        if self._url_override:
            return self._url_override
        return build_ws_url(self.channel, self.category,
                            is_testnet=self.is_testnet, max_active_time=self.max_active_time)

    @property
    def state(self) -> ConnState:
        return self._state

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def is_connected(self) -> bool:
        return self._state is ConnState.CONNECTED

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._registry

    @property
    def last_pong_ms(self) -> Optional[int]:
        return self._router.last_pong_ms

    # ---- async context manager ---------------------------------------------------
    async def __aenter__(self) -> "WSClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ---- lifecycle ---------------------------------------------------------------
    async def connect(self) -> None:
        """Open (and for private channels authenticate) the connection. Not retried."""
        if self._state in (ConnState.CLOSING, ConnState.CLOSED):
            raise ClosedConnectionError("connection already closed")
        if self._state is not ConnState.IDLE:
            raise AlreadyConnectedError(f"connect() not allowed in state {self._state.value}")
        try:
            await self._establish()
        except (DialError, AuthError) as e:
            if not self._closing:
                self._mark_closed()
            self._emit_error(e)
            raise

    async def close(self) -> None:
        """Tear everything down. Calling it again is a no-op."""
        if self._state is ConnState.CLOSED or self._closing:
            return
        self._closing = True
        self._state = ConnState.CLOSING
        logger.info(f"WS {self.name} close: closing (epoch={self._epoch})")

        if self._dial_task is not None and not self._dial_task.done():
            self._dial_task.cancel()

        current = asyncio.current_task()
        rt = self._reconnect_task
        if rt is not None and (rt is current or rt.done()):
            rt = None
        if rt is not None:
            rt.cancel()

        old = self._retire(self._scope, "connection closed")
        self._pending.fail_all(StaleRequestError("connection closed"))
        if old is not None:
            await self._teardown(old)
        if rt is not None:
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await rt

        self._registry.clear()
        self._mark_closed()
        logger.info(f"WS {self.name} close: websocket closed")

    async def wait_closed(self) -> None:
        await self._closed_event.wait()

    # ---- outbound ----------------------------------------------------------------
    async def send(self, payload: Union[Json, str]) -> None:
        self._ensure_open()
        scope = self._scope
        if scope is None:
            raise NoAvailableConnectionError(f"no available connection (state={self._state.value})")
        await self._write(scope, payload)

    async def subscribe(self, topic: str, callback: Callback) -> Subscription:
        """
        Register ``callback`` for ``topic``. A second call for the same topic replaces
        the callback. The subscribe frame goes out now when connected, otherwise on
        the next successful connect.
        """
        self._ensure_open()
        known = topic in self._registry
        sub = self._registry.register(topic, callback)
        scope = self._scope
        if known:
            logger.info(f"WS {self.name} subscribe: callback replaced for {topic}")
        elif self._state is ConnState.CONNECTED and scope is not None:
            await self._send_control(scope, RequestKind.SUBSCRIBE, [topic])
        else:
            logger.info(f"WS {self.name} subscribe: {topic} queued until connected")
        return sub

    async def unsubscribe(self, handle: Union[Subscription, str]) -> bool:
        self._ensure_open()
        topic = handle.topic if isinstance(handle, Subscription) else handle
        removed = self._registry.unregister(handle)
        scope = self._scope
        if removed and self._state is ConnState.CONNECTED and scope is not None:
            await self._send_control(scope, RequestKind.UNSUBSCRIBE, [topic])
        return removed

    # ---- internals: connect ------------------------------------------------------
    async def _establish(self) -> None:
        url = self.url
        self._state = ConnState.CONNECTING
        logger.info(f"WS {self.name} connect: connecting to {url} (epoch={self._epoch})")
        ws = await self._dial(url)
        scope = self._install(ws)
        logger.info(f"WS {self.name} connect: connected (epoch={scope.epoch})")

        if self.channel is ChannelType.PRIVATE:
            self._state = ConnState.AUTHENTICATING
            try:
                await self._authenticate(scope)
            except AuthError as e:
                old = self._retire(scope, f"auth failed: {e}")
                if old is not None:
                    await self._teardown(old)
                raise

        if self._closing or scope is not self._scope:
            raise ClosedConnectionError("connection closed while connecting")

        self._state = ConnState.CONNECTED
        scope.tasks.append(asyncio.create_task(
            self._keepalive_loop(scope), name=f"ws-keepalive-{self.name}-{scope.epoch}"))
        self._registry.mark_all_inactive()
        replay = self._registry.replay_all()

        self._call_hook(self._on_connected)
        await self._replay(scope, replay)

    async def _dial(self, url: str) -> Any:
        kwargs = dict(
            ping_interval=None,   # app-level ping frames instead
            close_timeout=self.settings.close_timeout_s,
            open_timeout=self.settings.connect_timeout_s,
        )

        async def _open():
            return await self._connector(url, **kwargs)

        self._dial_task = asyncio.ensure_future(
            asyncio.wait_for(_open(), timeout=self.settings.connect_timeout_s))
        try:
            ws = await self._dial_task
        except asyncio.CancelledError:
            if self._closing:
                raise ClosedConnectionError("connection closed while dialing") from None
            raise
        except Exception as e:
            logger.warning(f"WS {self.name} connect: dial failed {url}: {e!r}")
            raise DialError(f"failed to dial {url}: {e!r}", url=url) from e
        finally:
            self._dial_task = None

        if self._closing:
            with contextlib.suppress(Exception):
                await ws.close()
            raise ClosedConnectionError("connection closed while dialing")
        return ws

    def _install(self, ws: Any) -> _Epoch:
        if self._ws is not None:
            raise RuntimeError("transport already installed; retire it first")
        scope = _Epoch(epoch=self._epoch, ws=ws)
        self._ws = ws
        self._scope = scope
        # the receive loop starts first: it is the only reader, auth acks included
        scope.tasks.append(asyncio.create_task(
            self._receive_loop(scope), name=f"ws-recv-{self.name}-{scope.epoch}"))
        return scope

    async def _authenticate(self, scope: _Epoch) -> None:
        logger.info(f"WS {self.name} auth: start key={mask(self.api_key)}")
        pr = self._pending.create(RequestKind.AUTH, scope.epoch)
        try:
            await self._write(scope, auth_frame(self.api_key, self.api_secret,
                                                window_ms=self.settings.auth_window_ms))
            ack = await asyncio.wait_for(pr.future, timeout=self.settings.auth_timeout_s)
        except asyncio.TimeoutError as e:
            self._pending.discard(pr.req_id)
            raise AuthError(f"auth ack not received within {self.settings.auth_timeout_s}s") from e
        except StaleRequestError as e:
            if self._closing:
                raise ClosedConnectionError("connection closed during auth") from e
            raise AuthError(f"connection lost during auth: {e}") from e
        except (WriteError, NoAvailableConnectionError) as e:
            self._pending.discard(pr.req_id)
            raise AuthError(f"auth frame not sent: {e}") from e

        if not ack.get("success"):
            logger.error(f"WS {self.name} auth: failed ack={ack}")
            raise AuthError(f"auth rejected: {ack.get('ret_msg') or ack}")
        logger.info(f"WS {self.name} auth: success")

    async def _replay(self, scope: _Epoch, subs: List[Subscription]) -> None:
        if not subs:
            return
        logger.info(f"WS {self.name} replay: {len(subs)} subscriptions")
        for sub in subs:
            if scope is not self._scope:
                return
            if not await self._send_control(scope, RequestKind.SUBSCRIBE, [sub.topic]):
                return

    # ---- internals: loops --------------------------------------------------------
    async def _receive_loop(self, scope: _Epoch) -> None:
        try:
            async for raw in scope.ws:
                if scope.stop.is_set():
                    return
                await self._router.dispatch(raw)
            err = ReadError("connection closed by peer")
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as e:
            err = ReadError(f"connection closed: {e}")
        except Exception as e:
            err = ReadError(f"receive failed: {e!r}")
        if not scope.stop.is_set():
            self._transport_failed(scope, err)

    async def _keepalive_loop(self, scope: _Epoch) -> None:
        frame = {"op": "ping", "req_id": self.req_id}
        while True:
            await asyncio.sleep(self.settings.ping_interval_s)
            if scope.stop.is_set() or scope is not self._scope:
                return
            try:
                await self._write(scope, frame)
            except (WriteError, NoAvailableConnectionError) as e:
                logger.warning(f"WS {self.name} ping failed: {e}")
                return
            self.pings_sent += 1
            logger.debug(f"WS {self.name} ping sent (epoch={scope.epoch})")

    # ---- internals: writes -------------------------------------------------------
    async def _write(self, scope: _Epoch, payload: Union[Json, str]) -> None:
        text = payload if isinstance(payload, str) else json.dumps(payload, separators=JSON_SEPARATORS)
        if scope is not self._scope:
            raise NoAvailableConnectionError("connection epoch retired")
        try:
            await asyncio.wait_for(self._locked_send(scope, text), timeout=self.settings.send_timeout_s)
        except NoAvailableConnectionError:
            raise
        except asyncio.TimeoutError as e:
            err = WriteError(f"send timed out after {self.settings.send_timeout_s}s")
            self._transport_failed(scope, err)
            raise err from e
        except Exception as e:
            err = WriteError(f"send failed: {e!r}")
            self._transport_failed(scope, err)
            raise err from e

    async def _locked_send(self, scope: _Epoch, text: str) -> None:
        async with self._write_lock:
            if scope is not self._scope:
                raise NoAvailableConnectionError("connection epoch retired")
            await scope.ws.send(text)

    async def _send_control(self, scope: _Epoch, kind: RequestKind, topics: List[str]) -> bool:
        pr = self._pending.create(kind, scope.epoch, args=topics)
        frame = {"op": kind.value, "req_id": pr.req_id, "args": topics}
        logger.info(f"WS {self.name} {kind.value} request {topics}")
        try:
            await self._write(scope, frame)
        except (WriteError, NoAvailableConnectionError) as e:
            self._pending.discard(pr.req_id)
            logger.warning(f"WS {self.name} {kind.value} {topics} not sent ({e}); resent after reconnect")
            return False
        return True

    # ---- internals: failure & teardown ------------------------------------------
    def _transport_failed(self, scope: _Epoch, err: WSClientError) -> None:
        if scope is not self._scope:
            return
        if self._state is ConnState.CONNECTED:
            logger.warning(f"WS {self.name} epoch={scope.epoch} transport failed: {err}; reconnecting")
            self._state = ConnState.RECONNECTING
            old = self._retire(scope, str(err))
            self._reconnect_task = asyncio.create_task(
                self._reconnect(old, err), name=f"ws-reconnect-{self.name}")
        else:
            # connect() is still waiting on this epoch; let it fail
            logger.warning(f"WS {self.name} epoch={scope.epoch} failed while {self._state.value}: {err}")
            self._pending.fail_epoch(scope.epoch, StaleRequestError(str(err)))

    def _retire(self, scope: Optional[_Epoch], reason: str = "") -> Optional[_Epoch]:
        if scope is None or scope is not self._scope:
            return None
        self._epoch += 1
        self._scope = None
        self._ws = None
        scope.cancel()
        self._pending.fail_epoch(scope.epoch, StaleRequestError(f"epoch {scope.epoch} retired: {reason}"))
        return scope

    async def _teardown(self, scope: _Epoch) -> None:
        current = asyncio.current_task()
        for t in scope.tasks:
            if t is current:
                continue
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await t
        with contextlib.suppress(Exception):
            await scope.ws.close()

    async def _reconnect(self, old: Optional[_Epoch], reason: WSClientError) -> None:
        if old is not None:
            await self._teardown(old)
        retries = self.settings.reconnect_retries
        last: Exception = reason
        for attempt in range(1, retries + 1):
            await asyncio.sleep(self.settings.reconnect_delay_s)
            if self._closing:
                return
            logger.info(f"WS {self.name} reconnect: attempt {attempt}/{retries}")
            try:
                await self._establish()
            except ClosedConnectionError:
                return
            except (DialError, AuthError) as e:
                last = e
                self._state = ConnState.RECONNECTING
                logger.warning(f"WS {self.name} reconnect: attempt {attempt} failed: {e}")
                continue
            if self._closing:
                return
            self.reconnects += 1
            logger.info(f"WS {self.name} reconnect: attempt {attempt} successful (epoch={self._epoch})")
            return

        self._mark_closed()
        self._emit_error(ReconnectExhausted(
            f"reconnect failed after {retries} attempts: {last}", attempts=retries, last_error=last))

    # ---- internals: misc ---------------------------------------------------------
    def _ensure_open(self) -> None:
        if self._state in (ConnState.CLOSING, ConnState.CLOSED):
            raise ClosedConnectionError("attempt to use a closed connection")

    def _mark_closed(self) -> None:
        self._state = ConnState.CLOSED
        self._closed_event.set()

    def _emit_error(self, err: Exception) -> None:
        logger.error(f"WS {self.name} connection error: {err}")
        if self._on_connection_error is None:
            return
        try:
            self._on_connection_error(err)
        except Exception:
            logger.exception(f"WS {self.name} on_connection_error hook failed")

    def _call_hook(self, hook: Optional[Callable[[], None]]) -> None:
        if hook is None:
            return
        try:
            hook()
        except Exception:
            logger.exception(f"WS {self.name} on_connected hook failed")
