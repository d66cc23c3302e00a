# tests/conftest.py
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import asyncio
import json
import pytest

from infra.config import WSSettings

_CLOSED = object()


class FakeWebSocket:
    """
    In-memory stand-in for a websockets ClientConnection.
    Frames written by the client land in ``sent`` (decoded); ``feed`` queues
    inbound frames; ``drop`` simulates the peer closing the socket.
    """

    def __init__(self, auth_reply=None, ack_subscribe=True):
        self.sent = []
        self.closed = False
        self.fail_send = False
        self.block_send = False
        self.auth_reply = auth_reply
        self.ack_subscribe = ack_subscribe
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, text):
        # a real socket write yields to the loop
        await asyncio.sleep(0)
        if self.block_send:
            await asyncio.Event().wait()
        if self.fail_send or self.closed:
            raise ConnectionResetError("send failed")
        msg = json.loads(text)
        self.sent.append(msg)
        op = msg.get("op")
        if op == "auth" and self.auth_reply is not None:
            self.feed(self.auth_reply)
        if op in ("subscribe", "unsubscribe") and self.ack_subscribe:
            self.feed({"success": True, "ret_msg": "", "conn_id": "c1",
                       "req_id": msg.get("req_id", ""), "op": op})

    def feed(self, frame):
        self._inbox.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def drop(self):
        self._inbox.put_nowait(_CLOSED)

    async def close(self):
        self.closed = True
        self._inbox.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def ops(self, op):
        return [m for m in self.sent if m.get("op") == op]

    def subscribed_topics(self):
        return [t for m in self.ops("subscribe") for t in m["args"]]


class FakeConnector:
    def __init__(self, auth_reply=None, ack_subscribe=True):
        self.auth_reply = auth_reply
        self.ack_subscribe = ack_subscribe
        self.urls = []
        self.kwargs = []
        self.sockets = []
        self.fail_next = 0
        self.always_fail = False
        self.hang = False

    async def __call__(self, url, **kwargs):
        self.urls.append(url)
        self.kwargs.append(kwargs)
        if self.hang:
            await asyncio.Event().wait()
        if self.always_fail or self.fail_next > 0:
            self.fail_next = max(0, self.fail_next - 1)
            raise OSError("connection refused")
        ws = FakeWebSocket(auth_reply=self.auth_reply, ack_subscribe=self.ack_subscribe)
        self.sockets.append(ws)
        return ws

    @property
    def last(self) -> FakeWebSocket:
        return self.sockets[-1]


AUTH_OK = {"success": True, "ret_msg": "", "op": "auth", "conn_id": "c1"}
AUTH_REJECTED = {"success": False, "ret_msg": "error:signature is wrong", "op": "auth", "conn_id": "c1"}


async def wait_until(cond, timeout=2.0, interval=0.01):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not cond():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def private_connector():
    return FakeConnector(auth_reply=AUTH_OK)


@pytest.fixture
def fast_settings():
    return WSSettings(
        ping_interval_s=0.05,
        reconnect_retries=3,
        reconnect_delay_s=0.01,
        auth_timeout_s=0.2,
        send_timeout_s=0.2,
        connect_timeout_s=0.5,
        close_timeout_s=0.1,
    )
