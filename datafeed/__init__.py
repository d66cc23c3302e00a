# datafeed/__init__.py
import asyncio
from typing import Optional

from datafeed.private import PrivateStreams
from datafeed.public import PublicStreams
from infra.errors import NoAvailableConnectionError
from infra.ws_client import WSClient


class BybitWebSocket:
    """
    Pairs an optional public client with an optional private client.

        ws = BybitWebSocket(WSClient.public(True, "linear"), WSClient.private(key, secret, True))
        await ws.connect()
        await ws.public().ticker().subscribe("BTCUSDT", print)
    """

    def __init__(self, public_client: Optional[WSClient] = None,
                 private_client: Optional[WSClient] = None) -> None:
        self._public = PublicStreams(public_client) if public_client else None
        self._private = PrivateStreams(private_client) if private_client else None

    def public(self) -> PublicStreams:
        if self._public is None:
            raise NoAvailableConnectionError("no public client configured")
        return self._public

    def private(self) -> PrivateStreams:
        if self._private is None:
            raise NoAvailableConnectionError("no private client configured")
        return self._private

    def _clients(self):
        return [s.client for s in (self._public, self._private) if s is not None]

    async def connect(self) -> None:
        await asyncio.gather(*(c.connect() for c in self._clients()))

    async def close(self) -> None:
        await asyncio.gather(*(c.close() for c in self._clients()))

    async def __aenter__(self) -> "BybitWebSocket":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


__all__ = ["BybitWebSocket", "PublicStreams", "PrivateStreams"]
