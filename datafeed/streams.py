# datafeed/streams.py
from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from datafeed.handlers import channel_registry
from infra.errors import DecodeError
from infra.registry import Subscription
from infra.ws_client import WSClient
from utils.logger import logger

PayloadCallback = Callable[[Any], Union[None, Awaitable[None]]]

KLINE_INTERVALS = {"1", "3", "5", "15", "30", "60", "120", "240", "360", "720", "D", "W", "M"}
ORDERBOOK_DEPTHS = {1, 25, 50, 100, 200, 500, 1000}


class TopicStream:
    """
    Adapter for one topic family: builds topic keys, registers with the client
    and decodes frames before handing them to the caller.

    Decoding runs inside the client's receive loop. Callers that do slow work
    should use ``subscribe_queue`` and consume from their own task.
    """
    family: str = ""

    def __init__(self, client: WSClient, category: str = "") -> None:
        self._client = client
        self.category = category or client.category
        self._decoder = channel_registry[self.family]
        self.decode_errors = 0
        self.dropped = 0

    def topic(self, symbol: str, **params) -> str:
        if not symbol:
            raise ValueError(f"{self.family}: symbol is required")
        return f"{self.family}.{symbol}"

    def decode(self, frame: Dict[str, Any]) -> Any:
        try:
            return self._decoder(frame)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise DecodeError(f"malformed {self.family} payload: {e!r}", topic=frame.get("topic", "")) from e

    async def subscribe(self, symbol: str, callback: PayloadCallback, **params) -> Subscription:
        return await self._client.subscribe(self.topic(symbol, **params), self._dispatcher(callback))

    async def subscribe_many(self, symbols: Iterable[str], callback: PayloadCallback, **params) -> List[Subscription]:
        return [await self.subscribe(s, callback, **params) for s in symbols]

    async def subscribe_queue(self, symbol: str, queue: asyncio.Queue, *,
                              drop_when_full: bool = True, **params) -> Subscription:
        """
        Deliver decoded payloads into ``queue``. When the queue is full the payload is
        dropped (default) or the receive loop waits for room.
        """
        return await self.subscribe(symbol, self._queue_sink(queue, drop_when_full), **params)

    async def unsubscribe(self, symbol: str, **params) -> bool:
        return await self._client.unsubscribe(self.topic(symbol, **params))

    def _dispatcher(self, callback: PayloadCallback):
        async def _dispatch(frame: Dict[str, Any]) -> None:
            try:
                payload = self.decode(frame)
            except DecodeError as e:
                self.decode_errors += 1
                logger.warning(f"{self.family} decode failed, frame skipped: {e}")
                return
            res = callback(payload)
            if inspect.isawaitable(res):
                await res
        return _dispatch

    def _queue_sink(self, q: asyncio.Queue, drop_when_full: bool):
        async def _put(payload: Any) -> None:
            try:
                q.put_nowait(payload)
            except asyncio.QueueFull:
                if drop_when_full:
                    self.dropped += 1
                    logger.warning(f"{self.family} queue full, drop 1 msg")
                    return
                await q.put(payload)
        return _put


# ---- public families ---------------------------------------------------------------

class TickerStream(TopicStream):
    family = "tickers"


class KlineStream(TopicStream):
    family = "kline"

    def topic(self, symbol: str, interval: str = "1", **params) -> str:
        interval = str(interval)
        if interval not in KLINE_INTERVALS:
            raise ValueError(f"unsupported kline interval {interval!r}")
        if not symbol:
            raise ValueError(f"{self.family}: symbol is required")
        return f"{self.family}.{interval}.{symbol}"


class OrderBookStream(TopicStream):
    family = "orderbook"

    def topic(self, symbol: str, depth: int = 50, **params) -> str:
        if int(depth) not in ORDERBOOK_DEPTHS:
            raise ValueError(f"unsupported orderbook depth {depth!r}")
        if not symbol:
            raise ValueError(f"{self.family}: symbol is required")
        return f"{self.family}.{int(depth)}.{symbol}"


class TradeStream(TopicStream):
    family = "publicTrade"


class LiquidationStream(TopicStream):
    family = "liquidation"


class LtKlineStream(KlineStream):
    family = "kline_lt"


class LtTickerStream(TopicStream):
    family = "tickers_lt"


class LtNavStream(TopicStream):
    family = "lt"


# ---- private families --------------------------------------------------------------

class PrivateTopicStream(TopicStream):
    """Account-wide topics: no symbol; optional category suffix (``position.linear``)."""

    def __init__(self, client: WSClient, category: str = "") -> None:
        super().__init__(client, category)
        # category-less topics deliver every category
        self.category = category

    def topic(self, symbol: Optional[str] = None, **params) -> str:
        return f"{self.family}.{self.category}" if self.category else self.family

    async def subscribe(self, callback: PayloadCallback, **params) -> Subscription:
        return await self._client.subscribe(self.topic(), self._dispatcher(callback))

    async def subscribe_queue(self, queue: asyncio.Queue, *,
                              drop_when_full: bool = True, **params) -> Subscription:
        return await self.subscribe(self._queue_sink(queue, drop_when_full))

    async def unsubscribe(self, symbol: Optional[str] = None, **params) -> bool:
        return await self._client.unsubscribe(self.topic())


class PositionStream(PrivateTopicStream):
    family = "position"


class ExecutionStream(PrivateTopicStream):
    family = "execution"


class OrderStream(PrivateTopicStream):
    family = "order"


class WalletStream(PrivateTopicStream):
    family = "wallet"
