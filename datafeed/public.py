# datafeed/public.py
from datafeed.streams import (
    KlineStream, LiquidationStream, LtKlineStream, LtNavStream, LtTickerStream,
    OrderBookStream, TickerStream, TradeStream,
)
from infra.enums import ChannelType
from infra.ws_client import WSClient


class PublicStreams:
    """
    Market data families on one public connection. Every adapter shares the
    client, so all topics ride the same socket. ``category`` only tags the
    adapter; routing to spot/linear/inverse/option is fixed by the client's URL.
    """

    def __init__(self, client: WSClient) -> None:
        if client.channel is not ChannelType.PUBLIC:
            raise ValueError("PublicStreams needs a public channel client")
        self.client = client

    def ticker(self, category: str = "") -> TickerStream:
        return TickerStream(self.client, category)

    def kline(self, category: str = "") -> KlineStream:
        return KlineStream(self.client, category)

    def orderbook(self, category: str = "") -> OrderBookStream:
        return OrderBookStream(self.client, category)

    def trade(self, category: str = "") -> TradeStream:
        return TradeStream(self.client, category)

    def liquidation(self, category: str = "") -> LiquidationStream:
        return LiquidationStream(self.client, category)

    def lt_kline(self, category: str = "spot") -> LtKlineStream:
        return LtKlineStream(self.client, category)

    def lt_ticker(self, category: str = "spot") -> LtTickerStream:
        return LtTickerStream(self.client, category)

    def lt_nav(self, category: str = "spot") -> LtNavStream:
        return LtNavStream(self.client, category)
