# tests/test_streams.py
import asyncio

import pytest

from conftest import wait_until
from datafeed import BybitWebSocket, PrivateStreams, PublicStreams
from datafeed.handlers import channel_registry, decode_frame, family_of
from datafeed.models import Kline, LtNav, OrderBook, Position, Ticker, Trade, Wallet
from datafeed.streams import KlineStream, OrderBookStream, TickerStream
from infra.errors import DecodeError, NoAvailableConnectionError
from infra.ws_client import WSClient


@pytest.fixture
def public_client(connector, fast_settings):
    return WSClient.public(True, "linear", settings=fast_settings, connector=connector)


@pytest.fixture
def private_client(private_connector, fast_settings):
    return WSClient.private("k", "s", True, settings=fast_settings, connector=private_connector)


TICKER = {
    "topic": "tickers.BTCUSDT", "type": "snapshot", "ts": 1673853746003,
    "data": {"symbol": "BTCUSDT", "lastPrice": "21109.77", "highPrice24h": "21426.99",
             "volume24h": "6780.866843", "fundingRate": "", "bid1Price": "21109.5"},
}

KLINE = {
    "topic": "kline.5.BTCUSDT", "type": "snapshot", "ts": 1672324988882,
    "data": [
        {"start": 1672325100000, "end": 1672325399999, "interval": "5", "open": "16650",
         "close": "16651", "high": "16652", "low": "16649", "volume": "1.2",
         "turnover": "19981", "confirm": False, "timestamp": 1672324988882},
        {"start": 1672324800000, "end": 1672325099999, "interval": "5", "open": "16649.5",
         "close": "16650", "high": "16677", "low": "16608", "volume": "2081.0",
         "turnover": "34666070", "confirm": True, "timestamp": 1672324988882},
    ],
}

ORDERBOOK = {
    "topic": "orderbook.50.BTCUSDT", "type": "snapshot", "ts": 1672304484978,
    "data": {"s": "BTCUSDT", "b": [["16493.50", "0.006"], ["16493.00", "0.100"]],
             "a": [["16611.00", "0.029"]], "u": 18521288, "seq": 7961638724},
}

TRADES = {
    "topic": "publicTrade.BTCUSDT", "type": "snapshot", "ts": 1672304486868,
    "data": [
        {"T": 1672304486866, "s": "BTCUSDT", "S": "Sell", "v": "0.002", "p": "16578.00",
         "L": "MinusTick", "i": "t2", "BT": False},
        {"T": 1672304486865, "s": "BTCUSDT", "S": "Buy", "v": "0.001", "p": "16578.50",
         "L": "PlusTick", "i": "t1", "BT": False},
    ],
}


# ---- topic keys --------------------------------------------------------------------

def test_topic_keys(public_client):
    pub = PublicStreams(public_client)
    assert pub.ticker().topic("BTCUSDT") == "tickers.BTCUSDT"
    assert pub.kline().topic("BTCUSDT", interval="60") == "kline.60.BTCUSDT"
    assert pub.kline().topic("BTCUSDT", interval=5) == "kline.5.BTCUSDT"
    assert pub.orderbook().topic("ETHUSDT", depth=200) == "orderbook.200.ETHUSDT"
    assert pub.trade().topic("BTCUSDT") == "publicTrade.BTCUSDT"
    assert pub.liquidation().topic("BTCUSDT") == "liquidation.BTCUSDT"
    assert pub.lt_kline().topic("EOS3LUSDT", interval="D") == "kline_lt.D.EOS3LUSDT"
    assert pub.lt_ticker().topic("EOS3LUSDT") == "tickers_lt.EOS3LUSDT"
    assert pub.lt_nav().topic("EOS3LUSDT") == "lt.EOS3LUSDT"


def test_private_topic_keys(private_client):
    priv = PrivateStreams(private_client)
    assert priv.position().topic() == "position"
    assert priv.position("linear").topic() == "position.linear"
    assert priv.execution("spot").topic() == "execution.spot"
    assert priv.order().topic() == "order"
    assert priv.wallet().topic() == "wallet"


def test_invalid_topic_params_rejected(public_client):
    with pytest.raises(ValueError):
        KlineStream(public_client).topic("BTCUSDT", interval="2")
    with pytest.raises(ValueError):
        OrderBookStream(public_client).topic("BTCUSDT", depth=10)
    with pytest.raises(ValueError):
        TickerStream(public_client).topic("")


def test_facades_check_channel(public_client, private_client):
    with pytest.raises(ValueError):
        PublicStreams(private_client)
    with pytest.raises(ValueError):
        PrivateStreams(public_client)


# ---- decoders ----------------------------------------------------------------------

def test_every_family_has_a_decoder():
    for family in ["tickers", "kline", "orderbook", "publicTrade", "liquidation",
                   "kline_lt", "tickers_lt", "lt", "position", "execution", "order", "wallet"]:
        assert family in channel_registry
    assert family_of("orderbook.50.BTCUSDT") == "orderbook"


def test_decode_ticker(public_client):
    t = TickerStream(public_client).decode(TICKER)
    assert isinstance(t, Ticker)
    assert t.symbol == "BTCUSDT"
    assert t.lastPrice == pytest.approx(21109.77)
    assert t.fundingRate is None
    assert t.markPrice is None
    assert t.ts == 1673853746003


def test_decode_kline_sorted_by_start():
    rows = decode_frame(KLINE)
    assert [type(k) for k in rows] == [Kline, Kline]
    assert [k.start for k in rows] == [1672324800000, 1672325100000]
    assert rows[0].symbol == "BTCUSDT" and rows[0].interval == "5"
    assert rows[0].confirm is True and rows[1].confirm is False


def test_decode_orderbook():
    ob = decode_frame(ORDERBOOK)
    assert isinstance(ob, OrderBook)
    assert ob.updateId == 18521288
    assert ob.best_bid == pytest.approx(16493.5)
    assert ob.best_ask == pytest.approx(16611.0)
    assert ob.bids[1] == (16493.0, 0.1)


def test_decode_trades_sorted_by_time():
    trades = decode_frame(TRADES)
    assert all(isinstance(t, Trade) for t in trades)
    assert [t.tradeId for t in trades] == ["t1", "t2"]
    assert trades[1].side == "Sell"


def test_decode_lt_nav():
    nav = decode_frame({"topic": "lt.EOS3LUSDT", "ts": 1, "type": "snapshot",
                        "data": {"symbol": "EOS3LUSDT", "time": 1672991427073, "nav": "0.23",
                                 "basketPosition": "12.5", "leverage": "2.9"}})
    assert isinstance(nav, LtNav)
    assert nav.nav == pytest.approx(0.23)
    assert nav.basketLoan is None


def test_decode_private_rows():
    pos = decode_frame({"topic": "position", "data": [
        {"category": "linear", "symbol": "BTCUSDT", "side": "Buy", "size": "0.01",
         "positionIdx": 0, "entryPrice": "30000", "markPrice": "30010", "updatedTime": "1672364262444"}]})
    assert isinstance(pos[0], Position)
    assert pos[0].size == pytest.approx(0.01)
    assert pos[0].updatedTime == 1672364262444

    wallets = decode_frame({"topic": "wallet", "data": [
        {"accountType": "UNIFIED", "totalEquity": "100.5",
         "coin": [{"coin": "USDT", "equity": "100.5", "walletBalance": "100"}]}]})
    assert isinstance(wallets[0], Wallet)
    assert wallets[0].coins[0].coin == "USDT"
    assert wallets[0].coins[0].availableToWithdraw is None


def test_malformed_payload_raises_decode_error(public_client):
    with pytest.raises(DecodeError) as ei:
        TickerStream(public_client).decode({"topic": "tickers.BTCUSDT", "data": {"lastPrice": "1"}})
    assert ei.value.topic == "tickers.BTCUSDT"
    with pytest.raises(DecodeError):
        KlineStream(public_client).decode({"topic": "kline.1.BTCUSDT", "data": "oops"})


# ---- subscribe through a live client -----------------------------------------------

@pytest.mark.asyncio
async def test_subscribe_sends_topic_and_delivers_decoded(public_client, connector):
    got = []
    await public_client.connect()
    try:
        await PublicStreams(public_client).ticker().subscribe("BTCUSDT", got.append)
        ws = connector.last
        assert ws.subscribed_topics() == ["tickers.BTCUSDT"]
        ws.feed(TICKER)
        await wait_until(lambda: got)
        assert isinstance(got[0], Ticker)
    finally:
        await public_client.close()


@pytest.mark.asyncio
async def test_decode_error_is_contained(public_client, connector):
    good, bad = [], []
    pub = PublicStreams(public_client)
    ticker = pub.ticker()
    await ticker.subscribe("ETHUSDT", bad.append)
    await pub.trade().subscribe("BTCUSDT", good.append)
    await public_client.connect()
    try:
        ws = connector.last
        ws.feed({"topic": "tickers.ETHUSDT", "type": "snapshot", "ts": 1, "data": []})
        ws.feed(TRADES)
        await wait_until(lambda: good)
        assert bad == []
        assert ticker.decode_errors == 1
        assert public_client.is_connected
    finally:
        await public_client.close()


@pytest.mark.asyncio
async def test_private_stream_matches_category_suffixed_frames(private_client, private_connector):
    got = []
    await private_client.connect()
    try:
        await PrivateStreams(private_client).position().subscribe(got.append)
        private_connector.last.feed({"topic": "position.linear", "data": [
            {"category": "linear", "symbol": "BTCUSDT", "side": "Buy", "size": "1"}]})
        await wait_until(lambda: got)
        assert got[0][0].symbol == "BTCUSDT"
    finally:
        await private_client.close()


@pytest.mark.asyncio
async def test_queue_sink_drops_when_full(public_client, connector):
    q: asyncio.Queue = asyncio.Queue(maxsize=1)
    stream = PublicStreams(public_client).ticker()
    await stream.subscribe_queue("BTCUSDT", q)
    await public_client.connect()
    try:
        ws = connector.last
        for _ in range(3):
            ws.feed(TICKER)
        await wait_until(lambda: stream.dropped == 2)
        assert q.qsize() == 1
        assert isinstance(q.get_nowait(), Ticker)
    finally:
        await public_client.close()


@pytest.mark.asyncio
async def test_unsubscribe_through_stream(public_client, connector):
    stream = PublicStreams(public_client).orderbook()
    await public_client.connect()
    try:
        await stream.subscribe("BTCUSDT", lambda ob: None, depth=1)
        assert await stream.unsubscribe("BTCUSDT", depth=1) is True
        assert connector.last.ops("unsubscribe")[0]["args"] == ["orderbook.1.BTCUSDT"]
        assert "orderbook.1.BTCUSDT" not in public_client.registry
    finally:
        await public_client.close()


# ---- BybitWebSocket ----------------------------------------------------------------

def test_bybit_websocket_missing_clients():
    ws = BybitWebSocket()
    with pytest.raises(NoAvailableConnectionError):
        ws.public()
    with pytest.raises(NoAvailableConnectionError):
        ws.private()


@pytest.mark.asyncio
async def test_bybit_websocket_connects_both(public_client, private_client):
    async with BybitWebSocket(public_client, private_client) as ws:
        assert ws.public().client.is_connected
        assert ws.private().client.is_connected
    assert not public_client.is_connected
    assert not private_client.is_connected
