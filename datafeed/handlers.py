# datafeed/handlers.py
"""
Payload decoders, one per topic family. A decoder takes the full frame
(``{"topic", "type", "ts", "data"}``) and returns model objects; it raises
KeyError / ValueError / TypeError on a malformed frame and the calling adapter
turns that into a DecodeError.
"""
from typing import Any, Callable, Dict, List, Optional

from datafeed.models import (
    Execution, Kline, Liquidation, LtKline, LtNav, LtTicker, Order, OrderBook,
    Position, Ticker, Trade, Wallet, WalletCoin,
)

HandlerFunc = Callable[[Dict[str, Any]], Any]
channel_registry: Dict[str, HandlerFunc] = {}

def register_channel(family: str):
    def decorator(fn: HandlerFunc):
        channel_registry[family] = fn
        return fn
    return decorator

def family_of(topic: str) -> str:
    return topic.split(".", 1)[0]

def decode_frame(msg: Dict[str, Any]) -> Any:
    family = family_of(msg["topic"])
    handler = channel_registry.get(family)
    if handler is None:
        raise ValueError(f"no decoder for topic family {family!r}")
    return handler(msg)

def _to_float(x: Optional[str]) -> Optional[float]:
    if x is None or x == "":
        return None
    try:
        return float(x)
    except (TypeError, ValueError):
        return None

def _to_int(x: Optional[str]) -> Optional[int]:
    if x is None or x == "":
        return None
    try:
        return int(x)
    except (TypeError, ValueError):
        return None

def _levels(rows) -> List[tuple]:
    return [(float(p), float(q)) for p, q, *_ in rows or []]

def _rows(msg: Dict[str, Any]) -> List[Dict[str, Any]]:
    data = msg["data"]
    if isinstance(data, dict):
        return [data]
    if not isinstance(data, list):
        raise TypeError(f"unexpected data type {type(data).__name__}")
    return data


@register_channel("tickers")
def handle_ticker(msg: Dict[str, Any]) -> Ticker:
    d = msg["data"]
    if not isinstance(d, dict):
        raise TypeError("tickers data must be an object")
    return Ticker(
        symbol=d["symbol"],
        ts=int(msg.get("ts") or 0),
        type=msg.get("type", "snapshot"),
        lastPrice=_to_float(d.get("lastPrice")),
        markPrice=_to_float(d.get("markPrice")),
        indexPrice=_to_float(d.get("indexPrice") or d.get("usdIndexPrice")),
        prevPrice24h=_to_float(d.get("prevPrice24h")),
        price24hPcnt=_to_float(d.get("price24hPcnt")),
        highPrice24h=_to_float(d.get("highPrice24h")),
        lowPrice24h=_to_float(d.get("lowPrice24h")),
        volume24h=_to_float(d.get("volume24h")),
        turnover24h=_to_float(d.get("turnover24h")),
        openInterest=_to_float(d.get("openInterest")),
        fundingRate=_to_float(d.get("fundingRate")),
        nextFundingTime=_to_int(d.get("nextFundingTime")),
        bid1Price=_to_float(d.get("bid1Price")),
        bid1Size=_to_float(d.get("bid1Size")),
        ask1Price=_to_float(d.get("ask1Price")),
        ask1Size=_to_float(d.get("ask1Size")),
    )

@register_channel("kline")
def handle_kline(msg: Dict[str, Any]) -> List[Kline]:
    # topic: kline.{interval}.{symbol}
    _, _, symbol = msg["topic"].split(".", 2)
    rows = []
    for r in _rows(msg):
        rows.append(Kline(
            symbol=symbol,
            interval=str(r["interval"]),
            start=int(r["start"]), end=int(r["end"]),
            open=float(r["open"]), high=float(r["high"]),
            low=float(r["low"]), close=float(r["close"]),
            volume=_to_float(r.get("volume")), turnover=_to_float(r.get("turnover")),
            confirm=bool(r.get("confirm", False)),
            ts=int(r.get("timestamp") or msg.get("ts") or 0),
        ))
    return sorted(rows, key=lambda k: k.start)

@register_channel("orderbook")
def handle_orderbook(msg: Dict[str, Any]) -> OrderBook:
    d = msg["data"]
    return OrderBook(
        symbol=d["s"],
        type=msg.get("type", "snapshot"),
        ts=int(msg.get("ts") or 0),
        updateId=int(d["u"]),
        seq=_to_int(d.get("seq")),
        bids=_levels(d.get("b")),
        asks=_levels(d.get("a")),
    )

@register_channel("publicTrade")
def handle_trades(msg: Dict[str, Any]) -> List[Trade]:
    rows = []
    for r in _rows(msg):
        rows.append(Trade(
            symbol=r["s"], ts=int(r["T"]), side=r["S"],
            price=float(r["p"]), size=float(r["v"]),
            tradeId=str(r.get("i", "")),
            tickDirection=r.get("L"),
            blockTrade=bool(r.get("BT", False)),
        ))
    return sorted(rows, key=lambda t: t.ts)

@register_channel("liquidation")
def handle_liquidation(msg: Dict[str, Any]) -> Liquidation:
    d = msg["data"]
    return Liquidation(
        symbol=d["symbol"], side=d["side"],
        price=float(d["price"]), size=float(d["size"]),
        updatedTime=int(d["updatedTime"]),
    )

@register_channel("kline_lt")
def handle_lt_kline(msg: Dict[str, Any]) -> List[LtKline]:
    _, _, symbol = msg["topic"].split(".", 2)
    rows = []
    for r in _rows(msg):
        rows.append(LtKline(
            symbol=symbol,
            interval=str(r["interval"]),
            start=int(r["start"]), end=int(r["end"]),
            open=float(r["open"]), high=float(r["high"]),
            low=float(r["low"]), close=float(r["close"]),
            confirm=bool(r.get("confirm", False)),
            ts=int(r.get("timestamp") or msg.get("ts") or 0),
        ))
    return sorted(rows, key=lambda k: k.start)

@register_channel("tickers_lt")
def handle_lt_ticker(msg: Dict[str, Any]) -> LtTicker:
    d = msg["data"]
    return LtTicker(
        symbol=d["symbol"],
        ts=int(msg.get("ts") or 0),
        lastPrice=_to_float(d.get("lastPrice")),
        prevPrice24h=_to_float(d.get("prevPrice24h")),
        price24hPcnt=_to_float(d.get("price24hPcnt")),
        highPrice24h=_to_float(d.get("highPrice24h")),
        lowPrice24h=_to_float(d.get("lowPrice24h")),
    )

@register_channel("lt")
def handle_lt_nav(msg: Dict[str, Any]) -> LtNav:
    d = msg["data"]
    return LtNav(
        symbol=d["symbol"],
        time=int(d["time"]),
        nav=float(d["nav"]),
        basketPosition=_to_float(d.get("basketPosition")),
        leverage=_to_float(d.get("leverage")),
        basketLoan=_to_float(d.get("basketLoan")),
        circulation=_to_float(d.get("circulation")),
        basket=_to_float(d.get("basket")),
    )


# ---- private ---------------------------------------------------------------------

@register_channel("position")
def handle_position(msg: Dict[str, Any]) -> List[Position]:
    return [Position(
        category=r.get("category", ""),
        symbol=r["symbol"],
        side=r.get("side", ""),
        size=float(r["size"]),
        positionIdx=int(r.get("positionIdx", 0)),
        entryPrice=_to_float(r.get("entryPrice")),
        markPrice=_to_float(r.get("markPrice")),
        leverage=_to_float(r.get("leverage")),
        positionValue=_to_float(r.get("positionValue")),
        unrealisedPnl=_to_float(r.get("unrealisedPnl")),
        cumRealisedPnl=_to_float(r.get("cumRealisedPnl")),
        liqPrice=_to_float(r.get("liqPrice")),
        updatedTime=_to_int(r.get("updatedTime")),
    ) for r in _rows(msg)]

@register_channel("execution")
def handle_execution(msg: Dict[str, Any]) -> List[Execution]:
    return [Execution(
        category=r.get("category", ""),
        symbol=r["symbol"],
        orderId=r["orderId"],
        orderLinkId=r.get("orderLinkId", ""),
        execId=r["execId"],
        side=r["side"],
        execPrice=float(r["execPrice"]),
        execQty=float(r["execQty"]),
        execFee=_to_float(r.get("execFee")),
        execTime=int(r["execTime"]),
        isMaker=bool(r.get("isMaker", False)),
    ) for r in _rows(msg)]

@register_channel("order")
def handle_order(msg: Dict[str, Any]) -> List[Order]:
    return [Order(
        category=r.get("category", ""),
        symbol=r["symbol"],
        orderId=r["orderId"],
        orderLinkId=r.get("orderLinkId", ""),
        side=r["side"],
        orderType=r.get("orderType", ""),
        orderStatus=r["orderStatus"],
        price=_to_float(r.get("price")),
        qty=float(r["qty"]),
        cumExecQty=_to_float(r.get("cumExecQty")),
        avgPrice=_to_float(r.get("avgPrice")),
        timeInForce=r.get("timeInForce"),
        reduceOnly=bool(r.get("reduceOnly", False)),
        createdTime=_to_int(r.get("createdTime")),
        updatedTime=_to_int(r.get("updatedTime")),
    ) for r in _rows(msg)]

@register_channel("wallet")
def handle_wallet(msg: Dict[str, Any]) -> List[Wallet]:
    wallets = []
    for r in _rows(msg):
        coins = [WalletCoin(
            coin=c["coin"],
            equity=_to_float(c.get("equity")),
            walletBalance=_to_float(c.get("walletBalance")),
            availableToWithdraw=_to_float(c.get("availableToWithdraw")),
            unrealisedPnl=_to_float(c.get("unrealisedPnl")),
        ) for c in r.get("coin", [])]
        wallets.append(Wallet(
            accountType=r.get("accountType", ""),
            totalEquity=_to_float(r.get("totalEquity")),
            totalWalletBalance=_to_float(r.get("totalWalletBalance")),
            totalAvailableBalance=_to_float(r.get("totalAvailableBalance")),
            coins=coins,
        ))
    return wallets
