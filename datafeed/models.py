# datafeed/models.py
from dataclasses import dataclass, field
from typing import List, Optional, Tuple


@dataclass
class Ticker:
    symbol: str
    ts: int
    type: str                       # "snapshot" | "delta"
    lastPrice: Optional[float] = None
    markPrice: Optional[float] = None
    indexPrice: Optional[float] = None
    prevPrice24h: Optional[float] = None
    price24hPcnt: Optional[float] = None
    highPrice24h: Optional[float] = None
    lowPrice24h: Optional[float] = None
    volume24h: Optional[float] = None
    turnover24h: Optional[float] = None
    openInterest: Optional[float] = None
    fundingRate: Optional[float] = None
    nextFundingTime: Optional[int] = None
    bid1Price: Optional[float] = None
    bid1Size: Optional[float] = None
    ask1Price: Optional[float] = None
    ask1Size: Optional[float] = None


@dataclass
class Kline:
    symbol: str
    interval: str
    start: int
    end: int
    open: float
    high: float
    low: float
    close: float
    volume: Optional[float]
    turnover: Optional[float]
    confirm: bool                   # True once the bar is closed
    ts: int


@dataclass
class OrderBook:
    symbol: str
    type: str                       # "snapshot" replaces the book, "delta" patches it (size 0 = remove)
    ts: int
    updateId: int
    seq: Optional[int]
    bids: List[Tuple[float, float]] = field(default_factory=list)
    asks: List[Tuple[float, float]] = field(default_factory=list)

    @property
    def best_bid(self) -> Optional[float]:
        return self.bids[0][0] if self.bids else None

    @property
    def best_ask(self) -> Optional[float]:
        return self.asks[0][0] if self.asks else None


@dataclass
class Trade:
    symbol: str
    ts: int
    side: str                       # "Buy" | "Sell" (taker side)
    price: float
    size: float
    tradeId: str
    tickDirection: Optional[str] = None
    blockTrade: bool = False


@dataclass
class Liquidation:
    symbol: str
    side: str
    price: float
    size: float
    updatedTime: int


@dataclass
class LtKline:
    symbol: str
    interval: str
    start: int
    end: int
    open: float
    high: float
    low: float
    close: float
    confirm: bool
    ts: int


@dataclass
class LtTicker:
    symbol: str
    ts: int
    lastPrice: Optional[float] = None
    prevPrice24h: Optional[float] = None
    price24hPcnt: Optional[float] = None
    highPrice24h: Optional[float] = None
    lowPrice24h: Optional[float] = None


@dataclass
class LtNav:
    symbol: str
    time: int
    nav: float                      # net asset value of the leveraged token
    basketPosition: Optional[float] = None
    leverage: Optional[float] = None
    basketLoan: Optional[float] = None
    circulation: Optional[float] = None
    basket: Optional[float] = None


# --- private ---------------------------------------------------------------------

@dataclass
class Position:
    category: str
    symbol: str
    side: str                       # "Buy" | "Sell" | "" (flat)
    size: float
    positionIdx: int
    entryPrice: Optional[float]
    markPrice: Optional[float]
    leverage: Optional[float]
    positionValue: Optional[float]
    unrealisedPnl: Optional[float]
    cumRealisedPnl: Optional[float]
    liqPrice: Optional[float]
    updatedTime: Optional[int]


@dataclass
class Execution:
    category: str
    symbol: str
    orderId: str
    orderLinkId: str
    execId: str
    side: str
    execPrice: float
    execQty: float
    execFee: Optional[float]
    execTime: int
    isMaker: bool


@dataclass
class Order:
    category: str
    symbol: str
    orderId: str
    orderLinkId: str
    side: str
    orderType: str
    orderStatus: str
    price: Optional[float]
    qty: float
    cumExecQty: Optional[float]
    avgPrice: Optional[float]
    timeInForce: Optional[str]
    reduceOnly: bool
    createdTime: Optional[int]
    updatedTime: Optional[int]


@dataclass
class WalletCoin:
    coin: str
    equity: Optional[float]
    walletBalance: Optional[float]
    availableToWithdraw: Optional[float]
    unrealisedPnl: Optional[float]


@dataclass
class Wallet:
    accountType: str
    totalEquity: Optional[float]
    totalWalletBalance: Optional[float]
    totalAvailableBalance: Optional[float]
    coins: List[WalletCoin] = field(default_factory=list)
