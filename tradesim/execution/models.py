"""
Bar, order, trade and position models.

These dataclasses represent the objects passed between the data feed,
the strategy, the broker and the ledger.  Keeping them in a separate
module improves readability and makes unit testing easier.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from itertools import count
from typing import Dict, List, Optional
import pandas as pd


BUY = "BUY"
SELL = "SELL"

MARKET = "MARKET"
LIMIT = "LIMIT"
STOP = "STOP"

ORDER_SIDES = (BUY, SELL)
ORDER_TYPES = (MARKET, LIMIT, STOP)

_order_ids = count(1)
_trade_ids = count(1)


def next_order_id() -> str:
    return f"ORD_{next(_order_ids)}"


def next_trade_id() -> str:
    return f"TRD_{next(_trade_ids)}"


@dataclass(frozen=True)
class Bar:
    """One OHLCV observation for a symbol."""
    symbol: str
    timestamp: pd.Timestamp
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    timeframe: str = ""


@dataclass
class DataPoint:
    """All bars sharing one timestamp, keyed by symbol."""
    timestamp: pd.Timestamp
    bars: Dict[str, Bar] = field(default_factory=dict)


@dataclass
class Order:
    """An instruction produced by a strategy for a single execution attempt.

    Attributes
    ----------
    price : float, optional
        Limit price.  Required for ``LIMIT`` orders.
    stop_price : float, optional
        Trigger price.  Required for ``STOP`` orders.
    reference_price : float, optional
        Price the order was sized against.  Informational only; the
        broker never fills at this price.
    """
    symbol: str
    side: str
    quantity: float
    order_type: str = MARKET
    price: Optional[float] = None
    stop_price: Optional[float] = None
    strategy: str = ""
    reason: str = ""
    reference_price: Optional[float] = None
    id: str = field(default_factory=next_order_id)

    def __post_init__(self) -> None:
        if self.side not in ORDER_SIDES:
            raise ValueError(f"Unknown order side: {self.side!r}")
        if self.order_type not in ORDER_TYPES:
            raise ValueError(f"Unknown order type: {self.order_type!r}")
        if not self.quantity > 0:
            raise ValueError(f"Order quantity must be positive, got {self.quantity}")
        if self.order_type == LIMIT and self.price is None:
            raise ValueError("Limit orders require a limit price")
        if self.order_type == STOP and self.stop_price is None:
            raise ValueError("Stop orders require a stop price")


@dataclass(frozen=True)
class Trade:
    """The result of a successfully executed order."""
    symbol: str
    side: str
    quantity: float
    price: float
    timestamp: pd.Timestamp
    commission: float = 0.0
    sec_fee: float = 0.0
    activity_fee: float = 0.0
    slippage: float = 0.0
    strategy: str = ""
    reason: str = ""
    order_id: str = ""
    id: str = field(default_factory=next_trade_id)

    @property
    def notional(self) -> float:
        return self.quantity * self.price

    @property
    def total_fees(self) -> float:
        """Fees that move cash.  Slippage is already inside ``price``."""
        return self.commission + self.sec_fee + self.activity_fee


@dataclass
class Position:
    """Aggregate holding in one symbol.

    ``quantity`` is signed: positive for long, negative for short.
    ``avg_price`` is only meaningful while ``quantity`` is non-zero.
    """
    symbol: str
    quantity: float = 0.0
    avg_price: float = 0.0
    market_value: float = 0.0
    unrealized_pnl: float = 0.0
    realized_pnl: float = 0.0


@dataclass
class EquityPoint:
    """Represents the account equity at a given timestamp."""
    timestamp: pd.Timestamp
    equity: float


@dataclass
class PortfolioSnapshot:
    """Read-only copy of the ledger handed out to strategies."""
    cash: float
    total_value: float
    positions: Dict[str, Position]
    trades: List[Trade]
    peak_value: float
    current_drawdown: float
    max_drawdown: float

    @property
    def total_pnl(self) -> float:
        return sum(p.realized_pnl + p.unrealized_pnl for p in self.positions.values())
