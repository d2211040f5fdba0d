"""
Cash and position ledger.

`Portfolio` is the single authority on cash and open positions during a
backtest.  It keeps one aggregate position per symbol with a
weighted-average cost basis, realizes P&L when a trade reduces or
reverses a position, marks positions to market and tracks drawdown.

Round-trip, lot-by-lot P&L is reconstructed separately from the trade
log by `tradesim.reporting.metrics`; the two views are intentionally
independent.
"""

from __future__ import annotations

import copy
import logging
from typing import Dict, List, Mapping, Optional

from .broker import FeeSchedule
from .models import BUY, Bar, EquityPoint, Order, PortfolioSnapshot, Position, Trade


logger = logging.getLogger(__name__)


class Portfolio:
    """Manage cash, positions and P&L for one backtest.

    Parameters
    ----------
    initial_capital : float
        Starting cash.
    fees : FeeSchedule, optional
        Used to estimate fees in `can_afford`.
    """

    def __init__(self, initial_capital: float, fees: Optional[FeeSchedule] = None) -> None:
        self.initial_capital = initial_capital
        self.cash = initial_capital
        self.fees = fees or FeeSchedule()
        self.positions: Dict[str, Position] = {}
        self.trades: List[Trade] = []
        self.total_value = initial_capital

        # Realized P&L per symbol, kept after a position goes flat
        self.realized_pnl: Dict[str, float] = {}
        # Last price each symbol was marked at
        self.mark_prices: Dict[str, float] = {}

        self.equity: List[EquityPoint] = []
        self.peak_value = initial_capital
        self.current_drawdown = 0.0
        self.max_drawdown = 0.0

    # ------------------------------------------------------------------
    # Accessors

    def get_cash(self) -> float:
        return self.cash

    def get_position(self, symbol: str) -> Optional[Position]:
        return self.positions.get(symbol)

    def get_total_value(self) -> float:
        return self.total_value

    @property
    def total_pnl(self) -> float:
        return self.total_value - self.initial_capital

    @property
    def total_return(self) -> float:
        """Total return in percent of the initial capital."""
        return (self.total_value - self.initial_capital) / self.initial_capital * 100

    @property
    def total_realized_pnl(self) -> float:
        return sum(self.realized_pnl.values())

    def snapshot(self) -> PortfolioSnapshot:
        """Return a deep copy of the current state for read-only use."""
        return PortfolioSnapshot(
            cash=self.cash,
            total_value=self.total_value,
            positions=copy.deepcopy(self.positions),
            trades=list(self.trades),
            peak_value=self.peak_value,
            current_drawdown=self.current_drawdown,
            max_drawdown=self.max_drawdown,
        )

    # ------------------------------------------------------------------
    # Trade application

    def _realize(self, position: Position, amount: float) -> None:
        position.realized_pnl += amount
        self.realized_pnl[position.symbol] = self.realized_pnl.get(position.symbol, 0.0) + amount

    def _apply_buy(self, position: Position, quantity: float, price: float) -> None:
        if position.quantity >= 0:
            new_quantity = position.quantity + quantity
            position.avg_price = (position.avg_price * position.quantity + price * quantity) / new_quantity
            position.quantity = new_quantity
            return

        short_size = -position.quantity
        covered = min(quantity, short_size)
        self._realize(position, (position.avg_price - price) * covered)
        if quantity <= short_size:
            position.quantity += quantity
        else:
            # cover and reverse into a long leg at the fill price
            position.quantity = quantity - short_size
            position.avg_price = price

    def _apply_sell(self, position: Position, quantity: float, price: float) -> None:
        if position.quantity <= 0:
            short_size = -position.quantity
            new_size = short_size + quantity
            position.avg_price = (position.avg_price * short_size + price * quantity) / new_size
            position.quantity = -new_size
            return

        long_size = position.quantity
        sold = min(quantity, long_size)
        self._realize(position, (price - position.avg_price) * sold)
        if quantity <= long_size:
            position.quantity -= quantity
        else:
            # sell through zero into a short leg at the fill price
            position.quantity = -(quantity - long_size)
            position.avg_price = price

    @staticmethod
    def _mark(position: Position, price: float) -> None:
        position.market_value = position.quantity * price
        if position.quantity > 0:
            position.unrealized_pnl = (price - position.avg_price) * position.quantity
        elif position.quantity < 0:
            position.unrealized_pnl = (position.avg_price - price) * -position.quantity
        else:
            position.unrealized_pnl = 0.0

    def execute_trade(self, trade: Trade, mark_price: float) -> None:
        """Apply ``trade`` to cash and positions.

        The affected position is then marked at ``mark_price`` and the
        total value recomputed.  A position whose quantity nets to exactly
        zero is removed.
        """
        symbol = trade.symbol
        position = self.positions.get(symbol)
        if position is None:
            position = Position(symbol=symbol)
            self.positions[symbol] = position

        if trade.side == BUY:
            self._apply_buy(position, trade.quantity, trade.price)
            self.cash -= trade.notional + trade.total_fees
        else:
            self._apply_sell(position, trade.quantity, trade.price)
            self.cash += trade.notional - trade.total_fees

        self.mark_prices[symbol] = mark_price
        self._mark(position, mark_price)
        if position.quantity == 0:
            position.avg_price = 0.0
            del self.positions[symbol]

        self.trades.append(trade)
        self._recompute_total()

        logger.debug(
            "Applied %s %s %s @ %.4f, cash %.2f, total %.2f",
            trade.side, trade.quantity, symbol, trade.price, self.cash, self.total_value,
        )

    # ------------------------------------------------------------------
    # Mark to market

    def _recompute_total(self) -> None:
        self.total_value = self.cash + sum(p.market_value for p in self.positions.values())

    def update_market_values(self, bars: Mapping[str, Bar]) -> None:
        """Mark every open position to the latest close and update drawdown.

        Positions without a bar in ``bars`` keep their previous mark.
        """
        for symbol, position in self.positions.items():
            bar = bars.get(symbol)
            if bar is not None:
                self.mark_prices[symbol] = bar.close
                self._mark(position, bar.close)
        self._recompute_total()

        if self.total_value > self.peak_value:
            self.peak_value = self.total_value
            self.current_drawdown = 0.0
        elif self.peak_value > 0:
            self.current_drawdown = (self.peak_value - self.total_value) / self.peak_value
            if self.current_drawdown > self.max_drawdown:
                self.max_drawdown = self.current_drawdown

    def add_equity_point(self, timestamp) -> EquityPoint:
        point = EquityPoint(timestamp=timestamp, equity=self.total_value)
        self.equity.append(point)
        return point

    def get_equity_curve(self) -> List[EquityPoint]:
        return self.equity

    # ------------------------------------------------------------------
    # Pre-trade checks

    def can_afford(self, order: Order, price: float) -> bool:
        """Whether the ledger can carry ``order`` filled at ``price``.

        A buy needs the notional plus estimated fees in cash.  A sell needs
        at least ``order.quantity`` held long; new short exposure is never
        authorised here.
        """
        if order.side == BUY:
            cost = order.quantity * price + self.fees.estimate(order.side, order.quantity, price)
            return self.cash >= cost

        position = self.positions.get(order.symbol)
        if position is None:
            return False
        return position.quantity >= order.quantity
