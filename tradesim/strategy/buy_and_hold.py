"""
Buy-and-hold strategy.

Buys every configured symbol once, as soon as it has a bar, splitting
the available cash evenly through the capital allocator.  Positions are
held until the engine liquidates them at the end of the run.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, List, Optional, Set

from ..config.schema import AllocationConfig
from ..execution.models import BUY, DataPoint, Order, Trade
from .allocation import CapitalAllocator, TradingSignal
from .base import BaseStrategy, Strategy


class BuyAndHoldStrategy(Strategy):
    """Enter once per symbol and never exit.

    Parameters
    ----------
    symbols : list of str
        Symbols to buy.
    parameters : dict, optional
        ``position_size``: fraction of tradable cash committed on the
        first tick (default 0.95).
    allocation : AllocationConfig, optional
        Base allocation settings; the method is forced to ``equal``.
    """

    DEFAULTS = {"position_size": 0.95}

    def __init__(
        self,
        symbols: List[str],
        parameters: Optional[Dict[str, Any]] = None,
        allocation: Optional[AllocationConfig] = None,
    ) -> None:
        self.base = BaseStrategy("BuyAndHold", {**self.DEFAULTS, **(parameters or {})}, symbols)
        position_size = self.base.get_parameter_float("position_size")
        self.allocator = CapitalAllocator(
            replace(allocation or AllocationConfig(), method="equal", position_size=position_size,
                    max_positions=len(symbols)),
        )
        self.bought: Set[str] = set()

    def initialize(self, ctx) -> None:
        self.bought.clear()
        self.base.initialize(ctx)

    def on_data_point(self, ctx, data_point: DataPoint) -> List[Order]:
        signals = [
            TradingSignal(symbol=symbol, price=bar.close, bar=bar, signal_type="buy_and_hold")
            for symbol, bar in data_point.bars.items()
            if symbol in self.base.symbols and symbol not in self.bought
        ]
        if not signals:
            return []

        orders = self.allocator.allocate_capital(ctx, signals, self.get_name())
        for order in orders:
            ctx.log("info", "Buying shares", symbol=order.symbol, quantity=order.quantity,
                    price=order.reference_price)
        return orders

    def on_trade(self, ctx, trade: Trade) -> None:
        if trade.side == BUY:
            self.bought.add(trade.symbol)
        self.base.on_trade(ctx, trade)

    def cleanup(self, ctx) -> None:
        self.base.cleanup(ctx)

    def get_name(self) -> str:
        return self.base.get_name()

    def get_parameters(self) -> Dict[str, Any]:
        return self.base.get_parameters()
