"""
Moving average crossover strategy.

For every symbol the strategy compares a short and a long simple moving
average of the closes.  A bullish crossover (short moving above long)
while flat becomes a buy signal; all buy signals of one data point are
passed together to the capital allocator, weighted by the strength of
the crossover.  A bearish crossover while long sells the whole position
at market.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..config.schema import AllocationConfig
from ..execution.models import SELL, DataPoint, Order, Trade
from .allocation import CapitalAllocator, TradingSignal
from .base import BaseStrategy, Strategy
from .context import InsufficientDataError


@dataclass
class CrossoverState:
    """Moving averages of the previous data point for one symbol."""
    short_ma: Optional[float] = None
    long_ma: Optional[float] = None


def crossover_confidence(short_ma: float, long_ma: float) -> float:
    """Map the relative gap between the averages onto ``[0.1, 1.0]``."""
    gap = (short_ma - long_ma) / long_ma
    return min(1.0, max(0.1, 0.5 + gap * 10))


class MovingAverageCrossoverStrategy(Strategy):
    """Short/long SMA crossover over any number of symbols.

    Parameters
    ----------
    symbols : list of str
        Symbols to trade.
    parameters : dict, optional
        ``short_period`` (default 5) and ``long_period`` (default 20).
    allocation : AllocationConfig, optional
        Allocation policy for buy signals.

    Raises
    ------
    ValueError
        If ``short_period`` is not smaller than ``long_period``.
    """

    DEFAULTS = {"short_period": 5, "long_period": 20}

    def __init__(
        self,
        symbols: List[str],
        parameters: Optional[Dict[str, Any]] = None,
        allocation: Optional[AllocationConfig] = None,
    ) -> None:
        self.base = BaseStrategy("MovingAverageCrossover", {**self.DEFAULTS, **(parameters or {})}, symbols)
        self.short_period = self.base.get_parameter_int("short_period")
        self.long_period = self.base.get_parameter_int("long_period")
        if self.short_period < 1:
            raise ValueError(f"short_period must be positive, got {self.short_period}")
        if self.short_period >= self.long_period:
            raise ValueError(
                f"short_period ({self.short_period}) must be less than long_period ({self.long_period})")

        self.allocator = CapitalAllocator(allocation, volatility_lookup=self._volatility)
        self.states: Dict[str, CrossoverState] = {}
        self._ctx = None

    def _volatility(self, symbol: str) -> float:
        try:
            return self._ctx.volatility(symbol)
        except (InsufficientDataError, ValueError):
            return 0.0

    def initialize(self, ctx) -> None:
        self._ctx = ctx
        self.states.clear()
        ctx.log("info", "Strategy initialized", strategy=self.get_name(),
                short_period=self.short_period, long_period=self.long_period)

    def on_data_point(self, ctx, data_point: DataPoint) -> List[Order]:
        self._ctx = ctx
        signals: List[TradingSignal] = []
        orders: List[Order] = []

        for symbol in self.base.symbols:
            bar = data_point.bars.get(symbol)
            if bar is None:
                continue
            try:
                short_ma = ctx.sma(symbol, self.short_period)
                long_ma = ctx.sma(symbol, self.long_period)
            except InsufficientDataError:
                continue

            state = self.states.setdefault(symbol, CrossoverState())
            prev_short, prev_long = state.short_ma, state.long_ma
            state.short_ma, state.long_ma = short_ma, long_ma
            if prev_short is None or prev_long is None:
                continue

            was_above = prev_short > prev_long
            is_above = short_ma > long_ma
            position = ctx.get_position(symbol)
            holding = position is not None and position.quantity > 0

            if not was_above and is_above and not holding:
                confidence = crossover_confidence(short_ma, long_ma)
                signals.append(TradingSignal(
                    symbol=symbol,
                    price=bar.close,
                    confidence=confidence,
                    priority=confidence,
                    signal_type="bullish_crossover",
                    bar=bar,
                ))
                ctx.log("debug", "Bullish crossover", symbol=symbol, price=bar.close,
                        short_ma=round(short_ma, 4), long_ma=round(long_ma, 4), confidence=round(confidence, 3))
            elif was_above and not is_above and holding:
                orders.append(self.base.create_market_order(
                    symbol, SELL, position.quantity, reason="bearish_crossover"))
                ctx.log("info", "Bearish crossover detected - selling", symbol=symbol,
                        price=bar.close, quantity=position.quantity)

        if signals:
            orders.extend(self.allocator.allocate_capital(ctx, signals, self.get_name()))
        return orders

    def on_trade(self, ctx, trade: Trade) -> None:
        self.base.on_trade(ctx, trade)

    def cleanup(self, ctx) -> None:
        self.base.cleanup(ctx)

    def get_name(self) -> str:
        return self.base.get_name()

    def get_parameters(self) -> Dict[str, Any]:
        return self.base.get_parameters()
