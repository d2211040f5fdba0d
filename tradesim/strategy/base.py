"""
Strategy interface and shared default behaviour.

`Strategy` is the contract the engine drives.  `BaseStrategy` bundles
the behaviour most strategies share (name, parameters, order factories,
logging lifecycle hooks); concrete strategies hold one and delegate to
it rather than inheriting from it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..execution.models import LIMIT, MARKET, STOP, DataPoint, Order, Trade


class Strategy(ABC):
    """Callbacks invoked by `BacktestEngine` during a run."""

    @abstractmethod
    def initialize(self, ctx) -> None:
        """Called once before the first data point.  Raising aborts the run."""

    @abstractmethod
    def on_data_point(self, ctx, data_point: DataPoint) -> List[Order]:
        """Return the orders to execute for ``data_point``."""

    @abstractmethod
    def on_trade(self, ctx, trade: Trade) -> None:
        """Called after each of this strategy's orders is filled."""

    @abstractmethod
    def cleanup(self, ctx) -> None:
        """Called once after the data runs out."""

    @abstractmethod
    def get_name(self) -> str:
        ...

    @abstractmethod
    def get_parameters(self) -> Dict[str, Any]:
        ...


class BaseStrategy:
    """Default implementation of the common strategy chores."""

    def __init__(
        self,
        name: str,
        parameters: Optional[Dict[str, Any]] = None,
        symbols: Optional[List[str]] = None,
        timeframe: str = "1m",
    ) -> None:
        self.name = name
        self.parameters: Dict[str, Any] = dict(parameters or {})
        self.symbols: List[str] = list(symbols or [])
        self.timeframe = timeframe

    def get_name(self) -> str:
        return self.name

    def get_parameters(self) -> Dict[str, Any]:
        return dict(self.parameters)

    def get_parameter(self, key: str, default: Any = None) -> Any:
        return self.parameters.get(key, default)

    def get_parameter_float(self, key: str) -> float:
        if key not in self.parameters:
            raise KeyError(f"parameter {key} not found")
        value = self.parameters[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(f"parameter {key} is not a number")
        return float(value)

    def get_parameter_int(self, key: str) -> int:
        if key not in self.parameters:
            raise KeyError(f"parameter {key} not found")
        value = self.parameters[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(f"parameter {key} is not an integer")
        return int(value)

    def get_parameter_str(self, key: str) -> str:
        if key not in self.parameters:
            raise KeyError(f"parameter {key} not found")
        value = self.parameters[key]
        if not isinstance(value, str):
            raise TypeError(f"parameter {key} is not a string")
        return value

    # Order factories

    def create_market_order(self, symbol: str, side: str, quantity: float, reason: str = "") -> Order:
        return Order(symbol=symbol, side=side, quantity=quantity, order_type=MARKET,
                     strategy=self.name, reason=reason)

    def create_limit_order(self, symbol: str, side: str, quantity: float, price: float,
                           reason: str = "") -> Order:
        return Order(symbol=symbol, side=side, quantity=quantity, order_type=LIMIT,
                     price=price, strategy=self.name, reason=reason)

    def create_stop_order(self, symbol: str, side: str, quantity: float, stop_price: float,
                          reason: str = "") -> Order:
        return Order(symbol=symbol, side=side, quantity=quantity, order_type=STOP,
                     stop_price=stop_price, strategy=self.name, reason=reason)

    # Lifecycle hooks

    def initialize(self, ctx) -> None:
        ctx.log("info", "Strategy initialized", strategy=self.name, symbols=self.symbols)

    def on_trade(self, ctx, trade: Trade) -> None:
        ctx.log(
            "info", "Trade executed", strategy=self.name, symbol=trade.symbol,
            side=trade.side, quantity=trade.quantity, price=round(trade.price, 4),
            reason=trade.reason,
        )

    def cleanup(self, ctx) -> None:
        ctx.log("info", "Strategy cleanup", strategy=self.name)
