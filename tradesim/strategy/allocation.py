"""
Capital allocation across competing signals.

A strategy that finds several buy opportunities in the same tick hands
them to `CapitalAllocator`, which ranks them, decides how much cash each
one receives under the configured policy and returns market buy orders.
The allocator only reads cash through the context; it never touches the
ledger.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import math
from typing import Callable, List, Optional, Sequence

from ..config.schema import AllocationConfig, validate_allocation_config
from ..execution.models import BUY, MARKET, Bar, Order


logger = logging.getLogger(__name__)

# float residue allowed when a fractional quantity spends exactly the remaining cash
COST_TOLERANCE = 1e-9


@dataclass
class TradingSignal:
    """A buy opportunity found in one evaluation tick.

    Attributes
    ----------
    confidence : float
        Strength of the signal in ``[0, 1]``.
    priority : float
        Higher values are served first by the priority policy.
    signal_type : str
        Tag copied onto the order's ``reason``.
    """
    symbol: str
    price: float
    confidence: float = 1.0
    priority: float = 0.0
    signal_type: str = "signal"
    bar: Optional[Bar] = None


class CapitalAllocator:
    """Turn a batch of signals into a bounded set of market buy orders.

    Parameters
    ----------
    config : AllocationConfig
        Policy and limits.  Validated on construction.
    volatility_lookup : callable, optional
        ``symbol -> volatility``; used when ``config.volatility_adjust``
        is set.
    """

    def __init__(
        self,
        config: Optional[AllocationConfig] = None,
        volatility_lookup: Optional[Callable[[str], float]] = None,
    ) -> None:
        self.config = config or AllocationConfig()
        validate_allocation_config(self.config)
        self.volatility_lookup = volatility_lookup

    def allocate_capital(self, ctx, signals: Sequence[TradingSignal], strategy_name: str) -> List[Order]:
        """Allocate the context's cash to ``signals``.

        Parameters
        ----------
        ctx
            Anything exposing ``get_cash()``; normally a `StrategyContext`.
        signals : sequence of TradingSignal
            Unordered candidates from one tick.
        strategy_name : str
            Copied onto every order.
        """
        if not signals:
            return []

        available_cash = ctx.get_cash()
        if available_cash <= self.config.min_cash_buffer:
            logger.warning(
                "Insufficient cash for trading: %.2f (min buffer %.2f)",
                available_cash, self.config.min_cash_buffer,
            )
            return []

        tradable_cash = available_cash * (1.0 - self.config.slippage_buffer)
        if tradable_cash < self.config.min_cash_buffer:
            return []

        ranked = self.rank(signals)
        if self.config.max_positions > 0:
            ranked = ranked[:self.config.max_positions]

        logger.debug(
            "Allocating %.2f of %.2f cash to %d of %d signals (%s)",
            tradable_cash, available_cash, len(ranked), len(signals), self.config.method,
        )

        method = self.config.method
        if method == "equal":
            orders = self._allocate_equally(ranked, tradable_cash, strategy_name)
        elif method == "confidence":
            orders = self._allocate_weighted(ranked, tradable_cash, strategy_name, lambda s: s.confidence)
        elif method == "priority":
            orders = self._allocate_weighted(ranked, tradable_cash, strategy_name, lambda s: s.priority)
        else:
            orders = self._allocate_sequential(ranked, tradable_cash, strategy_name)

        logger.debug("Capital allocation created %d orders", len(orders))
        return orders

    def rank(self, signals: Sequence[TradingSignal]) -> List[TradingSignal]:
        """Order ``signals`` for the configured policy, best first."""
        method = self.config.method
        if method in ("confidence", "sequential"):
            return sorted(signals, key=lambda s: (s.confidence, s.priority), reverse=True)
        if method == "priority":
            return sorted(signals, key=lambda s: (s.priority, s.confidence), reverse=True)
        return list(signals)

    def _order(self, signal: TradingSignal, quantity: float, strategy_name: str) -> Order:
        return Order(
            symbol=signal.symbol,
            side=BUY,
            quantity=quantity,
            order_type=MARKET,
            strategy=strategy_name,
            reason=signal.signal_type,
            reference_price=signal.price,
        )

    def _allocate_equally(self, signals, tradable_cash, strategy_name) -> List[Order]:
        orders: List[Order] = []
        per_signal = tradable_cash * self.config.position_size / len(signals)
        for signal in signals:
            quantity = self.position_size(signal, per_signal)
            if quantity > 0:
                orders.append(self._order(signal, quantity, strategy_name))
                logger.info(
                    "Equal allocation: %s %s @ %.2f (allocation %.2f)",
                    quantity, signal.symbol, signal.price, per_signal,
                )
        return orders

    def _allocate_weighted(self, signals, tradable_cash, strategy_name, weight) -> List[Order]:
        total_weight = sum(weight(s) for s in signals)
        if total_weight == 0:
            return self._allocate_equally(signals, tradable_cash, strategy_name)

        budget = tradable_cash * self.config.position_size
        remaining = budget
        orders: List[Order] = []
        for i, signal in enumerate(signals):
            if remaining <= self.config.min_cash_buffer:
                break
            if i == len(signals) - 1:
                # last signal takes the rest of the budget
                allocation = remaining
            else:
                allocation = min(budget * weight(signal) / total_weight, remaining)

            quantity = self.position_size(signal, allocation)
            if quantity <= 0:
                continue
            cost = quantity * signal.price
            if cost - remaining > COST_TOLERANCE:
                continue
            orders.append(self._order(signal, quantity, strategy_name))
            remaining -= cost
            logger.info(
                "%s-weighted allocation: %s %s @ %.2f (allocation %.2f, remaining %.2f)",
                self.config.method.capitalize(), quantity, signal.symbol, signal.price,
                allocation, remaining,
            )
        return orders

    def _allocate_sequential(self, signals, tradable_cash, strategy_name) -> List[Order]:
        remaining = tradable_cash
        orders: List[Order] = []
        for signal in signals:
            if remaining <= self.config.min_cash_buffer:
                logger.debug("Remaining cash %.2f at or below buffer, stopping", remaining)
                break
            fraction = min(self.config.position_size, remaining / tradable_cash)
            quantity = self.position_size(signal, remaining * fraction)
            if quantity <= 0:
                continue
            cost = quantity * signal.price
            if cost - remaining > COST_TOLERANCE:
                logger.debug("Insufficient cash for %s: need %.2f, have %.2f", signal.symbol, cost, remaining)
                continue
            orders.append(self._order(signal, quantity, strategy_name))
            remaining -= cost
            logger.info(
                "Sequential allocation: %s %s @ %.2f (remaining %.2f)",
                quantity, signal.symbol, signal.price, remaining,
            )
        return orders

    def position_size(self, signal: TradingSignal, allocation: float) -> float:
        """Quantity of ``signal.symbol`` bought with ``allocation`` dollars."""
        if allocation <= 0 or signal.price <= 0:
            return 0.0

        quantity = allocation / signal.price
        if self.config.volatility_adjust and self.volatility_lookup is not None:
            quantity *= self.volatility_adjustment(self.volatility_lookup(signal.symbol))

        if not self.config.allow_fractional:
            quantity = math.floor(quantity)
        return max(0.0, quantity)

    def volatility_adjustment(self, volatility: float) -> float:
        if volatility > self.config.high_volatility:
            return 0.7
        if volatility > self.config.medium_volatility:
            return 0.85
        return 1.0
