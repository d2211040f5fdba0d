"""
Simulated broker.

Turns one order plus the bar it was generated on into a `Trade`, or
refuses it with `OrderNotFillable`.  Fill prices follow the usual
backtest conventions:

- market orders fill at the bar close adjusted by slippage,
- limit orders fill at the limit price when the bar range reaches it,
- stop orders fill at the stop price adjusted by slippage once the bar
  range crosses it.

Fees are computed by a `FeeSchedule` that the ledger shares for its
affordability checks.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import random
from typing import Optional, Tuple

from ..config.schema import BrokerConfig, validate_broker_config
from .models import BUY, LIMIT, MARKET, SELL, STOP, Bar, Order, Trade


logger = logging.getLogger(__name__)


class OrderNotFillable(Exception):
    """Raised when an order cannot be filled against the current bar."""


@dataclass
class FeeSchedule:
    """Commission and regulatory fees applied to every fill."""

    commission_type: str = "percentage"
    commission_rate: float = 0.001
    sec_fee_rate: float = 0.0000278
    activity_fee_per_share: float = 0.000145
    activity_fee_cap: float = 7.27

    @classmethod
    def from_config(cls, cfg: BrokerConfig) -> "FeeSchedule":
        return cls(
            commission_type=cfg.commission_type,
            commission_rate=cfg.commission_rate,
            sec_fee_rate=cfg.sec_fee_rate,
            activity_fee_per_share=cfg.activity_fee_per_share,
            activity_fee_cap=cfg.activity_fee_cap,
        )

    def commission(self, notional: float) -> float:
        if self.commission_type == "fixed":
            return self.commission_rate
        return notional * self.commission_rate

    def regulatory_fee(self, side: str, notional: float) -> float:
        """Transaction fee on sale proceeds; buys pay nothing."""
        return notional * self.sec_fee_rate if side == SELL else 0.0

    def activity_fee(self, quantity: float) -> float:
        return min(quantity * self.activity_fee_per_share, self.activity_fee_cap)

    def estimate(self, side: str, quantity: float, price: float) -> float:
        """Total cash fees for a fill of ``quantity`` at ``price``."""
        notional = quantity * price
        return (
            self.commission(notional)
            + self.regulatory_fee(side, notional)
            + self.activity_fee(quantity)
        )


class SlippageModel:
    """Base slippage plus an optional seeded uniform noise component.

    In ``fixed`` mode every call returns the base rate, so identical
    inputs always produce identical fills.  In ``random`` mode a value in
    ``[0, max_slippage)`` is added, drawn from a private generator seeded
    with ``seed``.
    """

    def __init__(self, base: float, max_random: float = 0.0, mode: str = "fixed",
                 seed: Optional[int] = None) -> None:
        self.base = base
        self.max_random = max_random
        self.mode = mode
        self._rng = random.Random(seed)

    def draw(self) -> float:
        if self.mode == "random" and self.max_random > 0:
            return self.base + self._rng.random() * self.max_random
        return self.base


class Broker:
    """Simulated order execution for backtesting.

    Parameters
    ----------
    config : BrokerConfig
        Fee and slippage settings.  Validated on construction.
    """

    def __init__(self, config: Optional[BrokerConfig] = None) -> None:
        self.config = config or BrokerConfig()
        validate_broker_config(self.config)
        self.fees = FeeSchedule.from_config(self.config)
        self.slippage = SlippageModel(
            base=self.config.slippage,
            max_random=self.config.max_slippage,
            mode=self.config.slippage_mode,
            seed=self.config.seed,
        )

        # Running totals
        self.total_fills = 0
        self.total_commission = 0.0
        self.total_slippage = 0.0

    def can_execute_order(self, order: Order, bar: Bar) -> bool:
        """Return whether ``order`` would fill against ``bar``."""
        if order.order_type == MARKET:
            return True
        if order.order_type == LIMIT:
            if order.side == BUY:
                return bar.low <= order.price
            return bar.high >= order.price
        if order.order_type == STOP:
            if order.side == BUY:
                return bar.high >= order.stop_price
            return bar.low <= order.stop_price
        return False

    def _fill_price(self, order: Order, bar: Bar, slip: float) -> float:
        if order.order_type == MARKET:
            base = bar.close
        elif order.order_type == LIMIT:
            if not self.can_execute_order(order, bar):
                if order.side == BUY:
                    raise OrderNotFillable(
                        f"limit buy {order.symbol} not filled: limit {order.price} < low {bar.low}")
                raise OrderNotFillable(
                    f"limit sell {order.symbol} not filled: limit {order.price} > high {bar.high}")
            return order.price
        elif order.order_type == STOP:
            if not self.can_execute_order(order, bar):
                if order.side == BUY:
                    raise OrderNotFillable(
                        f"stop buy {order.symbol} not triggered: stop {order.stop_price} > high {bar.high}")
                raise OrderNotFillable(
                    f"stop sell {order.symbol} not triggered: stop {order.stop_price} < low {bar.low}")
            base = order.stop_price
        else:
            raise OrderNotFillable(f"unsupported order type: {order.order_type}")

        if order.side == BUY:
            return base * (1 + slip)
        return base * (1 - slip)

    def get_execution_price(self, order: Order, bar: Bar) -> float:
        """Price at which ``order`` would fill, without recording anything.

        Only the base slippage rate is applied so the random generator is
        left untouched.

        Raises
        ------
        OrderNotFillable
            If the order would not fill against ``bar``.
        """
        return self._fill_price(order, bar, self.slippage.base)

    def quote(self, order: Order, bar: Bar) -> Tuple[float, float]:
        """Draw the slippage for ``order`` once and return ``(price, slip)``.

        Passing ``slip`` back to :meth:`execute_order` fills at exactly
        ``price``, so a caller can check affordability first.

        Raises
        ------
        OrderNotFillable
            If the order would not fill against ``bar``. No draw is taken.
        """
        if not self.can_execute_order(order, bar):
            self._fill_price(order, bar, 0.0)
        slip = 0.0 if order.order_type == LIMIT else self.slippage.draw()
        return self._fill_price(order, bar, slip), slip

    def execute_order(self, order: Order, bar: Bar, slip: Optional[float] = None) -> Trade:
        """Execute ``order`` against ``bar`` and return the resulting trade.

        ``slip`` is the slippage fraction from an earlier :meth:`quote`;
        when omitted a fresh one is drawn.

        Raises
        ------
        OrderNotFillable
            If a limit or stop order is not reached by the bar range, or
            the order type is not supported.
        """
        if slip is None:
            fill_price, slip = self.quote(order, bar)
        else:
            fill_price = self._fill_price(order, bar, slip)

        notional = order.quantity * fill_price
        commission = self.fees.commission(notional)
        sec_fee = self.fees.regulatory_fee(order.side, notional)
        activity_fee = self.fees.activity_fee(order.quantity)

        reference_price = order.price if order.order_type == LIMIT else bar.close
        slippage_cost = abs(fill_price - reference_price) * order.quantity

        trade = Trade(
            symbol=order.symbol,
            side=order.side,
            quantity=order.quantity,
            price=fill_price,
            timestamp=bar.timestamp,
            commission=commission,
            sec_fee=sec_fee,
            activity_fee=activity_fee,
            slippage=slippage_cost,
            strategy=order.strategy,
            reason=order.reason,
            order_id=order.id,
        )

        self.total_fills += 1
        self.total_commission += commission
        self.total_slippage += slippage_cost

        logger.debug(
            "%s %s %s filled @ %.4f (commission %.2f, slippage %.2f)",
            order.side, order.quantity, order.symbol, fill_price, commission, slippage_cost,
        )
        return trade

    def get_execution_summary(self) -> dict:
        """Return totals of fills, commission and slippage so far."""
        return {
            "total_fills": self.total_fills,
            "total_commission": self.total_commission,
            "total_slippage": self.total_slippage,
            "avg_commission_per_fill": (
                self.total_commission / self.total_fills if self.total_fills > 0 else 0.0
            ),
        }
