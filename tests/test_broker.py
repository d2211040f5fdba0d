import os
import sys

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pandas as pd

from tradesim.config.schema import BrokerConfig
from tradesim.execution.broker import Broker, FeeSchedule, OrderNotFillable
from tradesim.execution.models import BUY, LIMIT, SELL, STOP, Bar, Order

import unittest


def make_bar(close: float, high: float = None, low: float = None) -> Bar:
    return Bar(
        symbol="TEST",
        timestamp=pd.Timestamp("2024-01-02", tz="UTC"),
        open=close,
        high=high if high is not None else close,
        low=low if low is not None else close,
        close=close,
        volume=1000.0,
        timeframe="1d",
    )


class TestMarketFills(unittest.TestCase):
    def setUp(self) -> None:
        self.broker = Broker(BrokerConfig(slippage=0.001, commission_rate=0.001))

    def test_buy_pays_slippage_premium(self) -> None:
        trade = self.broker.execute_order(Order("TEST", BUY, 10), make_bar(100.0))
        self.assertAlmostEqual(trade.price, 100.1)
        self.assertAlmostEqual(trade.slippage, 0.1 * 10)
        self.assertAlmostEqual(trade.commission, 10 * 100.1 * 0.001)
        self.assertEqual(trade.sec_fee, 0.0)

    def test_sell_receives_slippage_discount(self) -> None:
        trade = self.broker.execute_order(Order("TEST", SELL, 10), make_bar(100.0))
        self.assertAlmostEqual(trade.price, 99.9)
        self.assertGreater(trade.sec_fee, 0.0)

    def test_trade_carries_order_tags(self) -> None:
        order = Order("TEST", BUY, 5, strategy="demo", reason="entry")
        trade = self.broker.execute_order(order, make_bar(50.0))
        self.assertEqual(trade.strategy, "demo")
        self.assertEqual(trade.reason, "entry")
        self.assertEqual(trade.order_id, order.id)
        self.assertEqual(trade.timestamp, pd.Timestamp("2024-01-02", tz="UTC"))


class TestLimitAndStopFills(unittest.TestCase):
    def setUp(self) -> None:
        self.broker = Broker(BrokerConfig(slippage=0.001))

    def test_limit_buy_fills_at_limit_when_low_reaches_it(self) -> None:
        order = Order("TEST", BUY, 10, order_type=LIMIT, price=98.0)
        trade = self.broker.execute_order(order, make_bar(100.0, high=101.0, low=97.5))
        self.assertEqual(trade.price, 98.0)
        self.assertEqual(trade.slippage, 0.0)

    def test_limit_buy_above_low_not_fillable(self) -> None:
        order = Order("TEST", BUY, 10, order_type=LIMIT, price=95.0)
        with self.assertRaises(OrderNotFillable):
            self.broker.execute_order(order, make_bar(100.0, high=101.0, low=97.5))

    def test_limit_sell_needs_high_at_limit(self) -> None:
        order = Order("TEST", SELL, 10, order_type=LIMIT, price=102.0)
        self.assertFalse(self.broker.can_execute_order(order, make_bar(100.0, high=101.0, low=99.0)))
        self.assertTrue(self.broker.can_execute_order(order, make_bar(100.0, high=102.0, low=99.0)))

    def test_stop_sell_triggers_below_stop(self) -> None:
        order = Order("TEST", SELL, 10, order_type=STOP, stop_price=95.0)
        trade = self.broker.execute_order(order, make_bar(96.0, high=99.0, low=94.0))
        self.assertAlmostEqual(trade.price, 95.0 * (1 - 0.001))
        # slippage measured against the bar close
        self.assertAlmostEqual(trade.slippage, abs(trade.price - 96.0) * 10)

    def test_stop_buy_not_triggered(self) -> None:
        order = Order("TEST", BUY, 10, order_type=STOP, stop_price=105.0)
        with self.assertRaises(OrderNotFillable):
            self.broker.execute_order(order, make_bar(100.0, high=104.0, low=99.0))

    def test_unfilled_order_leaves_totals_untouched(self) -> None:
        order = Order("TEST", BUY, 10, order_type=LIMIT, price=90.0)
        with self.assertRaises(OrderNotFillable):
            self.broker.execute_order(order, make_bar(100.0))
        self.assertEqual(self.broker.get_execution_summary()["total_fills"], 0)

    def test_get_execution_price_does_not_record(self) -> None:
        price = self.broker.get_execution_price(Order("TEST", BUY, 10), make_bar(100.0))
        self.assertAlmostEqual(price, 100.1)
        self.assertEqual(self.broker.total_fills, 0)


class TestFees(unittest.TestCase):
    def test_sec_fee_only_on_sells(self) -> None:
        fees = FeeSchedule()
        self.assertEqual(fees.regulatory_fee(BUY, 10_000.0), 0.0)
        self.assertAlmostEqual(fees.regulatory_fee(SELL, 10_000.0), 0.278)

    def test_activity_fee_capped(self) -> None:
        fees = FeeSchedule()
        self.assertAlmostEqual(fees.activity_fee(100), 0.0145)
        self.assertAlmostEqual(fees.activity_fee(1_000_000), 7.27)

    def test_fixed_commission(self) -> None:
        fees = FeeSchedule(commission_type="fixed", commission_rate=1.5)
        self.assertEqual(fees.commission(10.0), 1.5)
        self.assertEqual(fees.commission(1_000_000.0), 1.5)

    def test_estimate_sums_all_fees(self) -> None:
        fees = FeeSchedule()
        expected = 100 * 50.0 * 0.001 + 100 * 50.0 * 0.0000278 + 100 * 0.000145
        self.assertAlmostEqual(fees.estimate(SELL, 100, 50.0), expected)

    def test_execution_summary_totals(self) -> None:
        broker = Broker(BrokerConfig(slippage=0.0))
        broker.execute_order(Order("TEST", BUY, 10), make_bar(100.0))
        broker.execute_order(Order("TEST", SELL, 10), make_bar(110.0))
        summary = broker.get_execution_summary()
        self.assertEqual(summary["total_fills"], 2)
        self.assertAlmostEqual(summary["total_commission"], 1.0 + 1.1)
        self.assertAlmostEqual(summary["avg_commission_per_fill"], 1.05)
        self.assertEqual(summary["total_slippage"], 0.0)


class TestSlippageModes(unittest.TestCase):
    def test_fixed_mode_is_deterministic(self) -> None:
        broker = Broker(BrokerConfig(slippage=0.001, max_slippage=0.01, slippage_mode="fixed"))
        prices = {broker.execute_order(Order("TEST", BUY, 1), make_bar(100.0)).price for _ in range(5)}
        self.assertEqual(len(prices), 1)

    def test_random_mode_reproducible_with_seed(self) -> None:
        cfg = dict(slippage=0.001, max_slippage=0.002, slippage_mode="random", seed=42)
        first = Broker(BrokerConfig(**cfg))
        second = Broker(BrokerConfig(**cfg))
        for _ in range(5):
            a = first.execute_order(Order("TEST", BUY, 1), make_bar(100.0)).price
            b = second.execute_order(Order("TEST", BUY, 1), make_bar(100.0)).price
            self.assertEqual(a, b)
            self.assertGreaterEqual(a, 100.0 * 1.001)
            self.assertLessEqual(a, 100.0 * 1.003)

    def test_quoted_slip_is_reused_by_fill(self) -> None:
        broker = Broker(BrokerConfig(slippage=0.0, max_slippage=0.05, slippage_mode="random", seed=1))
        order = Order("TEST", BUY, 10)
        price, slip = broker.quote(order, make_bar(100.0))
        self.assertGreater(slip, 0.0)
        trade = broker.execute_order(order, make_bar(100.0), slip=slip)
        self.assertEqual(trade.price, price)
        self.assertAlmostEqual(trade.slippage, (price - 100.0) * 10)

    def test_quote_of_unfillable_order_takes_no_draw(self) -> None:
        cfg = dict(slippage=0.0, max_slippage=0.05, slippage_mode="random", seed=3)
        first = Broker(BrokerConfig(**cfg))
        second = Broker(BrokerConfig(**cfg))
        with self.assertRaises(OrderNotFillable):
            first.quote(Order("TEST", BUY, 1, order_type=LIMIT, price=90.0), make_bar(100.0))
        a, _ = first.quote(Order("TEST", BUY, 1), make_bar(100.0))
        b, _ = second.quote(Order("TEST", BUY, 1), make_bar(100.0))
        self.assertEqual(a, b)

    def test_zero_slip_fills_at_close(self) -> None:
        broker = Broker(BrokerConfig(slippage=0.0005))
        trade = broker.execute_order(Order("TEST", SELL, 10), make_bar(110.0), slip=0.0)
        self.assertEqual(trade.price, 110.0)
        self.assertEqual(trade.slippage, 0.0)

    def test_invalid_config_rejected(self) -> None:
        with self.assertRaises(ValueError):
            Broker(BrokerConfig(slippage_mode="noisy"))


if __name__ == '__main__':
    unittest.main()
