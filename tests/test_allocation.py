import os
import sys

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from tradesim.config.schema import AllocationConfig
from tradesim.execution.models import BUY, MARKET
from tradesim.strategy.allocation import CapitalAllocator, TradingSignal

import unittest


class CashOnly:
    """Minimal context exposing only the cash accessor."""

    def __init__(self, cash: float) -> None:
        self.cash = cash

    def get_cash(self) -> float:
        return self.cash


def signals():
    return [
        TradingSignal("AAA", price=10.0, confidence=0.9, priority=1.0, signal_type="breakout"),
        TradingSignal("BBB", price=25.0, confidence=0.5, priority=3.0, signal_type="breakout"),
        TradingSignal("CCC", price=40.0, confidence=0.7, priority=2.0, signal_type="breakout"),
    ]


class TestCashBound(unittest.TestCase):
    def test_every_policy_stays_within_tradable_cash(self) -> None:
        cash = 10_000.0
        for method in ("equal", "confidence", "priority", "sequential"):
            for fractional in (False, True):
                cfg = AllocationConfig(method=method, allow_fractional=fractional)
                allocator = CapitalAllocator(cfg)
                orders = allocator.allocate_capital(CashOnly(cash), signals(), "demo")
                spent = sum(o.quantity * o.reference_price for o in orders)
                tradable = cash * (1 - cfg.slippage_buffer)
                with self.subTest(method=method, fractional=fractional):
                    self.assertTrue(orders)
                    self.assertLessEqual(spent, tradable + 1e-9)

    def test_orders_are_market_buys_tagged_with_signal_kind(self) -> None:
        orders = CapitalAllocator().allocate_capital(CashOnly(10_000.0), signals(), "demo")
        for order in orders:
            self.assertEqual(order.side, BUY)
            self.assertEqual(order.order_type, MARKET)
            self.assertEqual(order.reason, "breakout")
            self.assertEqual(order.strategy, "demo")


class TestDegenerateInput(unittest.TestCase):
    def test_cash_at_buffer_yields_nothing(self) -> None:
        allocator = CapitalAllocator(AllocationConfig(min_cash_buffer=100.0))
        self.assertEqual(allocator.allocate_capital(CashOnly(100.0), signals(), "demo"), [])
        self.assertEqual(allocator.allocate_capital(CashOnly(50.0), signals(), "demo"), [])

    def test_no_signals(self) -> None:
        self.assertEqual(CapitalAllocator().allocate_capital(CashOnly(10_000.0), [], "demo"), [])

    def test_unaffordable_price_dropped(self) -> None:
        allocator = CapitalAllocator(AllocationConfig(method="equal"))
        expensive = [TradingSignal("BIG", price=1_000_000.0)]
        self.assertEqual(allocator.allocate_capital(CashOnly(10_000.0), expensive, "demo"), [])


class TestPolicies(unittest.TestCase):
    def test_ranking(self) -> None:
        by_confidence = CapitalAllocator(AllocationConfig(method="confidence")).rank(signals())
        self.assertEqual([s.symbol for s in by_confidence], ["AAA", "CCC", "BBB"])
        by_priority = CapitalAllocator(AllocationConfig(method="priority")).rank(signals())
        self.assertEqual([s.symbol for s in by_priority], ["BBB", "CCC", "AAA"])
        unordered = CapitalAllocator(AllocationConfig(method="equal")).rank(signals())
        self.assertEqual([s.symbol for s in unordered], ["AAA", "BBB", "CCC"])

    def test_max_positions_truncates(self) -> None:
        cfg = AllocationConfig(method="confidence", max_positions=2)
        orders = CapitalAllocator(cfg).allocate_capital(CashOnly(10_000.0), signals(), "demo")
        self.assertEqual([o.symbol for o in orders], ["AAA", "CCC"])

    def test_equal_split(self) -> None:
        cfg = AllocationConfig(method="equal", slippage_buffer=0.0, position_size=0.9)
        orders = CapitalAllocator(cfg).allocate_capital(CashOnly(3_000.0), signals(), "demo")
        # 3,000 * 0.9 / 3 = 900 per signal
        self.assertEqual({o.symbol: o.quantity for o in orders}, {"AAA": 90, "BBB": 36, "CCC": 22})

    def test_confidence_weighted_last_takes_remainder(self) -> None:
        cfg = AllocationConfig(method="confidence", slippage_buffer=0.0, position_size=1.0,
                               min_cash_buffer=0.0, allow_fractional=True)
        orders = CapitalAllocator(cfg).allocate_capital(CashOnly(2_100.0), signals(), "demo")
        spent = {o.symbol: o.quantity * o.reference_price for o in orders}
        self.assertAlmostEqual(spent["AAA"], 2_100.0 * 0.9 / 2.1)
        self.assertAlmostEqual(spent["CCC"], 2_100.0 * 0.7 / 2.1)
        self.assertAlmostEqual(sum(spent.values()), 2_100.0)

    def test_sequential_first_signal_takes_position_size(self) -> None:
        cfg = AllocationConfig(method="sequential", slippage_buffer=0.0, position_size=0.5,
                               min_cash_buffer=0.0)
        orders = CapitalAllocator(cfg).allocate_capital(CashOnly(1_000.0), signals(), "demo")
        # AAA gets 0.5 * 1,000, CCC gets 0.5 of the remaining 500
        self.assertEqual(orders[0].symbol, "AAA")
        self.assertEqual(orders[0].quantity, 50)
        self.assertEqual(orders[1].symbol, "CCC")
        self.assertEqual(orders[1].quantity, 6)

    def test_sequential_stops_at_buffer(self) -> None:
        cfg = AllocationConfig(method="sequential", slippage_buffer=0.0, position_size=1.0,
                               min_cash_buffer=100.0)
        orders = CapitalAllocator(cfg).allocate_capital(CashOnly(1_000.0), signals(), "demo")
        self.assertEqual([o.symbol for o in orders], ["AAA"])

    def test_whole_units_unless_fractional(self) -> None:
        cfg = AllocationConfig(method="equal", slippage_buffer=0.0, position_size=1.0)
        sig = [TradingSignal("AAA", price=30.0)]
        whole = CapitalAllocator(cfg).allocate_capital(CashOnly(1_000.0), sig, "demo")
        self.assertEqual(whole[0].quantity, 33)
        cfg.allow_fractional = True
        fractional = CapitalAllocator(cfg).allocate_capital(CashOnly(1_000.0), sig, "demo")
        self.assertAlmostEqual(fractional[0].quantity, 1_000.0 / 30.0)


class TestVolatilityAdjustment(unittest.TestCase):
    def test_scaling_thresholds(self) -> None:
        allocator = CapitalAllocator(AllocationConfig(high_volatility=0.03, medium_volatility=0.02))
        self.assertEqual(allocator.volatility_adjustment(0.05), 0.7)
        self.assertEqual(allocator.volatility_adjustment(0.025), 0.85)
        self.assertEqual(allocator.volatility_adjustment(0.01), 1.0)

    def test_lookup_scales_quantity(self) -> None:
        cfg = AllocationConfig(method="equal", slippage_buffer=0.0, position_size=1.0,
                               volatility_adjust=True)
        allocator = CapitalAllocator(cfg, volatility_lookup=lambda symbol: 0.05)
        orders = allocator.allocate_capital(CashOnly(1_000.0), [TradingSignal("AAA", price=10.0)], "demo")
        self.assertEqual(orders[0].quantity, 70)

    def test_invalid_config(self) -> None:
        with self.assertRaises(ValueError):
            CapitalAllocator(AllocationConfig(method="random"))
        with self.assertRaises(ValueError):
            CapitalAllocator(AllocationConfig(position_size=1.5))


if __name__ == '__main__':
    unittest.main()
