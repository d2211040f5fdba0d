import os
import sys

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pandas as pd

from tradesim.execution.ledger import Portfolio
from tradesim.execution.models import BUY, Bar, DataPoint, Trade
from tradesim.strategy.context import InsufficientDataError, StrategyContext

import unittest


START = pd.Timestamp("2024-01-01", tz="UTC")


def feed_closes(ctx: StrategyContext, closes, symbol: str = "AAA") -> None:
    for i, close in enumerate(closes):
        ts = START + pd.Timedelta(days=i)
        bar = Bar(symbol=symbol, timestamp=ts, open=close, high=close, low=close, close=close)
        ctx.update_price_history(DataPoint(timestamp=ts, bars={symbol: bar}))


class TestIndicators(unittest.TestCase):
    def setUp(self) -> None:
        self.ctx = StrategyContext(Portfolio(10_000.0))

    def test_missing_history_raises(self) -> None:
        with self.assertRaises(InsufficientDataError):
            self.ctx.sma("AAA", 5)
        with self.assertRaises(InsufficientDataError):
            self.ctx.get_last_bar("AAA")

    def test_short_history_raises(self) -> None:
        feed_closes(self.ctx, [1.0, 2.0, 3.0])
        with self.assertRaises(InsufficientDataError):
            self.ctx.sma("AAA", 5)
        # still a ValueError for callers that do not know the subclass
        with self.assertRaises(ValueError):
            self.ctx.rsi("AAA", 14)

    def test_sma(self) -> None:
        feed_closes(self.ctx, [1.0, 2.0, 3.0, 4.0, 5.0])
        self.assertAlmostEqual(self.ctx.sma("AAA", 3), 4.0)
        self.assertAlmostEqual(self.ctx.sma("AAA", 5), 3.0)

    def test_ema_seeded_with_sma(self) -> None:
        feed_closes(self.ctx, [1.0, 2.0, 3.0, 4.0])
        # seed (1+2+3)/3 = 2, then alpha 0.5: 0.5*4 + 0.5*2 = 3
        self.assertAlmostEqual(self.ctx.ema("AAA", 3), 3.0)

    def test_rsi_bounds(self) -> None:
        feed_closes(self.ctx, [float(i) for i in range(1, 20)])
        self.assertEqual(self.ctx.rsi("AAA", 14), 100.0)
        other = StrategyContext(Portfolio(10_000.0))
        feed_closes(other, [10.0, 11.0, 10.0, 11.0, 10.0])
        self.assertAlmostEqual(other.rsi("AAA", 4), 50.0)

    def test_macd_requires_fast_below_slow(self) -> None:
        feed_closes(self.ctx, [float(i) for i in range(1, 40)])
        macd, signal, hist = self.ctx.macd("AAA")
        self.assertGreater(macd, 0.0)
        self.assertAlmostEqual(hist, macd - signal)
        with self.assertRaises(ValueError):
            self.ctx.macd("AAA", fast=26, slow=12)

    def test_volatility(self) -> None:
        feed_closes(self.ctx, [100.0] * 25)
        self.assertEqual(self.ctx.volatility("AAA"), 0.0)

    def test_history_capped(self) -> None:
        ctx = StrategyContext(Portfolio(10_000.0), history_size=5)
        feed_closes(ctx, [float(i) for i in range(10)])
        bars = ctx.get_bars("AAA")
        self.assertEqual(len(bars), 5)
        self.assertEqual(bars[-1].close, 9.0)
        self.assertEqual([b.close for b in ctx.get_bars("AAA", 2)], [8.0, 9.0])

def feed_bars(ctx: StrategyContext, rows, symbol: str = "AAA") -> None:
    """Feed ``(high, low, close)`` rows as consecutive daily bars."""
    for i, (high, low, close) in enumerate(rows):
        ts = START + pd.Timedelta(days=i)
        bar = Bar(symbol=symbol, timestamp=ts, open=close, high=high, low=low, close=close)
        ctx.update_price_history(DataPoint(timestamp=ts, bars={symbol: bar}))


class TestRangeIndicators(unittest.TestCase):
    def setUp(self) -> None:
        self.ctx = StrategyContext(Portfolio(10_000.0))

    def test_atr_and_adx_on_steady_uptrend(self) -> None:
        feed_bars(self.ctx, [(c + 1.0, c - 1.0, float(c)) for c in range(10, 25)])
        self.assertAlmostEqual(self.ctx.atr("AAA", 14), 2.0)
        # every bar a higher high and a higher low: all movement is directional
        self.assertAlmostEqual(self.ctx.adx("AAA", 14), 100.0)

    def test_adx_without_range_is_zero(self) -> None:
        feed_closes(self.ctx, [50.0] * 15)
        self.assertEqual(self.ctx.adx("AAA", 14), 0.0)

    def test_range_indicators_need_history(self) -> None:
        feed_bars(self.ctx, [(c + 1.0, c - 1.0, float(c)) for c in range(10, 24)])
        with self.assertRaises(InsufficientDataError):
            self.ctx.adx("AAA", 14)
        with self.assertRaises(InsufficientDataError):
            self.ctx.atr("AAA", 14)
        with self.assertRaises(InsufficientDataError):
            self.ctx.parabolic_sar("BBB")
        with self.assertRaises(ValueError):
            self.ctx.parabolic_sar("AAA", step=0.3, max_step=0.2)

    def test_supertrend_band_follows_close(self) -> None:
        feed_bars(self.ctx, [(c + 1.0, c - 1.0, c + 0.5) for c in range(10, 21)])
        # close above the midpoint: lower band 20 - 3 * 2
        self.assertAlmostEqual(self.ctx.supertrend("AAA", 10, 3.0), 14.0)

        other = StrategyContext(Portfolio(10_000.0))
        feed_bars(other, [(c + 1.0, c - 1.0, c - 0.5) for c in range(10, 21)])
        # close below the midpoint: upper band 20 + 3 * 2.5
        self.assertAlmostEqual(other.supertrend("AAA", 10, 3.0), 27.5)

    def test_parabolic_sar_trails_uptrend(self) -> None:
        feed_bars(self.ctx, [(11.0, 9.0, 10.0), (12.0, 10.0, 11.0)])
        self.assertEqual(self.ctx.parabolic_sar("AAA"), 9.0)

        trend = StrategyContext(Portfolio(10_000.0))
        feed_bars(trend, [(i + 1.0, float(i), i + 0.5) for i in range(10)])
        sar = trend.parabolic_sar("AAA")
        self.assertGreater(sar, 0.0)
        self.assertLess(sar, 9.0)

    def test_parabolic_sar_reverses_on_break(self) -> None:
        feed_bars(self.ctx, [(10.0, 9.0, 9.5), (11.0, 10.0, 10.5), (12.0, 11.0, 11.5), (8.0, 5.0, 6.0)])
        # low of 5 breaks the rising SAR, which flips to the prior extreme high
        self.assertEqual(self.ctx.parabolic_sar("AAA"), 12.0)



class TestPortfolioAccess(unittest.TestCase):
    def test_read_only_views(self) -> None:
        portfolio = Portfolio(10_000.0)
        portfolio.execute_trade(
            Trade(symbol="AAA", side=BUY, quantity=10, price=100.0, timestamp=START), 100.0)
        ctx = StrategyContext(portfolio)
        self.assertEqual(ctx.get_cash(), 9_000.0)

        position = ctx.get_position("AAA")
        position.quantity = 0
        self.assertEqual(portfolio.get_position("AAA").quantity, 10)
        self.assertIsNone(ctx.get_position("BBB"))

        snapshot = ctx.get_portfolio()
        self.assertEqual(snapshot.cash, 9_000.0)
        self.assertIn("AAA", snapshot.positions)

    def test_log_writes_to_strategy_logger(self) -> None:
        ctx = StrategyContext(Portfolio(1.0))
        with self.assertLogs("tradesim.strategy", level="INFO") as logs:
            ctx.log("info", "Signal", symbol="AAA", price=1.5)
        self.assertIn("Signal symbol=AAA price=1.5", logs.output[0])


if __name__ == '__main__':
    unittest.main()
