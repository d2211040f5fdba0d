"""
Backtest execution engine.

This module contains the `BacktestEngine` class which orchestrates a
run: it pulls data points from a market data source, asks the strategy
for orders, routes them through the simulated broker, applies the fills
to the ledger and records the equity curve.  Once the data runs out any
open position is liquidated at its last mark and the results are
summarised.

Failures are split by severity.  An order that cannot be filled or
afforded is logged and skipped, a strategy error on one data point
discards that data point's orders, and only set-up problems (strategy or
feed initialisation, an empty feed) abort the run with `BacktestError`.
"""

from __future__ import annotations

from enum import Enum
import logging
from typing import List, Optional

from ..config.schema import Config, validate_config
from ..data.feed import MarketDataSource
from ..reporting.results import BacktestResults
from ..strategy.base import Strategy
from ..strategy.context import StrategyContext
from .broker import Broker, FeeSchedule, OrderNotFillable
from .ledger import Portfolio
from .models import BUY, MARKET, SELL, Bar, DataPoint, Order, Trade


logger = logging.getLogger(__name__)

LIQUIDATION_REASON = "end_of_run_liquidation"


class EngineState(Enum):
    CREATED = "created"
    INITIALIZED = "initialized"
    RUNNING = "running"
    LIQUIDATING = "liquidating"
    FINALIZED = "finalized"
    ABORTED = "aborted"


class BacktestError(Exception):
    """Fatal error that aborted a backtest run."""


class BacktestEngine:
    """Replay a market data source against one strategy.

    Parameters
    ----------
    strategy : Strategy
        Decision logic driven by the engine.
    feed : MarketDataSource
        Chronological data points.
    config : Config
        Run configuration; ``initial_capital``, ``broker`` and ``engine``
        are used here.
    broker : Broker, optional
        Defaults to a `Broker` built from ``config.broker``.
    """

    def __init__(
        self,
        strategy: Strategy,
        feed: MarketDataSource,
        config: Config,
        broker: Optional[Broker] = None,
    ) -> None:
        self.config = validate_config(config)
        self.strategy = strategy
        self.feed = feed
        self.broker = broker or Broker(config.broker)
        self.portfolio = Portfolio(config.initial_capital, FeeSchedule.from_config(config.broker))
        self.context = StrategyContext(self.portfolio)
        self.state = EngineState.CREATED

        self.trades: List[Trade] = []
        self.data_points_processed = 0
        self.last_timestamp = None
        self.results: Optional[BacktestResults] = None

    # ------------------------------------------------------------------
    # Run

    def run(self) -> BacktestResults:
        """Execute the backtest and return its results.

        Raises
        ------
        BacktestError
            If the strategy or the feed fails to initialise, the feed has
            no data, or an unexpected error escapes the loop.
        RuntimeError
            If the engine has already been run.
        """
        if self.state is not EngineState.CREATED:
            raise RuntimeError(f"BacktestEngine cannot run from state {self.state.value}")

        logger.info(
            "Starting backtest: strategy=%s capital=%.2f",
            self.strategy.get_name(), self.config.initial_capital,
        )
        try:
            self._initialize()
            self.state = EngineState.RUNNING
            while self.feed.has_more_data():
                data_point = self.feed.get_next_data_point()
                if data_point is None:
                    break
                self._process_data_point(data_point)

            if self.data_points_processed and self.config.engine.liquidate_at_end:
                self.state = EngineState.LIQUIDATING
                self._liquidate()

            self._cleanup()
            self.results = self._finalize()
            self.state = EngineState.FINALIZED
        except BacktestError:
            self.state = EngineState.ABORTED
            raise
        except Exception as exc:
            self.state = EngineState.ABORTED
            logger.error("Backtest aborted: %s", exc)
            raise BacktestError(f"backtest aborted: {exc}") from exc
        finally:
            self.feed.close()

        logger.info(
            "Backtest finished: %d data points, %d trades, final capital %.2f",
            self.data_points_processed, len(self.trades), self.results.final_capital,
        )
        return self.results

    def get_results(self) -> BacktestResults:
        if self.results is None:
            raise RuntimeError("results are only available after a completed run")
        return self.results

    def _initialize(self) -> None:
        try:
            self.strategy.initialize(self.context)
        except Exception as exc:
            logger.error("Strategy initialization failed: %s", exc)
            raise BacktestError(f"failed to initialize strategy: {exc}") from exc

        try:
            self.feed.initialize()
        except Exception as exc:
            logger.error("Data source initialization failed: %s", exc)
            raise BacktestError(f"failed to initialize data source: {exc}") from exc

        if not self.feed.has_more_data():
            logger.error("Data source has no data")
            raise BacktestError("no market data available")
        self.state = EngineState.INITIALIZED

    # ------------------------------------------------------------------
    # Main loop

    def _process_data_point(self, data_point: DataPoint) -> None:
        self.context.update_price_history(data_point)

        try:
            orders = self.strategy.on_data_point(self.context, data_point) or []
        except Exception as exc:
            logger.warning("Strategy error at %s, skipping its orders: %s", data_point.timestamp, exc)
            orders = []

        for order in orders:
            trade = self._process_order(order, data_point)
            if trade is not None:
                self._notify_trade(trade)

        self.portfolio.update_market_values(data_point.bars)
        self.portfolio.add_equity_point(data_point.timestamp)
        self.data_points_processed += 1
        self.last_timestamp = data_point.timestamp

    def _affordable(self, order: Order, price: float) -> bool:
        if order.side == SELL and self.config.engine.allow_short:
            return True
        return self.portfolio.can_afford(order, price)

    def _process_order(self, order: Order, data_point: DataPoint) -> Optional[Trade]:
        """Fill ``order`` against its bar and apply it; ``None`` when skipped."""
        bar = data_point.bars.get(order.symbol)
        if bar is None:
            logger.warning("No bar for %s at %s, skipping order %s", order.symbol, data_point.timestamp, order.id)
            return None

        try:
            price, slip = self.broker.quote(order, bar)
        except OrderNotFillable as exc:
            logger.warning("Order %s not filled: %s", order.id, exc)
            return None

        if not self._affordable(order, price):
            logger.warning(
                "Insufficient funds or position for %s %s %s @ %.4f, skipping order %s",
                order.side, order.quantity, order.symbol, price, order.id,
            )
            return None

        trade = self.broker.execute_order(order, bar, slip=slip)
        self.portfolio.execute_trade(trade, bar.close)
        self.trades.append(trade)
        return trade

    def _notify_trade(self, trade: Trade) -> None:
        try:
            self.strategy.on_trade(self.context, trade)
        except Exception as exc:
            logger.warning("Strategy on_trade error for %s: %s", trade.id, exc)

    # ------------------------------------------------------------------
    # End of run

    def _liquidate(self) -> None:
        """Close every open position at its last mark price."""
        positions = list(self.portfolio.positions.values())
        if positions:
            logger.info("Liquidating %d open positions", len(positions))

        for position in positions:
            price = self.portfolio.mark_prices.get(position.symbol, position.avg_price)
            order = Order(
                symbol=position.symbol,
                side=SELL if position.quantity > 0 else BUY,
                quantity=abs(position.quantity),
                order_type=MARKET,
                strategy=self.strategy.get_name(),
                reason=LIQUIDATION_REASON,
            )
            bar = Bar(
                symbol=position.symbol,
                timestamp=self.last_timestamp,
                open=price,
                high=price,
                low=price,
                close=price,
                volume=0.0,
                timeframe=self.config.timeframe,
            )
            # closes exactly at the mark
            trade = self.broker.execute_order(order, bar, slip=0.0)
            self.portfolio.execute_trade(trade, price)
            self.trades.append(trade)
            logger.info(
                "Liquidated %s %s %s @ %.4f",
                trade.side, trade.quantity, trade.symbol, trade.price,
            )

        self.portfolio.update_market_values({})
        self.portfolio.add_equity_point(self.last_timestamp)

    def _cleanup(self) -> None:
        try:
            self.strategy.cleanup(self.context)
        except Exception as exc:
            logger.warning("Strategy cleanup error: %s", exc)

    def _finalize(self) -> BacktestResults:
        equity_curve = self.portfolio.get_equity_curve()
        results = BacktestResults(
            strategy_name=self.strategy.get_name(),
            initial_capital=self.config.initial_capital,
            start_date=equity_curve[0].timestamp if equity_curve else None,
            end_date=equity_curve[-1].timestamp if equity_curve else None,
            final_capital=self.portfolio.get_total_value(),
            final_cash=self.portfolio.get_cash(),
            total_return=self.portfolio.total_return,
            total_pnl=self.portfolio.total_pnl,
            max_drawdown=self.portfolio.max_drawdown,
            trades=list(self.trades),
            equity_curve=list(equity_curve),
        )
        results.calculate_metrics()
        return results
