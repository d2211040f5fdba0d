"""
Strategy context.

The context is what a strategy sees of the running backtest: read-only
views of the ledger, a rolling window of recent bars per symbol and a
handful of technical indicators computed from that window.  Indicator
lookups never fall back to a default value; if the history is too short
they raise `InsufficientDataError`.
"""

from __future__ import annotations

from collections import deque
import copy
import logging
from typing import Deque, Dict, List, Optional, Tuple
import pandas as pd

from ..execution.models import Bar, DataPoint, PortfolioSnapshot, Position


strategy_logger = logging.getLogger("tradesim.strategy")

HISTORY_SIZE = 200


class InsufficientDataError(ValueError):
    """Raised when an indicator needs more history than is available."""


class StrategyContext:
    """Read-only portfolio access plus indicator lookups.

    Parameters
    ----------
    portfolio : Portfolio
        The ledger of the running backtest.  Only its accessors are used.
    history_size : int
        Number of bars kept per symbol.
    """

    def __init__(self, portfolio, history_size: int = HISTORY_SIZE) -> None:
        self._portfolio = portfolio
        self.history_size = history_size
        self._history: Dict[str, Deque[Bar]] = {}

    # ------------------------------------------------------------------
    # Portfolio access

    def get_cash(self) -> float:
        return self._portfolio.get_cash()

    def get_position(self, symbol: str) -> Optional[Position]:
        position = self._portfolio.get_position(symbol)
        return copy.copy(position) if position is not None else None

    def get_portfolio(self) -> PortfolioSnapshot:
        return self._portfolio.snapshot()

    # ------------------------------------------------------------------
    # Price history

    def update_price_history(self, data_point: DataPoint) -> None:
        """Append every bar of ``data_point`` to its symbol's window."""
        for symbol, bar in data_point.bars.items():
            history = self._history.get(symbol)
            if history is None:
                history = deque(maxlen=self.history_size)
                self._history[symbol] = history
            history.append(bar)

    def get_bars(self, symbol: str, limit: Optional[int] = None) -> List[Bar]:
        history = self._history.get(symbol)
        if not history:
            raise InsufficientDataError(f"no price history available for symbol {symbol}")
        bars = list(history)
        return bars[-limit:] if limit else bars

    def get_last_bar(self, symbol: str) -> Bar:
        return self.get_bars(symbol, 1)[-1]

    def _closes(self, symbol: str, needed: int) -> pd.Series:
        history = self._history.get(symbol)
        if not history:
            raise InsufficientDataError(f"no price history available for symbol {symbol}")
        if len(history) < needed:
            raise InsufficientDataError(
                f"insufficient data for {symbol}: need {needed} periods, have {len(history)}")
        return pd.Series([bar.close for bar in history], dtype=float)

    def _bars_frame(self, symbol: str, needed: int) -> pd.DataFrame:
        self._closes(symbol, needed)
        history = self._history[symbol]
        return pd.DataFrame(
            {
                "high": [bar.high for bar in history],
                "low": [bar.low for bar in history],
                "close": [bar.close for bar in history],
            },
            dtype=float,
        )

    @staticmethod
    def _true_ranges(frame: pd.DataFrame) -> pd.Series:
        """True range of every bar after the first."""
        prev_close = frame["close"].shift()
        ranges = pd.concat(
            [
                frame["high"] - frame["low"],
                (frame["high"] - prev_close).abs(),
                (frame["low"] - prev_close).abs(),
            ],
            axis=1,
        ).max(axis=1)
        return ranges.iloc[1:]

    # ------------------------------------------------------------------
    # Indicators

    def sma(self, symbol: str, period: int) -> float:
        closes = self._closes(symbol, period)
        return float(closes.iloc[-period:].mean())

    def ema(self, symbol: str, period: int) -> float:
        """Exponential moving average seeded with the SMA of the first window."""
        closes = self._closes(symbol, period)
        seeded = pd.concat(
            [pd.Series([closes.iloc[:period].mean()]), closes.iloc[period:]],
            ignore_index=True,
        )
        return float(seeded.ewm(span=period, adjust=False).mean().iloc[-1])

    def rsi(self, symbol: str, period: int = 14) -> float:
        changes = self._closes(symbol, period + 1).diff().iloc[-period:]
        avg_gain = changes.clip(lower=0).mean()
        avg_loss = -changes.clip(upper=0).mean()
        if avg_loss == 0:
            return 100.0
        rs = avg_gain / avg_loss
        return float(100 - 100 / (1 + rs))

    def macd(self, symbol: str, fast: int = 12, slow: int = 26, signal: int = 9) -> Tuple[float, float, float]:
        """Return ``(macd, signal, histogram)`` for the latest bar."""
        if fast >= slow:
            raise ValueError(f"fast period ({fast}) must be shorter than slow period ({slow})")
        closes = self._closes(symbol, slow)
        macd_line = (closes.ewm(span=fast, adjust=False).mean()
                     - closes.ewm(span=slow, adjust=False).mean())
        signal_line = macd_line.ewm(span=signal, adjust=False).mean()
        macd_value = float(macd_line.iloc[-1])
        signal_value = float(signal_line.iloc[-1])
        return macd_value, signal_value, macd_value - signal_value

    def volatility(self, symbol: str, period: int = 20) -> float:
        """Sample standard deviation of the last ``period`` close-to-close returns."""
        if period < 2:
            raise ValueError("volatility needs a period of at least 2")
        returns = self._closes(symbol, period + 1).pct_change().iloc[-period:]
        return float(returns.std())

    def atr(self, symbol: str, period: int = 14) -> float:
        """Mean true range over the last ``period`` bars."""
        if period < 1:
            raise ValueError("atr needs a period of at least 1")
        frame = self._bars_frame(symbol, period + 1)
        return float(self._true_ranges(frame).iloc[-period:].mean())

    def adx(self, symbol: str, period: int = 14) -> float:
        """Directional index of the last ``period`` bars (0-100).

        The directional movements and true ranges are averaged over the
        window without Wilder smoothing.  A window with no range returns 0.
        """
        if period < 1:
            raise ValueError("adx needs a period of at least 1")
        frame = self._bars_frame(symbol, period + 1)
        up_move = frame["high"].diff()
        down_move = -frame["low"].diff()
        plus_dm = up_move.where((up_move > down_move) & (up_move > 0), 0.0).iloc[-period:]
        minus_dm = down_move.where((down_move >= up_move) & (down_move > 0), 0.0).iloc[-period:]

        atr = self._true_ranges(frame).iloc[-period:].mean()
        if atr == 0:
            return 0.0
        plus_di = plus_dm.mean() / atr * 100
        minus_di = minus_dm.mean() / atr * 100
        if plus_di + minus_di == 0:
            return 0.0
        return float(abs(plus_di - minus_di) / (plus_di + minus_di) * 100)

    def supertrend(self, symbol: str, period: int = 10, multiplier: float = 3.0) -> float:
        """SuperTrend line of the latest bar.

        Returns the lower band ``hl2 - multiplier * atr`` while the close is
        above the bar midpoint and the upper band otherwise.
        """
        if multiplier <= 0:
            raise ValueError("supertrend multiplier must be positive")
        atr = self.atr(symbol, period)
        last = self.get_last_bar(symbol)
        hl2 = (last.high + last.low) / 2
        if last.close > hl2:
            return hl2 - multiplier * atr
        return hl2 + multiplier * atr

    def parabolic_sar(self, symbol: str, step: float = 0.02, max_step: float = 0.2) -> float:
        """Parabolic stop-and-reverse level for the latest bar.

        The trend starts from the direction of the first two highs and the
        acceleration factor grows by ``step`` on each new extreme, capped
        at ``max_step``.
        """
        if step <= 0 or max_step < step:
            raise ValueError("parabolic_sar needs 0 < step <= max_step")
        frame = self._bars_frame(symbol, 2)
        highs = frame["high"].tolist()
        lows = frame["low"].tolist()

        rising = highs[1] >= highs[0]
        sar = lows[0] if rising else highs[0]
        extreme = max(highs[0], highs[1]) if rising else min(lows[0], lows[1])
        factor = step
        for i in range(2, len(highs)):
            sar += factor * (extreme - sar)
            if rising:
                sar = min(sar, lows[i - 1], lows[i - 2])
                if lows[i] < sar:
                    rising, sar, extreme, factor = False, extreme, lows[i], step
                elif highs[i] > extreme:
                    extreme = highs[i]
                    factor = min(factor + step, max_step)
            else:
                sar = max(sar, highs[i - 1], highs[i - 2])
                if highs[i] > sar:
                    rising, sar, extreme, factor = True, extreme, highs[i], step
                elif lows[i] < extreme:
                    extreme = lows[i]
                    factor = min(factor + step, max_step)
        return float(sar)

    # ------------------------------------------------------------------
    # Logging

    def log(self, level: str, message: str, **fields) -> None:
        """Log ``message`` with ``key=value`` fields on the strategy logger."""
        lvl = getattr(logging, level.upper(), logging.INFO)
        if fields:
            details = " ".join(f"{key}={value}" for key, value in fields.items())
            strategy_logger.log(lvl, "%s %s", message, details)
        else:
            strategy_logger.log(lvl, "%s", message)
