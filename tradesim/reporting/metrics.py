"""
Performance metrics calculations.

This module rebuilds round-trip economics from the trade log and
computes summary statistics from it and from the equity curve.

Round trips are reconstructed with FIFO lot matching per symbol: a buy
first covers the oldest short lots, a sell first closes the oldest long
lots, and whatever is left opens a new lot.  Each matched slice yields
one realized P&L sample, net of the entry and exit commission
apportioned to the matched quantity.  Those samples, not the raw buy and
sell fills, are the "trades" counted by the win/loss statistics.

This view is independent of the live ledger, which only keeps an
aggregate weighted-average position per symbol.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
import math
from typing import Deque, Dict, Iterable, List, Optional
import pandas as pd

from ..execution.models import BUY, EquityPoint, Trade


@dataclass
class OpenLot:
    """Unmatched quantity from one fill.  Negative quantity is a short lot."""
    quantity: float
    entry_price: float
    commission: float
    entry_time: Optional[pd.Timestamp] = None


@dataclass
class LotTracker:
    """FIFO queue of open lots for one symbol."""
    symbol: str
    lots: Deque[OpenLot] = field(default_factory=deque)
    realized_pnl: float = 0.0

    def process_trade(self, trade: Trade) -> List[float]:
        """Match ``trade`` against the open lots.

        Returns
        -------
        list of float
            One net realized P&L sample per lot slice closed, oldest first.
        """
        samples: List[float] = []
        is_buy = trade.side == BUY
        remaining = trade.quantity

        while remaining > 0 and self.lots:
            lot = self.lots[0]
            # a buy closes short lots, a sell closes long lots
            if (lot.quantity < 0) != is_buy:
                break

            lot_size = abs(lot.quantity)
            matched = min(lot_size, remaining)
            if is_buy:
                gross = (lot.entry_price - trade.price) * matched
            else:
                gross = (trade.price - lot.entry_price) * matched
            entry_commission = lot.commission * matched / lot_size
            exit_commission = trade.commission * matched / trade.quantity
            net = gross - entry_commission - exit_commission

            samples.append(net)
            self.realized_pnl += net

            if matched == lot_size:
                self.lots.popleft()
            else:
                lot.quantity += matched if lot.quantity < 0 else -matched
                lot.commission -= entry_commission
            remaining -= matched

        if remaining > 0:
            self.lots.append(OpenLot(
                quantity=remaining if is_buy else -remaining,
                entry_price=trade.price,
                commission=trade.commission * remaining / trade.quantity,
                entry_time=trade.timestamp,
            ))
        return samples

    @property
    def net_quantity(self) -> float:
        return sum(lot.quantity for lot in self.lots)

    def unrealized_pnl(self, price: float) -> float:
        return sum((price - lot.entry_price) * lot.quantity for lot in self.lots)


def match_trades(trades: Iterable[Trade]) -> List[float]:
    """Return the realized P&L samples of ``trades`` in chronological order."""
    trackers: Dict[str, LotTracker] = {}
    samples: List[float] = []
    for trade in trades:
        tracker = trackers.get(trade.symbol)
        if tracker is None:
            tracker = trackers[trade.symbol] = LotTracker(symbol=trade.symbol)
        samples.extend(tracker.process_trade(trade))
    return samples


def period_returns(equity_curve: List[EquityPoint]) -> List[float]:
    """Simple returns between consecutive equity points."""
    returns: List[float] = []
    for prev, curr in zip(equity_curve, equity_curve[1:]):
        returns.append((curr.equity - prev.equity) / prev.equity if prev.equity > 0 else 0.0)
    return returns


def sharpe_ratio(returns: List[float]) -> float:
    """Mean over sample standard deviation, zero risk-free rate."""
    if len(returns) <= 1:
        return 0.0
    mean = sum(returns) / len(returns)
    variance = sum((r - mean) ** 2 for r in returns) / (len(returns) - 1)
    std_dev = math.sqrt(variance)
    if std_dev <= 0:
        return 0.0
    return mean / std_dev


def sortino_ratio(returns: List[float]) -> float:
    """Mean over downside deviation (root mean square of negative returns)."""
    if not returns:
        return 0.0
    downside = [r for r in returns if r < 0]
    if not downside:
        return 0.0
    downside_dev = math.sqrt(sum(r * r for r in downside) / len(downside))
    if downside_dev <= 0:
        return 0.0
    mean = sum(returns) / len(returns)
    return mean / downside_dev


def value_at_risk(returns: List[float], level: float = 0.95) -> tuple:
    """Historical VaR and expected shortfall of ``returns`` as positive losses."""
    if not returns:
        return 0.0, 0.0
    series = pd.Series(returns, dtype=float)
    cutoff = series.quantile(1 - level)
    tail = series[series <= cutoff]
    var = max(0.0, -float(cutoff))
    shortfall = max(0.0, -float(tail.mean())) if not tail.empty else 0.0
    return var, shortfall


def empty_metrics() -> dict:
    return {
        'total_trades': 0,
        'winning_trades': 0,
        'losing_trades': 0,
        'win_rate': 0.0,
        'avg_win': 0.0,
        'avg_loss': 0.0,
        'largest_win': 0.0,
        'largest_loss': 0.0,
        'profit_factor': 0.0,
        'sharpe_ratio': 0.0,
        'sortino_ratio': 0.0,
        'max_drawdown': 0.0,
        'max_drawdown_pct': 0.0,
        'calmar_ratio': 0.0,
        'var_95': 0.0,
        'expected_shortfall': 0.0,
    }


def compute_metrics(
    trades: List[Trade],
    equity_curve: List[EquityPoint],
    total_return: float = 0.0,
    max_drawdown: float = 0.0,
) -> dict:
    """Compute a set of summary statistics for the backtest.

    Parameters
    ----------
    trades : list of Trade
        The full fill log in execution order.
    equity_curve : list of EquityPoint
        One point per processed data point plus the liquidation point.
    total_return : float
        Total return in percent, used for the Calmar ratio.
    max_drawdown : float
        Maximum drawdown as a fraction of the peak value.

    Returns
    -------
    dict
        Dictionary of performance metrics.  Every value is zero when the
        trade log contains no completed round trip.
    """
    samples = match_trades(trades)
    if not samples:
        return empty_metrics()

    wins = [pnl for pnl in samples if pnl > 0]
    losses = [pnl for pnl in samples if pnl < 0]
    gross_profit = sum(wins)
    gross_loss = sum(losses)

    metrics = empty_metrics()
    metrics.update({
        'total_trades': len(samples),
        'winning_trades': len(wins),
        'losing_trades': len(losses),
        'win_rate': len(wins) / len(samples) * 100,
        'avg_win': gross_profit / len(wins) if wins else 0.0,
        'avg_loss': gross_loss / len(losses) if losses else 0.0,
        'largest_win': max(wins) if wins else 0.0,
        'largest_loss': min(losses) if losses else 0.0,
        'profit_factor': gross_profit / -gross_loss if gross_loss < 0 else 0.0,
        'max_drawdown': max_drawdown,
        'max_drawdown_pct': max_drawdown * 100,
        'calmar_ratio': total_return / (max_drawdown * 100) if max_drawdown > 0 else 0.0,
    })

    if len(equity_curve) > 1:
        returns = period_returns(equity_curve)
        metrics['sharpe_ratio'] = sharpe_ratio(returns)
        metrics['sortino_ratio'] = sortino_ratio(returns)
        metrics['var_95'], metrics['expected_shortfall'] = value_at_risk(returns)

    return metrics
