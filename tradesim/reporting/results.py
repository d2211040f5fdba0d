"""
Backtest results container and text summary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional
import pandas as pd

from ..execution.models import EquityPoint, Trade
from ..utils.timeutils import format_date
from .metrics import LotTracker, compute_metrics, empty_metrics


TRADE_HEADER = ("#", "Time", "Symbol", "Side", "Quantity", "Price", "Value",
                "Commission", "SecFee", "ActFee", "Slippage", "P&L", "Reason")
TRADE_ROW = "{:<4} {:<16} {:<8} {:<6} {:>10} {:>10} {:>12} {:>10} {:>8} {:>8} {:>8} {:>10} {:<20}"


@dataclass
class BacktestResults:
    """Everything a finished run hands back to the caller."""
    strategy_name: str
    initial_capital: float
    start_date: Optional[pd.Timestamp] = None
    end_date: Optional[pd.Timestamp] = None
    final_capital: float = 0.0
    final_cash: float = 0.0
    total_return: float = 0.0
    total_pnl: float = 0.0
    max_drawdown: float = 0.0
    trades: List[Trade] = field(default_factory=list)
    equity_curve: List[EquityPoint] = field(default_factory=list)
    metrics: Dict[str, float] = field(default_factory=empty_metrics)

    def calculate_metrics(self) -> Dict[str, float]:
        self.metrics = compute_metrics(
            self.trades, self.equity_curve, self.total_return, self.max_drawdown,
        )
        return self.metrics

    def trade_pnls(self) -> List[Optional[float]]:
        """Realized FIFO P&L per trade, ``None`` for fills that only open lots."""
        trackers: Dict[str, LotTracker] = {}
        pnls: List[Optional[float]] = []
        for trade in self.trades:
            tracker = trackers.setdefault(trade.symbol, LotTracker(symbol=trade.symbol))
            samples = tracker.process_trade(trade)
            pnls.append(sum(samples) if samples else None)
        return pnls

    def summary(self) -> str:
        """Human-readable report of the run."""
        m = self.metrics
        win_rate = m['win_rate']
        loss_rate = (m['losing_trades'] / m['total_trades'] * 100) if m['total_trades'] else 0.0
        lines = [
            f"Backtest Results for {self.strategy_name}",
            "=======================",
            f"Period: {format_date(self.start_date)} to {format_date(self.end_date)}",
            f"Initial Capital: ${self.initial_capital:.2f}",
            f"Final Capital: ${self.final_capital:.2f}",
            f"Final Cash: ${self.final_cash:.2f}",
            f"Total Return: {self.total_return:.2f}%",
            f"Total P&L: ${self.total_pnl:.2f}",
            f"Max Drawdown: {self.max_drawdown * 100:.2f}%",
            "",
            "Trade Statistics:",
            f"- Total Trades: {m['total_trades']}",
            f"- Winning Trades: {m['winning_trades']} ({win_rate:.1f}%)",
            f"- Losing Trades: {m['losing_trades']} ({loss_rate:.1f}%)",
            f"- Average Win: ${m['avg_win']:.2f}",
            f"- Average Loss: ${m['avg_loss']:.2f}",
            f"- Largest Win: ${m['largest_win']:.2f}",
            f"- Largest Loss: ${m['largest_loss']:.2f}",
            f"- Profit Factor: {m['profit_factor']:.2f}",
            "",
            "Risk Metrics:",
            f"- Sharpe Ratio: {m['sharpe_ratio']:.2f}",
            f"- Sortino Ratio: {m['sortino_ratio']:.2f}",
            f"- Calmar Ratio: {m['calmar_ratio']:.2f}",
            f"- VaR (95%): {m['var_95'] * 100:.2f}%",
            f"- Expected Shortfall: {m['expected_shortfall'] * 100:.2f}%",
            "",
            "All Trades:",
            "===========",
        ]

        if not self.trades:
            lines.append("No trades executed.")
            return "\n".join(lines) + "\n"

        lines.append(TRADE_ROW.format(*TRADE_HEADER))
        totals = dict(value=0.0, commission=0.0, sec_fee=0.0, activity_fee=0.0, slippage=0.0, pnl=0.0)
        for i, (trade, pnl) in enumerate(zip(self.trades, self.trade_pnls()), start=1):
            lines.append(TRADE_ROW.format(
                i,
                pd.Timestamp(trade.timestamp).strftime("%Y-%m-%d %H:%M"),
                trade.symbol,
                trade.side,
                f"{trade.quantity:.2f}",
                f"{trade.price:.2f}",
                f"{trade.notional:.2f}",
                f"{trade.commission:.2f}",
                f"{trade.sec_fee:.2f}",
                f"{trade.activity_fee:.2f}",
                f"{trade.slippage:.2f}",
                "Open" if pnl is None else f"{pnl:.2f}",
                trade.reason,
            ))
            totals['value'] += trade.notional
            totals['commission'] += trade.commission
            totals['sec_fee'] += trade.sec_fee
            totals['activity_fee'] += trade.activity_fee
            totals['slippage'] += trade.slippage
            totals['pnl'] += pnl or 0.0

        lines.append(TRADE_ROW.format(
            "", "", "TOTAL", "", "", "",
            f"{totals['value']:.2f}",
            f"{totals['commission']:.2f}",
            f"{totals['sec_fee']:.2f}",
            f"{totals['activity_fee']:.2f}",
            f"{totals['slippage']:.2f}",
            f"{totals['pnl']:.2f}",
            "",
        ))
        return "\n".join(lines) + "\n"
