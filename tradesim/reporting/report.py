"""
Report generation utilities.

This module turns backtest results into artefacts on disk: CSV files of
the fills and of the equity curve, a JSON summary of the run and its
performance metrics and a PNG chart of the equity curve.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Optional
import pandas as pd
import matplotlib

# Use non-interactive backend for environments without display
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from .results import BacktestResults


logger = logging.getLogger(__name__)

TRADE_COLUMNS = [
    'id', 'order_id', 'timestamp', 'symbol', 'side', 'quantity', 'price', 'value',
    'commission', 'sec_fee', 'activity_fee', 'slippage', 'pnl', 'strategy', 'reason',
]


def _isoformat(ts) -> Optional[str]:
    return pd.Timestamp(ts).isoformat() if ts is not None else None


def trades_frame(results: BacktestResults) -> pd.DataFrame:
    """One row per fill with its FIFO realized P&L (empty for opening fills)."""
    rows = [
        {
            'id': t.id,
            'order_id': t.order_id,
            'timestamp': _isoformat(t.timestamp),
            'symbol': t.symbol,
            'side': t.side,
            'quantity': t.quantity,
            'price': t.price,
            'value': t.notional,
            'commission': t.commission,
            'sec_fee': t.sec_fee,
            'activity_fee': t.activity_fee,
            'slippage': t.slippage,
            'pnl': pnl,
            'strategy': t.strategy,
            'reason': t.reason,
        }
        for t, pnl in zip(results.trades, results.trade_pnls())
    ]
    return pd.DataFrame(rows, columns=TRADE_COLUMNS)


def equity_frame(results: BacktestResults) -> pd.DataFrame:
    rows = [{'timestamp': _isoformat(pt.timestamp), 'equity': pt.equity} for pt in results.equity_curve]
    return pd.DataFrame(rows, columns=['timestamp', 'equity'])


def summary_dict(results: BacktestResults) -> dict:
    return {
        'strategy': results.strategy_name,
        'start': _isoformat(results.start_date),
        'end': _isoformat(results.end_date),
        'initial_capital': results.initial_capital,
        'final_capital': results.final_capital,
        'final_cash': results.final_cash,
        'total_return_pct': results.total_return,
        'total_pnl': results.total_pnl,
        'max_drawdown': results.max_drawdown,
        'fills': len(results.trades),
        'metrics': results.metrics,
    }


def generate_backtest_report(results: BacktestResults, out_dir: str = "results") -> None:
    """Generate report files for a backtest run.

    Creates the output directory if it does not exist and writes the
    following files:

    - `trades.csv`: every fill with fees, slippage and FIFO P&L
    - `equity_curve.csv`: account equity after each data point
    - `summary.json`: run summary and performance metrics
    - `equity_curve.png`: line chart of the equity curve
    """
    os.makedirs(out_dir, exist_ok=True)

    trades_path = os.path.join(out_dir, 'trades.csv')
    trades_frame(results).to_csv(trades_path, index=False)

    df_eq = equity_frame(results)
    eq_path = os.path.join(out_dir, 'equity_curve.csv')
    df_eq.to_csv(eq_path, index=False)

    summary_path = os.path.join(out_dir, 'summary.json')
    with open(summary_path, 'w', encoding='utf-8') as fh:
        json.dump(summary_dict(results), fh, indent=2, ensure_ascii=False)

    # Equity curve plot
    fig, ax = plt.subplots(figsize=(10, 4))
    if not df_eq.empty:
        ax.plot(pd.to_datetime(df_eq['timestamp'], utc=True), df_eq['equity'], linewidth=1.5)
        ax.axhline(results.initial_capital, color='grey', linestyle='--', linewidth=0.8)
        ax.set_title(f'Equity Curve - {results.strategy_name}')
        ax.set_xlabel('Time')
        ax.set_ylabel('Equity')
        fig.autofmt_xdate()
    fig.tight_layout()
    plot_path = os.path.join(out_dir, 'equity_curve.png')
    fig.savefig(plot_path)
    plt.close(fig)

    logger.info("Report written to %s", out_dir)
