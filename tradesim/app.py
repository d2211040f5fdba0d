"""
Application entry point.

This module defines the command-line interface for running a backtest:
it loads the YAML configuration, applies command-line overrides, builds
the CSV data feed and the configured strategy, runs the engine, prints
the summary and writes the report files.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from .config.schema import Config, load_config, validate_config
from .data.csv_data import CSVDataLoader
from .data.feed import HistoricalFeed
from .execution.backtest_exec import BacktestEngine, BacktestError
from .reporting.report import generate_backtest_report
from .strategy.registry import STRATEGIES, build_strategy


def _setup_logging(verbose: bool) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Bar-by-bar strategy backtester")
    parser.add_argument('--config', default='config.yaml', help="Path to configuration YAML file")
    parser.add_argument('--symbol', action='append', dest='symbols', metavar='SYMBOL',
                        help="Symbol to trade (repeatable); overrides the config list")
    parser.add_argument('--strategy', choices=sorted(STRATEGIES), help="Strategy to run")
    parser.add_argument('--capital', type=float, help="Initial capital")
    parser.add_argument('--start', help="Start date (YYYY-MM-DD)")
    parser.add_argument('--end', help="End date (YYYY-MM-DD)")
    parser.add_argument('--out', help="Report output directory")
    parser.add_argument('--seed', type=int, help="Seed for random slippage; enables random mode")
    parser.add_argument('-v', '--verbose', action='store_true', help="Enable debug logging")
    return parser


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Copy command-line overrides onto ``config`` and revalidate it."""
    if args.symbols:
        config.symbols = args.symbols
    if args.strategy:
        config.strategy.name = args.strategy
        config.strategy.parameters = {}
    if args.capital is not None:
        config.initial_capital = args.capital
    if args.start:
        config.start = args.start
    if args.end:
        config.end = args.end
    if args.out:
        config.output_dir = args.out
    if args.seed is not None:
        config.broker.seed = args.seed
        config.broker.slippage_mode = 'random'
    return validate_config(config)


def main(argv: Optional[List[str]] = None) -> int:
    """Parse command-line arguments and run one backtest."""
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)

    config = apply_overrides(load_config(args.config), args)
    strategy = build_strategy(config.strategy, config.symbols, config.allocation)
    feed = HistoricalFeed(
        CSVDataLoader(config.data.csv_dir, config.data.timezone),
        config.symbols,
        timeframe=config.timeframe,
        start=config.start,
        end=config.end,
    )

    logging.info("Running backtest of %s on %s...", strategy.get_name(), ", ".join(config.symbols))
    engine = BacktestEngine(strategy, feed, config)
    try:
        results = engine.run()
    except BacktestError as exc:
        logging.error("Backtest failed: %s", exc)
        return 1

    print(results.summary())
    generate_backtest_report(results, out_dir=config.output_dir)
    logging.info("Backtest complete. Results saved to the '%s' directory.", config.output_dir)
    return 0


if __name__ == '__main__':
    sys.exit(main())
