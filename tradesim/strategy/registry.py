"""
Strategy lookup by configuration name.
"""

from __future__ import annotations

from typing import List, Optional

from ..config.schema import AllocationConfig, StrategyConfig
from .base import Strategy
from .buy_and_hold import BuyAndHoldStrategy
from .ma_crossover import MovingAverageCrossoverStrategy


STRATEGIES = {
    "buy_and_hold": BuyAndHoldStrategy,
    "ma_crossover": MovingAverageCrossoverStrategy,
}


def build_strategy(
    cfg: StrategyConfig,
    symbols: List[str],
    allocation: Optional[AllocationConfig] = None,
) -> Strategy:
    """Instantiate the strategy named by ``cfg.name``.

    Raises
    ------
    ValueError
        For an unknown name or out-of-range parameters.
    TypeError
        For a parameter of the wrong type.
    """
    cls = STRATEGIES.get(cfg.name)
    if cls is None:
        raise ValueError(
            f"Unknown strategy: {cfg.name}. Available strategies: {', '.join(sorted(STRATEGIES))}")
    return cls(symbols, cfg.parameters, allocation)
