"""
Configuration schema and loader.

This module defines dataclasses that mirror the expected structure of
the YAML configuration file (`config.yaml`).  A helper function
`load_config()` reads a YAML file from disk and returns an instance
of `Config` populated with reasonable defaults for any missing
fields, then validates it.

Every component receives its section of the configuration at
construction time; nothing is read from the environment.  When
extending the configuration, add new fields to the appropriate
dataclass and to `validate_config()`.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional
import yaml

from ..utils.timeutils import parse_date


COMMISSION_TYPES = ("percentage", "fixed")
SLIPPAGE_MODES = ("fixed", "random")
ALLOCATION_METHODS = ("equal", "confidence", "priority", "sequential")


@dataclass
class BrokerConfig:
    """Execution cost model.

    All rates are fractions: ``0.001`` means 0.1 %.

    Attributes
    ----------
    commission_type : str
        ``percentage`` charges ``commission_rate`` of the trade notional,
        ``fixed`` charges ``commission_rate`` dollars per trade.
    slippage : float
        Base slippage applied to market and stop fills.
    max_slippage : float
        Upper bound of the uniform random slippage component.  Only used
        when ``slippage_mode`` is ``random``.
    slippage_mode : str
        ``fixed`` (reproducible, base slippage only) or ``random``.
    seed : int, optional
        Seed for the random slippage component.
    sec_fee_rate : float
        Regulatory transaction fee charged on the notional of sells.
    activity_fee_per_share : float
        Per-share activity fee charged on both sides.
    activity_fee_cap : float
        Ceiling of the activity fee for a single trade.
    """

    commission_type: str = "percentage"
    commission_rate: float = 0.001
    slippage: float = 0.0005
    max_slippage: float = 0.0005
    slippage_mode: str = "fixed"
    seed: Optional[int] = None
    sec_fee_rate: float = 0.0000278
    activity_fee_per_share: float = 0.000145
    activity_fee_cap: float = 7.27


@dataclass
class AllocationConfig:
    """How a batch of competing signals shares the available cash.

    Attributes
    ----------
    method : str
        One of ``equal``, ``confidence``, ``priority``, ``sequential``.
    max_positions : int
        Maximum number of signals acted upon per tick (0 means no limit).
    position_size : float
        Fraction of tradable cash committed per allocation round (0-1].
    min_cash_buffer : float
        Cash at or below this amount is never allocated.
    slippage_buffer : float
        Fraction of cash held back for slippage and fees.
    allow_fractional : bool
        Keep fractional quantities instead of flooring to whole units.
    volatility_adjust : bool
        Scale quantities down for volatile symbols.
    high_volatility, medium_volatility : float
        Thresholds above which quantities are scaled by 0.7 and 0.85.
    """

    method: str = "sequential"
    max_positions: int = 3
    position_size: float = 0.95
    min_cash_buffer: float = 100.0
    slippage_buffer: float = 0.02
    allow_fractional: bool = False
    volatility_adjust: bool = False
    high_volatility: float = 0.03
    medium_volatility: float = 0.02


@dataclass
class StrategyConfig:
    """Which strategy to run and its parameters."""

    name: str = "buy_and_hold"
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class EngineConfig:
    """Simulation loop switches.

    Attributes
    ----------
    allow_short : bool
        When ``False`` a sell is only executed if the ledger holds at
        least that long quantity.  Buys are always checked for cash.
    liquidate_at_end : bool
        Close every open position at its last mark once the data runs out.
    """

    allow_short: bool = False
    liquidate_at_end: bool = True


@dataclass
class DataConfig:
    """Data source configuration.

    Attributes
    ----------
    csv_dir : str
        Directory containing one CSV file per symbol.
    timezone : str
        IANA timezone name used for interpreting timestamps in
        historical data.
    """

    csv_dir: str = "data"
    timezone: str = "UTC"


@dataclass
class Config:
    """Root configuration for a backtest run.

    Attributes
    ----------
    symbols : List[str]
        Instrument symbols (e.g. ``["AAPL", "MSFT"]``).
    timeframe : str
        Bar timeframe label carried on every bar (e.g. ``1m``, ``1d``).
    start, end : str, optional
        Inclusive date range (``YYYY-MM-DD``).  ``None`` means unbounded.
    initial_capital : float
        Starting cash of the ledger.
    output_dir : str
        Directory receiving the report files.
    """

    symbols: List[str] = field(default_factory=lambda: ["AAPL"])
    timeframe: str = "1d"
    start: Optional[str] = None
    end: Optional[str] = None
    initial_capital: float = 10_000.0
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    broker: BrokerConfig = field(default_factory=BrokerConfig)
    allocation: AllocationConfig = field(default_factory=AllocationConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    data: DataConfig = field(default_factory=DataConfig)
    output_dir: str = "results"


def validate_broker_config(cfg: BrokerConfig) -> None:
    if cfg.commission_type not in COMMISSION_TYPES:
        raise ValueError(f"broker.commission_type must be one of {COMMISSION_TYPES}, got {cfg.commission_type!r}")
    if cfg.slippage_mode not in SLIPPAGE_MODES:
        raise ValueError(f"broker.slippage_mode must be one of {SLIPPAGE_MODES}, got {cfg.slippage_mode!r}")
    for name in ("commission_rate", "slippage", "max_slippage", "sec_fee_rate",
                 "activity_fee_per_share", "activity_fee_cap"):
        if getattr(cfg, name) < 0:
            raise ValueError(f"broker.{name} must not be negative")


def validate_allocation_config(cfg: AllocationConfig) -> None:
    if cfg.method not in ALLOCATION_METHODS:
        raise ValueError(f"allocation.method must be one of {ALLOCATION_METHODS}, got {cfg.method!r}")
    if cfg.max_positions < 0:
        raise ValueError("allocation.max_positions must not be negative")
    if not 0 < cfg.position_size <= 1:
        raise ValueError(f"allocation.position_size must be in (0, 1], got {cfg.position_size}")
    if not 0 <= cfg.slippage_buffer < 1:
        raise ValueError(f"allocation.slippage_buffer must be in [0, 1), got {cfg.slippage_buffer}")
    if cfg.min_cash_buffer < 0:
        raise ValueError("allocation.min_cash_buffer must not be negative")
    if cfg.medium_volatility > cfg.high_volatility:
        raise ValueError("allocation.medium_volatility must not exceed allocation.high_volatility")


def validate_config(cfg: Config) -> Config:
    """Check every section eagerly and return ``cfg`` unchanged.

    Raises
    ------
    ValueError
        On the first invalid field, naming it.
    """
    if not cfg.symbols:
        raise ValueError("At least one symbol is required")
    if cfg.initial_capital <= 0:
        raise ValueError(f"initial_capital must be positive, got {cfg.initial_capital}")
    if cfg.start and cfg.end and parse_date(cfg.start) > parse_date(cfg.end):
        raise ValueError(f"start ({cfg.start}) is after end ({cfg.end})")
    if not cfg.strategy.name:
        raise ValueError("strategy.name is required")
    validate_broker_config(cfg.broker)
    validate_allocation_config(cfg.allocation)
    return cfg


def _merge_dict(defaults: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge two dictionaries.

    The values in `override` take precedence over those in `defaults`.
    This helper is used when loading YAML into nested dataclasses.
    """
    result: Dict[str, Any] = defaults.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _merge_dict(result[key], value)
        else:
            result[key] = value
    return result


def _build(cls, values: Dict[str, Any]):
    """Instantiate a section dataclass, rejecting unknown keys."""
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {unknown}")
    return cls(**values)


def config_from_dict(raw: Dict[str, Any]) -> Config:
    """Build a validated `Config` from a (possibly partial) dictionary."""
    merged = _merge_dict(asdict(Config()), raw or {})

    cfg = Config(
        symbols=[str(s) for s in merged.get('symbols') or []],
        timeframe=str(merged.get('timeframe', '1d')),
        start=str(merged['start']) if merged.get('start') else None,
        end=str(merged['end']) if merged.get('end') else None,
        initial_capital=float(merged.get('initial_capital', 10_000.0)),
        strategy=_build(StrategyConfig, merged['strategy']),
        broker=_build(BrokerConfig, merged['broker']),
        allocation=_build(AllocationConfig, merged['allocation']),
        engine=_build(EngineConfig, merged['engine']),
        data=_build(DataConfig, merged['data']),
        output_dir=str(merged.get('output_dir', 'results')),
    )
    return validate_config(cfg)


def load_config(path: str) -> Config:
    """Load a configuration file from the given YAML path.

    Parameters
    ----------
    path : str
        Path to the YAML file.

    Returns
    -------
    Config
        A populated, validated configuration object.  Missing fields are
        filled with the defaults defined in the dataclasses.
    """
    with open(path, "r", encoding="utf-8") as fh:
        raw: Dict[str, Any] = yaml.safe_load(fh) or {}
    return config_from_dict(raw)
