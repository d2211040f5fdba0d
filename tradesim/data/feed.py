"""
Market data sources.

`MarketDataSource` is the interface the engine consumes.  `HistoricalFeed`
implements it on top of any loader exposing ``load(symbol) ->
pandas.DataFrame`` (for example `CSVDataLoader`): it loads every symbol
once, groups the bars by timestamp and serves one `DataPoint` per
timestamp in chronological order.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import logging
from typing import Dict, List, Optional, Tuple
import pandas as pd

from ..execution.models import Bar, DataPoint
from ..utils.timeutils import parse_date


logger = logging.getLogger(__name__)


class MarketDataSource(ABC):
    """Chronological stream of data points."""

    @abstractmethod
    def initialize(self) -> None:
        ...

    @abstractmethod
    def has_more_data(self) -> bool:
        ...

    @abstractmethod
    def get_next_data_point(self) -> Optional[DataPoint]:
        """Return the next data point, or ``None`` at end of stream."""

    @abstractmethod
    def reset(self) -> None:
        ...

    @abstractmethod
    def close(self) -> None:
        ...


class HistoricalFeed(MarketDataSource):
    """Replay historical bars for a fixed set of symbols.

    Parameters
    ----------
    loader
        Object with a ``load(symbol)`` method returning a frame indexed by
        timestamp with ``open``, ``high``, ``low``, ``close`` and
        optionally ``volume`` columns.
    symbols : list of str
        Symbols to replay.  A timestamp is only served when every symbol
        has a bar for it.
    timeframe : str
        Label stored on every bar.
    start, end : str, optional
        Inclusive date bounds (``YYYY-MM-DD``).  The end date covers the
        whole day.
    """

    def __init__(
        self,
        loader,
        symbols: List[str],
        timeframe: str = "1d",
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> None:
        self.loader = loader
        self.symbols = list(symbols)
        self.timeframe = timeframe
        self.start = start
        self.end = end
        self.data_points: List[DataPoint] = []
        self.current_idx = 0
        self.initialized = False

    def _frame_in_range(self, df: pd.DataFrame) -> pd.DataFrame:
        if df.empty:
            return df
        tz = df.index.tz
        if self.start:
            df = df[df.index >= parse_date(self.start, tz)]
        if self.end:
            df = df[df.index < parse_date(self.end, tz) + pd.Timedelta(days=1)]
        return df

    def initialize(self) -> None:
        """Load all symbols and build the sorted list of complete data points."""
        if self.initialized:
            return

        by_timestamp: Dict[pd.Timestamp, Dict[str, Bar]] = {}
        for symbol in self.symbols:
            df = self._frame_in_range(self.loader.load(symbol))
            logger.debug("Loaded %d bars for %s", len(df), symbol)
            has_volume = "volume" in df.columns
            for ts, row in df.iterrows():
                by_timestamp.setdefault(ts, {})[symbol] = Bar(
                    symbol=symbol,
                    timestamp=ts,
                    open=float(row["open"]),
                    high=float(row["high"]),
                    low=float(row["low"]),
                    close=float(row["close"]),
                    volume=float(row["volume"]) if has_volume else 0.0,
                    timeframe=self.timeframe,
                )

        for ts in sorted(by_timestamp):
            bars = by_timestamp[ts]
            if len(bars) == len(self.symbols):
                self.data_points.append(DataPoint(timestamp=ts, bars=bars))
            else:
                missing = [s for s in self.symbols if s not in bars]
                logger.debug("Skipping %s: incomplete data, missing %s", ts, missing)

        logger.info(
            "Historical feed initialized: %d data points for %d symbols",
            len(self.data_points), len(self.symbols),
        )
        self.initialized = True

    def has_more_data(self) -> bool:
        if not self.initialized:
            return True
        return self.current_idx < len(self.data_points)

    def get_next_data_point(self) -> Optional[DataPoint]:
        if not self.initialized:
            self.initialize()
        if self.current_idx >= len(self.data_points):
            return None
        data_point = self.data_points[self.current_idx]
        self.current_idx += 1
        return data_point

    def reset(self) -> None:
        logger.info("Resetting historical feed")
        self.current_idx = 0

    def close(self) -> None:
        logger.debug("Closing historical feed")

    def progress(self) -> float:
        """Percentage of data points served so far."""
        if not self.data_points:
            return 0.0
        return self.current_idx / len(self.data_points) * 100

    def date_range(self) -> Tuple[Optional[pd.Timestamp], Optional[pd.Timestamp]]:
        if not self.data_points:
            return None, None
        return self.data_points[0].timestamp, self.data_points[-1].timestamp
