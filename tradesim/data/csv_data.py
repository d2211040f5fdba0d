"""
CSV data loader.

This module provides a class to load historical OHLCV data from CSV
files.  Two layouts are recognised.  The plain layout is
comma-separated:

```
time,open,high,low,close,volume
```

Only `time`, `open`, `high`, `low` and `close` are required; `volume`
(or `tick_volume`) is optional and other columns are ignored.  The
second layout is a tab-separated MetaTrader export with `<DATE>` and
`<TIME>` columns.  Naive timestamps are localised to the configured
timezone; aware ones are converted to it.
"""

from __future__ import annotations

from pathlib import Path
import pandas as pd


REQUIRED_COLUMNS = ["open", "high", "low", "close"]
MT5_REQUIRED = ["<DATE>", "<TIME>", "<OPEN>", "<HIGH>", "<LOW>", "<CLOSE>"]


class CSVDataLoader:
    """Load OHLCV data from CSV files for backtesting.

    Parameters
    ----------
    csv_dir : str
        Directory where the CSV files are located.  Each symbol's file
        must be named `{SYMBOL}.csv`.
    timezone : str
        IANA timezone name used to localise timestamps.
    """

    def __init__(self, csv_dir: str, timezone: str = "UTC") -> None:
        self.csv_dir = Path(csv_dir)
        self.timezone = timezone

    def _localise(self, df: pd.DataFrame) -> pd.DataFrame:
        if df.index.tz is None:
            df.index = df.index.tz_localize(self.timezone)
        else:
            df.index = df.index.tz_convert(self.timezone)
        return df

    def load(self, symbol: str) -> pd.DataFrame:
        """Return the bars for ``symbol`` indexed by timestamp, oldest first.

        Raises
        ------
        FileNotFoundError
            If ``{symbol}.csv`` does not exist.
        ValueError
            If the file matches neither layout or has unparseable dates.
        """
        file_path = self.csv_dir / f"{symbol}.csv"
        if not file_path.exists():
            raise FileNotFoundError(f"CSV file not found for symbol {symbol}: {file_path}")

        with file_path.open("r", encoding="utf-8") as fh:
            header = fh.readline()
        if "\t" in header and "<DATE>" in header:
            return self._load_mt5(symbol, file_path)
        return self._load_plain(symbol, file_path)

    def _load_plain(self, symbol: str, file_path: Path) -> pd.DataFrame:
        df = pd.read_csv(file_path)
        df.columns = [str(c).strip().lower() for c in df.columns]
        missing = [c for c in ["time"] + REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(
                f"Unrecognized CSV format for {symbol}. Missing columns: {missing}. "
                f"Found columns: {list(df.columns)}"
            )
        if "volume" not in df.columns and "tick_volume" in df.columns:
            df["volume"] = df["tick_volume"]
        if "volume" not in df.columns:
            df["volume"] = 0.0

        df["time"] = pd.to_datetime(df["time"], errors="raise")
        out = df.set_index("time")[REQUIRED_COLUMNS + ["volume"]].astype(float).sort_index()
        return self._localise(out)

    def _load_mt5(self, symbol: str, file_path: Path) -> pd.DataFrame:
        df = pd.read_csv(file_path, sep="\t", engine="python")
        df.columns = [c.strip() for c in df.columns]

        missing = [c for c in MT5_REQUIRED if c not in df.columns]
        if missing:
            raise ValueError(
                f"Unrecognized CSV format for {symbol}. Missing columns: {missing}. "
                f"Found columns: {list(df.columns)}"
            )

        dt = df["<DATE>"].astype(str).str.strip() + " " + df["<TIME>"].astype(str).str.strip()
        ts = pd.to_datetime(dt, format="%Y.%m.%d %H:%M:%S", errors="coerce")
        if ts.isna().any():
            # fallback if format differs
            ts = pd.to_datetime(dt, errors="coerce")
        if ts.isna().any():
            bad = dt[ts.isna()].head(5).tolist()
            raise ValueError(f"Could not parse MT5 DATE/TIME for {symbol}. Examples: {bad}")

        volume_col = next((c for c in ("<VOL>", "<TICKVOL>") if c in df.columns), None)
        out = pd.DataFrame(
            {
                "open": df["<OPEN>"].astype(float).values,
                "high": df["<HIGH>"].astype(float).values,
                "low": df["<LOW>"].astype(float).values,
                "close": df["<CLOSE>"].astype(float).values,
                "volume": df[volume_col].astype(float).values if volume_col else 0.0,
            },
            index=pd.DatetimeIndex(ts),
        ).sort_index()
        return self._localise(out)
