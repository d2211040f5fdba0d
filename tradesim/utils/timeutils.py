"""
Timezone and date helpers.

Date bounds from the configuration are compared against timezone-aware
bar timestamps; these helpers do the parsing and formatting.
"""

from __future__ import annotations

from typing import Optional
import pandas as pd


def parse_date(value: str, tz=None) -> pd.Timestamp:
    """Parse a ``YYYY-MM-DD`` (or any ISO) string into a timestamp.

    Parameters
    ----------
    value : str
        Date or datetime string.
    tz : tzinfo or str, optional
        Timezone of the data the result is compared against.  A naive
        string is localised to it; ``None`` keeps the result naive.

    Raises
    ------
    ValueError
        If ``value`` cannot be parsed.
    """
    ts = pd.Timestamp(value)
    if tz is None:
        return ts.tz_localize(None) if ts.tzinfo is not None else ts
    if ts.tzinfo is None:
        return ts.tz_localize(tz)
    return ts.tz_convert(tz)


def format_date(ts: Optional[pd.Timestamp]) -> str:
    """Render ``ts`` as ``YYYY-MM-DD`` or ``-`` when missing."""
    if ts is None:
        return "-"
    return pd.Timestamp(ts).strftime("%Y-%m-%d")
