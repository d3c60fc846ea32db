"""Candle file loading for offline backtests.

Reads CSV or Parquet OHLCV files into ``Candle`` lists.  The ``time``
column may hold epoch milliseconds or anything ``pd.to_datetime``
understands.  Optional feature-override columns (``rangeValid``, ``val``,
``bullishSfp`` ... in camelCase or snake_case) become per-bar
``FeatureOverrides``; empty cells mean "derive as usual".
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import pandas as pd

from range_reversal.strategy.models import Candle, FeatureOverrides

logger = logging.getLogger("rangereversal.data")

REQUIRED_COLUMNS = ("time", "open", "high", "low", "close", "volume")

_OVERRIDE_COLUMNS = {
    "rangeValid": "range_valid",
    "val": "val",
    "vah": "vah",
    "poc": "poc",
    "bullishDivergence": "bullish_divergence",
    "bearishDivergence": "bearish_divergence",
    "moneyFlowSlope": "money_flow_slope",
    "bullishSfp": "bullish_sfp",
    "bearishSfp": "bearish_sfp",
    "recentLowBrokeVal": "recent_low_broke_val",
    "recentHighBrokeVah": "recent_high_broke_vah",
}
_BOOL_OVERRIDES = {
    "range_valid",
    "bullish_divergence",
    "bearish_divergence",
    "bullish_sfp",
    "bearish_sfp",
    "recent_low_broke_val",
    "recent_high_broke_vah",
}


def _time_to_ms(series: pd.Series) -> pd.Series:
    """Normalise a time column to integer epoch milliseconds."""
    if pd.api.types.is_numeric_dtype(series):
        return series.astype("int64")
    ts = pd.to_datetime(series, utc=True)
    return (ts - pd.Timestamp(0, tz="UTC")) // pd.Timedelta(milliseconds=1)


def _row_overrides(row: pd.Series, columns: dict[str, str]) -> Optional[FeatureOverrides]:
    values = {}
    for column, name in columns.items():
        value = row[column]
        if pd.isna(value):
            continue
        values[name] = bool(value) if name in _BOOL_OVERRIDES else float(value)
    return FeatureOverrides(**values) if values else None


def candles_from_frame(df: pd.DataFrame) -> list[Candle]:
    """Convert a DataFrame to candles sorted by time.

    Raises ``ValueError`` naming any missing OHLCV columns.
    """
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Candle data is missing columns: {', '.join(missing)}")

    if df.empty:
        return []

    df = df.copy()
    df["time"] = _time_to_ms(df["time"])
    df = df.sort_values("time", kind="stable").reset_index(drop=True)

    override_columns = {
        column: _OVERRIDE_COLUMNS.get(column, column)
        for column in df.columns
        if column in _OVERRIDE_COLUMNS or column in _OVERRIDE_COLUMNS.values()
    }

    candles = []
    for _, row in df.iterrows():
        candles.append(
            Candle(
                time=int(row["time"]),
                open=float(row["open"]),
                high=float(row["high"]),
                low=float(row["low"]),
                close=float(row["close"]),
                volume=float(row["volume"]),
                features=_row_overrides(row, override_columns) if override_columns else None,
            )
        )
    return candles


def load_candles(path: Union[str, Path]) -> list[Candle]:
    """Load candles from a ``.csv`` or ``.parquet`` file.

    Raises ``ValueError`` for unsupported extensions or missing columns.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".csv":
        df = pd.read_csv(path)
    elif suffix in (".parquet", ".pq"):
        df = pd.read_parquet(path, engine="pyarrow")
    else:
        raise ValueError(f"Unsupported candle file type '{path.suffix}' (expected .csv or .parquet)")

    candles = candles_from_frame(df)
    logger.info("Loaded %d candles ← %s", len(candles), path)
    return candles
