"""Reversal signal detection — pure functions, no I/O.

Pivot-based price/oscillator divergence and swing-failure patterns (SFP:
a sweep beyond a prior swing extreme that closes back inside).
"""

import math
from typing import Sequence

from range_reversal.strategy.models import Candle


def is_pivot_low(values: Sequence[float], index: int, left: int, right: int) -> bool:
    """True if every value in the *left* / *right* window is strictly higher.

    Bars without a full window on both sides are never pivots.
    """
    value = values[index]
    if not math.isfinite(value):
        return False
    for i in range(index - left, index + right + 1):
        if i == index:
            continue
        if i < 0 or i >= len(values):
            return False
        if values[i] <= value:
            return False
    return True


def is_pivot_high(values: Sequence[float], index: int, left: int, right: int) -> bool:
    """Mirror of ``is_pivot_low``: every neighbour strictly lower."""
    value = values[index]
    if not math.isfinite(value):
        return False
    for i in range(index - left, index + right + 1):
        if i == index:
            continue
        if i < 0 or i >= len(values):
            return False
        if values[i] >= value:
            return False
    return True


def find_recent_pivots(
    values: Sequence[float],
    upto_index: int,
    left: int,
    right: int,
    kind: str,
    count: int = 2,
) -> list[int]:
    """Indices of the *count* most recent pivots confirmed by *upto_index*.

    A pivot at ``i`` is confirmed once ``i + right <= upto_index``, so no
    bar after *upto_index* is ever looked at.  Returned oldest first.
    """
    if kind == "low":
        check = is_pivot_low
    elif kind == "high":
        check = is_pivot_high
    else:
        raise ValueError(f"kind must be 'low' or 'high', got '{kind}'")

    last = min(upto_index, len(values) - 1)
    found: list[int] = []
    for i in range(last - right, left - 1, -1):
        if check(values, i, left, right):
            found.append(i)
            if len(found) == count:
                break
    found.reverse()
    return found


class _PriceColumn(Sequence[float]):
    """Read-only view of one OHLC field, without copying the candle list."""

    def __init__(self, candles: Sequence[Candle], field: str) -> None:
        self._candles = candles
        self._field = field

    def __len__(self) -> int:
        return len(self._candles)

    def __getitem__(self, index):
        return getattr(self._candles[index], self._field)


def _osc(oscillator: Sequence[float], index: int) -> float:
    return float(oscillator[index]) if index < len(oscillator) else float("nan")


def detect_bullish_divergence(
    candles: Sequence[Candle],
    oscillator: Sequence[float],
    index: int,
    swing_lookback: int,
    max_bars_after_divergence: int,
) -> bool:
    """Price makes a lower low while the oscillator makes a higher low.

    Compares the two most recent low pivots confirmed by *index*; the
    later pivot must be no more than *max_bars_after_divergence* bars old.
    """
    if index < 0 or index >= len(candles):
        return False

    lows = _PriceColumn(candles, "low")
    pivots = find_recent_pivots(lows, index, swing_lookback, swing_lookback, "low")
    if len(pivots) < 2:
        return False

    p1, p2 = pivots
    if index - p2 > max_bars_after_divergence:
        return False

    price_lower_low = candles[p2].low < candles[p1].low
    osc_higher_low = _osc(oscillator, p2) > _osc(oscillator, p1)
    return price_lower_low and osc_higher_low


def detect_bearish_divergence(
    candles: Sequence[Candle],
    oscillator: Sequence[float],
    index: int,
    swing_lookback: int,
    max_bars_after_divergence: int,
) -> bool:
    """Price makes a higher high while the oscillator makes a lower high."""
    if index < 0 or index >= len(candles):
        return False

    highs = _PriceColumn(candles, "high")
    pivots = find_recent_pivots(highs, index, swing_lookback, swing_lookback, "high")
    if len(pivots) < 2:
        return False

    p1, p2 = pivots
    if index - p2 > max_bars_after_divergence:
        return False

    price_higher_high = candles[p2].high > candles[p1].high
    osc_lower_high = _osc(oscillator, p2) < _osc(oscillator, p1)
    return price_higher_high and osc_lower_high


def detect_bullish_sfp(candles: Sequence[Candle], index: int, lookback_bars: int) -> bool:
    """Bar at *index* sweeps below the prior *lookback_bars* lows and closes back above."""
    if index <= 0 or index >= len(candles):
        return False

    start = max(0, index - lookback_bars)
    prior = candles[start:index]
    if not prior:
        return False

    swept_level = min(c.low for c in prior)
    candle = candles[index]
    return candle.low < swept_level and candle.close > swept_level


def detect_bearish_sfp(candles: Sequence[Candle], index: int, lookback_bars: int) -> bool:
    """Bar at *index* sweeps above the prior *lookback_bars* highs and closes back below."""
    if index <= 0 or index >= len(candles):
        return False

    start = max(0, index - lookback_bars)
    prior = candles[start:index]
    if not prior:
        return False

    swept_level = max(c.high for c in prior)
    candle = candles[index]
    return candle.high > swept_level and candle.close < swept_level
