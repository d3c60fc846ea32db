"""Volume-profile range detection — pure functions, no I/O.

Bins traded volume by price to find the point of control (POC) and the
value area (VAL..VAH) of a candle window, then merges a primary
(higher-timeframe) and a secondary (supporting) range into the effective
range the entry gates trade against.
"""

from bisect import bisect_right
from typing import Optional, Sequence

import numpy as np

from range_reversal.strategy.config import StrategyConfig
from range_reversal.strategy.models import (
    Candle,
    FeatureOverrides,
    RangeContext,
    ValueAreaLevels,
)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _fallback_levels(candles: Sequence[Candle]) -> ValueAreaLevels:
    """All three levels at the latest close (0.0 with no candles)."""
    price = candles[-1].close if candles else 0.0
    return ValueAreaLevels(val=price, vah=price, poc=price)


def compute_value_area(
    candles: Sequence[Candle],
    bins: int = 24,
    value_area_pct: float = 0.7,
) -> ValueAreaLevels:
    """Estimate VAL / VAH / POC from a binned volume profile.

    Algorithm:
        1. Split ``[min low, max high]`` into ``max(3, bins)`` equal bins.
        2. Add each candle's volume to the bin holding its typical price
           ``(high + low + close) / 3`` (clamped into range).
        3. POC bin = highest volume, first on ties.
        4. Grow a contiguous selection from the POC, each step taking the
           neighbour with more volume (ties go to the higher-price side),
           until *value_area_pct* of total volume is covered.
        5. VAL / VAH are the outer edges of the selection, POC the centre
           of its bin.

    Degenerate windows: no candles → all zero; one candle →
    ``(low, high, close)``; zero price span → latest close.
    """
    if not candles:
        return ValueAreaLevels(val=0.0, vah=0.0, poc=0.0)
    if len(candles) == 1:
        c = candles[0]
        return ValueAreaLevels(val=c.low, vah=c.high, poc=c.close)

    min_price = min(c.low for c in candles)
    max_price = max(c.high for c in candles)
    if not np.isfinite(min_price) or not np.isfinite(max_price) or min_price == max_price:
        return _fallback_levels(candles)

    bin_count = max(3, int(bins))
    bin_size = (max_price - min_price) / bin_count
    volumes = np.zeros(bin_count)

    for c in candles:
        typical = (c.high + c.low + c.close) / 3
        idx = int(_clamp(np.floor((typical - min_price) / bin_size), 0, bin_count - 1))
        volumes[idx] += max(0.0, c.volume)

    # np.argmax returns the first maximum → lowest-price bin wins ties
    poc_idx = int(np.argmax(volumes))

    total = float(volumes.sum())
    target = total * _clamp(value_area_pct, 0.1, 1.0)

    cumulative = float(volumes[poc_idx])
    low_idx = poc_idx
    high_idx = poc_idx
    left = poc_idx - 1
    right = poc_idx + 1

    while cumulative < target and (left >= 0 or right < bin_count):
        left_volume = volumes[left] if left >= 0 else -1.0
        right_volume = volumes[right] if right < bin_count else -1.0

        if right_volume >= left_volume and right < bin_count:
            cumulative += right_volume
            high_idx = right
            right += 1
        else:
            cumulative += left_volume
            low_idx = left
            left -= 1

    return ValueAreaLevels(
        val=min_price + low_idx * bin_size,
        vah=min_price + (high_idx + 1) * bin_size,
        poc=min_price + (poc_idx + 0.5) * bin_size,
    )


def compute_overlap_ratio(a: ValueAreaLevels, b: ValueAreaLevels) -> float:
    """Intersection width over union width of two value areas, in [0, 1].

    Returns 0.0 when the union has no width.
    """
    overlap = max(0.0, min(a.vah, b.vah) - max(a.val, b.val))
    union = max(a.vah, b.vah) - min(a.val, b.val)
    if union <= 0:
        return 0.0
    return overlap / union


def average_levels(a: ValueAreaLevels, b: ValueAreaLevels) -> ValueAreaLevels:
    return ValueAreaLevels(
        val=(a.val + b.val) / 2,
        vah=(a.vah + b.vah) / 2,
        poc=(a.poc + b.poc) / 2,
    )


def slice_up_to_time(
    candles: Sequence[Candle], time: int, lookback_bars: int,
) -> list[Candle]:
    """The *lookback_bars* most recent candles stamped at or before *time*.

    *candles* must be sorted by time (non-decreasing).
    """
    end = bisect_right(candles, time, key=lambda c: c.time)
    start = max(0, end - lookback_bars)
    return list(candles[start:end])


def build_range_context(
    primary_candles: Sequence[Candle],
    secondary_candles: Sequence[Candle],
    config: StrategyConfig,
) -> RangeContext:
    """Compute both value areas and merge them.

    An empty window falls back to the latest close of the other window.
    """
    bins = config.range.bins
    va_pct = config.range.value_area_pct

    if primary_candles:
        primary = compute_value_area(primary_candles, bins, va_pct)
    else:
        primary = _fallback_levels(secondary_candles)

    if secondary_candles:
        secondary = compute_value_area(secondary_candles, bins, va_pct)
    else:
        secondary = _fallback_levels(primary_candles)

    overlap_ratio = compute_overlap_ratio(primary, secondary)
    return RangeContext(
        primary=primary,
        secondary=secondary,
        effective=average_levels(primary, secondary),
        overlap_ratio=overlap_ratio,
        is_aligned=overlap_ratio >= config.range.min_overlap_pct,
    )


def apply_range_overrides(
    range_ctx: RangeContext, overrides: Optional[FeatureOverrides],
) -> RangeContext:
    """Pin effective levels and/or the alignment flag for one bar.

    Injected levels replace primary, secondary and effective uniformly.
    Levels not supplied keep their computed effective value.
    """
    if overrides is None or not overrides.has_range_override:
        return range_ctx

    current = range_ctx.effective
    effective = ValueAreaLevels(
        val=overrides.val if overrides.val is not None else current.val,
        vah=overrides.vah if overrides.vah is not None else current.vah,
        poc=overrides.poc if overrides.poc is not None else current.poc,
    )
    is_aligned = (
        overrides.range_valid
        if overrides.range_valid is not None
        else range_ctx.is_aligned
    )
    return RangeContext(
        primary=effective,
        secondary=effective,
        effective=effective,
        overlap_ratio=range_ctx.overlap_ratio,
        is_aligned=is_aligned,
    )


def resolve_level(levels: ValueAreaLevels, label: str) -> float:
    """Map ``"VAL"`` / ``"VAH"`` / ``"POC"`` to its price."""
    if label == "VAL":
        return levels.val
    if label == "VAH":
        return levels.vah
    if label == "POC":
        return levels.poc
    raise ValueError(f"level must be 'VAL', 'VAH' or 'POC', got '{label}'")
