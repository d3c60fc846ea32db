"""Technical indicators — SMA, EMA, WaveTrend, money flow, slope. Pure functions, no I/O.

Every series function returns a numpy array the same length as its input.
Rolling positions without enough history are ``nan``, never zero.
"""

import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from range_reversal.strategy.models import Candle


def sma(values: Sequence[float], period: int) -> np.ndarray:
    """Simple moving average over *period* samples.

    Entries before index ``period - 1`` are ``nan``.  A non-positive
    *period* yields an all-``nan`` series.
    """
    n = len(values)
    out = np.full(n, np.nan)
    if period <= 0:
        return out

    rolling = 0.0
    for i in range(n):
        rolling += values[i]
        if i >= period:
            rolling -= values[i - period]
        if i >= period - 1:
            out[i] = rolling / period
    return out


def ema(values: Sequence[float], period: int) -> np.ndarray:
    """Exponential moving average seeded with the first value.

    ``EMA_i = alpha × value_i + (1 - alpha) × EMA_{i-1}`` with
    ``alpha = 2 / (period + 1)``.
    """
    n = len(values)
    out = np.full(n, np.nan)
    if period <= 0 or n == 0:
        return out

    alpha = 2.0 / (period + 1)
    prev = float(values[0])
    out[0] = prev
    for i in range(1, n):
        value = float(values[i])
        if math.isnan(value):
            value = prev
        prev = alpha * value + (1 - alpha) * prev
        out[i] = prev
    return out


# ── WaveTrend ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class WaveTrend:
    """WaveTrend oscillator lines: ``wt1`` (fast) and ``wt2`` (signal)."""

    wt1: np.ndarray
    wt2: np.ndarray


def wave_trend(
    candles: Sequence[Candle],
    channel_length: int = 10,
    average_length: int = 21,
    signal_length: int = 4,
) -> WaveTrend:
    """Compute the WaveTrend oscillator.

    Algorithm:
        1. tp  = (high + low + close) / 3
        2. esa = EMA(tp, channel_length)
        3. d   = EMA(|tp - esa|, channel_length)
        4. ci  = (tp - esa) / (0.015 × d)   (0 when d is 0 or non-finite)
        5. wt1 = EMA(ci, average_length)
        6. wt2 = SMA(wt1, signal_length)
    """
    tp = np.array([(c.high + c.low + c.close) / 3.0 for c in candles], dtype=float)
    esa = ema(tp, channel_length)
    deviation = ema(np.abs(tp - esa), channel_length)

    ci = np.zeros(len(tp))
    for i in range(len(tp)):
        d = deviation[i]
        if not math.isfinite(d) or d == 0:
            continue
        ci[i] = (tp[i] - esa[i]) / (0.015 * d)

    wt1 = ema(ci, average_length)
    wt2 = sma(np.where(np.isfinite(wt1), wt1, 0.0), signal_length)
    return WaveTrend(wt1=wt1, wt2=wt2)


# ── Money flow ───────────────────────────────────────────────────────────


def money_flow(candles: Sequence[Candle], period: int = 20) -> np.ndarray:
    """Volume-weighted intrabar position oscillator.

    Per bar the money-flow multiplier is
    ``((close - low) - (high - close)) / (high - low)`` (0 on a zero-range
    bar).  The output is the rolling sum of ``multiplier × volume`` over
    *period* bars divided by the rolling volume sum, or 0 when that volume
    sum is zero.
    """
    n = len(candles)
    out = np.full(n, np.nan)
    if period <= 0:
        return out

    flows = np.zeros(n)
    for i, c in enumerate(candles):
        span = c.high - c.low
        if span != 0:
            flows[i] = ((c.close - c.low) - (c.high - c.close)) / span * c.volume

    sum_flow = 0.0
    sum_volume = 0.0
    for i in range(n):
        sum_flow += flows[i]
        sum_volume += candles[i].volume
        if i >= period:
            sum_flow -= flows[i - period]
            sum_volume -= candles[i - period].volume
        if i >= period - 1:
            out[i] = 0.0 if sum_volume == 0 else sum_flow / sum_volume
    return out


def slope_at(values: Sequence[float], index: int, lookback_bars: int) -> float:
    """Change of *values* over *lookback_bars* ending at *index*.

    Returns 0.0 when either endpoint is out of range or non-finite, so a
    missing slope never leaks ``nan`` into gating logic.
    """
    if index < 0 or index >= len(values) or lookback_bars <= 0:
        return 0.0
    start = index - lookback_bars
    if start < 0:
        return 0.0

    current = float(values[index])
    previous = float(values[start])
    if not math.isfinite(current) or not math.isfinite(previous):
        return 0.0
    return current - previous
