"""Position sizing — pure math, no I/O.

Converts equity, entry and stop into a contract quantity bounded by a
per-trade risk budget and a leveraged notional cap.
"""

import math
from dataclasses import dataclass

from range_reversal.strategy.config import RiskConfig


@dataclass(frozen=True)
class PositionSizing:
    """Sized quantity plus the figures it was derived from."""

    quantity: float
    risk_amount: float
    stop_distance: float
    notional: float
    estimated_loss_at_stop: float
    used_notional_cap: bool


_NO_POSITION = PositionSizing(
    quantity=0.0,
    risk_amount=0.0,
    stop_distance=0.0,
    notional=0.0,
    estimated_loss_at_stop=0.0,
    used_notional_cap=False,
)


def floor_to_step(value: float, step: float) -> float:
    """Round *value* down to a multiple of *step*; unchanged when step <= 0."""
    if step <= 0:
        return value
    return math.floor(value / step) * step


def size_position(
    equity: float,
    entry_price: float,
    stop_price: float,
    risk: RiskConfig,
) -> PositionSizing:
    """Calculate position size in contracts.

    Formula::

        risk_amount   = equity × risk_pct_per_trade
        qty_risk      = risk_amount / (|entry - stop| × multiplier)
        max_notional  = equity × leverage × max_notional_pct_equity
        qty_cap       = max_notional / (entry × multiplier)
        quantity      = floor_to_step(min(qty_risk, qty_cap), lot_step)

    Returns a zero sizing (never raises) when equity or the stop distance
    is non-positive or non-finite.
    """
    if not math.isfinite(equity) or equity <= 0:
        return _NO_POSITION

    stop_distance = abs(entry_price - stop_price)
    if not math.isfinite(stop_distance) or stop_distance <= 0:
        return _NO_POSITION

    multiplier = risk.contract_multiplier
    risk_amount = equity * risk.risk_pct_per_trade
    qty_from_risk = risk_amount / (stop_distance * multiplier)

    max_notional = equity * risk.leverage * risk.max_notional_pct_equity
    qty_from_cap = max_notional / (entry_price * multiplier)

    quantity = max(0.0, floor_to_step(min(qty_from_risk, qty_from_cap), risk.lot_step))

    return PositionSizing(
        quantity=quantity,
        risk_amount=risk_amount,
        stop_distance=stop_distance,
        notional=quantity * entry_price * multiplier,
        estimated_loss_at_stop=quantity * stop_distance * multiplier,
        used_notional_cap=qty_from_cap < qty_from_risk,
    )
