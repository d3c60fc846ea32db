"""Strategy data models — typed representations for strategy inputs and outputs."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


class Side(str, Enum):
    """Direction of a signal or position."""

    LONG = "long"
    SHORT = "short"

    @property
    def opposite(self) -> "Side":
        return Side.SHORT if self is Side.LONG else Side.LONG


class ReasonCode(str, Enum):
    """Closed set of gate and decision codes.

    Rendered to plain strings only when a decision is serialised for
    display (see ``range_reversal.strategy.analysis``).
    """

    RANGE_NOT_ALIGNED = "range_not_aligned"

    PRICE_NOT_BELOW_VAL = "price_not_below_val"
    MISSING_RECENT_VAL_SWEEP = "missing_recent_val_sweep"
    LONG_REENTRY_TOO_FAR_FROM_VAL = "long_reentry_too_far_from_val"
    MISSING_BULLISH_DIVERGENCE = "missing_bullish_divergence"
    MONEY_FLOW_NOT_RISING = "money_flow_not_rising"
    MISSING_BULLISH_SFP = "missing_bullish_sfp"

    PRICE_NOT_ABOVE_VAH = "price_not_above_vah"
    MISSING_RECENT_VAH_SWEEP = "missing_recent_vah_sweep"
    SHORT_REENTRY_TOO_FAR_FROM_VAH = "short_reentry_too_far_from_vah"
    MISSING_BEARISH_DIVERGENCE = "missing_bearish_divergence"
    MONEY_FLOW_NOT_FALLING = "money_flow_not_falling"
    MISSING_BEARISH_SFP = "missing_bearish_sfp"

    CONFLICTING_LONG_AND_SHORT_SIGNAL = "conflicting_long_and_short_signal"
    LONG_SIGNAL_CONFIRMED = "long_signal_confirmed"
    SHORT_SIGNAL_CONFIRMED = "short_signal_confirmed"

    OPPOSITE_SIGNAL_CONFIRMED = "opposite_signal_confirmed"
    POSITION_OPEN_HOLD = "position_open_hold"
    NO_CONFLUENCE = "no_confluence"


# ── Market data ──────────────────────────────────────────────────────────


_OVERRIDE_KEYS = {
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
_NUMERIC_OVERRIDES = {"val", "vah", "poc", "money_flow_slope"}


@dataclass(frozen=True)
class FeatureOverrides:
    """Per-bar values pinned by a caller instead of being derived.

    Used by deterministic test fixtures and by an external range validator
    that supplies its own VAL/VAH/POC.  ``None`` means "derive as usual".
    """

    range_valid: Optional[bool] = None
    val: Optional[float] = None
    vah: Optional[float] = None
    poc: Optional[float] = None
    bullish_divergence: Optional[bool] = None
    bearish_divergence: Optional[bool] = None
    money_flow_slope: Optional[float] = None
    bullish_sfp: Optional[bool] = None
    bearish_sfp: Optional[bool] = None
    recent_low_broke_val: Optional[bool] = None
    recent_high_broke_vah: Optional[bool] = None

    @property
    def has_range_override(self) -> bool:
        return (
            self.val is not None
            or self.vah is not None
            or self.poc is not None
            or self.range_valid is not None
        )

    @classmethod
    def from_dict(cls, data: dict) -> "FeatureOverrides":
        """Build from a JSON object using either camelCase or snake_case keys.

        Raises ``ValueError`` on unknown keys and on values of the wrong type:
        flags must be ``bool``, levels and the slope ``int`` or ``float``.
        ``None`` leaves the field derived.
        """
        kwargs = {}
        known = set(_OVERRIDE_KEYS.values())
        for key, value in data.items():
            name = _OVERRIDE_KEYS.get(key, key)
            if name not in known:
                raise ValueError(f"Unknown feature override '{key}'")
            if value is not None:
                if name in _NUMERIC_OVERRIDES:
                    valid = isinstance(value, (int, float)) and not isinstance(value, bool)
                    expected = "a number"
                else:
                    valid = isinstance(value, bool)
                    expected = "a boolean"
                if not valid:
                    raise ValueError(
                        f"Feature override '{key}' must be {expected}, got {value!r}"
                    )
            kwargs[name] = value
        return cls(**kwargs)


@dataclass(frozen=True)
class Candle:
    """A single OHLCV bar.  *time* is the bar open time in epoch ms."""

    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    features: Optional[FeatureOverrides] = None


# ── Range / snapshot ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class ValueAreaLevels:
    """Volume-profile levels: value-area low/high and point of control."""

    val: float
    vah: float
    poc: float

    @property
    def width(self) -> float:
        return self.vah - self.val


@dataclass(frozen=True)
class RangeContext:
    """Primary and secondary value areas merged into an effective range."""

    primary: ValueAreaLevels
    secondary: ValueAreaLevels
    effective: ValueAreaLevels
    overlap_ratio: float
    is_aligned: bool


@dataclass(frozen=True)
class SignalSnapshot:
    """Immutable per-bar feature vector consumed by the entry gates."""

    time: int
    price: float
    range: RangeContext
    bullish_divergence: bool
    bearish_divergence: bool
    money_flow_slope: float
    bullish_sfp: bool
    bearish_sfp: bool
    recent_low_broke_val: bool
    recent_high_broke_vah: bool


# ── Decisions ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class EntryDecision:
    """Outcome of the entry gates: a side, or None with every failed gate."""

    signal: Optional[Side]
    reasons: tuple[ReasonCode, ...]


@dataclass(frozen=True)
class DecisionDiagnostics:
    """Why a bar did or did not trade, per side."""

    signal: Optional[Side]
    failed_long_reasons: tuple[ReasonCode, ...] = ()
    failed_short_reasons: tuple[ReasonCode, ...] = ()


@dataclass(frozen=True)
class TakeProfitInstruction:
    id: str
    label: str
    price: float
    size_fraction: float
    move_stop_to_breakeven: bool = False


@dataclass(frozen=True)
class IntentMeta:
    range: ValueAreaLevels
    stop_price: float
    tp1_price: float
    tp2_price: float
    diagnostics: DecisionDiagnostics


@dataclass(frozen=True)
class EnterIntent:
    """Open a new position with a market order at *entry_price*."""

    bot_id: str
    strategy_id: str
    time: int
    reasons: tuple[ReasonCode, ...]
    side: Side
    entry_price: float
    stop_price: float
    take_profits: tuple[TakeProfitInstruction, ...]
    close_on_opposite_signal: bool
    cooldown_bars: int
    meta: Optional[IntentMeta] = None
    entry_type: str = "market"
    kind: str = field(default="enter", init=False)


@dataclass(frozen=True)
class HoldIntent:
    bot_id: str
    strategy_id: str
    time: int
    reasons: tuple[ReasonCode, ...]
    meta: Optional[IntentMeta] = None
    kind: str = field(default="hold", init=False)


@dataclass(frozen=True)
class CloseIntent:
    """Close the remaining quantity of an open position at *price*."""

    bot_id: str
    strategy_id: str
    time: int
    reasons: tuple[ReasonCode, ...]
    side: Side
    price: float
    meta: Optional[IntentMeta] = None
    kind: str = field(default="close", init=False)


TradingIntent = Union[EnterIntent, HoldIntent, CloseIntent]


@dataclass(frozen=True)
class StrategyDecision:
    """The contract consumed by backtests and the live execution layer."""

    snapshot_time: int
    confidence: float
    reasons: tuple[ReasonCode, ...]
    intents: tuple[TradingIntent, ...]
    diagnostics: DecisionDiagnostics


# ── Position state ───────────────────────────────────────────────────────

# Residual quantities at or below this are treated as fully closed.
QUANTITY_EPSILON = 1e-10


@dataclass
class OpenPosition:
    """An open position tracked by the simulator (or supplied by a live caller).

    Only ``reduce`` and ``complete_target`` mutate it.
    """

    side: Side
    quantity: float
    remaining_quantity: float
    entry_price: float
    stop_price: float
    tp1_price: float
    tp2_price: float
    tp1_done: bool = False
    tp2_done: bool = False

    @property
    def is_open(self) -> bool:
        return self.remaining_quantity > 0

    def reduce(self, quantity: float) -> float:
        """Remove up to *quantity* from the position; return the amount removed."""
        qty = min(quantity, self.remaining_quantity)
        if qty <= 0:
            return 0.0
        self.remaining_quantity -= qty
        if self.remaining_quantity <= QUANTITY_EPSILON:
            self.remaining_quantity = 0.0
        return qty

    def complete_target(self, name: str, move_stop_to_breakeven: bool = False) -> None:
        """Mark take-profit *name* (``"tp1"`` / ``"tp2"``) as filled."""
        if name == "tp1":
            self.tp1_done = True
            if move_stop_to_breakeven:
                self.stop_price = self.entry_price
        elif name == "tp2":
            self.tp2_done = True
        else:
            raise ValueError(f"target must be 'tp1' or 'tp2', got '{name}'")
