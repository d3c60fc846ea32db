"""Entry gate evaluation — pure functions, no I/O.

Each side accumulates the codes of every gate it fails.  A side with no
failures is ready; the two results are then resolved into a single
``EntryDecision``:

    both ready   → no signal, ``conflicting_long_and_short_signal``
    one ready    → that side, ``<side>_signal_confirmed``
    none ready   → no signal, de-duplicated union of both failure lists
"""

import sys
from dataclasses import dataclass

from range_reversal.strategy.config import StrategyConfig
from range_reversal.strategy.models import (
    DecisionDiagnostics,
    EntryDecision,
    ReasonCode,
    Side,
    SignalSnapshot,
)


@dataclass(frozen=True)
class EvaluatedEntry:
    decision: EntryDecision
    diagnostics: DecisionDiagnostics


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _long_failures(
    snapshot: SignalSnapshot, config: StrategyConfig, reentry_distance: float,
) -> list[ReasonCode]:
    failed: list[ReasonCode] = []
    levels = snapshot.range.effective

    if not snapshot.range.is_aligned:
        failed.append(ReasonCode.RANGE_NOT_ALIGNED)

    if not snapshot.price < levels.val:
        if not config.signal.allow_armed_reentry:
            failed.append(ReasonCode.PRICE_NOT_BELOW_VAL)
        elif not snapshot.recent_low_broke_val:
            failed.append(ReasonCode.PRICE_NOT_BELOW_VAL)
            failed.append(ReasonCode.MISSING_RECENT_VAL_SWEEP)
        elif snapshot.price > levels.val + reentry_distance:
            failed.append(ReasonCode.PRICE_NOT_BELOW_VAL)
            failed.append(ReasonCode.LONG_REENTRY_TOO_FAR_FROM_VAL)

    if config.signal.require_divergence and not snapshot.bullish_divergence:
        failed.append(ReasonCode.MISSING_BULLISH_DIVERGENCE)

    if not snapshot.money_flow_slope > 0:
        failed.append(ReasonCode.MONEY_FLOW_NOT_RISING)

    if config.signal.require_sfp and not snapshot.bullish_sfp:
        failed.append(ReasonCode.MISSING_BULLISH_SFP)

    return failed


def _short_failures(
    snapshot: SignalSnapshot, config: StrategyConfig, reentry_distance: float,
) -> list[ReasonCode]:
    failed: list[ReasonCode] = []
    levels = snapshot.range.effective

    if not snapshot.range.is_aligned:
        failed.append(ReasonCode.RANGE_NOT_ALIGNED)

    if not snapshot.price > levels.vah:
        if not config.signal.allow_armed_reentry:
            failed.append(ReasonCode.PRICE_NOT_ABOVE_VAH)
        elif not snapshot.recent_high_broke_vah:
            failed.append(ReasonCode.PRICE_NOT_ABOVE_VAH)
            failed.append(ReasonCode.MISSING_RECENT_VAH_SWEEP)
        elif snapshot.price < levels.vah - reentry_distance:
            failed.append(ReasonCode.PRICE_NOT_ABOVE_VAH)
            failed.append(ReasonCode.SHORT_REENTRY_TOO_FAR_FROM_VAH)

    if config.signal.require_divergence and not snapshot.bearish_divergence:
        failed.append(ReasonCode.MISSING_BEARISH_DIVERGENCE)

    if not snapshot.money_flow_slope < 0:
        failed.append(ReasonCode.MONEY_FLOW_NOT_FALLING)

    if config.signal.require_sfp and not snapshot.bearish_sfp:
        failed.append(ReasonCode.MISSING_BEARISH_SFP)

    return failed


def evaluate_entry_state(
    snapshot: SignalSnapshot, config: StrategyConfig,
) -> EvaluatedEntry:
    """Run the long and short gates and resolve them into one decision.

    The armed re-entry allowance is a fraction (clamped to [0, 1]) of the
    effective range width; the width is floored at machine epsilon so a
    collapsed range still yields a finite bound.
    """
    levels = snapshot.range.effective
    range_width = max(levels.vah - levels.val, sys.float_info.epsilon)
    reentry_distance = range_width * _clamp(
        config.signal.armed_reentry_max_distance_pct, 0.0, 1.0,
    )

    failed_long = tuple(_long_failures(snapshot, config, reentry_distance))
    failed_short = tuple(_short_failures(snapshot, config, reentry_distance))
    long_ready = not failed_long
    short_ready = not failed_short

    if long_ready and short_ready:
        return EvaluatedEntry(
            decision=EntryDecision(
                signal=None,
                reasons=(ReasonCode.CONFLICTING_LONG_AND_SHORT_SIGNAL,),
            ),
            diagnostics=DecisionDiagnostics(None, failed_long, failed_short),
        )

    if long_ready:
        return EvaluatedEntry(
            decision=EntryDecision(Side.LONG, (ReasonCode.LONG_SIGNAL_CONFIRMED,)),
            diagnostics=DecisionDiagnostics(Side.LONG, (), failed_short),
        )

    if short_ready:
        return EvaluatedEntry(
            decision=EntryDecision(Side.SHORT, (ReasonCode.SHORT_SIGNAL_CONFIRMED,)),
            diagnostics=DecisionDiagnostics(Side.SHORT, failed_long, ()),
        )

    # dict preserves first-seen order
    reasons = tuple(dict.fromkeys(failed_long + failed_short))
    return EvaluatedEntry(
        decision=EntryDecision(signal=None, reasons=reasons),
        diagnostics=DecisionDiagnostics(None, failed_long, failed_short),
    )


def evaluate_entry(snapshot: SignalSnapshot, config: StrategyConfig) -> EntryDecision:
    """Shorthand for ``evaluate_entry_state(...).decision``."""
    return evaluate_entry_state(snapshot, config).decision
