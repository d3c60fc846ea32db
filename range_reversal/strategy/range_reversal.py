"""Range Reversal strategy — fades excursions outside a volume-profile range.

Flow per closed execution bar:
    1. Cut primary / secondary windows at the bar time → value areas.
    2. Derive divergence, money-flow slope, SFP and sweep flags.
    3. Run the long / short entry gates.
    4. Turn the gate result plus the open position (if any) into a
       ``StrategyDecision`` holding exactly one enter / hold / close intent.

Per-bar feature overrides carried on a candle replace the derived value
for that field only.
"""

import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence, Union

import numpy as np

from range_reversal.strategy.base import MarketContext
from range_reversal.strategy.config import StrategyConfig, resolve_config
from range_reversal.strategy.entry import EvaluatedEntry, evaluate_entry_state
from range_reversal.strategy.indicators import money_flow, slope_at, wave_trend
from range_reversal.strategy.models import (
    Candle,
    CloseIntent,
    EnterIntent,
    EntryDecision,
    FeatureOverrides,
    HoldIntent,
    IntentMeta,
    OpenPosition,
    ReasonCode,
    Side,
    SignalSnapshot,
    StrategyDecision,
    TakeProfitInstruction,
    ValueAreaLevels,
)
from range_reversal.strategy.range_profile import (
    apply_range_overrides,
    build_range_context,
    resolve_level,
    slice_up_to_time,
)
from range_reversal.strategy.signals import (
    detect_bearish_divergence,
    detect_bearish_sfp,
    detect_bullish_divergence,
    detect_bullish_sfp,
)

logger = logging.getLogger("rangereversal")

STRATEGY_ID = "range-reversal"
STRATEGY_VERSION = "1"


# ── Snapshot ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SeriesIndicators:
    """Oscillator arrays aligned with an execution series.

    Every value at index ``i`` depends only on bars ``0..i``, so one
    computation over the whole series serves every bar of a backtest.
    """

    wave_trend: np.ndarray
    money_flow: np.ndarray


def compute_series_indicators(
    candles: Sequence[Candle], config: StrategyConfig,
) -> SeriesIndicators:
    sig = config.signal
    wt = wave_trend(
        candles,
        sig.wave_trend_channel_length,
        sig.wave_trend_average_length,
        sig.wave_trend_signal_length,
    )
    return SeriesIndicators(
        wave_trend=wt.wt1,
        money_flow=money_flow(candles, sig.money_flow_period),
    )


def _override(features: Optional[FeatureOverrides], name: str):
    return None if features is None else getattr(features, name)


def _pick(override, derive):
    """*override* unless it is None, else the result of *derive()*."""
    return override if override is not None else derive()


def build_signal_snapshot(
    execution_candles: Sequence[Candle],
    index: int,
    config: StrategyConfig,
    primary_range_candles: Optional[Sequence[Candle]] = None,
    secondary_range_candles: Optional[Sequence[Candle]] = None,
    indicators: Optional[SeriesIndicators] = None,
) -> SignalSnapshot:
    """Assemble the feature snapshot for the bar at *index*.

    Args:
        execution_candles: Execution-timeframe series, sorted by time.
        index: Bar to evaluate.  Bars after it are never read.
        config: Resolved strategy configuration.
        primary_range_candles: Higher-timeframe series for the primary
            value area.  Empty or ``None`` → the execution series.
        secondary_range_candles: Series for the secondary value area.
            Empty or ``None`` → the execution series.
        indicators: Precomputed ``compute_series_indicators`` output for
            *execution_candles*; computed on demand when omitted.

    Raises:
        IndexError: *index* is outside the execution series.
    """
    if index < 0 or index >= len(execution_candles):
        raise IndexError(f"Execution candle index out of range: {index}")

    candle = execution_candles[index]
    features = candle.features
    sig = config.signal

    if indicators is None:
        indicators = compute_series_indicators(execution_candles[: index + 1], config)

    primary_source = primary_range_candles or execution_candles
    secondary_source = secondary_range_candles or execution_candles
    range_ctx = build_range_context(
        slice_up_to_time(primary_source, candle.time, config.range.primary_lookback_bars),
        slice_up_to_time(secondary_source, candle.time, config.range.secondary_lookback_bars),
        config,
    )
    range_ctx = apply_range_overrides(range_ctx, features)
    levels = range_ctx.effective

    sfp_lookback = sig.swing_lookback * 3
    excursion_bars = max(1, sig.price_excursion_lookback_bars)
    excursion = execution_candles[max(0, index + 1 - excursion_bars): index + 1]

    return SignalSnapshot(
        time=candle.time,
        price=candle.close,
        range=range_ctx,
        bullish_divergence=_pick(
            _override(features, "bullish_divergence"),
            lambda: detect_bullish_divergence(
                execution_candles, indicators.wave_trend, index,
                sig.swing_lookback, sig.max_bars_after_divergence,
            ),
        ),
        bearish_divergence=_pick(
            _override(features, "bearish_divergence"),
            lambda: detect_bearish_divergence(
                execution_candles, indicators.wave_trend, index,
                sig.swing_lookback, sig.max_bars_after_divergence,
            ),
        ),
        money_flow_slope=_pick(
            _override(features, "money_flow_slope"),
            lambda: slope_at(indicators.money_flow, index, sig.money_flow_slope_bars),
        ),
        bullish_sfp=_pick(
            _override(features, "bullish_sfp"),
            lambda: detect_bullish_sfp(execution_candles, index, sfp_lookback),
        ),
        bearish_sfp=_pick(
            _override(features, "bearish_sfp"),
            lambda: detect_bearish_sfp(execution_candles, index, sfp_lookback),
        ),
        recent_low_broke_val=_pick(
            _override(features, "recent_low_broke_val"),
            lambda: any(c.low < levels.val for c in excursion),
        ),
        recent_high_broke_vah=_pick(
            _override(features, "recent_high_broke_vah"),
            lambda: any(c.high > levels.vah for c in excursion),
        ),
    )


# ── Targets / stops ──────────────────────────────────────────────────────


def resolve_take_profit_levels(
    levels: ValueAreaLevels, side: Side, config: StrategyConfig,
) -> tuple[float, float]:
    """Return ``(tp1, tp2)`` with tp1 the target nearer to entry.

    For a long the nearer target is the lower price, for a short the
    higher one, whichever range level each is configured to use.
    """
    tp1 = resolve_level(levels, config.exits.tp1_level)
    if side is Side.LONG:
        tp2 = resolve_level(levels, config.exits.tp2_long_level)
        return (tp1, tp2) if tp2 >= tp1 else (tp2, tp1)
    tp2 = resolve_level(levels, config.exits.tp2_short_level)
    return (tp1, tp2) if tp2 <= tp1 else (tp2, tp1)


def stop_price_for(side: Side, candle: Candle, sl_buffer_pct: float) -> float:
    """Stop beyond the confirming bar's extreme, widened by *sl_buffer_pct*."""
    if side is Side.LONG:
        return candle.low * (1 - sl_buffer_pct)
    return candle.high * (1 + sl_buffer_pct)


# ── Decision ─────────────────────────────────────────────────────────────


def _decision(
    snapshot: SignalSnapshot,
    evaluated: EvaluatedEntry,
    confidence: float,
    intent,
) -> StrategyDecision:
    return StrategyDecision(
        snapshot_time=snapshot.time,
        confidence=confidence,
        reasons=evaluated.decision.reasons,
        intents=(intent,),
        diagnostics=evaluated.diagnostics,
    )


def build_decision(
    bot_id: str,
    snapshot: SignalSnapshot,
    config: StrategyConfig,
    execution_candle: Candle,
    position: Optional[OpenPosition],
    strategy_id: str = STRATEGY_ID,
) -> StrategyDecision:
    """Turn the gate result and the open position into one intent.

    Precedence:
        1. Confirmed signal against an open position and opposite-signal
           exits enabled → close at the bar close.
        2. Position still open → hold.
        3. No signal → hold with the failed gate codes.
        4. Otherwise → market entry at the bar close with a buffered stop
           and two range take-profits.
    """
    evaluated = evaluate_entry_state(snapshot, config)
    decision: EntryDecision = evaluated.decision
    signal = decision.signal
    close_price = execution_candle.close
    position_open = position is not None and position.is_open

    if (
        signal is not None
        and position_open
        and position.side is not signal
        and config.exits.runner_exit_on_opposite_signal
    ):
        logger.debug(
            "%s: %s signal against open %s position, closing at %.6f",
            bot_id, signal.value, position.side.value, close_price,
        )
        meta = IntentMeta(
            range=snapshot.range.effective,
            stop_price=position.stop_price,
            tp1_price=close_price,
            tp2_price=close_price,
            diagnostics=evaluated.diagnostics,
        )
        intent = CloseIntent(
            bot_id=bot_id,
            strategy_id=strategy_id,
            time=snapshot.time,
            reasons=(ReasonCode.OPPOSITE_SIGNAL_CONFIRMED,),
            side=position.side,
            price=close_price,
            meta=meta,
        )
        return _decision(snapshot, evaluated, 1.0, intent)

    if position_open:
        meta = IntentMeta(
            range=snapshot.range.effective,
            stop_price=position.stop_price,
            tp1_price=close_price,
            tp2_price=close_price,
            diagnostics=evaluated.diagnostics,
        )
        intent = HoldIntent(
            bot_id=bot_id,
            strategy_id=strategy_id,
            time=snapshot.time,
            reasons=decision.reasons or (ReasonCode.POSITION_OPEN_HOLD,),
            meta=meta,
        )
        return _decision(snapshot, evaluated, 1.0 if signal else 0.0, intent)

    if signal is None:
        intent = HoldIntent(
            bot_id=bot_id,
            strategy_id=strategy_id,
            time=snapshot.time,
            reasons=decision.reasons or (ReasonCode.NO_CONFLUENCE,),
        )
        return _decision(snapshot, evaluated, 0.0, intent)

    stop_price = stop_price_for(signal, execution_candle, config.risk.sl_buffer_pct)
    tp1, tp2 = resolve_take_profit_levels(snapshot.range.effective, signal, config)
    exits = config.exits

    logger.debug(
        "%s: %s entry @ %.6f  stop=%.6f  tp1=%.6f  tp2=%.6f",
        bot_id, signal.value, close_price, stop_price, tp1, tp2,
    )

    intent = EnterIntent(
        bot_id=bot_id,
        strategy_id=strategy_id,
        time=snapshot.time,
        reasons=decision.reasons,
        side=signal,
        entry_price=close_price,
        stop_price=stop_price,
        take_profits=(
            TakeProfitInstruction(
                id="tp1",
                label="TP1",
                price=tp1,
                size_fraction=exits.tp1_size_pct,
                move_stop_to_breakeven=exits.move_stop_to_breakeven_on_tp1,
            ),
            TakeProfitInstruction(
                id="tp2",
                label="TP2",
                price=tp2,
                size_fraction=exits.tp2_size_pct,
            ),
        ),
        close_on_opposite_signal=exits.runner_exit_on_opposite_signal,
        cooldown_bars=exits.cooldown_bars,
        meta=IntentMeta(
            range=snapshot.range.effective,
            stop_price=stop_price,
            tp1_price=tp1,
            tp2_price=tp2,
            diagnostics=evaluated.diagnostics,
        ),
    )
    return _decision(snapshot, evaluated, 1.0, intent)


# ── Strategy objects ─────────────────────────────────────────────────────


class RangeReversalStrategy:
    """Implements ``StrategyProtocol`` for a fixed configuration.

    Holds no state between calls; the caller supplies the open position.
    """

    id = STRATEGY_ID
    version = STRATEGY_VERSION

    def __init__(self, config: StrategyConfig) -> None:
        self.config = config

    def build_snapshot(self, market: MarketContext) -> SignalSnapshot:
        return build_signal_snapshot(
            market.execution_candles,
            market.index,
            self.config,
            primary_range_candles=market.primary_range,
            secondary_range_candles=market.secondary_range,
        )

    def evaluate(
        self,
        market: MarketContext,
        snapshot: SignalSnapshot,
        position: Optional[OpenPosition],
        bot_id: str,
    ) -> StrategyDecision:
        if market.index < 0 or market.index >= len(market.execution_candles):
            raise IndexError(f"Execution candle index out of range: {market.index}")
        return build_decision(
            bot_id,
            snapshot,
            self.config,
            market.execution_candles[market.index],
            position,
            strategy_id=self.id,
        )


class ConfiguredStrategy:
    """A resolved configuration bundled with every strategy entry point."""

    def __init__(self, config: StrategyConfig) -> None:
        self.config = config
        self.strategy = RangeReversalStrategy(config)

    def build_snapshot(
        self,
        execution_candles: Sequence[Candle],
        index: int,
        primary_range_candles: Optional[Sequence[Candle]] = None,
        secondary_range_candles: Optional[Sequence[Candle]] = None,
    ) -> SignalSnapshot:
        return build_signal_snapshot(
            execution_candles,
            index,
            self.config,
            primary_range_candles=primary_range_candles,
            secondary_range_candles=secondary_range_candles,
        )

    def evaluate_entry(self, snapshot: SignalSnapshot) -> EntryDecision:
        return evaluate_entry_state(snapshot, self.config).decision

    def build_decision(
        self,
        bot_id: str,
        snapshot: SignalSnapshot,
        execution_candle: Candle,
        position: Optional[OpenPosition] = None,
        strategy_id: str = STRATEGY_ID,
    ) -> StrategyDecision:
        return build_decision(
            bot_id, snapshot, self.config, execution_candle, position,
            strategy_id=strategy_id,
        )

    def run_backtest(self, backtest_input):
        """Run ``BacktestEngine`` with this configuration."""
        from range_reversal.backtest.engine import BacktestEngine

        return BacktestEngine(self.config).run(backtest_input)


def create_configured_strategy(
    overrides: Union[StrategyConfig, Mapping, None] = None,
) -> ConfiguredStrategy:
    """Resolve *overrides* onto the defaults and wrap the result.

    Raises ``ConfigValidationError`` for invalid overrides.
    """
    return ConfiguredStrategy(resolve_config(overrides))
