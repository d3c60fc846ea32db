"""Tests for the range-reversal strategy — entry gates, decisions, snapshots, registry."""

import math

import pytest

from range_reversal.strategy.base import MarketContext, StrategyProtocol
from range_reversal.strategy.config import ConfigValidationError, resolve_config
from range_reversal.strategy.entry import evaluate_entry, evaluate_entry_state
from range_reversal.strategy.models import (
    Candle,
    CloseIntent,
    EnterIntent,
    FeatureOverrides,
    HoldIntent,
    OpenPosition,
    RangeContext,
    ReasonCode,
    Side,
    SignalSnapshot,
    ValueAreaLevels,
)
from range_reversal.strategy.range_reversal import (
    RangeReversalStrategy,
    build_decision,
    build_signal_snapshot,
    compute_series_indicators,
    create_configured_strategy,
    resolve_take_profit_levels,
    stop_price_for,
)
from range_reversal.strategy.registry import STRATEGY_REGISTRY, get_strategy


def _make_candle(time, o, h, l, c, vol=100.0, features=None):
    return Candle(time=time, open=o, high=h, low=l, close=c, volume=vol, features=features)


def _snapshot(price, val=100.0, vah=110.0, poc=105.0, aligned=True, **flags):
    levels = ValueAreaLevels(val=val, vah=vah, poc=poc)
    fields = dict(
        bullish_divergence=False,
        bearish_divergence=False,
        money_flow_slope=0.0,
        bullish_sfp=False,
        bearish_sfp=False,
        recent_low_broke_val=False,
        recent_high_broke_vah=False,
    )
    fields.update(flags)
    return SignalSnapshot(
        time=1,
        price=price,
        range=RangeContext(levels, levels, levels, 1.0, aligned),
        **fields,
    )


def _long_ready(**kw):
    flags = dict(bullish_divergence=True, money_flow_slope=0.5, bullish_sfp=True)
    flags.update(kw)
    return _snapshot(99.0, **flags)


def _short_ready(**kw):
    flags = dict(bearish_divergence=True, money_flow_slope=-0.5, bearish_sfp=True)
    flags.update(kw)
    return _snapshot(111.0, **flags)


def _long_position(**kw):
    values = dict(
        side=Side.LONG,
        quantity=1.0,
        remaining_quantity=1.0,
        entry_price=99.0,
        stop_price=97.0,
        tp1_price=105.0,
        tp2_price=110.0,
    )
    values.update(kw)
    return OpenPosition(**values)


# ── Entry gates ──────────────────────────────────────────────────────────


class TestEntryGates:
    def test_long_confirmed(self):
        decision = evaluate_entry(_long_ready(), resolve_config())
        assert decision.signal is Side.LONG
        assert decision.reasons == (ReasonCode.LONG_SIGNAL_CONFIRMED,)

    def test_short_confirmed(self):
        decision = evaluate_entry(_short_ready(), resolve_config())
        assert decision.signal is Side.SHORT
        assert decision.reasons == (ReasonCode.SHORT_SIGNAL_CONFIRMED,)

    def test_no_signal_lists_every_failed_gate_once(self):
        decision = evaluate_entry(_snapshot(105.0, aligned=False), resolve_config())
        assert decision.signal is None
        assert decision.reasons == (
            ReasonCode.RANGE_NOT_ALIGNED,
            ReasonCode.PRICE_NOT_BELOW_VAL,
            ReasonCode.MISSING_BULLISH_DIVERGENCE,
            ReasonCode.MONEY_FLOW_NOT_RISING,
            ReasonCode.MISSING_BULLISH_SFP,
            ReasonCode.PRICE_NOT_ABOVE_VAH,
            ReasonCode.MISSING_BEARISH_DIVERGENCE,
            ReasonCode.MONEY_FLOW_NOT_FALLING,
            ReasonCode.MISSING_BEARISH_SFP,
        )
        state = evaluate_entry_state(_snapshot(105.0, aligned=False), resolve_config())
        assert ReasonCode.RANGE_NOT_ALIGNED in state.diagnostics.failed_long_reasons
        assert ReasonCode.RANGE_NOT_ALIGNED in state.diagnostics.failed_short_reasons

    def test_diagnostics_keep_per_side_failures(self):
        state = evaluate_entry_state(_long_ready(), resolve_config())
        assert state.diagnostics.signal is Side.LONG
        assert state.diagnostics.failed_long_reasons == ()
        assert ReasonCode.PRICE_NOT_ABOVE_VAH in state.diagnostics.failed_short_reasons

    def test_unaligned_range_blocks_entry(self):
        decision = evaluate_entry(_long_ready(aligned=False), resolve_config())
        assert decision.signal is None
        assert ReasonCode.RANGE_NOT_ALIGNED in decision.reasons

    def test_flat_money_flow_blocks_both_sides(self):
        snap = _snapshot(99.0, bullish_divergence=True, bullish_sfp=True)
        decision = evaluate_entry(snap, resolve_config())
        assert decision.signal is None
        assert ReasonCode.MONEY_FLOW_NOT_RISING in decision.reasons
        assert ReasonCode.MONEY_FLOW_NOT_FALLING in decision.reasons

    def test_nan_money_flow_is_not_rising(self):
        snap = _long_ready(money_flow_slope=math.nan)
        decision = evaluate_entry(snap, resolve_config())
        assert decision.signal is None
        assert ReasonCode.MONEY_FLOW_NOT_RISING in decision.reasons

    def test_nan_money_flow_is_not_falling(self):
        decision = evaluate_entry(_short_ready(money_flow_slope=math.nan), resolve_config())
        assert decision.signal is None
        assert ReasonCode.MONEY_FLOW_NOT_FALLING in decision.reasons

    def test_optional_gates(self):
        config = resolve_config({"signal": {"requireDivergence": False, "requireSfp": False}})
        snap = _snapshot(99.0, money_flow_slope=0.5)
        assert evaluate_entry(snap, config).signal is Side.LONG

    def test_price_inside_range_without_armed_reentry(self):
        snap = _long_ready()
        inside = _snapshot(
            102.0, bullish_divergence=True, money_flow_slope=0.5,
            bullish_sfp=True, recent_low_broke_val=True,
        )
        assert evaluate_entry(snap, resolve_config()).signal is Side.LONG
        decision = evaluate_entry(inside, resolve_config())
        assert decision.signal is None
        assert ReasonCode.PRICE_NOT_BELOW_VAL in decision.reasons


class TestArmedReentry:
    def _config(self, distance):
        return resolve_config({
            "signal": {
                "allowArmedReentry": True,
                "armedReentryMaxDistancePct": distance,
                "priceExcursionLookbackBars": 4,
            }
        })

    def _inside(self, price, swept=True):
        return _snapshot(
            price, val=101.0, vah=109.0, poc=105.0,
            bullish_divergence=True, money_flow_slope=0.4,
            bullish_sfp=True, recent_low_broke_val=swept,
        )

    def test_reentry_within_distance(self):
        # width 8, half of it is 4 above VAL
        assert evaluate_entry(self._inside(102.0), self._config(0.5)).signal is Side.LONG

    def test_reentry_too_far(self):
        decision = evaluate_entry(self._inside(106.0), self._config(0.1))
        assert decision.signal is None
        assert ReasonCode.LONG_REENTRY_TOO_FAR_FROM_VAL in decision.reasons
        assert ReasonCode.PRICE_NOT_BELOW_VAL in decision.reasons

    def test_reentry_needs_recent_sweep(self):
        decision = evaluate_entry(self._inside(102.0, swept=False), self._config(0.5))
        assert decision.signal is None
        assert ReasonCode.MISSING_RECENT_VAL_SWEEP in decision.reasons

    def test_short_reentry(self):
        snap = _snapshot(
            108.0, val=101.0, vah=109.0, poc=105.0,
            bearish_divergence=True, money_flow_slope=-0.4,
            bearish_sfp=True, recent_high_broke_vah=True,
        )
        assert evaluate_entry(snap, self._config(0.5)).signal is Side.SHORT

    def test_collapsed_range_still_evaluates(self):
        snap = _snapshot(
            100.0, val=100.0, vah=100.0, poc=100.0,
            bullish_divergence=True, money_flow_slope=0.4,
            bullish_sfp=True, recent_low_broke_val=True,
        )
        assert evaluate_entry(snap, self._config(0.5)).signal is Side.LONG

    def test_built_from_candles(self):
        features = FeatureOverrides(
            range_valid=True, val=101, vah=109, poc=105,
            bullish_divergence=True, money_flow_slope=0.4, bullish_sfp=True,
        )
        candles = [
            _make_candle(1, 100, 101, 99, 100),
            _make_candle(2, 101, 103, 100, 102, features=features),
        ]
        config = self._config(0.5)
        snapshot = build_signal_snapshot(candles, 1, config)
        assert snapshot.recent_low_broke_val is True
        assert evaluate_entry(snapshot, config).signal is Side.LONG

    def test_built_from_candles_too_far(self):
        features = FeatureOverrides(
            range_valid=True, val=101, vah=109, poc=105,
            bullish_divergence=True, money_flow_slope=0.4, bullish_sfp=True,
        )
        candles = [
            _make_candle(1, 100, 101, 99, 100),
            _make_candle(2, 101, 107, 100, 106, features=features),
        ]
        config = self._config(0.1)
        decision = evaluate_entry(build_signal_snapshot(candles, 1, config), config)
        assert decision.signal is None
        assert ReasonCode.LONG_REENTRY_TOO_FAR_FROM_VAL in decision.reasons


# ── Targets and stops ────────────────────────────────────────────────────


class TestTargets:
    LEVELS = ValueAreaLevels(val=100.0, vah=110.0, poc=105.0)

    def test_default_long_targets(self):
        assert resolve_take_profit_levels(self.LEVELS, Side.LONG, resolve_config()) == (105.0, 110.0)

    def test_default_short_targets(self):
        assert resolve_take_profit_levels(self.LEVELS, Side.SHORT, resolve_config()) == (105.0, 100.0)

    def test_long_targets_reordered(self):
        config = resolve_config({"exits": {"tp1Level": "VAH", "tp2LongLevel": "POC"}})
        assert resolve_take_profit_levels(self.LEVELS, Side.LONG, config) == (105.0, 110.0)

    def test_short_targets_reordered(self):
        config = resolve_config({"exits": {"tp1Level": "VAL", "tp2ShortLevel": "POC"}})
        assert resolve_take_profit_levels(self.LEVELS, Side.SHORT, config) == (105.0, 100.0)

    def test_stop_beyond_bar_extreme(self):
        candle = _make_candle(1, 100, 102, 98, 99)
        assert stop_price_for(Side.LONG, candle, 0.01) == pytest.approx(97.02)
        assert stop_price_for(Side.SHORT, candle, 0.01) == pytest.approx(103.02)


# ── Decisions ────────────────────────────────────────────────────────────


class TestBuildDecision:
    CANDLE = _make_candle(1, 100, 101, 98, 99)

    def test_enter_long(self):
        config = resolve_config({"risk": {"slBufferPct": 0.001}})
        decision = build_decision("bot-1", _long_ready(), config, self.CANDLE, None)
        assert decision.confidence == 1.0
        assert decision.reasons == (ReasonCode.LONG_SIGNAL_CONFIRMED,)
        (intent,) = decision.intents
        assert isinstance(intent, EnterIntent)
        assert intent.kind == "enter"
        assert intent.side is Side.LONG
        assert intent.entry_price == 99
        assert intent.entry_type == "market"
        assert intent.stop_price == pytest.approx(98 * 0.999)
        assert [tp.id for tp in intent.take_profits] == ["tp1", "tp2"]
        assert [tp.price for tp in intent.take_profits] == [105.0, 110.0]
        assert intent.take_profits[0].move_stop_to_breakeven is True
        assert intent.cooldown_bars == 1
        assert intent.meta.tp1_price == 105.0

    def test_hold_without_confluence(self):
        snap = _snapshot(105.0)
        decision = build_decision("bot-1", snap, resolve_config(), self.CANDLE, None)
        (intent,) = decision.intents
        assert isinstance(intent, HoldIntent)
        assert decision.confidence == 0.0
        assert intent.reasons == decision.reasons
        assert ReasonCode.PRICE_NOT_BELOW_VAL in intent.reasons
        assert intent.meta is None

    def test_hold_while_position_open(self):
        decision = build_decision(
            "bot-1", _long_ready(), resolve_config(), self.CANDLE, _long_position(),
        )
        (intent,) = decision.intents
        assert isinstance(intent, HoldIntent)
        assert intent.reasons == (ReasonCode.LONG_SIGNAL_CONFIRMED,)
        assert intent.meta.stop_price == 97.0

    def test_close_on_opposite_signal(self):
        candle = _make_candle(1, 110, 112, 109, 111)
        decision = build_decision(
            "bot-1", _short_ready(), resolve_config(), candle, _long_position(),
        )
        (intent,) = decision.intents
        assert isinstance(intent, CloseIntent)
        assert intent.kind == "close"
        assert intent.side is Side.LONG
        assert intent.price == 111
        assert intent.reasons == (ReasonCode.OPPOSITE_SIGNAL_CONFIRMED,)

    def test_opposite_signal_exit_disabled(self):
        config = resolve_config({"exits": {"runnerExitOnOppositeSignal": False}})
        decision = build_decision("bot-1", _short_ready(), config, self.CANDLE, _long_position())
        assert isinstance(decision.intents[0], HoldIntent)

    def test_flat_position_is_ignored(self):
        position = _long_position(remaining_quantity=0.0)
        decision = build_decision("bot-1", _long_ready(), resolve_config(), self.CANDLE, position)
        assert isinstance(decision.intents[0], EnterIntent)

    def test_strategy_id_stamped(self):
        decision = build_decision("bot-9", _snapshot(105.0), resolve_config(), self.CANDLE, None)
        assert decision.intents[0].bot_id == "bot-9"
        assert decision.intents[0].strategy_id == "range-reversal"


# ── Snapshots ────────────────────────────────────────────────────────────


def _zigzag(n=80):
    candles = []
    for i in range(n):
        base = 100 + 4 * math.sin(i / 3)
        candles.append(_make_candle(i * 60_000, base, base + 1.2, base - 1.2, base + 0.2, 100 + (i % 7) * 10))
    return candles


class TestSnapshot:
    def test_index_out_of_range(self):
        with pytest.raises(IndexError):
            build_signal_snapshot([], 0, resolve_config())
        with pytest.raises(IndexError):
            build_signal_snapshot(_zigzag(5), 5, resolve_config())

    def test_future_bars_are_never_read(self):
        candles = _zigzag()
        config = resolve_config()
        full = build_signal_snapshot(
            candles, 50, config, indicators=compute_series_indicators(candles, config),
        )
        truncated = build_signal_snapshot(candles[:51], 50, config)
        assert full == truncated

    def test_overrides_replace_single_fields(self):
        candles = _zigzag(30)
        config = resolve_config()
        base = build_signal_snapshot(candles, 29, config)
        last = candles[29]
        pinned = _make_candle(
            last.time, last.open, last.high, last.low, last.close, last.volume,
            features=FeatureOverrides(money_flow_slope=0.75, bearish_sfp=True),
        )
        snap = build_signal_snapshot(candles[:29] + [pinned], 29, config)
        assert snap.money_flow_slope == 0.75
        assert snap.bearish_sfp is True
        assert snap.range == base.range
        assert snap.bullish_sfp == base.bullish_sfp

    def test_range_override_and_price(self):
        candles = _zigzag(10)
        last = candles[9]
        pinned = _make_candle(
            last.time, last.open, last.high, last.low, last.close, last.volume,
            features=FeatureOverrides(range_valid=False, val=1, vah=3, poc=2),
        )
        snap = build_signal_snapshot(candles[:9] + [pinned], 9, resolve_config())
        assert snap.price == last.close
        assert snap.time == last.time
        assert snap.range.effective == ValueAreaLevels(1, 3, 2)
        assert snap.range.is_aligned is False

    def test_range_series_default_to_execution(self):
        candles = _zigzag(40)
        config = resolve_config()
        a = build_signal_snapshot(candles, 39, config)
        b = build_signal_snapshot(candles, 39, config, primary_range_candles=[], secondary_range_candles=candles)
        assert a.range == b.range


# ── Strategy objects ─────────────────────────────────────────────────────


class TestStrategyObjects:
    def test_registry_lookup(self):
        strategy = get_strategy("range-reversal")
        assert isinstance(strategy, RangeReversalStrategy)
        assert isinstance(strategy, StrategyProtocol)
        assert strategy.id == "range-reversal"

    def test_registry_applies_overrides(self):
        strategy = get_strategy("range-reversal", {"risk": {"feeRate": 0.002}})
        assert strategy.config.risk.fee_rate == 0.002

    def test_unknown_strategy(self):
        with pytest.raises(KeyError, match="Unknown strategy"):
            get_strategy("grid")

    def test_registry_contents(self):
        assert set(STRATEGY_REGISTRY) == {"range-reversal"}

    def test_evaluate_through_market_context(self):
        features = FeatureOverrides(
            range_valid=True, val=101, vah=110, poc=103,
            bullish_divergence=True, money_flow_slope=0.4, bullish_sfp=True,
        )
        candles = [
            _make_candle(1, 100, 101, 99, 100),
            _make_candle(2, 100, 101, 99, 100, features=features),
        ]
        strategy = get_strategy("range-reversal")
        market = MarketContext(execution_candles=candles, index=1)
        snapshot = strategy.build_snapshot(market)
        decision = strategy.evaluate(market, snapshot, None, "bot-1")
        assert isinstance(decision.intents[0], EnterIntent)
        assert decision.snapshot_time == 2

    def test_evaluate_bad_index(self):
        strategy = get_strategy("range-reversal")
        candles = _zigzag(3)
        snapshot = build_signal_snapshot(candles, 2, strategy.config)
        with pytest.raises(IndexError):
            strategy.evaluate(MarketContext(candles, 3), snapshot, None, "bot-1")

    def test_configured_strategy(self):
        configured = create_configured_strategy({"exits": {"cooldownBars": 3}})
        assert configured.config.exits.cooldown_bars == 3
        snap = configured.build_snapshot(_zigzag(20), 19)
        assert configured.evaluate_entry(snap) == evaluate_entry(snap, configured.config)
        decision = configured.build_decision("bot-1", _long_ready(), _make_candle(1, 100, 101, 98, 99))
        assert decision.intents[0].cooldown_bars == 3

    def test_configured_strategy_rejects_bad_overrides(self):
        with pytest.raises(ConfigValidationError):
            create_configured_strategy({"exits": {"cooldownBars": -1}})

    def test_configured_strategy_stamps_strategy_id(self):
        configured = create_configured_strategy()
        candle = _make_candle(1, 100, 101, 98, 99)
        default = configured.build_decision("bot-1", _long_ready(), candle)
        custom = configured.build_decision("bot-1", _long_ready(), candle, strategy_id="rr-variant")
        assert default.intents[0].strategy_id == "range-reversal"
        assert custom.intents[0].strategy_id == "rr-variant"


# ── Feature overrides ────────────────────────────────────────────────────


class TestFeatureOverridesFromDict:
    def test_camel_case_keys(self):
        overrides = FeatureOverrides.from_dict({
            "rangeValid": True, "val": 101, "moneyFlowSlope": -0.4, "bearishSfp": False,
        })
        assert overrides == FeatureOverrides(
            range_valid=True, val=101, money_flow_slope=-0.4, bearish_sfp=False,
        )

    def test_snake_case_keys(self):
        overrides = FeatureOverrides.from_dict({"recent_low_broke_val": True, "poc": 98.5})
        assert overrides.recent_low_broke_val is True
        assert overrides.poc == 98.5

    def test_none_leaves_field_derived(self):
        assert FeatureOverrides.from_dict({"bullishSfp": None}) == FeatureOverrides()

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="sweepDepth"):
            FeatureOverrides.from_dict({"sweepDepth": 1.0})

    @pytest.mark.parametrize(
        "data, key",
        [
            ({"bullishSfp": "false"}, "bullishSfp"),
            ({"range_valid": 1}, "range_valid"),
            ({"val": "101"}, "val"),
            ({"moneyFlowSlope": True}, "moneyFlowSlope"),
        ],
    )
    def test_wrong_type(self, data, key):
        with pytest.raises(ValueError, match=key):
            FeatureOverrides.from_dict(data)

    def test_false_flag_blocks_gate(self):
        features = FeatureOverrides.from_dict({
            "rangeValid": True, "val": 101, "vah": 110, "poc": 103,
            "bullishDivergence": True, "moneyFlowSlope": 0.4, "bullishSfp": False,
        })
        candles = [
            _make_candle(1, 100, 101, 99, 100),
            _make_candle(2, 100, 101, 99, 100, features=features),
        ]
        config = resolve_config()
        decision = evaluate_entry(build_signal_snapshot(candles, 1, config), config)
        assert decision.signal is None
        assert ReasonCode.MISSING_BULLISH_SFP in decision.reasons
