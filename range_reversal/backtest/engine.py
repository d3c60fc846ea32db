"""Backtest engine — replays historical candles through strategy and risk.

Iterates execution candles chronologically, evaluating the range-reversal
gates on every bar and simulating partial take-profits, stops, opposite
signal exits and cooldowns with virtual equity.  No real orders are
placed, and identical inputs always produce identical results.
"""

import logging
from typing import Mapping, Optional, Union

from range_reversal.backtest.models import (
    BacktestInput,
    BacktestResult,
    EquityPoint,
    ExitReason,
    Trade,
    TradeBuilder,
    TradeExit,
)
from range_reversal.backtest.stats import calculate_metrics
from range_reversal.risk.position_sizer import size_position
from range_reversal.strategy.config import StrategyConfig, resolve_config
from range_reversal.strategy.entry import evaluate_entry
from range_reversal.strategy.models import Candle, OpenPosition, Side
from range_reversal.strategy.range_reversal import (
    build_signal_snapshot,
    compute_series_indicators,
    resolve_take_profit_levels,
    stop_price_for,
)

logger = logging.getLogger("rangereversal.backtest")


# ── Fill math ────────────────────────────────────────────────────────────


def fee_for(price: float, quantity: float, fee_rate: float) -> float:
    return abs(price * quantity) * fee_rate


def gross_pnl_for(
    side: Side, entry: float, exit_price: float, quantity: float, multiplier: float,
) -> float:
    if side is Side.LONG:
        return (exit_price - entry) * quantity * multiplier
    return (entry - exit_price) * quantity * multiplier


def target_touched(side: Side, candle: Candle, price: float) -> bool:
    if side is Side.LONG:
        return candle.high >= price
    return candle.low <= price


def stop_touched(side: Side, candle: Candle, price: float) -> bool:
    if side is Side.LONG:
        return candle.low <= price
    return candle.high >= price


# ── Simulation state ─────────────────────────────────────────────────────


class _Simulation:
    """Mutable state of one run: equity, the open position and the ledger."""

    def __init__(self, config: StrategyConfig, initial_equity: float) -> None:
        self.config = config
        self.equity = initial_equity
        self.position: Optional[OpenPosition] = None
        self.trade: Optional[TradeBuilder] = None
        self.trades: list[Trade] = []
        self.equity_curve: list[EquityPoint] = []
        self.cooldown_until = -1
        self._next_trade_id = 1

    def open(self, side: Side, candle: Candle, levels) -> None:
        """Size and open a position at the bar close; no-op at zero size."""
        risk = self.config.risk
        entry_price = candle.close
        stop_price = stop_price_for(side, candle, risk.sl_buffer_pct)

        sizing = size_position(self.equity, entry_price, stop_price, risk)
        if sizing.quantity <= 0:
            logger.debug("t=%d: %s signal sized to zero, skipped", candle.time, side.value)
            return

        tp1, tp2 = resolve_take_profit_levels(levels, side, self.config)
        self.position = OpenPosition(
            side=side,
            quantity=sizing.quantity,
            remaining_quantity=sizing.quantity,
            entry_price=entry_price,
            stop_price=stop_price,
            tp1_price=tp1,
            tp2_price=tp2,
        )

        entry_fee = fee_for(entry_price, sizing.quantity, risk.fee_rate)
        self.equity -= entry_fee
        self.trade = TradeBuilder(
            id=self._next_trade_id,
            side=side,
            entry_time=candle.time,
            entry_price=entry_price,
            stop_price_at_entry=stop_price,
            quantity=sizing.quantity,
            entry_fee=entry_fee,
        )
        self._next_trade_id += 1

        logger.debug(
            "t=%d: open #%d %s qty=%.6f @ %.6f  stop=%.6f  tp1=%.6f  tp2=%.6f",
            candle.time, self.trade.id, side.value, sizing.quantity,
            entry_price, stop_price, tp1, tp2,
        )

    def close_portion(
        self, candle: Candle, reason: ExitReason, quantity: float, price: float,
    ) -> None:
        """Fill up to *quantity* at *price*; finalises the trade when flat."""
        position, trade = self.position, self.trade
        if position is None or trade is None or quantity <= 0:
            return

        qty = position.reduce(quantity)
        if qty <= 0:
            return

        risk = self.config.risk
        gross = gross_pnl_for(
            position.side, position.entry_price, price, qty, risk.contract_multiplier,
        )
        fee = fee_for(price, qty, risk.fee_rate)
        net = gross - fee
        self.equity += net
        trade.record(TradeExit(reason, candle.time, price, qty, gross, fee, net))

        if not position.is_open:
            closed = trade.close(candle.time, price)
            self.trades.append(closed)
            self.position = None
            self.trade = None
            logger.debug(
                "t=%d: close #%d via %s @ %.6f  net=%.6f",
                candle.time, closed.id, reason, price, closed.net_pnl,
            )

    def _pending_targets(self) -> list[tuple[str, float, float]]:
        """``(name, price, quantity)`` of unfilled targets, nearest first."""
        position = self.position
        exits = self.config.exits
        targets = []
        if not position.tp1_done:
            targets.append(("tp1", position.tp1_price, position.quantity * exits.tp1_size_pct))
        if not position.tp2_done:
            targets.append(("tp2", position.tp2_price, position.quantity * exits.tp2_size_pct))
        targets.sort(key=lambda t: t[1], reverse=position.side is Side.SHORT)
        return targets

    def _process_targets(self, candle: Candle, targets) -> None:
        for name, price, quantity in targets:
            position = self.position
            if position is None:
                return
            if not target_touched(position.side, candle, price):
                continue

            self.close_portion(candle, name, quantity, price)
            if self.position is None:
                return
            position.complete_target(
                name,
                move_stop_to_breakeven=(
                    name == "tp1" and self.config.exits.move_stop_to_breakeven_on_tp1
                ),
            )

    def _process_stop(self, candle: Candle) -> None:
        position = self.position
        if position is None:
            return
        if stop_touched(position.side, candle, position.stop_price):
            self.close_portion(
                candle, "stop", position.remaining_quantity, position.stop_price,
            )

    def manage(self, index: int, candle: Candle, signal: Optional[Side]) -> None:
        """Apply this bar's exits to the open position."""
        exits = self.config.exits
        targets = self._pending_targets()

        if self.config.fill_model.intrabar_exit_priority == "stop-first":
            self._process_stop(candle)
            self._process_targets(candle, targets)
        else:
            self._process_targets(candle, targets)
            self._process_stop(candle)

        if (
            self.position is not None
            and exits.runner_exit_on_opposite_signal
            and signal is not None
            and signal is not self.position.side
        ):
            self.close_portion(
                candle, "signal", self.position.remaining_quantity, candle.close,
            )

        if self.position is None:
            self.cooldown_until = index + exits.cooldown_bars + 1


# ── Engine ───────────────────────────────────────────────────────────────


class BacktestEngine:
    """Simulates the range-reversal strategy on historical candle data.

    Args:
        config: Resolved strategy configuration.
    """

    def __init__(self, config: StrategyConfig) -> None:
        self._config = config

    # ── Public API ───────────────────────────────────────────────────────

    def run(self, backtest_input: BacktestInput) -> BacktestResult:
        """Execute a full backtest.

        Each bar, in order:
            1. Build the snapshot and run the entry gates.
            2. Apply stop / take-profit fills in the configured intrabar
               order, then the opposite-signal runner exit.
            3. Open a new position when flat, out of cooldown and signalled.
            4. Record equity.

        A position still open after the last bar is closed at its close
        with reason ``end``, replacing the last equity point.
        """
        config = self._config
        candles = backtest_input.execution_candles
        primary = backtest_input.primary_range_candles or candles
        secondary = backtest_input.secondary_range_candles or candles

        sim = _Simulation(config, backtest_input.initial_equity)
        indicators = compute_series_indicators(candles, config)

        for i, candle in enumerate(candles):
            snapshot = build_signal_snapshot(
                candles, i, config,
                primary_range_candles=primary,
                secondary_range_candles=secondary,
                indicators=indicators,
            )
            signal = evaluate_entry(snapshot, config).signal

            if sim.position is not None:
                sim.manage(i, candle, signal)

            if sim.position is None and i >= sim.cooldown_until and signal is not None:
                sim.open(signal, candle, snapshot.range.effective)

            sim.equity_curve.append(EquityPoint(candle.time, sim.equity))

        if sim.position is not None and candles:
            last = candles[-1]
            sim.close_portion(last, "end", sim.position.remaining_quantity, last.close)
            sim.equity_curve[-1] = EquityPoint(last.time, sim.equity)

        metrics = calculate_metrics(
            sim.trades, sim.equity_curve, backtest_input.initial_equity,
        )
        logger.info(
            "Backtest complete: %d bars, %d trades (%d W / %d L), "
            "net P&L %.2f, ending equity %.2f, max DD %.2f%%",
            len(candles), metrics.total_trades, metrics.wins, metrics.losses,
            metrics.net_pnl, metrics.ending_equity, metrics.max_drawdown_pct * 100,
        )

        return BacktestResult(
            config=config,
            trades=tuple(sim.trades),
            equity_curve=tuple(sim.equity_curve),
            metrics=metrics,
        )


def run_backtest(
    backtest_input: BacktestInput,
    overrides: Union[StrategyConfig, Mapping, None] = None,
) -> BacktestResult:
    """Resolve *overrides* onto the defaults and run one backtest.

    Raises ``ConfigValidationError`` for invalid overrides.
    """
    return BacktestEngine(resolve_config(overrides)).run(backtest_input)
