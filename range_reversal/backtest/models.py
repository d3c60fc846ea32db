"""Backtest data models — inputs, ledger records and results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional, Sequence

from range_reversal.strategy.config import StrategyConfig
from range_reversal.strategy.models import Candle, Side

ExitReason = Literal["tp1", "tp2", "stop", "signal", "end"]


@dataclass(frozen=True)
class BacktestInput:
    """Candle series for one run.

    Missing range series default to *execution_candles*.
    """

    execution_candles: Sequence[Candle]
    initial_equity: float = 1000.0
    primary_range_candles: Optional[Sequence[Candle]] = None
    secondary_range_candles: Optional[Sequence[Candle]] = None


@dataclass(frozen=True)
class TradeExit:
    """One partial or final fill closing part of a position."""

    reason: ExitReason
    time: int
    price: float
    quantity: float
    gross_pnl: float
    fee: float
    net_pnl: float


@dataclass(frozen=True)
class Trade:
    """A fully closed position.  Appended to the ledger exactly once."""

    id: int
    side: Side
    entry_time: int
    entry_price: float
    stop_price_at_entry: float
    quantity: float
    entry_fee: float
    exits: tuple[TradeExit, ...]
    close_time: int
    close_price: float
    gross_pnl: float
    fees: float
    net_pnl: float


@dataclass
class TradeBuilder:
    """Mutable accumulator for the trade currently open in a simulation."""

    id: int
    side: Side
    entry_time: int
    entry_price: float
    stop_price_at_entry: float
    quantity: float
    entry_fee: float
    exits: list[TradeExit] = field(default_factory=list)
    gross_pnl: float = 0.0
    fees: float = 0.0
    net_pnl: float = 0.0

    def __post_init__(self) -> None:
        self.fees = self.entry_fee
        self.net_pnl = -self.entry_fee

    def record(self, exit_: TradeExit) -> None:
        self.exits.append(exit_)
        self.gross_pnl += exit_.gross_pnl
        self.fees += exit_.fee
        self.net_pnl += exit_.net_pnl

    def close(self, time: int, price: float) -> Trade:
        return Trade(
            id=self.id,
            side=self.side,
            entry_time=self.entry_time,
            entry_price=self.entry_price,
            stop_price_at_entry=self.stop_price_at_entry,
            quantity=self.quantity,
            entry_fee=self.entry_fee,
            exits=tuple(self.exits),
            close_time=time,
            close_price=price,
            gross_pnl=self.gross_pnl,
            fees=self.fees,
            net_pnl=self.net_pnl,
        )


@dataclass(frozen=True)
class EquityPoint:
    time: int
    equity: float


@dataclass(frozen=True)
class BacktestMetrics:
    """Aggregates recomputable from the ledger and equity curve.

    ``max_drawdown_pct`` is a fraction (0.05 = 5 %).  ``profit_factor`` is
    None when there are no losing trades.
    """

    total_trades: int
    wins: int
    losses: int
    win_rate: float
    net_pnl: float
    gross_profit: float
    gross_loss: float
    profit_factor: Optional[float]
    max_drawdown_pct: float
    ending_equity: float


@dataclass(frozen=True)
class BacktestResult:
    config: StrategyConfig
    trades: tuple[Trade, ...]
    equity_curve: tuple[EquityPoint, ...]
    metrics: BacktestMetrics
