"""Backtest statistics — pure functions for trade-series analysis."""

from typing import Optional, Sequence

from range_reversal.backtest.models import BacktestMetrics, EquityPoint, Trade
from range_reversal.risk.drawdown import DrawdownTracker


def calculate_metrics(
    trades: Sequence[Trade],
    equity_curve: Sequence[EquityPoint],
    initial_equity: float,
) -> BacktestMetrics:
    """Compute summary metrics from a closed ledger and its equity curve.

    Wins are trades with positive net P&L, losses negative; break-even
    trades count toward neither.  Ending equity is the last curve point,
    or *initial_equity* when the curve is empty.
    """
    total = len(trades)
    winners = [t.net_pnl for t in trades if t.net_pnl > 0]
    losers = [t.net_pnl for t in trades if t.net_pnl < 0]

    gross_profit = sum(winners)
    gross_loss = abs(sum(losers))
    profit_factor: Optional[float] = (
        gross_profit / gross_loss if gross_loss > 0 else None
    )

    return BacktestMetrics(
        total_trades=total,
        wins=len(winners),
        losses=len(losers),
        win_rate=len(winners) / total if total else 0.0,
        net_pnl=sum(t.net_pnl for t in trades),
        gross_profit=gross_profit,
        gross_loss=gross_loss,
        profit_factor=profit_factor,
        max_drawdown_pct=max_drawdown_pct(equity_curve),
        ending_equity=equity_curve[-1].equity if equity_curve else initial_equity,
    )


def max_drawdown_pct(equity_curve: Sequence[EquityPoint]) -> float:
    """Largest peak-to-trough decline of the curve as a fraction of the peak.

    0.0 for an empty or never-declining curve.  Points while the running
    peak is <= 0 contribute nothing.
    """
    if not equity_curve:
        return 0.0

    tracker = DrawdownTracker(equity_curve[0].equity)
    for point in equity_curve:
        tracker.update(point.equity)
    return tracker.max_drawdown_pct
