"""Backtest result export — JSON-ready dicts and pandas frames."""

from dataclasses import asdict
from enum import Enum
from typing import Any

import pandas as pd

from range_reversal.backtest.models import BacktestResult, Trade


def _plain(value: Any) -> Any:
    """Enums → their values, recursively through dicts / lists / tuples."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def trade_to_dict(trade: Trade) -> dict:
    return _plain(asdict(trade))


def result_to_dict(result: BacktestResult) -> dict:
    """Serialise a result; the config is emitted in its camelCase form."""
    return {
        "config": result.config.model_dump(by_alias=True),
        "trades": [trade_to_dict(t) for t in result.trades],
        "equityCurve": [{"time": p.time, "equity": p.equity} for p in result.equity_curve],
        "metrics": asdict(result.metrics),
    }


def trades_frame(result: BacktestResult) -> pd.DataFrame:
    """One row per closed trade; exits summarised by their reasons."""
    columns = [
        "id", "side", "entry_time", "entry_price", "stop_price_at_entry",
        "quantity", "entry_fee", "close_time", "close_price",
        "gross_pnl", "fees", "net_pnl", "exit_reasons",
    ]
    rows = []
    for t in result.trades:
        rows.append({
            "id": t.id,
            "side": t.side.value,
            "entry_time": t.entry_time,
            "entry_price": t.entry_price,
            "stop_price_at_entry": t.stop_price_at_entry,
            "quantity": t.quantity,
            "entry_fee": t.entry_fee,
            "close_time": t.close_time,
            "close_price": t.close_price,
            "gross_pnl": t.gross_pnl,
            "fees": t.fees,
            "net_pnl": t.net_pnl,
            "exit_reasons": ",".join(e.reason for e in t.exits),
        })
    return pd.DataFrame(rows, columns=columns)


def equity_frame(result: BacktestResult) -> pd.DataFrame:
    """Equity curve with a UTC ``timestamp`` column derived from ``time``."""
    df = pd.DataFrame(
        [(p.time, p.equity) for p in result.equity_curve],
        columns=["time", "equity"],
    )
    df["timestamp"] = pd.to_datetime(df["time"], unit="ms", utc=True)
    return df
