"""Strategy protocol and shared market input type.

Defines the interface that all strategies must implement.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, runtime_checkable

from range_reversal.strategy.models import (
    Candle,
    OpenPosition,
    SignalSnapshot,
    StrategyDecision,
)


@dataclass(frozen=True)
class MarketContext:
    """Candle series visible to a strategy when evaluating bar *index*.

    The range series are optional; strategies fall back to the
    execution series when they are missing or empty.
    """

    execution_candles: Sequence[Candle]
    index: int
    primary_range: Optional[Sequence[Candle]] = None
    secondary_range: Optional[Sequence[Candle]] = None


@runtime_checkable
class StrategyProtocol(Protocol):
    """Interface that all trading strategies must satisfy."""

    id: str
    version: str

    def build_snapshot(self, market: MarketContext) -> SignalSnapshot:
        """Derive the per-bar feature snapshot."""
        ...

    def evaluate(
        self,
        market: MarketContext,
        snapshot: SignalSnapshot,
        position: Optional[OpenPosition],
        bot_id: str,
    ) -> StrategyDecision:
        """Turn a snapshot and the open position into a decision."""
        ...
