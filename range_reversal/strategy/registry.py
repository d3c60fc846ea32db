"""Strategy registry — maps strategy names to classes.

Used by the CLI and by callers that pick a strategy from stored bot
settings.
"""

from typing import Mapping, Optional

from range_reversal.strategy.base import StrategyProtocol
from range_reversal.strategy.config import resolve_config
from range_reversal.strategy.range_reversal import RangeReversalStrategy


STRATEGY_REGISTRY: dict[str, type] = {
    "range-reversal": RangeReversalStrategy,
}


def get_strategy(name: str, overrides: Optional[Mapping] = None) -> StrategyProtocol:
    """Look up a strategy by registry key and build it with resolved config.

    Raises ``KeyError`` if the strategy name is not registered and
    ``ConfigValidationError`` if *overrides* are invalid.
    """
    if name not in STRATEGY_REGISTRY:
        raise KeyError(
            f"Unknown strategy '{name}'. "
            f"Available: {', '.join(STRATEGY_REGISTRY.keys())}"
        )
    return STRATEGY_REGISTRY[name](resolve_config(overrides))
