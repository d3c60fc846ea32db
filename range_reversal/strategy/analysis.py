"""Per-bar analysis payload for the dashboard.

Flattens a snapshot and its decision into plain JSON values: the only
place, with ``backtest.report``, where reason codes become strings.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Optional

from range_reversal.strategy.models import SignalSnapshot, StrategyDecision


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def decision_to_dict(decision: StrategyDecision) -> dict:
    """JSON-safe rendering of a decision, intents included."""
    return _plain(asdict(decision))


def build_analysis(snapshot: SignalSnapshot, decision: StrategyDecision) -> dict:
    """Signal, price, effective range, confirmations and per-side blockers."""
    diagnostics = decision.diagnostics
    levels = snapshot.range.effective
    return {
        "signal": diagnostics.signal.value if diagnostics.signal else None,
        "price": snapshot.price,
        "range": {
            "val": levels.val,
            "poc": levels.poc,
            "vah": levels.vah,
            "isAligned": snapshot.range.is_aligned,
            "overlapRatio": snapshot.range.overlap_ratio,
        },
        "confirmations": {
            "bullishDivergence": snapshot.bullish_divergence,
            "bearishDivergence": snapshot.bearish_divergence,
            "bullishSfp": snapshot.bullish_sfp,
            "bearishSfp": snapshot.bearish_sfp,
            "moneyFlowSlope": snapshot.money_flow_slope,
            "recentLowBrokeVal": snapshot.recent_low_broke_val,
            "recentHighBrokeVah": snapshot.recent_high_broke_vah,
        },
        "blockers": {
            "long": [r.value for r in diagnostics.failed_long_reasons],
            "short": [r.value for r in diagnostics.failed_short_reasons],
        },
    }


# ── Schema + UI metadata ─────────────────────────────────────────────────

_NUMBER = {"type": "number"}
_BOOLEAN = {"type": "boolean"}
_STRINGS = {"type": "array", "items": {"type": "string"}}

ANALYSIS_JSON_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "signal": {"type": ["string", "null"]},
        "price": _NUMBER,
        "range": {
            "type": "object",
            "properties": {
                "val": _NUMBER,
                "poc": _NUMBER,
                "vah": _NUMBER,
                "isAligned": _BOOLEAN,
                "overlapRatio": _NUMBER,
            },
        },
        "confirmations": {
            "type": "object",
            "properties": {
                "bullishDivergence": _BOOLEAN,
                "bearishDivergence": _BOOLEAN,
                "bullishSfp": _BOOLEAN,
                "bearishSfp": _BOOLEAN,
                "moneyFlowSlope": _NUMBER,
                "recentLowBrokeVal": _BOOLEAN,
                "recentHighBrokeVah": _BOOLEAN,
            },
        },
        "blockers": {
            "type": "object",
            "properties": {"long": _STRINGS, "short": _STRINGS},
        },
    },
}


@dataclass(frozen=True)
class AnalysisUiField:
    path: str
    widget: str
    label: str
    section: str
    order: int
    decimals: Optional[int] = None
    value_format: Optional[str] = None
    suffix: Optional[str] = None


ANALYSIS_UI_FIELDS: tuple[AnalysisUiField, ...] = (
    AnalysisUiField("signal", "text", "Signal Bias", "Decision", 1),
    AnalysisUiField("price", "number", "Price", "Decision", 2, decimals=4),
    AnalysisUiField("range.val", "number", "VAL", "Range", 10, decimals=4),
    AnalysisUiField("range.poc", "number", "POC", "Range", 11, decimals=4),
    AnalysisUiField("range.vah", "number", "VAH", "Range", 12, decimals=4),
    AnalysisUiField("range.isAligned", "boolean", "Aligned", "Range", 13),
    AnalysisUiField(
        "range.overlapRatio", "number", "Overlap Ratio", "Range", 14,
        decimals=1, value_format="fraction-percent", suffix="%",
    ),
    AnalysisUiField("confirmations.moneyFlowSlope", "number", "Money Flow Slope", "Confirmations", 20, decimals=4),
    AnalysisUiField("confirmations.bullishDivergence", "boolean", "Bullish Divergence", "Confirmations", 21),
    AnalysisUiField("confirmations.bearishDivergence", "boolean", "Bearish Divergence", "Confirmations", 22),
    AnalysisUiField("confirmations.bullishSfp", "boolean", "Bullish SFP", "Confirmations", 23),
    AnalysisUiField("confirmations.bearishSfp", "boolean", "Bearish SFP", "Confirmations", 24),
    AnalysisUiField("confirmations.recentLowBrokeVal", "boolean", "Recent VAL Sweep", "Confirmations", 25),
    AnalysisUiField("confirmations.recentHighBrokeVah", "boolean", "Recent VAH Sweep", "Confirmations", 26),
    AnalysisUiField("blockers.long", "string-array", "Long Blockers", "Blockers", 30),
    AnalysisUiField("blockers.short", "string-array", "Short Blockers", "Blockers", 31),
)


def analysis_ui_fields() -> list[dict]:
    """UI metadata as JSON-ready dicts, ordered for display."""
    return [asdict(f) for f in sorted(ANALYSIS_UI_FIELDS, key=lambda f: f.order)]
