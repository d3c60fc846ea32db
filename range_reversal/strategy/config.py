"""Strategy configuration — schema, defaults, merge and validation.

Resolution is two pure steps::

    defaults → deep_merge(overrides) → validate_config() → StrategyConfig

Values supplied by the caller are validated as given: a wrong type, an
out-of-range number or an unknown enum member raises
``ConfigValidationError`` naming the offending path.  Only fields the
caller omits take their defaults.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator


def to_camel(name: str) -> str:
    """``tp1_size_pct`` → ``tp1SizePct``.  Names without ``_`` pass through."""
    if "_" not in name:
        return name
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


class _Group(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


RangeLevel = Literal["VAL", "VAH", "POC"]
IntrabarExitPriority = Literal["stop-first", "target-first"]


class RangeConfig(_Group):
    primary_lookback_bars: int = Field(40, ge=1, strict=True)
    secondary_lookback_bars: int = Field(120, ge=1, strict=True)
    bins: int = Field(24, ge=3, strict=True)
    value_area_pct: float = Field(0.7, ge=0.1, le=1, strict=True)
    min_overlap_pct: float = Field(0.6, ge=0, le=1, strict=True)


class SignalConfig(_Group):
    wave_trend_channel_length: int = Field(10, ge=1, strict=True)
    wave_trend_average_length: int = Field(21, ge=1, strict=True)
    wave_trend_signal_length: int = Field(4, ge=1, strict=True)
    money_flow_period: int = Field(20, ge=1, strict=True)
    money_flow_slope_bars: int = Field(3, ge=1, strict=True)
    swing_lookback: int = Field(3, ge=1, strict=True)
    require_divergence: bool = Field(True, strict=True)
    require_sfp: bool = Field(True, strict=True)
    max_bars_after_divergence: int = Field(6, ge=0, strict=True)
    price_excursion_lookback_bars: int = Field(6, ge=1, strict=True)
    allow_armed_reentry: bool = Field(False, strict=True)
    armed_reentry_max_distance_pct: float = Field(0.25, ge=0, le=1, strict=True)


class RiskConfig(_Group):
    risk_pct_per_trade: float = Field(0.01, gt=0, le=1, strict=True)
    max_notional_pct_equity: float = Field(1.0, gt=0, strict=True)
    leverage: float = Field(10.0, gt=0, strict=True)
    contract_multiplier: float = Field(1.0, gt=0, strict=True)
    lot_step: float = Field(0.0, ge=0, strict=True)
    fee_rate: float = Field(0.0, ge=0, lt=1, strict=True)
    sl_buffer_pct: float = Field(0.0008, ge=0, lt=1, strict=True)


class ExitConfig(_Group):
    tp1_level: RangeLevel = "POC"
    tp2_long_level: RangeLevel = "VAH"
    tp2_short_level: RangeLevel = "VAL"
    tp1_size_pct: float = Field(0.5, ge=0, le=1, strict=True)
    tp2_size_pct: float = Field(0.5, ge=0, le=1, strict=True)
    move_stop_to_breakeven_on_tp1: bool = Field(True, strict=True)
    runner_exit_on_opposite_signal: bool = Field(True, strict=True)
    cooldown_bars: int = Field(1, ge=0, strict=True)

    @model_validator(mode="after")
    def _sizes_fit_position(self) -> "ExitConfig":
        # Below 1.0 leaves a runner that exits via stop, signal or end of data.
        if self.tp1_size_pct + self.tp2_size_pct > 1 + 1e-9:
            raise ValueError("tp1SizePct + tp2SizePct must not exceed 1")
        return self


class FillModelConfig(_Group):
    intrabar_exit_priority: IntrabarExitPriority = "stop-first"


class StrategyConfig(_Group):
    """Resolved, immutable range-reversal configuration."""

    range: RangeConfig = RangeConfig()
    signal: SignalConfig = SignalConfig()
    risk: RiskConfig = RiskConfig()
    exits: ExitConfig = ExitConfig()
    fill_model: FillModelConfig = FillModelConfig()


# ── Errors ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ConfigIssue:
    path: str
    message: str


class ConfigValidationError(ValueError):
    """Raised when overrides do not satisfy the configuration schema."""

    def __init__(self, issues: list[ConfigIssue]) -> None:
        self.issues = issues
        detail = "; ".join(f"{i.path}: {i.message}" for i in issues)
        super().__init__(f"Invalid strategy configuration: {detail}")

    @property
    def paths(self) -> list[str]:
        return [i.path for i in self.issues]


# ── Merge / validate ─────────────────────────────────────────────────────


def default_config_dict() -> dict:
    """Defaults as a camelCase JSON object."""
    return StrategyConfig().model_dump(by_alias=True)


def _normalise_keys(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {to_camel(str(k)): _normalise_keys(v) for k, v in value.items()}
    return value


def deep_merge(base: Mapping, overrides: Optional[Mapping]) -> dict:
    """Recursively overlay *overrides* onto *base*; neither input is mutated.

    Keys are normalised to camelCase.  Nested mappings merge; any other
    value (``None`` included) replaces the base value as-is.
    """
    out = copy.deepcopy(_normalise_keys(base))
    if not overrides:
        return out

    for key, value in _normalise_keys(overrides).items():
        if isinstance(value, Mapping) and isinstance(out.get(key), Mapping):
            out[key] = deep_merge(out[key], value)
        else:
            out[key] = copy.deepcopy(value)
    return out


def validate_config(data: Mapping) -> StrategyConfig:
    """Validate a complete configuration object.

    Raises ``ConfigValidationError`` listing every failing path.
    """
    try:
        return StrategyConfig.model_validate(data)
    except ValidationError as exc:
        issues = [
            ConfigIssue(
                path=".".join(str(part) for part in err["loc"]) or "<root>",
                message=err["msg"],
            )
            for err in exc.errors()
        ]
        raise ConfigValidationError(issues) from None


def resolve_config(
    overrides: Union[StrategyConfig, Mapping, None] = None,
) -> StrategyConfig:
    """Merge partial *overrides* onto the defaults and validate the result."""
    if isinstance(overrides, StrategyConfig):
        return overrides
    return validate_config(deep_merge(default_config_dict(), overrides))


# ── Schema + UI metadata for the configuration form ─────────────────────


def config_json_schema() -> dict:
    """JSON schema of the configuration (camelCase property names)."""
    return StrategyConfig.model_json_schema(by_alias=True)


@dataclass(frozen=True)
class UiField:
    """Describes how one config field is rendered.  Never read by resolution."""

    path: str
    label: str
    section: str
    widget: str
    order: int
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    step: Optional[float] = None
    options: tuple[str, ...] = ()


_LEVELS = ("VAL", "VAH", "POC")

CONFIG_UI_FIELDS: tuple[UiField, ...] = (
    UiField("range.primaryLookbackBars", "Primary lookback (bars)", "Range", "number", 1, 1, None, 1),
    UiField("range.secondaryLookbackBars", "Secondary lookback (bars)", "Range", "number", 2, 1, None, 1),
    UiField("range.bins", "Profile bins", "Range", "number", 3, 3, None, 1),
    UiField("range.valueAreaPct", "Value area", "Range", "percent", 4, 0.1, 1, 0.01),
    UiField("range.minOverlapPct", "Min overlap", "Range", "percent", 5, 0, 1, 0.01),
    UiField("signal.waveTrendChannelLength", "WaveTrend channel", "Signal", "number", 10, 1, None, 1),
    UiField("signal.waveTrendAverageLength", "WaveTrend average", "Signal", "number", 11, 1, None, 1),
    UiField("signal.waveTrendSignalLength", "WaveTrend signal", "Signal", "number", 12, 1, None, 1),
    UiField("signal.moneyFlowPeriod", "Money flow period", "Signal", "number", 13, 1, None, 1),
    UiField("signal.moneyFlowSlopeBars", "Money flow slope (bars)", "Signal", "number", 14, 1, None, 1),
    UiField("signal.swingLookback", "Swing lookback", "Signal", "number", 15, 1, None, 1),
    UiField("signal.requireDivergence", "Require divergence", "Signal", "boolean", 16),
    UiField("signal.requireSfp", "Require SFP", "Signal", "boolean", 17),
    UiField("signal.maxBarsAfterDivergence", "Max bars after divergence", "Signal", "number", 18, 0, None, 1),
    UiField("signal.priceExcursionLookbackBars", "Sweep lookback (bars)", "Signal", "number", 19, 1, None, 1),
    UiField("signal.allowArmedReentry", "Allow armed re-entry", "Signal", "boolean", 20),
    UiField("signal.armedReentryMaxDistancePct", "Re-entry max distance", "Signal", "percent", 21, 0, 1, 0.01),
    UiField("risk.riskPctPerTrade", "Risk per trade", "Risk", "percent", 30, 0, 1, 0.001),
    UiField("risk.maxNotionalPctEquity", "Max notional (x equity)", "Risk", "number", 31, 0, None, 0.1),
    UiField("risk.leverage", "Leverage", "Risk", "number", 32, 0, None, 1),
    UiField("risk.contractMultiplier", "Contract multiplier", "Risk", "number", 33, 0, None, None),
    UiField("risk.lotStep", "Lot step", "Risk", "number", 34, 0, None, None),
    UiField("risk.feeRate", "Fee rate", "Risk", "percent", 35, 0, 1, 0.0001),
    UiField("risk.slBufferPct", "Stop buffer", "Risk", "percent", 36, 0, 1, 0.0001),
    UiField("exits.tp1Level", "TP1 level", "Exits", "select", 40, options=_LEVELS),
    UiField("exits.tp2LongLevel", "TP2 level (long)", "Exits", "select", 41, options=_LEVELS),
    UiField("exits.tp2ShortLevel", "TP2 level (short)", "Exits", "select", 42, options=_LEVELS),
    UiField("exits.tp1SizePct", "TP1 size", "Exits", "percent", 43, 0, 1, 0.05),
    UiField("exits.tp2SizePct", "TP2 size", "Exits", "percent", 44, 0, 1, 0.05),
    UiField("exits.moveStopToBreakevenOnTp1", "Breakeven after TP1", "Exits", "boolean", 45),
    UiField("exits.runnerExitOnOppositeSignal", "Exit on opposite signal", "Exits", "boolean", 46),
    UiField("exits.cooldownBars", "Cooldown (bars)", "Exits", "number", 47, 0, None, 1),
    UiField(
        "fillModel.intrabarExitPriority", "Intrabar exit priority", "Fill model",
        "select", 50, options=("stop-first", "target-first"),
    ),
)


def config_ui_fields() -> list[dict]:
    """UI metadata as JSON-ready dicts, ordered for display."""
    fields = sorted(CONFIG_UI_FIELDS, key=lambda f: f.order)
    return [
        {
            "path": f.path,
            "label": f.label,
            "section": f.section,
            "widget": f.widget,
            "order": f.order,
            "minimum": f.minimum,
            "maximum": f.maximum,
            "step": f.step,
            "options": list(f.options),
        }
        for f in fields
    ]
