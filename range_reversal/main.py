"""Range Reversal — command-line entry point.

Usage:
    python -m range_reversal.main backtest --candles data/btc_1h.csv \\
        [--primary data/btc_4h.csv] [--secondary data/btc_1d.csv] \\
        [--config overrides.json] [--equity 1000] [--output result.json]
    python -m range_reversal.main schema

Without --output the backtest result is written under RESULTS_DIR.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from range_reversal.backtest.data import load_candles
from range_reversal.backtest.engine import BacktestEngine
from range_reversal.backtest.models import BacktestInput
from range_reversal.backtest.report import result_to_dict
from range_reversal.config import Settings, load_settings
from range_reversal.strategy.config import (
    ConfigValidationError,
    config_json_schema,
    config_ui_fields,
    resolve_config,
)

logger = logging.getLogger("rangereversal")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Range reversal strategy engine")
    sub = parser.add_subparsers(dest="command", required=True)

    bt = sub.add_parser("backtest", help="Replay a candle file through the strategy")
    bt.add_argument("--candles", required=True, help="Execution candles (.csv / .parquet)")
    bt.add_argument("--primary", help="Primary range candles (default: execution candles)")
    bt.add_argument("--secondary", help="Secondary range candles (default: execution candles)")
    bt.add_argument(
        "--config",
        help="JSON file of strategy overrides (default: STRATEGY_CONFIG_PATH)",
    )
    bt.add_argument("--equity", type=float, help="Initial equity (default: INITIAL_EQUITY)")
    bt.add_argument(
        "--output",
        help="Result JSON file (default: RESULTS_DIR/<candles stem>-backtest.json)",
    )

    sub.add_parser("schema", help="Print the config JSON schema and UI metadata")
    return parser


def _load_overrides(path: Optional[str], settings: Settings) -> dict:
    if path is None:
        return settings.load_strategy_overrides()
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"--config must contain a JSON object, got {type(data).__name__}")
    return data


def _run_backtest(args: argparse.Namespace, settings: Settings) -> int:
    config = resolve_config(_load_overrides(args.config, settings))
    execution = load_candles(args.candles)
    backtest_input = BacktestInput(
        execution_candles=execution,
        initial_equity=args.equity if args.equity is not None else settings.initial_equity,
        primary_range_candles=load_candles(args.primary) if args.primary else None,
        secondary_range_candles=load_candles(args.secondary) if args.secondary else None,
    )

    result = BacktestEngine(config).run(backtest_input)
    m = result.metrics
    logger.info(
        "Backtest complete: %d trades, PnL: $%.2f, Win rate: %.1f%%, Ending equity: $%.2f",
        m.total_trades, m.net_pnl, m.win_rate * 100, m.ending_equity,
    )

    if args.output:
        out = Path(args.output)
    else:
        out = Path(settings.results_dir) / f"{Path(args.candles).stem}-backtest.json"
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(result_to_dict(result), indent=2), encoding="utf-8")
    logger.info("Result written → %s", out)
    return 0


def _print_schema() -> int:
    print(json.dumps({"schema": config_json_schema(), "ui": config_ui_fields()}, indent=2))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Parse CLI arguments and dispatch.  Returns the process exit code."""
    args = _build_parser().parse_args(argv)
    settings = load_settings()

    logging.basicConfig(
        level=settings.log_level_value,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.command == "schema":
        return _print_schema()

    try:
        return _run_backtest(args, settings)
    except ConfigValidationError as exc:
        for issue in exc.issues:
            logger.error("Invalid config at %s: %s", issue.path, issue.message)
        return 2
    except (OSError, ValueError) as exc:
        logger.error("Backtest failed: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
