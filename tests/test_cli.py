"""Tests for the command-line entry point."""

import json

import pandas as pd
import pytest

from range_reversal.main import main


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Run from an empty directory so no stray .env is loaded."""
    monkeypatch.chdir(tmp_path)
    for var in ["LOG_LEVEL", "INITIAL_EQUITY", "STRATEGY_CONFIG_PATH", "RESULTS_DIR"]:
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)


def _write_candles(path):
    rows = []
    for i in range(30):
        base = 100 + (i % 5)
        rows.append({
            "time": i * 3_600_000,
            "open": base,
            "high": base + 1,
            "low": base - 1,
            "close": base + 0.5,
            "volume": 100,
        })
    # scripted long on bar 10 that reaches both targets on bar 11
    rows[10].update(open=100, high=100.5, low=99, close=100)
    rows[11].update(open=100, high=111, low=100, close=110)
    df = pd.DataFrame(rows)
    df["rangeValid"] = None
    df["val"] = None
    df["vah"] = None
    df["poc"] = None
    df["bullishDivergence"] = None
    df["moneyFlowSlope"] = None
    df["bullishSfp"] = None
    df.loc[10, ["rangeValid", "bullishDivergence", "bullishSfp"]] = True
    df.loc[10, ["val", "vah", "poc", "moneyFlowSlope"]] = [101.0, 110.0, 103.0, 0.4]
    df.to_csv(path, index=False)


class TestSchemaCommand:
    def test_prints_schema_and_ui(self, capsys):
        assert main(["schema"]) == 0
        payload = json.loads(capsys.readouterr().out)
        assert "fillModel" in payload["schema"]["properties"]
        assert payload["ui"][0]["path"] == "range.primaryLookbackBars"


class TestBacktestCommand:
    def test_writes_result(self, tmp_path):
        candles = tmp_path / "candles.csv"
        _write_candles(candles)
        output = tmp_path / "out" / "result.json"

        code = main([
            "backtest", "--candles", str(candles),
            "--equity", "2000", "--output", str(output),
        ])

        assert code == 0
        data = json.loads(output.read_text())
        assert data["metrics"]["total_trades"] == 1
        assert data["trades"][0]["side"] == "long"
        assert data["equityCurve"][0]["equity"] == 2000.0

    def test_default_output_in_results_dir(self, monkeypatch, tmp_path):
        candles = tmp_path / "btc_1h.csv"
        _write_candles(candles)
        results = tmp_path / "results"
        monkeypatch.setenv("RESULTS_DIR", str(results))

        assert main(["backtest", "--candles", str(candles)]) == 0

        data = json.loads((results / "btc_1h-backtest.json").read_text())
        assert data["metrics"]["total_trades"] == 1

    def test_config_file_overrides(self, tmp_path):
        candles = tmp_path / "candles.csv"
        _write_candles(candles)
        config = tmp_path / "cfg.json"
        config.write_text(json.dumps({"exits": {"tp1SizePct": 1.0, "tp2SizePct": 0.0}}))
        output = tmp_path / "result.json"

        code = main([
            "backtest", "--candles", str(candles),
            "--config", str(config), "--output", str(output),
        ])

        assert code == 0
        data = json.loads(output.read_text())
        assert data["config"]["exits"]["tp1SizePct"] == 1.0
        assert [e["reason"] for e in data["trades"][0]["exits"]] == ["tp1"]

    def test_invalid_config_exit_code(self, tmp_path):
        candles = tmp_path / "candles.csv"
        _write_candles(candles)
        config = tmp_path / "cfg.json"
        config.write_text(json.dumps({"risk": {"feeRate": 5}}))

        assert main(["backtest", "--candles", str(candles), "--config", str(config)]) == 2

    def test_missing_file_exit_code(self, tmp_path):
        assert main(["backtest", "--candles", str(tmp_path / "nope.csv")]) == 1

    def test_unsupported_file_exit_code(self, tmp_path):
        path = tmp_path / "candles.txt"
        path.write_text("x")
        assert main(["backtest", "--candles", str(path)]) == 1

    def test_subcommand_required(self):
        with pytest.raises(SystemExit):
            main([])
