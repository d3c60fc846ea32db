"""Range Reversal — runtime settings.

Loads .env variables into a typed settings object.  Strategy parameters
live in ``range_reversal.strategy.config``; this module only covers how
the process runs (logging, starting equity, file locations).
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Settings:
    """Typed settings loaded from environment variables."""

    log_level: str
    initial_equity: float
    strategy_config_path: Optional[str]
    results_dir: str

    @property
    def log_level_value(self) -> int:
        """Numeric ``logging`` level for ``log_level``."""
        return getattr(logging, self.log_level)

    def load_strategy_overrides(self) -> dict:
        """Read the JSON overrides file named by ``strategy_config_path``.

        Returns an empty dict when no path is configured.
        """
        if not self.strategy_config_path:
            return {}
        with open(self.strategy_config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(
                f"STRATEGY_CONFIG_PATH must point to a JSON object, got {type(data).__name__}"
            )
        return data


def _float_var(name: str, default: str) -> float:
    raw = os.environ.get(name, default)
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got '{raw}'") from None


def load_settings(env_path: str | None = None) -> Settings:
    """Load settings from environment variables.

    Raises ``ValueError`` with a message naming the offending variable
    when a value cannot be used.
    """
    load_dotenv(dotenv_path=env_path)

    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    if log_level not in _LOG_LEVELS:
        raise ValueError(
            f"LOG_LEVEL must be one of {', '.join(_LOG_LEVELS)}, got '{log_level}'"
        )

    initial_equity = _float_var("INITIAL_EQUITY", "1000")
    if initial_equity <= 0:
        raise ValueError(f"INITIAL_EQUITY must be positive, got {initial_equity}")

    return Settings(
        log_level=log_level,
        initial_equity=initial_equity,
        strategy_config_path=os.environ.get("STRATEGY_CONFIG_PATH") or None,
        results_dir=os.environ.get("RESULTS_DIR", "data/results"),
    )
