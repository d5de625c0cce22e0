"""Harness configuration: defaults, then environment, then explicit overrides."""

import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .utils.paths import get_data_directory


ENV_PREFIX = "LEAKFAIRY_"


class HarnessConfig:
    """Timing constants and switches for one harness run.

    Every key can be set through ``LEAKFAIRY_<KEY>`` (upper case) in the
    environment or a ``.env`` file, and overridden by keyword arguments.
    """

    DEFAULTS: Dict[str, Any] = {
        "base_url": "http://localhost:8080/",
        # JSON export imported before navigating; empty means "per scenario"
        "fixture_path": "",
        # Interaction window (milliseconds)
        "start_delta_ms": 60000,
        "end_delta_ms": 15000,
        "wait_period_ms": 1000,
        "navigation_settle_ms": 0,
        # GC forcing
        "gc_repeat": 6,
        "gc_settle_ms": 200,
        "gc_final_settle_ms": 1400,
        # Timeouts
        "snapshot_timeout_s": 300.0,
        "interaction_timeout_ms": 30000,
        # Behaviour
        "strict": False,
        "headless": True,
    }

    def __init__(self, data_dir: Optional[str] = None, env_file: Optional[str] = None,
                 **overrides: Any):
        """Initialize configuration.

        Args:
            data_dir: data directory path, None uses LEAKFAIRY_DATA_DIR or the default
            env_file: optional .env file to load before reading the environment
            **overrides: explicit values for keys in DEFAULTS; None means "not set"
        """
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        unknown = set(overrides) - set(self.DEFAULTS)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        self.data_dir = self._resolve_data_dir(data_dir)
        for key, default in self.DEFAULTS.items():
            value = overrides.get(key)
            if value is None:
                value = self._from_env(key, default)
            setattr(self, key, value)

        self._validate()

    def _resolve_data_dir(self, data_dir: Optional[str]) -> Path:
        if data_dir is None:
            return get_data_directory()
        return Path(data_dir).expanduser().resolve()

    def _from_env(self, key: str, default: Any) -> Any:
        raw = os.environ.get(ENV_PREFIX + key.upper())
        if raw is None or raw == "":
            return default
        try:
            return self._coerce(raw, default)
        except ValueError:
            raise ValueError(f"Invalid value for {ENV_PREFIX + key.upper()}: {raw!r}")

    @staticmethod
    def _coerce(raw: str, default: Any) -> Any:
        if isinstance(default, bool):
            lowered = raw.strip().lower()
            if lowered in ("1", "true", "yes", "on"):
                return True
            if lowered in ("0", "false", "no", "off"):
                return False
            raise ValueError(raw)
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
        return raw

    def _validate(self) -> None:
        for key in ("start_delta_ms", "end_delta_ms", "wait_period_ms",
                    "navigation_settle_ms", "gc_settle_ms", "gc_final_settle_ms"):
            if getattr(self, key) < 0:
                raise ValueError(f"{key} must not be negative")
        if self.gc_repeat < 1:
            raise ValueError("gc_repeat must be at least 1")
        if self.snapshot_timeout_s <= 0:
            raise ValueError("snapshot_timeout_s must be positive")
        if self.interaction_timeout_ms <= 0:
            raise ValueError("interaction_timeout_ms must be positive")

    @property
    def leak_window_s(self) -> float:
        """Time a leaked listener or timer gets to fire before the first snapshot."""
        return (self.start_delta_ms + self.end_delta_ms) / 1000

    def as_dict(self) -> Dict[str, Any]:
        values = {key: getattr(self, key) for key in self.DEFAULTS}
        values["data_dir"] = str(self.data_dir)
        return values
