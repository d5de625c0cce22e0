"""Cross-platform path utilities."""

import os
from pathlib import Path
from typing import Optional

from ..core.errors import FilesystemError


def get_data_directory() -> Path:
    """Get the data directory path, with environment variable override support."""
    env_override = os.environ.get("LEAKFAIRY_DATA_DIR")
    if env_override:
        return Path(env_override).expanduser()

    return Path.home() / "LeakFairyData"


def ensure_data_directory(data_dir: Optional[Path] = None) -> Path:
    """Create the data directory and check that snapshots can be written there."""
    if data_dir is None:
        data_dir = get_data_directory()

    marker_file = data_dir / ".write_test"
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
        marker_file.write_text("test")
        marker_file.unlink()
    except OSError as e:
        raise FilesystemError(f"Data directory {data_dir} is not writable: {e}") from e

    return data_dir


def scenario_store_directory(data_dir: Path, scenario_name: str) -> Path:
    """Per-scenario snapshot store root under the data directory."""
    return data_dir / "snapshots" / scenario_name
