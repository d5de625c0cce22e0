"""On-disk snapshot store layout: ``<root>/data/cur/s<N>.heapsnapshot``."""

import logging
import re
import shutil
from pathlib import Path
from typing import List, Union

from ..core.errors import FilesystemError

logger = logging.getLogger(__name__)

SNAPSHOT_SUFFIX = ".heapsnapshot"
CURRENT_DIR = Path("data") / "cur"
_SNAPSHOT_NAME = re.compile(r"^s(\d+)\.heapsnapshot$")


class SnapshotStore:
    """Sequential heap snapshots for one comparison window."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).expanduser()

    @property
    def current_dir(self) -> Path:
        return self.root / CURRENT_DIR

    def snapshot_path(self, index: int) -> Path:
        """Path of the ``index``-th snapshot (1-based)."""
        if index < 1:
            raise ValueError(f"Snapshot index must start at 1, got {index}")
        return self.current_dir / f"s{index}{SNAPSHOT_SUFFIX}"

    def ensure(self) -> Path:
        """Create the current-interaction directory; existing directories are fine."""
        try:
            self.current_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Cannot create snapshot directory {self.current_dir}: {e}") from e
        return self.current_dir

    def snapshots(self) -> List[Path]:
        """Complete snapshot files present in the store, in sequence order."""
        if not self.current_dir.is_dir():
            return []
        indexed = []
        for path in self.current_dir.iterdir():
            match = _SNAPSHOT_NAME.match(path.name)
            if match and path.is_file():
                indexed.append((int(match.group(1)), path))
        return [path for _, path in sorted(indexed)]

    def next_snapshot_path(self) -> Path:
        existing = self.snapshots()
        if not existing:
            return self.snapshot_path(1)
        last = _SNAPSHOT_NAME.match(existing[-1].name)
        return self.snapshot_path(int(last.group(1)) + 1)

    def reset(self) -> None:
        """Drop snapshots left by an earlier run so they cannot enter the diff."""
        if self.current_dir.exists():
            logger.info(f"Clearing stale snapshots in {self.current_dir}")
            try:
                shutil.rmtree(self.current_dir)
            except OSError as e:
                raise FilesystemError(f"Cannot clear snapshot store {self.current_dir}: {e}") from e
        self.ensure()

    def __repr__(self) -> str:
        return f"SnapshotStore({str(self.root)!r})"
