"""Heap snapshot capture over a debug session."""

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..config import HarnessConfig
from ..core.connector import ChromeConnector
from ..core.errors import CommandError, FilesystemError, SessionError
from ..core.session import DebugSession
from .gc import GC_FINAL_SETTLE_SECONDS, GC_REPEAT, GC_SETTLE_SECONDS, force_gc
from .store import SnapshotStore

logger = logging.getLogger(__name__)

CHUNK_EVENT = "HeapProfiler.addHeapSnapshotChunk"
PROGRESS_EVENT = "HeapProfiler.reportHeapSnapshotProgress"
SNAPSHOT_TIMEOUT_SECONDS = 300.0


class SnapshotChunkBuffer:
    """Ordered chunk buffer owned by a single in-flight capture."""

    def __init__(self):
        self._chunks: List[str] = []
        self.size = 0

    def append(self, chunk: str) -> None:
        self._chunks.append(chunk)
        self.size += len(chunk)

    def __len__(self) -> int:
        return len(self._chunks)

    def drain(self) -> str:
        """Join the chunks in receipt order and empty the buffer."""
        text = "".join(self._chunks)
        self._chunks = []
        self.size = 0
        return text


def _progress_percent(params: Dict[str, Any]) -> Optional[int]:
    total = params.get("total") or 0
    if total <= 0:
        return None
    return (100 * params.get("done", 0)) // total


def _ensure_parent(output_path: Path) -> None:
    directory = output_path.parent
    logger.debug(f"Output path: {output_path}")
    logger.debug(f"Directory: {directory}")
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FilesystemError(f"Cannot create snapshot directory {directory}: {e}") from e


def _write_atomically(output_path: Path, text: str) -> int:
    """Write ``text`` next to ``output_path`` and move it into place.

    The target path never holds a partial snapshot: it either keeps its
    previous state or receives the complete file.
    """
    temp_name = None
    try:
        fd, temp_name = tempfile.mkstemp(dir=output_path.parent,
                                         prefix=f".{output_path.name}.", suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_name, output_path)
    except OSError as e:
        if temp_name is not None:
            try:
                os.unlink(temp_name)
            except FileNotFoundError:
                pass
        raise FilesystemError(f"Failed to write heap snapshot {output_path}: {e}") from e
    return output_path.stat().st_size


async def capture_heap_snapshot(session: DebugSession, output_path: Union[str, Path], *,
                                gc_repeat: int = GC_REPEAT,
                                gc_settle: float = GC_SETTLE_SECONDS,
                                gc_final_settle: float = GC_FINAL_SETTLE_SECONDS,
                                timeout: float = SNAPSHOT_TIMEOUT_SECONDS,
                                sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> Path:
    """Force GC, stream a heap snapshot into ``output_path`` and detach ``session``.

    The session is detached on every exit path. When the capture fails, its
    error is raised and nothing is written at ``output_path``.
    """
    output_path = Path(output_path)
    try:
        await force_gc(session, repeat=gc_repeat, settle=gc_settle,
                       final_settle=gc_final_settle, sleep=sleep)
        _ensure_parent(output_path)

        chunks = SnapshotChunkBuffer()

        def on_chunk(params: Dict[str, Any]) -> None:
            chunks.append(params.get("chunk", ""))

        def on_progress(params: Dict[str, Any]) -> None:
            percent = _progress_percent(params)
            if percent is not None:
                logger.debug(f"heap snapshot {percent}% complete")

        session.subscribe(CHUNK_EVENT, on_chunk)
        session.subscribe(PROGRESS_EVENT, on_progress)
        try:
            await session.send("HeapProfiler.enable")
            await session.send("HeapProfiler.takeHeapSnapshot", {"reportProgress": True},
                               timeout=timeout)
        finally:
            session.unsubscribe(CHUNK_EVENT, on_chunk)
            session.unsubscribe(PROGRESS_EVENT, on_progress)

        if not len(chunks):
            raise CommandError("HeapProfiler.takeHeapSnapshot", "no snapshot chunks received")

        chunk_count = len(chunks)
        text = chunks.drain()
        size = await asyncio.to_thread(_write_atomically, output_path, text)
        logger.info(f"Heap snapshot written to {output_path} ({chunk_count} chunks, {size} bytes)")
    except BaseException:
        try:
            await session.close()
        except SessionError as close_error:
            logger.warning(f"Detach after failed capture also failed: {close_error}")
        raise
    else:
        await session.close()

    return output_path


class HeapSnapshotCapturer:
    """Captures heap snapshots of one page target, one fresh session per capture."""

    def __init__(self, connector: ChromeConnector, target_id: str,
                 config: Optional[HarnessConfig] = None):
        self.connector = connector
        self.target_id = target_id
        self.config = config
        # Captures against the same target must not overlap
        self._lock = asyncio.Lock()

    def _capture_options(self) -> Dict[str, Any]:
        if self.config is None:
            return {}
        return {
            "gc_repeat": self.config.gc_repeat,
            "gc_settle": self.config.gc_settle_ms / 1000,
            "gc_final_settle": self.config.gc_final_settle_ms / 1000,
            "timeout": self.config.snapshot_timeout_s,
        }

    async def capture(self, output_path: Union[str, Path]) -> Path:
        async with self._lock:
            session = await DebugSession.open(self.connector, self.target_id)
            return await capture_heap_snapshot(session, output_path, **self._capture_options())

    async def capture_into(self, store: SnapshotStore) -> Path:
        """Capture the next sequential snapshot of ``store``."""
        async with self._lock:
            store.ensure()
            output_path = store.next_snapshot_path()
            session = await DebugSession.open(self.connector, self.target_id)
            return await capture_heap_snapshot(session, output_path, **self._capture_options())
