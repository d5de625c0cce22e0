"""Tests for heap snapshot capture."""

import pytest
from unittest.mock import patch

from leakfairy.config import HarnessConfig
from leakfairy.core.errors import CommandError, CommandTimeoutError, FilesystemError
from leakfairy.core.session import DebugSession
from leakfairy.heap.snapshot import (
    HeapSnapshotCapturer,
    SnapshotChunkBuffer,
    _write_atomically,
    capture_heap_snapshot,
)
from leakfairy.heap.store import SnapshotStore


class TestSnapshotChunkBuffer:

    def test_drain_joins_in_order_and_empties(self):
        buffer = SnapshotChunkBuffer()
        buffer.append('{"a":')
        buffer.append('1}')

        assert len(buffer) == 2
        assert buffer.size == 7
        assert buffer.drain() == '{"a":1}'
        assert len(buffer) == 0
        assert buffer.size == 0
        assert buffer.drain() == ""


class TestWriteAtomically:

    def test_replaces_existing_file(self, tmp_path):
        target = tmp_path / "s1.heapsnapshot"
        target.write_text("old")

        size = _write_atomically(target, "new content")

        assert target.read_text() == "new content"
        assert size == len("new content")
        assert [p.name for p in tmp_path.iterdir()] == ["s1.heapsnapshot"]

    def test_missing_directory_raises_filesystem_error(self, tmp_path):
        with pytest.raises(FilesystemError):
            _write_atomically(tmp_path / "missing" / "s1.heapsnapshot", "x")


@pytest.mark.asyncio
class TestCaptureHeapSnapshot:

    async def test_writes_chunks_in_receipt_order(self, fake_connector, instant_sleep, tmp_path):
        chunks = ['{"snapshot":', '{"meta":{}},', '"nodes":[]}']
        connector = fake_connector(chunks=chunks)
        session = await DebugSession.open(connector, "target-1")
        output = tmp_path / "data" / "cur" / "s1.heapsnapshot"

        result = await capture_heap_snapshot(session, output, sleep=instant_sleep)

        assert result == output
        assert output.read_text(encoding="utf-8") == "".join(chunks)
        assert "NOISE" not in output.read_text(encoding="utf-8")

    async def test_command_sequence(self, fake_connector, instant_sleep, tmp_path):
        connector = fake_connector(chunks=["{}"])
        session = await DebugSession.open(connector, "target-1")

        await capture_heap_snapshot(session, tmp_path / "s1.heapsnapshot", gc_repeat=2,
                                    timeout=42.0, sleep=instant_sleep)

        assert connector.methods() == [
            "Target.attachToTarget",
            "HeapProfiler.collectGarbage",
            "HeapProfiler.collectGarbage",
            "HeapProfiler.enable",
            "HeapProfiler.takeHeapSnapshot",
            "Target.detachFromTarget",
        ]
        take = [call for call in connector.calls if call[0] == "HeapProfiler.takeHeapSnapshot"][0]
        assert take[1] == {"reportProgress": True}
        assert take[3] == 42.0
        assert session.closed

    async def test_handlers_removed_after_capture(self, fake_connector, instant_sleep, tmp_path):
        connector = fake_connector(chunks=["{}"])
        session = await DebugSession.open(connector, "target-1")

        await capture_heap_snapshot(session, tmp_path / "s1.heapsnapshot", sleep=instant_sleep)

        assert connector.event_handlers["HeapProfiler.addHeapSnapshotChunk"] == []
        assert connector.event_handlers["HeapProfiler.reportHeapSnapshotProgress"] == []

    async def test_existing_directory_is_reused(self, fake_connector, instant_sleep, tmp_path):
        connector = fake_connector(chunks=["{}"])
        output_dir = tmp_path / "data" / "cur"

        for index in (1, 2):
            session = await DebugSession.open(connector, "target-1")
            await capture_heap_snapshot(session, output_dir / f"s{index}.heapsnapshot",
                                        sleep=instant_sleep)

        assert sorted(p.name for p in output_dir.iterdir()) == ["s1.heapsnapshot", "s2.heapsnapshot"]

    async def test_failure_detaches_once_and_writes_nothing(self, fake_connector, instant_sleep,
                                                            tmp_path):
        connector = fake_connector(chunks=["{}"], fail_on="HeapProfiler.takeHeapSnapshot")
        session = await DebugSession.open(connector, "target-1")
        output = tmp_path / "s1.heapsnapshot"

        with pytest.raises(CommandError) as exc_info:
            await capture_heap_snapshot(session, output, sleep=instant_sleep)

        assert exc_info.value.method == "HeapProfiler.takeHeapSnapshot"
        assert connector.methods().count("Target.detachFromTarget") == 1
        assert not output.exists()

    async def test_gc_failure_still_detaches(self, fake_connector, instant_sleep, tmp_path):
        connector = fake_connector(fail_on="HeapProfiler.collectGarbage")
        session = await DebugSession.open(connector, "target-1")

        with pytest.raises(CommandError):
            await capture_heap_snapshot(session, tmp_path / "s1.heapsnapshot", sleep=instant_sleep)

        assert "HeapProfiler.takeHeapSnapshot" not in connector.methods()
        assert connector.methods().count("Target.detachFromTarget") == 1

    async def test_no_chunks_is_an_error(self, fake_connector, instant_sleep, tmp_path):
        connector = fake_connector(chunks=[])
        session = await DebugSession.open(connector, "target-1")
        output = tmp_path / "s1.heapsnapshot"

        with pytest.raises(CommandError) as exc_info:
            await capture_heap_snapshot(session, output, sleep=instant_sleep)

        assert "no snapshot chunks" in str(exc_info.value)
        assert not output.exists()
        assert session.closed

    async def test_snapshot_timeout_detaches_once_and_writes_nothing(self, fake_connector,
                                                                     instant_sleep, tmp_path):
        connector = fake_connector(chunks=['{"snapshot":', '{}}'])
        streamed_call = connector.call

        async def call_timing_out(method, params=None, session_id=None, timeout=None):
            result = await streamed_call(method, params, session_id, timeout)
            if method == "HeapProfiler.takeHeapSnapshot":
                raise CommandTimeoutError(method, timeout)
            return result

        connector.call = call_timing_out
        session = await DebugSession.open(connector, "target-1")
        output = tmp_path / "s1.heapsnapshot"

        with pytest.raises(CommandTimeoutError) as exc_info:
            await capture_heap_snapshot(session, output, timeout=0.5, sleep=instant_sleep)

        assert exc_info.value.timeout == 0.5
        assert connector.methods().count("Target.detachFromTarget") == 1
        assert not output.exists()
        assert list(tmp_path.iterdir()) == []

    async def test_write_failure_detaches_once_and_leaves_no_file(self, fake_connector,
                                                                  instant_sleep, tmp_path):
        connector = fake_connector(chunks=["{}"])
        session = await DebugSession.open(connector, "target-1")
        output = tmp_path / "s1.heapsnapshot"

        with patch("leakfairy.heap.snapshot.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(FilesystemError) as exc_info:
                await capture_heap_snapshot(session, output, sleep=instant_sleep)

        assert "disk full" in str(exc_info.value)
        assert connector.methods().count("Target.detachFromTarget") == 1
        assert not output.exists()
        assert list(tmp_path.iterdir()) == []

    async def test_vanished_directory_is_a_filesystem_error(self, fake_connector,
                                                            instant_sleep, tmp_path):
        connector = fake_connector(chunks=["{}"])
        session = await DebugSession.open(connector, "target-1")
        output = tmp_path / "gone" / "s1.heapsnapshot"

        with patch("leakfairy.heap.snapshot._ensure_parent"):
            with pytest.raises(FilesystemError):
                await capture_heap_snapshot(session, output, sleep=instant_sleep)

        assert connector.methods().count("Target.detachFromTarget") == 1
        assert not output.exists()


@pytest.mark.asyncio
class TestHeapSnapshotCapturer:

    async def test_capture_uses_config(self, fake_connector, tmp_path):
        connector = fake_connector(chunks=["{}"])
        config = HarnessConfig(data_dir=str(tmp_path), gc_repeat=2, gc_settle_ms=0,
                               gc_final_settle_ms=0, snapshot_timeout_s=7)
        capturer = HeapSnapshotCapturer(connector, "target-1", config)

        path = await capturer.capture(tmp_path / "s1.heapsnapshot")

        assert path.read_text() == "{}"
        assert connector.methods().count("HeapProfiler.collectGarbage") == 2
        take = [call for call in connector.calls if call[0] == "HeapProfiler.takeHeapSnapshot"][0]
        assert take[3] == 7

    async def test_capture_into_store_numbers_sequentially(self, fake_connector, tmp_path):
        connector = fake_connector(chunks=["{}"])
        config = HarnessConfig(data_dir=str(tmp_path), gc_repeat=1, gc_settle_ms=0,
                               gc_final_settle_ms=0)
        capturer = HeapSnapshotCapturer(connector, "target-1", config)
        store = SnapshotStore(tmp_path / "store")

        first = await capturer.capture_into(store)
        second = await capturer.capture_into(store)

        assert first == store.snapshot_path(1)
        assert second == store.snapshot_path(2)
        assert connector.methods().count("Target.attachToTarget") == 2
        assert connector.methods().count("Target.detachFromTarget") == 2
