"""Tests for debug sessions."""

import pytest

from leakfairy.core.errors import CommandError, SessionError
from leakfairy.core.session import DebugSession, debug_session


@pytest.mark.asyncio
class TestDebugSession:
    """Test DebugSession attach, event filtering and detach."""

    async def test_open_attaches_flattened(self, fake_connector):
        connector = fake_connector()
        session = await DebugSession.open(connector, "target-1")

        assert session.session_id == "session-1"
        assert session.target_id == "target-1"
        method, params, session_id, timeout = connector.calls[0]
        assert method == "Target.attachToTarget"
        assert params == {"targetId": "target-1", "flatten": True}
        assert session_id is None
        assert timeout == 20.0

    async def test_open_failure_raises_session_error(self, fake_connector):
        connector = fake_connector(fail_on="Target.attachToTarget")

        with pytest.raises(SessionError) as exc_info:
            await DebugSession.open(connector, "gone")

        assert "gone" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, CommandError)

    async def test_send_routes_through_session(self, fake_connector):
        connector = fake_connector()
        session = await DebugSession.open(connector, "target-1")

        await session.send("HeapProfiler.enable")

        assert connector.calls[-1] == ("HeapProfiler.enable", None, "session-1", None)

    async def test_subscribe_only_sees_own_session(self, fake_connector):
        connector = fake_connector()
        session = await DebugSession.open(connector, "target-1")
        received = []

        session.subscribe("HeapProfiler.addHeapSnapshotChunk", lambda p: received.append(p["chunk"]))

        await connector._dispatch_event("HeapProfiler.addHeapSnapshotChunk",
                                        {"sessionId": "session-1", "chunk": "a"})
        await connector._dispatch_event("HeapProfiler.addHeapSnapshotChunk",
                                        {"sessionId": "other", "chunk": "x"})
        await connector._dispatch_event("HeapProfiler.addHeapSnapshotChunk",
                                        {"sessionId": "session-1", "chunk": "b"})

        assert received == ["a", "b"]

    async def test_async_handler_subscription(self, fake_connector):
        connector = fake_connector()
        session = await DebugSession.open(connector, "target-1")
        received = []

        async def handler(params):
            received.append(params["n"])

        session.subscribe("Test.event", handler)
        await connector._dispatch_event("Test.event", {"sessionId": "session-1", "n": 1})

        assert received == [1]

    async def test_unsubscribe_removes_filter(self, fake_connector):
        connector = fake_connector()
        session = await DebugSession.open(connector, "target-1")
        received = []

        def handler(params):
            received.append(params)

        session.subscribe("Test.event", handler)
        session.unsubscribe("Test.event", handler)
        session.unsubscribe("Test.event", handler)
        await connector._dispatch_event("Test.event", {"sessionId": "session-1"})

        assert received == []
        assert connector.event_handlers["Test.event"] == []

    async def test_close_detaches_once(self, fake_connector):
        connector = fake_connector()
        session = await DebugSession.open(connector, "target-1")
        session.subscribe("Test.event", print)

        await session.close()
        await session.close()

        assert connector.methods().count("Target.detachFromTarget") == 1
        assert connector.event_handlers["Test.event"] == []
        with pytest.raises(SessionError):
            await session.send("HeapProfiler.enable")

    async def test_close_tolerates_vanished_session(self, fake_connector):
        connector = fake_connector(fail_on="Target.detachFromTarget")
        session = await DebugSession.open(connector, "target-1")

        await session.close()

        assert session.closed

    async def test_close_transport_failure_raises(self, fake_connector):
        connector = fake_connector(fail_on="Target.detachFromTarget", error_code=None)
        session = await DebugSession.open(connector, "target-1")

        with pytest.raises(SessionError):
            await session.close()


@pytest.mark.asyncio
class TestDebugSessionContext:
    """Test the debug_session context manager."""

    async def test_detaches_after_block(self, fake_connector):
        connector = fake_connector()

        async with debug_session(connector, "target-1") as session:
            assert not session.closed

        assert session.closed
        assert connector.methods() == ["Target.attachToTarget", "Target.detachFromTarget"]

    async def test_detaches_when_block_fails(self, fake_connector):
        connector = fake_connector()

        with pytest.raises(RuntimeError):
            async with debug_session(connector, "target-1") as session:
                raise RuntimeError("boom")

        assert session.closed
        assert connector.methods().count("Target.detachFromTarget") == 1

    async def test_block_error_wins_over_detach_error(self, fake_connector):
        connector = fake_connector(fail_on="Target.detachFromTarget", error_code=None)

        with pytest.raises(RuntimeError):
            async with debug_session(connector, "target-1"):
                raise RuntimeError("boom")
