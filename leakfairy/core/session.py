"""Debug sessions bound to a single page target."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from .connector import ChromeConnector
from .errors import CommandError, SessionError


logger = logging.getLogger(__name__)

ATTACH_TIMEOUT = 20.0


class DebugSession:
    """Flattened CDP session attached to one page target.

    Handlers registered through ``subscribe`` only see events emitted for
    this session, in the order the connector received them.
    """

    def __init__(self, connector: ChromeConnector, target_id: str, session_id: str):
        self.connector = connector
        self.target_id = target_id
        self.session_id = session_id
        self.closed = False
        # (event, user handler) -> session filters registered on the connector
        self._subscriptions: Dict[Tuple[str, Callable], List[Callable]] = {}

    @classmethod
    async def open(cls, connector: ChromeConnector, target_id: str) -> "DebugSession":
        """Attach to ``target_id`` and return the bound session."""
        try:
            response = await connector.call(
                "Target.attachToTarget",
                {"targetId": target_id, "flatten": True},
                timeout=ATTACH_TIMEOUT
            )
        except CommandError as e:
            raise SessionError(f"Failed to attach to target {target_id}: {e}") from e

        session_id = response.get("sessionId")
        if not session_id:
            raise SessionError(f"Chrome returned no sessionId for target {target_id}")

        logger.debug(f"Attached to target {target_id} with session {session_id}")
        return cls(connector, target_id, session_id)

    async def send(self, method: str, params: Optional[Dict[str, Any]] = None,
                   timeout: Optional[float] = None) -> Dict[str, Any]:
        """Issue a command on this session."""
        if self.closed:
            raise SessionError(f"Session {self.session_id} is already detached")
        return await self.connector.call(method, params, session_id=self.session_id,
                                         timeout=timeout)

    def subscribe(self, event: str, handler: Callable[[Dict[str, Any]], Any]) -> None:
        """Invoke ``handler`` once per ``event`` emitted for this session."""
        session_id = self.session_id

        if asyncio.iscoroutinefunction(handler):
            async def session_filter(params: Dict[str, Any]) -> None:
                if params.get("sessionId") == session_id:
                    await handler(params)
        else:
            def session_filter(params: Dict[str, Any]) -> None:
                if params.get("sessionId") == session_id:
                    handler(params)

        self._subscriptions.setdefault((event, handler), []).append(session_filter)
        self.connector.on_event(event, session_filter)

    def unsubscribe(self, event: str, handler: Callable) -> None:
        """Remove a handler added with ``subscribe``; unknown handlers are ignored."""
        filters = self._subscriptions.get((event, handler))
        if not filters:
            return
        session_filter = filters.pop()
        if not filters:
            del self._subscriptions[(event, handler)]
        self.connector.off_event(event, session_filter)

    async def close(self) -> None:
        """Detach from the target. Only the first call talks to Chrome."""
        if self.closed:
            return
        self.closed = True

        for (event, _), filters in self._subscriptions.items():
            for session_filter in filters:
                self.connector.off_event(event, session_filter)
        self._subscriptions.clear()

        try:
            await self.connector.call("Target.detachFromTarget", {"sessionId": self.session_id})
            logger.debug(f"Detached from target {self.target_id}")
        except CommandError as e:
            if e.code is not None:
                # Chrome already dropped the session (target closed or crashed)
                logger.warning(f"Session {self.session_id} was gone before detach: {e.message}")
                return
            raise SessionError(f"Failed to detach from target {self.target_id}: {e}") from e


@asynccontextmanager
async def debug_session(connector: ChromeConnector, target_id: str) -> AsyncIterator[DebugSession]:
    """Open a session and always detach it, whatever happens inside the block.

    A detach failure is raised only when the block itself succeeded;
    otherwise the block's error is the one the caller sees.
    """
    session = await DebugSession.open(connector, target_id)
    try:
        yield session
    except BaseException:
        try:
            await session.close()
        except SessionError as close_error:
            logger.warning(f"Detach after failure also failed: {close_error}")
        raise
    else:
        await session.close()
