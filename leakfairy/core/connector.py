"""Chrome DevTools Protocol connector."""

import asyncio
import json
import logging
import platform
from typing import Any, Callable, Dict, List, Optional

import httpx
import websockets

from .errors import ChromeConnectionError, CommandError, CommandTimeoutError


logger = logging.getLogger(__name__)


class ChromeConnector:
    """Browser-level Chrome DevTools Protocol connection.

    Page targets are reached through flattened sessions: commands carry a
    ``sessionId`` and events for a session arrive on the same socket with the
    ``sessionId`` injected into their params.
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 9222):
        self.host = host
        self.port = port
        self.websocket = None
        self.next_id = 1
        self.pending_requests: Dict[int, asyncio.Future] = {}
        self.pending_methods: Dict[int, str] = {}
        self.event_handlers: Dict[str, List[Callable]] = {}
        self.message_task: Optional[asyncio.Task] = None
        # Default per-request response timeout (seconds)
        self.call_timeout: float = 15.0

    async def connect(self, retries: int = 3) -> None:
        """Establish connection to Chrome DevTools Protocol with retry logic."""
        last_exception = None

        for attempt in range(retries):
            try:
                ws_url = await self._discover_websocket_url()

                # Heap snapshot chunks and large evaluate results need a big frame limit
                self.websocket = await asyncio.wait_for(
                    websockets.connect(
                        ws_url,
                        ping_interval=20,
                        ping_timeout=10,
                        max_size=100 * 1024 * 1024
                    ),
                    timeout=5.0
                )

                self.message_task = asyncio.create_task(self._handle_messages())

                logger.info(f"Connected to Chrome at {self.host}:{self.port}")
                return

            except asyncio.TimeoutError:
                last_exception = ChromeConnectionError("WebSocket connection timed out")
            except ChromeConnectionError as e:
                last_exception = e
            except Exception as e:
                last_exception = ChromeConnectionError(f"Failed to connect to WebSocket: {e}")

            if attempt < retries - 1:
                # Exponential backoff: 1s, 2s, 4s
                delay = 2 ** attempt
                logger.warning(f"Connection attempt {attempt + 1} failed, retrying in {delay}s...")
                await asyncio.sleep(delay)

        raise last_exception

    async def _discover_websocket_url(self) -> str:
        """Discover Chrome's WebSocket debugger URL."""
        url = f"http://{self.host}:{self.port}/json/version"

        try:
            async with httpx.AsyncClient(timeout=3.0) as client:
                response = await client.get(url)
                response.raise_for_status()
                data = response.json()
        except httpx.ConnectError:
            system = platform.system()
            if system == "Darwin":
                cmd_example = f"open -a 'Google Chrome' --args --remote-debugging-port={self.port}"
            elif system == "Windows":
                cmd_example = f"chrome.exe --remote-debugging-port={self.port}"
            else:
                cmd_example = f"google-chrome --remote-debugging-port={self.port}"

            raise ChromeConnectionError(
                f"Could not connect to Chrome at {self.host}:{self.port}. "
                f"Start Chrome with remote debugging enabled: {cmd_example}"
            )
        except httpx.TimeoutException:
            raise ChromeConnectionError("Connection to Chrome timed out")
        except Exception as e:
            raise ChromeConnectionError(f"Failed to discover Chrome endpoint: {e}")

        if not isinstance(data, dict):
            raise ChromeConnectionError("Invalid response from Chrome debugger endpoint")

        if "Browser" not in data:
            raise ChromeConnectionError("Not a valid Chrome debugger endpoint")

        if "webSocketDebuggerUrl" not in data:
            raise ChromeConnectionError("Chrome debugger endpoint missing WebSocket URL")

        return data["webSocketDebuggerUrl"]

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None,
                   session_id: Optional[str] = None,
                   timeout: Optional[float] = None) -> Dict[str, Any]:
        """Send a Chrome DevTools Protocol command and wait for response.

        Raises CommandError when Chrome answers with an error or the transport
        fails, and CommandTimeoutError when no answer arrives in time.
        """
        if not self.websocket:
            raise CommandError(method, "not connected to Chrome")

        request_id = self.next_id
        self.next_id += 1

        message = {
            "id": request_id,
            "method": method,
        }

        if params:
            message["params"] = params

        if session_id:
            message["sessionId"] = session_id

        future = asyncio.get_running_loop().create_future()
        self.pending_requests[request_id] = future
        self.pending_methods[request_id] = method

        wait_timeout = timeout if timeout is not None else self.call_timeout
        try:
            await self.websocket.send(json.dumps(message))
            return await asyncio.wait_for(future, timeout=wait_timeout)
        except asyncio.TimeoutError:
            raise CommandTimeoutError(method, wait_timeout)
        except CommandError:
            raise
        except Exception as e:
            raise CommandError(method, str(e))
        finally:
            self.pending_requests.pop(request_id, None)
            self.pending_methods.pop(request_id, None)

    async def _handle_messages(self) -> None:
        """Handle incoming WebSocket messages in receipt order."""
        try:
            async for message in self.websocket:
                try:
                    data = json.loads(message)

                    if "id" in data:
                        self._resolve_response(data)
                    elif "method" in data:
                        params = dict(data.get("params") or {})
                        # Flattened sessions: expose the sessionId for handler filtering
                        if "sessionId" in data:
                            params["sessionId"] = data["sessionId"]
                        await self._dispatch_event(data["method"], params)

                except json.JSONDecodeError:
                    logger.warning("Received invalid JSON message")

        except websockets.exceptions.ConnectionClosed:
            logger.info("WebSocket connection closed")
        except Exception as e:
            logger.error(f"Error in message handler: {e}")
        finally:
            self._fail_pending("connection to Chrome lost")

    def _resolve_response(self, data: Dict[str, Any]) -> None:
        request_id = data["id"]
        future = self.pending_requests.pop(request_id, None)
        method = self.pending_methods.pop(request_id, "<unknown>")
        if future is None or future.done():
            return
        if "error" in data:
            error = data["error"] or {}
            future.set_exception(CommandError(
                method,
                error.get("message", "Unknown error"),
                code=error.get("code"),
                data=error.get("data"),
            ))
        else:
            future.set_result(data.get("result", {}))

    def _fail_pending(self, reason: str) -> None:
        for request_id, future in list(self.pending_requests.items()):
            if not future.done():
                method = self.pending_methods.get(request_id, "<unknown>")
                future.set_exception(CommandError(method, reason))
        self.pending_requests.clear()
        self.pending_methods.clear()

    async def disconnect(self) -> None:
        """Close the WebSocket connection."""
        if self.message_task:
            self.message_task.cancel()
            try:
                await self.message_task
            except asyncio.CancelledError:
                pass
            self.message_task = None

        if self.websocket:
            await self.websocket.close()
            self.websocket = None

        self._fail_pending("connector disconnected")

    async def get_browser_version(self) -> Dict[str, Any]:
        """Get Chrome browser version information."""
        return await self.call("Browser.getVersion")

    async def get_targets(self) -> Dict[str, Any]:
        """Get list of available targets."""
        return await self.call("Target.getTargets")

    def filter_page_targets(self, targets_response: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Filter targets to only include pages."""
        target_infos = targets_response.get("targetInfos", [])
        return [target for target in target_infos if target.get("type") == "page"]

    def on_event(self, method: str, handler: Callable[[Dict[str, Any]], None]) -> None:
        """Register an event handler for a specific method."""
        if method not in self.event_handlers:
            self.event_handlers[method] = []
        self.event_handlers[method].append(handler)

    def off_event(self, method: str, handler: Optional[Callable] = None) -> None:
        """Unregister event handler(s) for a specific method."""
        if method in self.event_handlers:
            if handler:
                try:
                    self.event_handlers[method].remove(handler)
                except ValueError:
                    pass
            else:
                self.event_handlers[method].clear()

    async def _dispatch_event(self, method: str, params: Dict[str, Any]) -> None:
        """Dispatch an event to registered handlers, one after another."""
        # Copy: handlers may unsubscribe themselves while being dispatched
        handlers = list(self.event_handlers.get(method, ()))
        for handler in handlers:
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(params)
                else:
                    handler(params)
            except Exception as e:
                logger.warning(f"Error in event handler for {method}: {e}")
