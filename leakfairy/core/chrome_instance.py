"""Isolated Chrome instance for leak runs."""

import asyncio
import atexit
import logging
import os
import shutil
import socket
import subprocess
import sys
import tempfile
from typing import List, Optional

import httpx
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from .errors import LeakFairyError

logger = logging.getLogger(__name__)


class ChromeInstanceError(LeakFairyError):
    """Chrome instance management related errors."""
    pass


class ChromeStartupError(ChromeInstanceError):
    """Chrome startup related errors."""
    pass


LINUX_CHROME_NAMES = ["google-chrome", "google-chrome-stable", "chromium", "chromium-browser"]


class ChromeInstanceManager:
    """Launches a throwaway Chrome with a remote debugging port."""

    def __init__(self, chrome_path: Optional[str] = None, max_port_attempts: int = 5,
                 headless: bool = True):
        self.chrome_process: Optional[subprocess.Popen] = None
        self.temp_user_data_dir: Optional[str] = None
        self.debug_port: Optional[int] = None
        self.chrome_path = chrome_path
        self.max_port_attempts = max_port_attempts
        self.headless = headless
        self._cleanup_registered = False

    async def launch_isolated_chrome(self) -> str:
        """Launch isolated Chrome instance, return "host:port"."""
        if not self.chrome_path:
            self.chrome_path = self._detect_chrome_path() or await self._playwright_chromium_path()

        for attempt in range(self.max_port_attempts):
            try:
                self._prepare_launch_environment(attempt)
                self._launch_chrome_process()
                await self._wait_for_chrome_ready(timeout=15)

                self._register_cleanup()
                return f"127.0.0.1:{self.debug_port}"

            except (ChromeStartupError, OSError) as e:
                await self._cleanup_current_attempt()
                logger.debug(f"Chrome launch failed (attempt {attempt + 1}/{self.max_port_attempts}): {e}")
                if attempt == self.max_port_attempts - 1:
                    raise ChromeInstanceError(
                        f"All {self.max_port_attempts} attempts failed. Last error: {e}")

        raise ChromeInstanceError("Maximum retry attempts exceeded")

    def _prepare_launch_environment(self, attempt: int) -> None:
        if not self.chrome_path:
            raise ChromeInstanceError(
                "Chrome executable not found. Set LEAKFAIRY_CHROME_PATH "
                "or run 'playwright install chromium'.")

        self.temp_user_data_dir = tempfile.mkdtemp(prefix=f"leakfairy_chrome_{attempt}_")

        # Shift the port range per attempt to avoid hitting the same busy port
        base_port = 9222 + (attempt * 10)
        self.debug_port = self._select_port(base_port)

    def _detect_chrome_path(self) -> Optional[str]:
        """Detect Chrome path with environment variable override."""
        env_chrome_path = os.environ.get("LEAKFAIRY_CHROME_PATH")
        if env_chrome_path and os.path.exists(env_chrome_path) and os.access(env_chrome_path, os.X_OK):
            logger.info(f"Using Chrome path from environment: {env_chrome_path}")
            return env_chrome_path

        if sys.platform == "darwin":
            possible_paths = [
                "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
                "/Applications/Chromium.app/Contents/MacOS/Chromium",
                os.path.expanduser("~/Applications/Google Chrome.app/Contents/MacOS/Google Chrome"),
            ]
        elif sys.platform == "win32":
            possible_paths = [
                os.path.expandvars(r"%ProgramFiles%\Google\Chrome\Application\chrome.exe"),
                os.path.expandvars(r"%ProgramFiles(x86)%\Google\Chrome\Application\chrome.exe"),
                os.path.expandvars(r"%LocalAppData%\Google\Chrome\Application\chrome.exe"),
            ]
        else:
            possible_paths = [path for path in map(shutil.which, LINUX_CHROME_NAMES) if path]

        for path in possible_paths:
            if os.path.exists(path) and os.access(path, os.X_OK):
                logger.debug(f"Found Chrome at: {path}")
                return path

        return None

    async def _playwright_chromium_path(self) -> Optional[str]:
        """Chromium downloaded by ``playwright install chromium``, if present."""
        try:
            async with async_playwright() as playwright:
                path = playwright.chromium.executable_path
        except PlaywrightError as e:
            logger.debug(f"Playwright Chromium lookup failed: {e}")
            return None

        if path and os.path.exists(path) and os.access(path, os.X_OK):
            logger.debug(f"Using Playwright Chromium at: {path}")
            return path
        return None

    def _select_port(self, base_port: int, max_attempts: int = 10) -> int:
        for port in range(base_port, base_port + max_attempts):
            try:
                with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                    s.bind(("127.0.0.1", port))
                    return port
            except OSError:
                continue

        raise ChromeStartupError(f"Ports {base_port}-{base_port + max_attempts - 1} are all busy")

    def _launch_chrome_process(self) -> None:
        chrome_cmd = self._build_chrome_command()
        try:
            self.chrome_process = subprocess.Popen(
                chrome_cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=(os.name == "posix")
            )
            logger.info(f"Chrome process started with PID: {self.chrome_process.pid}")
        except OSError as e:
            raise ChromeStartupError(f"Failed to start Chrome process: {e}")

    def _build_chrome_command(self) -> List[str]:
        args = [
            f"--remote-debugging-port={self.debug_port}",
            "--remote-debugging-address=127.0.0.1",
            f"--user-data-dir={self.temp_user_data_dir}",
            "--no-first-run",
            "--no-default-browser-check",
            "--disable-default-apps",
            "--disable-extensions",
            "--disable-background-networking",
            "--disable-component-update",
            "--disable-sync",
            # Timers in background tabs must keep firing for leaks to show up
            "--disable-background-timer-throttling",
            "--disable-renderer-backgrounding",
            "--disable-backgrounding-occluded-windows",
        ]
        if self.headless:
            args.append("--headless=new")
        return [self.chrome_path] + args + ["about:blank"]

    async def _wait_for_chrome_ready(self, timeout: int = 15) -> None:
        """Poll /json/version until Chrome answers with JSON."""
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        while loop.time() - start_time < timeout:
            if self.chrome_process and self.chrome_process.poll() is not None:
                raise ChromeStartupError(
                    f"Chrome exited during startup with code {self.chrome_process.returncode}")
            try:
                async with httpx.AsyncClient(timeout=1.0) as client:
                    response = await client.get(f"http://127.0.0.1:{self.debug_port}/json/version")
                    if response.status_code == 200:
                        response.json()
                        logger.info(f"Chrome is ready on port {self.debug_port}")
                        return
            except (httpx.HTTPError, ValueError) as e:
                logger.debug(f"Chrome not ready yet: {e}")

            await asyncio.sleep(0.5)

        raise ChromeStartupError(f"Chrome startup timeout after {timeout}s")

    def _register_cleanup(self) -> None:
        if not self._cleanup_registered:
            atexit.register(self._emergency_cleanup)
            self._cleanup_registered = True

    def _emergency_cleanup(self) -> None:
        """Synchronous cleanup for interpreter exit."""
        if self.chrome_process and self.chrome_process.poll() is None:
            logger.warning("Emergency cleanup: terminating Chrome process")
            self.chrome_process.terminate()
            try:
                self.chrome_process.wait(timeout=3)
            except subprocess.TimeoutExpired:
                self.chrome_process.kill()
        if self.temp_user_data_dir and os.path.exists(self.temp_user_data_dir):
            shutil.rmtree(self.temp_user_data_dir, ignore_errors=True)

    async def _cleanup_current_attempt(self) -> None:
        if self.chrome_process:
            if self.chrome_process.poll() is None:
                self.chrome_process.terminate()
                try:
                    await asyncio.wait_for(asyncio.to_thread(self.chrome_process.wait), timeout=3.0)
                except asyncio.TimeoutError:
                    self.chrome_process.kill()
            self.chrome_process = None

        if self.temp_user_data_dir and os.path.exists(self.temp_user_data_dir):
            await asyncio.to_thread(shutil.rmtree, self.temp_user_data_dir, ignore_errors=True)
        self.temp_user_data_dir = None

    async def cleanup(self) -> None:
        """Terminate Chrome and remove its profile directory."""
        if self.chrome_process and self.chrome_process.poll() is None:
            logger.info("Terminating Chrome process...")
            self.chrome_process.terminate()
            try:
                await asyncio.wait_for(asyncio.to_thread(self.chrome_process.wait), timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("Chrome process didn't terminate gracefully, force killing...")
                self.chrome_process.kill()
                await asyncio.to_thread(self.chrome_process.wait)

        if self.temp_user_data_dir and os.path.exists(self.temp_user_data_dir):
            logger.debug(f"Cleaning up temp directory: {self.temp_user_data_dir}")
            await asyncio.to_thread(shutil.rmtree, self.temp_user_data_dir, ignore_errors=True)

        self.chrome_process = None
        self.temp_user_data_dir = None
        self.debug_port = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.cleanup()
