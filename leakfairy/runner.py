"""Runs leak scenarios: navigate, wait out the leak window, snapshot twice, analyze."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Dict, Iterable, Optional

from playwright.async_api import Page, async_playwright

from .analysis.leaks import LeakAnalyzer, LeakReport, analyze
from .config import HarnessConfig
from .core.chrome_instance import ChromeInstanceManager
from .core.connector import ChromeConnector
from .core.errors import FilesystemError, LeaksDetectedError, ScenarioError
from .heap.snapshot import HeapSnapshotCapturer
from .heap.store import SnapshotStore
from .scenario.driver import ScenarioDriver, resolve_target_id
from .scenario.registry import Scenario
from .utils.paths import ensure_data_directory, scenario_store_directory

logger = logging.getLogger(__name__)


class BrowserHandles:
    """Connections to one Chrome: raw CDP for heap work, Playwright for interaction."""

    def __init__(self, connector: ChromeConnector, browser):
        self.connector = connector
        self.browser = browser

    async def new_page(self) -> Page:
        context = self.browser.contexts[0] if self.browser.contexts else await self.browser.new_context()
        return await context.new_page()


@asynccontextmanager
async def _attach(host: str, port: int) -> AsyncIterator[BrowserHandles]:
    connector = ChromeConnector(host=host, port=port)
    await connector.connect()
    try:
        async with async_playwright() as playwright:
            browser = await playwright.chromium.connect_over_cdp(f"http://{host}:{port}")
            try:
                yield BrowserHandles(connector, browser)
            finally:
                await browser.close()
    finally:
        await connector.disconnect()


@asynccontextmanager
async def open_browser(config: HarnessConfig, host: Optional[str] = None,
                       port: Optional[int] = None) -> AsyncIterator[BrowserHandles]:
    """Attach to Chrome at host:port, or launch an isolated one when no port is given."""
    if port is not None:
        async with _attach(host or "127.0.0.1", port) as handles:
            yield handles
        return

    async with ChromeInstanceManager(headless=config.headless) as chrome_manager:
        launched_host, launched_port = (await chrome_manager.launch_isolated_chrome()).split(":")
        async with _attach(launched_host, int(launched_port)) as handles:
            yield handles


class LeakScenarioRunner:
    """Executes scenarios one at a time, each with its own page and snapshot store."""

    def __init__(self, config: HarnessConfig, analyzer: Optional[LeakAnalyzer] = None):
        self.config = config
        self.analyzer = analyzer
        ensure_data_directory(config.data_dir)

    def store_for(self, scenario: Scenario) -> SnapshotStore:
        return SnapshotStore(scenario_store_directory(self.config.data_dir, scenario.name))

    def fixture_for(self, scenario: Scenario) -> Optional[Path]:
        """Fixture to import for ``scenario``; raises if a required one is missing."""
        fixture = scenario.fixture_path
        if fixture is None and self.config.fixture_path:
            fixture = Path(self.config.fixture_path).expanduser()

        if fixture is None:
            if scenario.requires_fixture:
                raise ScenarioError(
                    f"Scenario '{scenario.name}' needs the fixture that creates "
                    f"'{scenario.fixture_root}'; pass --fixture or set LEAKFAIRY_FIXTURE_PATH"
                )
            return None
        if not fixture.is_file():
            raise FilesystemError(f"Fixture file not found: {fixture}")
        return fixture

    async def run(self, handles: BrowserHandles, scenario: Scenario) -> LeakReport:
        page = await handles.new_page()
        try:
            target_id = await resolve_target_id(page)
            capturer = HeapSnapshotCapturer(handles.connector, target_id, self.config)
            driver = ScenarioDriver(page, self.config.base_url, self.config.interaction_timeout_ms)
            return await self.run_window(scenario, driver, capturer)
        finally:
            await page.close()

    async def run_window(self, scenario: Scenario, driver: ScenarioDriver,
                         capturer: HeapSnapshotCapturer) -> LeakReport:
        """Drive one interaction window and analyze the two snapshots it produces."""
        config = self.config
        fixture = self.fixture_for(scenario)
        store = self.store_for(scenario)
        store.reset()
        logger.info(f"Running scenario '{scenario.name}' into {store.root}")

        await driver.open_base_view(config.start_delta_ms, config.end_delta_ms)
        if fixture is not None:
            await driver.import_fixture(fixture, expect_visible=scenario.fixture_root)
        await driver.settle(config.navigation_settle_ms)
        await driver.navigate_to_object(scenario.object_name)

        # Let every listener and timer of the view fire at least once
        await driver.settle(config.start_delta_ms + config.end_delta_ms)
        await capturer.capture(store.snapshot_path(1))

        await driver.settle(config.wait_period_ms)
        await capturer.capture(store.snapshot_path(2))

        report = await asyncio.to_thread(analyze, store.root, self.analyzer)
        self._log_report(scenario, report)
        if config.strict and report:
            raise LeaksDetectedError(scenario.name, report)
        return report

    def _log_report(self, scenario: Scenario, report: LeakReport) -> None:
        if not report:
            logger.info(f"Scenario '{scenario.name}': no leaks detected")
            return
        logger.warning(f"Scenario '{scenario.name}': {len(report)} leak(s) detected")
        for trace in report:
            logger.warning(f"  {trace}")
        logger.debug(f"Leaks: {json.dumps(report.to_dict(), indent=2)}")

    async def run_all(self, handles: BrowserHandles,
                      scenarios: Iterable[Scenario]) -> Dict[str, LeakReport]:
        """Run ``scenarios`` in order; the first failure stops the run."""
        reports = {}
        for scenario in scenarios:
            reports[scenario.name] = await self.run(handles, scenario)
        return reports
