"""Application navigation for leak scenarios, driven through Playwright."""

import asyncio
import logging
import re
from functools import wraps
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urljoin

from playwright.async_api import Page, expect
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..core.errors import FilesystemError, InteractionTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30000
SEARCH_INPUT_NAME = "Search Input"
FILE_INPUT_SELECTOR = "#fileElem"


async def resolve_target_id(page: Page) -> str:
    """CDP target id of ``page``, for attaching debug sessions to it."""
    cdp = await page.context.new_cdp_session(page)
    try:
        info = await cdp.send("Target.getTargetInfo")
    finally:
        await cdp.detach()
    return info["targetInfo"]["targetId"]


def _interaction(description: str):
    """Report Playwright waits that ran out as InteractionTimeoutError."""
    def decorator(func):
        @wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except PlaywrightTimeoutError as e:
                raise InteractionTimeoutError(f"{description} timed out: {e}") from e
            except AssertionError as e:
                # expect(...) assertions fail with AssertionError once their timeout passes
                raise InteractionTimeoutError(f"{description} timed out: {e}") from e
        return wrapper
    return decorator


class ScenarioDriver:
    """Reproducible navigation through the application under test.

    The leak comparison only holds if both snapshots see the same view, so
    every step waits for an exact element rather than a position in a list.
    """

    def __init__(self, page: Page, base_url: str, timeout_ms: int = DEFAULT_TIMEOUT_MS):
        self.page = page
        self.base_url = base_url
        self.timeout_ms = timeout_ms
        self.page.set_default_timeout(timeout_ms)

    def url(self, path: str) -> str:
        return urljoin(self.base_url, path)

    @_interaction("Opening base view")
    async def open_base_view(self, start_delta_ms: int, end_delta_ms: int) -> None:
        """Load the grid view with a local time window, then the browse root."""
        await self.page.goto(self.url(
            f"./#/browse/mine?tc.mode=local&tc.startDelta={start_delta_ms}"
            f"&tc.endDelta={end_delta_ms}&tc.timeSystem=utc&view=grid"
        ))
        await self.page.goto(self.url("./#/browse"), wait_until="domcontentloaded")

    @_interaction("Importing fixture")
    async def import_fixture(self, fixture_path: Union[str, Path], folder: str = "My Items",
                             expect_visible: Optional[str] = None) -> None:
        """Import a JSON export into ``folder``, then wait for ``expect_visible`` if given."""
        fixture_path = Path(fixture_path)
        if not fixture_path.is_file():
            raise FilesystemError(f"Fixture file not found: {fixture_path}")

        await self.page.get_by_role("treeitem", name=re.compile(re.escape(folder))).click(
            button="right")
        await self.page.get_by_role("menuitem", name=re.compile("Import from JSON")).click()
        await self.page.set_input_files(FILE_INPUT_SELECTOR, str(fixture_path))
        await self.page.get_by_role("button", name="Save").click()
        if expect_visible:
            await self.wait_for_visible(f'a:has-text("{expect_visible}")')
        logger.info(f"Imported fixture {fixture_path.name}")

    @_interaction("Navigating to object")
    async def navigate_to_object(self, object_name: str) -> None:
        """Search for ``object_name`` and open the result whose text matches exactly."""
        search = self.page.get_by_role("searchbox", name=SEARCH_INPUT_NAME)
        await search.click()
        await search.fill(object_name)
        await self.page.get_by_text(object_name, exact=True).click()
        logger.info(f"Navigated to {object_name}")

    @_interaction("Waiting for element")
    async def wait_for_visible(self, selector: str) -> None:
        await expect(self.page.locator(selector)).to_be_visible(timeout=self.timeout_ms)

    async def settle(self, ms: int) -> None:
        """Let the current view run for ``ms`` milliseconds."""
        if ms > 0:
            logger.debug(f"Settling for {ms}ms")
            await asyncio.sleep(ms / 1000)
