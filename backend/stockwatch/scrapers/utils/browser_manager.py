"""Playwright render engine for JavaScript-only product pages.

The browser is launched lazily on the first render and reused until
close() is called. Each render gets its own short-lived context.
"""

import asyncio
from typing import Optional

import structlog
from playwright.async_api import Browser, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from stockwatch.core.exceptions import ScraperError
from stockwatch.scrapers.utils.user_agents import ACCEPT_LANGUAGE, get_random_user_agent

logger = structlog.get_logger(__name__)

BLOCKED_RESOURCE_TYPES = frozenset(["image", "stylesheet", "font", "media"])


class RenderEngine:
    """Headless Chromium wrapper returning rendered HTML.

    render() enforces a hard deadline of timeout + grace; a page that
    hangs past it is torn down and reported as a ScraperError.
    """

    def __init__(
        self,
        headless: bool = True,
        timeout_ms: int = 30000,
        settle_ms: int = 3000,
        grace_ms: int = 5000,
    ):
        self._headless = headless
        self.timeout_ms = timeout_ms
        self.settle_ms = settle_ms
        self.grace_ms = grace_ms
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._lock = asyncio.Lock()

    @property
    def started(self) -> bool:
        return self._browser is not None

    async def start(self) -> None:
        """Launch the browser if it is not running yet."""
        async with self._lock:
            if self._browser:
                return
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self._headless,
                args=[
                    "--disable-blink-features=AutomationControlled",
                    "--disable-dev-shm-usage",
                    "--disable-gpu",
                    "--no-sandbox",
                ],
            )
            logger.info("browser_started", headless=self._headless)

    async def close(self) -> None:
        """Close the browser and stop Playwright."""
        async with self._lock:
            if self._browser:
                try:
                    await self._browser.close()
                except PlaywrightError as e:
                    logger.warning("browser_close_failed", error=str(e))
                self._browser = None
            if self._playwright:
                await self._playwright.stop()
                self._playwright = None
                logger.info("browser_stopped")

    async def render(self, url: str, wait_ms: Optional[int] = None) -> str:
        """Render a page and return its HTML after a settle delay.

        Args:
            url: Already-validated page URL
            wait_ms: Settle delay after DOMContentLoaded, defaults to settle_ms

        Raises:
            ScraperError: Navigation failed or the hard deadline passed
        """
        if not self._browser:
            await self.start()

        settle = self.settle_ms if wait_ms is None else wait_ms
        deadline = (self.timeout_ms + settle + self.grace_ms) / 1000.0
        try:
            return await asyncio.wait_for(self._render(url, settle), timeout=deadline)
        except asyncio.TimeoutError:
            logger.warning("render_deadline_exceeded", url=url, deadline_seconds=deadline)
            raise ScraperError(url, "render deadline exceeded")
        except PlaywrightError as e:
            logger.warning("render_failed", url=url, error=str(e))
            raise ScraperError(url, f"render failed: {e}") from e

    async def _render(self, url: str, settle_ms: int) -> str:
        context = await self._browser.new_context(
            user_agent=get_random_user_agent(),
            viewport={"width": 1920, "height": 1080},
            extra_http_headers={"Accept-Language": ACCEPT_LANGUAGE},
            java_script_enabled=True,
        )
        try:
            await context.add_init_script(STEALTH_JS)
            await context.route("**/*", _block_heavy_resources)
            page = await context.new_page()
            await page.goto(url, wait_until="domcontentloaded", timeout=self.timeout_ms)
            await page.wait_for_timeout(settle_ms)
            return await page.content()
        finally:
            await context.close()


async def _block_heavy_resources(route) -> None:
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


# Minimal stealth JS to mask automation signals
STEALTH_JS = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
window.chrome = { runtime: {} };
"""
