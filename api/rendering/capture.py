"""Headless render driver - HTML document to PDF/PNG via Chromium.

One browser process is shared; every capture gets its own isolated browser
context, so concurrent renders never share cookies, caches or page state.
The browser is launched lazily on first use and relaunched if it goes away.

Captures wait on an explicit readiness barrier (web fonts settled and every
``<img>`` finished) before shooting. The configured grace period is only a
short safety net on top of that barrier.

Driver failures are raised as ``RenderDriverError`` subclasses. Callers are
expected to route them through the export fallback chain rather than show
them to end users.
"""

import asyncio
import logging
from typing import Protocol

from playwright.async_api import Browser, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from rendering.markup import RenderDocument

logger = logging.getLogger(__name__)

# Resolves true once fonts are loaded and every image has either loaded or
# failed; a broken image must not hold the capture forever.
_ASSETS_READY_JS = """
() => document.fonts.status === "loaded"
    && Array.from(document.images).every((img) => img.complete)
"""


class RenderDriverError(Exception):
    """Base class for capture failures."""


class StructureError(RenderDriverError):
    """The certificate root element is missing from the loaded document."""


class RenderTimeoutError(RenderDriverError):
    """Assets or the engine did not finish within the allowed time."""


class EngineError(RenderDriverError):
    """The browser engine crashed or refused the operation."""


class RenderDriver(Protocol):
    async def render_pdf(self, document: RenderDocument) -> bytes: ...

    async def render_png(self, document: RenderDocument) -> bytes: ...

    async def close(self) -> None: ...


class BrowserRenderDriver:
    """Playwright-backed driver with one lazily started Chromium instance."""

    def __init__(
        self,
        *,
        oversampling: float = 2.0,
        asset_timeout_ms: int = 10_000,
        grace_period_ms: int = 250,
        headless: bool = True,
    ) -> None:
        if oversampling <= 0:
            raise ValueError("oversampling must be positive")
        self.oversampling = oversampling
        self.asset_timeout_ms = asset_timeout_ms
        self.grace_period_ms = grace_period_ms
        self.headless = headless
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def start(self) -> None:
        await self._get_browser()

    async def close(self) -> None:
        async with self._lock:
            if self._browser is not None:
                try:
                    await self._browser.close()
                except PlaywrightError:
                    logger.warning("render.browser.close_failed", exc_info=True)
                self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
        logger.info("render.browser.closed")

    async def __aenter__(self) -> "BrowserRenderDriver":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _get_browser(self) -> Browser:
        async with self._lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser

            if self._browser is not None:
                logger.warning("render.browser.disconnected")
                self._browser = None

            try:
                if self._playwright is None:
                    self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self.headless
                )
            except PlaywrightError as e:
                raise EngineError(f"Failed to launch browser: {e}") from e

            logger.info("render.browser.launched", extra={"headless": self.headless})
            return self._browser

    async def _load(self, page: Page, document: RenderDocument) -> None:
        await page.set_content(
            document.html, wait_until="load", timeout=self.asset_timeout_ms
        )
        await page.wait_for_function(_ASSETS_READY_JS, timeout=self.asset_timeout_ms)
        if self.grace_period_ms:
            await page.wait_for_timeout(self.grace_period_ms)

        if await page.locator(document.selector).count() == 0:
            raise StructureError(
                f"Certificate element {document.selector!r} not found in document"
            )

    async def _capture(self, document: RenderDocument, fmt: str) -> bytes:
        browser = await self._get_browser()
        try:
            context = await browser.new_context(
                viewport={"width": document.width, "height": document.height},
                device_scale_factor=self.oversampling,
            )
        except PlaywrightError as e:
            raise EngineError(f"Failed to open browser context: {e}") from e

        try:
            page = await context.new_page()
            await self._load(page, document)

            if fmt == "pdf":
                return await page.pdf(
                    width=f"{document.width}px",
                    height=f"{document.height}px",
                    print_background=True,
                    margin={"top": "0", "right": "0", "bottom": "0", "left": "0"},
                )
            return await page.locator(document.selector).screenshot(
                type="png", timeout=self.asset_timeout_ms
            )
        except PlaywrightTimeoutError as e:
            raise RenderTimeoutError(f"Timed out rendering {fmt}: {e}") from e
        except PlaywrightError as e:
            raise EngineError(f"Browser failed rendering {fmt}: {e}") from e
        finally:
            try:
                await context.close()
            except PlaywrightError:
                logger.debug("render.context.close_failed", exc_info=True)

    async def render_pdf(self, document: RenderDocument) -> bytes:
        """Vector capture sized exactly to the page settings."""
        return await self._capture(document, "pdf")

    async def render_png(self, document: RenderDocument) -> bytes:
        """Raster capture of the certificate element at the oversampling factor."""
        return await self._capture(document, "png")
