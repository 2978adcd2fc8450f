"""HTML → PDF conversion through a shared headless Chromium.

Launching a browser costs seconds, so one browser is kept for the whole
process and every render gets its own short-lived page. ``BrowserSession``
owns that browser: ``start``/``stop`` bracket the process lifetime and a
browser that has crashed or disconnected is relaunched on the next render.
"""
from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, List, Optional, Sequence

from playwright.async_api import Browser, Playwright, async_playwright

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("SHIORI_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

DEFAULT_LAUNCH_ARGS = ("--no-sandbox", "--disable-setuid-sandbox")
PAGE_FORMAT = "A5"
SET_CONTENT_TIMEOUT_MS = 30_000


class BrowserSession:
    def __init__(self, launch_args: Sequence[str] = DEFAULT_LAUNCH_ARGS):
        self.launch_args: List[str] = list(launch_args)
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._lock = asyncio.Lock()
        self.launch_count = 0

    @property
    def is_running(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def start(self) -> Browser:
        """Launch the browser if it is not running (or no longer connected)."""
        async with self._lock:
            if self.is_running:
                return self._browser  # type: ignore[return-value]
            if self._browser is not None:
                logger.warning("Browser disconnected; relaunching")
                await self._close_quietly()
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(args=self.launch_args)
            self.launch_count += 1
            logger.info("Launched headless Chromium (launch #%d)", self.launch_count)
            return self._browser

    async def stop(self) -> None:
        async with self._lock:
            await self._close_quietly()
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
            logger.info("Browser session stopped")

    async def render_pdf(self, html: str, *, page_format: str = PAGE_FORMAT) -> bytes:
        """Render ``html`` in a fresh page; the page is closed on every path."""
        browser = await self.start()
        page = await browser.new_page()
        try:
            await page.set_content(html, wait_until="domcontentloaded", timeout=SET_CONTENT_TIMEOUT_MS)
            pdf_bytes = await page.pdf(format=page_format)
            logger.info("GeneratePDF done (%d bytes)", len(pdf_bytes))
            return pdf_bytes
        finally:
            try:
                await page.close()
            except Exception:
                logger.warning("Failed to close page", exc_info=True)

    async def _close_quietly(self) -> None:
        browser, self._browser = self._browser, None
        if browser is None:
            return
        try:
            await browser.close()
        except Exception:
            logger.warning("Error while closing browser", exc_info=True)


browser_session = BrowserSession()


async def html_to_pdf(html: str, *, session: Any = None) -> bytes:
    return await (session or browser_session).render_pdf(html)
