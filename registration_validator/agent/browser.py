from __future__ import annotations

import asyncio
import logging

from playwright.async_api import (
    Browser,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from ..config import settings


class BrowserLaunchError(RuntimeError):
    """The headless browser could not be started at all."""


class BrowserSession:
    def __init__(self, headless: bool | None = None) -> None:
        self.browser: Browser | None = None
        self.page: Page | None = None
        self._playwright: Playwright | None = None
        self.headless = settings.headless if headless is None else headless

    async def __aenter__(self) -> "BrowserSession":
        try:
            self._playwright = await async_playwright().start()
            self.browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=["--no-sandbox", "--disable-setuid-sandbox"],
            )
            self.page = await self.browser.new_page()
        except Exception as exc:
            await self.close()
            raise BrowserLaunchError(f"could not launch validation browser: {exc}") from exc
        self.page.set_default_timeout(settings.action_timeout_ms)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close page, browser and driver; each close is time-bounded and never raises."""
        closers = []
        if self.page is not None:
            closers.append(("page", self.page.close))
        if self.browser is not None:
            closers.append(("browser", self.browser.close))
        if self._playwright is not None:
            closers.append(("playwright", self._playwright.stop))

        for name, closer in closers:
            try:
                await asyncio.wait_for(closer(), timeout=settings.close_timeout_s)
            except Exception as exc:
                logging.warning("browser_close_failed resource=%s reason=%r", name, exc)

        self.page = None
        self.browser = None
        self._playwright = None
        logging.info("validation browser closed")

    async def goto(self, url: str, wait_ms: int | None = None) -> None:
        """Open the shop page and wait until its login widgets have had time to render."""
        if self.page is None:
            raise RuntimeError("validation browser has no page; enter the session before navigating")

        await self.page.goto(url, wait_until="domcontentloaded", timeout=settings.navigation_timeout_ms)
        try:
            await self.page.wait_for_load_state("networkidle", timeout=settings.networkidle_timeout_ms)
        except PlaywrightTimeoutError:
            logging.info("networkidle_wait_timed_out url=%s continuing", url)

        wait_ms = settings.page_settle_ms if wait_ms is None else wait_ms
        if wait_ms > 0:
            await self.page.wait_for_timeout(wait_ms)

    def __repr__(self) -> str:
        return f"BrowserSession(headless={self.headless})"
