"""Playwright-backed page driver for the Kindle notebook session."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
import logging
from pathlib import Path
from typing import AsyncIterator, Protocol

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, async_playwright

LOGGER = logging.getLogger(__name__)

DEFAULT_NAVIGATION_TIMEOUT_SECONDS = 30.0
WINDOW_SIZE = {"width": 1280, "height": 900}


@dataclass(slots=True)
class BrowserError(RuntimeError):
    """Browser process or page interaction failure."""

    stage: str
    message: str

    def __str__(self) -> str:
        return f"{self.message} (stage={self.stage})"


class NotebookPage(Protocol):
    """The few page operations the session state machine relies on."""

    @property
    def url(self) -> str:
        """Current page URL."""

    async def goto(self, url: str) -> None:
        """Navigate to ``url`` and wait for the DOM to load."""

    async def content(self) -> str:
        """Serialized DOM as currently rendered."""

    async def click(self, selector: str) -> None:
        """Scroll the element into view and click it with real pointer events."""

    async def submit_form(self, selector: str) -> None:
        """Submit the form matched by ``selector``."""


class PlaywrightNotebookPage:
    def __init__(self, page: Page, *, timeout_seconds: float = DEFAULT_NAVIGATION_TIMEOUT_SECONDS) -> None:
        self._page = page
        self._timeout_ms = timeout_seconds * 1000

    @property
    def url(self) -> str:
        return self._page.url

    async def goto(self, url: str) -> None:
        try:
            await self._page.goto(url, wait_until="domcontentloaded", timeout=self._timeout_ms)
        except PlaywrightError as exc:
            raise BrowserError("navigate", f"Failed to navigate to {url}: {exc}") from exc

    async def content(self) -> str:
        try:
            return await self._page.content()
        except PlaywrightError as exc:
            raise BrowserError("content", f"Failed to read page content: {exc}") from exc

    async def click(self, selector: str) -> None:
        try:
            await self._page.click(selector, timeout=self._timeout_ms)
        except PlaywrightError as exc:
            raise BrowserError("click", f"Failed to click {selector}: {exc}") from exc

    async def submit_form(self, selector: str) -> None:
        try:
            await self._page.eval_on_selector(selector, "form => form.submit()")
        except PlaywrightError as exc:
            raise BrowserError("submit", f"Failed to submit {selector}: {exc}") from exc


@asynccontextmanager
async def open_notebook_page(
    profile_dir: Path,
    *,
    headless: bool,
    timeout_seconds: float = DEFAULT_NAVIGATION_TIMEOUT_SECONDS,
) -> AsyncIterator[PlaywrightNotebookPage]:
    """Launch Chromium on a persistent profile so sign-in survives across runs."""

    profile_dir.mkdir(parents=True, exist_ok=True)
    LOGGER.info("Using browser profile at %s (headless=%s)", profile_dir, headless)

    try:
        playwright = await async_playwright().start()
    except PlaywrightError as exc:
        raise BrowserError("launch", f"Failed to start Playwright: {exc}") from exc

    try:
        context = await playwright.chromium.launch_persistent_context(
            user_data_dir=str(profile_dir),
            headless=headless,
            viewport=WINDOW_SIZE,
        )
    except PlaywrightError as exc:
        await playwright.stop()
        raise BrowserError("launch", f"Failed to launch browser: {exc}") from exc

    try:
        page = context.pages[0] if context.pages else await context.new_page()
        yield PlaywrightNotebookPage(page, timeout_seconds=timeout_seconds)
    finally:
        await context.close()
        await playwright.stop()
        LOGGER.debug("Browser closed")
