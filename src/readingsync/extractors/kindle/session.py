"""State machine that harvests highlights from the Kindle notebook.

The notebook is a script-rendered single-page app: selecting a book only
works through a real click, and the highlight panel re-renders at its own
pace. Every wait is therefore a bounded poll comparing a content
fingerprint against the one captured before the interaction.

Only one book is ever selected at a time; the page is a single cursor into
the application and concurrent selection would race the same DOM.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
import logging
import time
from typing import Awaitable, Callable, TypeVar

from readingsync.extractors.base import SkippedItem
from readingsync.extractors.kindle.browser import BrowserError, NotebookPage
from readingsync.extractors.kindle.notebook import (
    NEXT_PAGE_FORM_SELECTOR,
    NEXT_PAGE_SELECTOR,
    NextPageControl,
    NotebookBook,
    content_fingerprint,
    is_authenticated,
    parse_book_list,
    next_page_control,
    parse_highlight_page,
)
from readingsync.identity import normalize_highlight_text
from readingsync.models import RawHighlight, RawRecord, Source

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_LOGIN_TIMEOUT_SECONDS = 300.0
DEFAULT_BOOK_TIMEOUT_SECONDS = 10.0
DEFAULT_POLL_INTERVAL_SECONDS = 0.5
DEFAULT_MAX_PAGES = 100


class SessionState(str, Enum):
    LAUNCHING = "launching"
    NAVIGATING = "navigating"
    CHECKING_AUTH = "checking_auth"
    AWAITING_LOGIN = "awaiting_login"
    LISTING_BOOKS = "listing_books"
    SELECTING_BOOK = "selecting_book"
    AWAITING_CONTENT = "awaiting_content"
    SCRAPING = "scraping"
    DONE = "done"
    FAILED = "failed"


class SessionFailure(str, Enum):
    LOGIN_TIMEOUT = "login_timeout"
    SESSION_EXPIRED = "session_expired"
    NO_BOOKS_FOUND = "no_books_found"
    CANCELLED = "cancelled"
    BROWSER_ERROR = "browser_error"


@dataclass(frozen=True, slots=True)
class SessionConfig:
    notebook_url: str
    interactive: bool = True
    login_timeout: float = DEFAULT_LOGIN_TIMEOUT_SECONDS
    book_timeout: float = DEFAULT_BOOK_TIMEOUT_SECONDS
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS
    max_pages: int = DEFAULT_MAX_PAGES


@dataclass(slots=True)
class SessionResult:
    """Records gathered so far plus the terminal failure, if any."""

    records: list[RawRecord] = field(default_factory=list)
    skipped: list[SkippedItem] = field(default_factory=list)
    failure: SessionFailure | None = None
    detail: str | None = None
    books_listed: int = 0

    @property
    def succeeded(self) -> bool:
        return self.failure is None


class _PollTimeout(Exception):
    pass


class _Cancelled(Exception):
    pass


@dataclass(slots=True)
class _AuthFailure(Exception):
    reason: SessionFailure
    detail: str


class KindleNotebookSession:
    """Drive one notebook page from navigation to the last book."""

    extractor_name = "kindle_notebook"

    def __init__(
        self,
        page: NotebookPage,
        config: SessionConfig,
        *,
        cancel_event: asyncio.Event | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if config.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if config.max_pages < 1:
            raise ValueError("max_pages must be >= 1")

        self._page = page
        self._config = config
        self._cancel_event = cancel_event
        self._sleep = sleep
        self._clock = clock
        self._result = SessionResult()
        self.state = SessionState.LAUNCHING
        self.history: list[SessionState] = [SessionState.LAUNCHING]

    @property
    def result(self) -> SessionResult:
        """Partial result, readable even if ``run`` was interrupted."""

        return self._result

    async def run(self) -> SessionResult:
        try:
            await self._authenticate()
            books = await self._list_books()
            if books is None:
                return self._result
            for index, book in enumerate(books):
                await self._harvest_safely(index, book, total=len(books))
        except _Cancelled:
            return self._fail(SessionFailure.CANCELLED, "Cancelled while waiting on the notebook")
        except _AuthFailure as exc:
            return self._fail(exc.reason, exc.detail)
        except BrowserError as exc:
            return self._fail(SessionFailure.BROWSER_ERROR, str(exc))

        self._enter(SessionState.DONE)
        return self._result

    async def _authenticate(self) -> None:
        self._enter(SessionState.NAVIGATING)
        await self._page.goto(self._config.notebook_url)

        self._enter(SessionState.CHECKING_AUTH)
        if await self._probe_authenticated():
            return

        if not self._config.interactive:
            raise _AuthFailure(
                SessionFailure.SESSION_EXPIRED,
                "Kindle session expired; sign in again with a visible browser",
            )

        self._enter(SessionState.AWAITING_LOGIN)
        LOGGER.warning(
            "Please sign in to your Amazon account in the browser window (waiting up to %.0fs)",
            self._config.login_timeout,
        )
        try:
            await self._poll(self._probe_authenticated, timeout=self._config.login_timeout)
        except _PollTimeout:
            raise _AuthFailure(
                SessionFailure.LOGIN_TIMEOUT,
                f"No sign-in detected within {self._config.login_timeout:.0f}s",
            ) from None
        LOGGER.info("Signed in to the Kindle notebook")

    async def _read_content(self) -> str | None:
        """Page HTML, or ``None`` while the page is mid-navigation and unreadable."""

        try:
            return await self._page.content()
        except BrowserError as exc:
            LOGGER.debug("Page not readable yet: %s", exc)
            return None

    async def _probe_authenticated(self) -> bool | None:
        html = await self._read_content()
        if html is None:
            return None
        return True if is_authenticated(self._page.url, html) else None

    async def _list_books(self) -> list[NotebookBook] | None:
        self._enter(SessionState.LISTING_BOOKS)
        books = parse_book_list(await self._page.content())
        self._result.books_listed = len(books)
        if not books:
            self._fail(SessionFailure.NO_BOOKS_FOUND, "The Kindle notebook lists no books")
            return None
        LOGGER.info("Found %d books in the Kindle notebook", len(books))
        return books

    async def _harvest_safely(self, index: int, book: NotebookBook, *, total: int) -> None:
        LOGGER.info("[%d/%d] Scraping: %s", index + 1, total, book.title)
        try:
            record = await self._harvest_book(index, book)
        except _PollTimeout:
            reason = f"highlights did not load within {self._config.book_timeout:.0f}s"
        except BrowserError as exc:
            reason = str(exc)
        else:
            self._result.records.append(record)
            LOGGER.info("    %d highlights", len(record.highlights))
            return

        LOGGER.warning("Skipping '%s': %s", book.title, reason)
        self._result.skipped.append(SkippedItem(label=book.title, reason=reason))

    async def _harvest_book(self, index: int, book: NotebookBook) -> RawRecord:
        self._enter(SessionState.SELECTING_BOOK)
        before = content_fingerprint(await self._page.content())
        await self._page.click(book.selector)

        self._enter(SessionState.AWAITING_CONTENT)
        await self._await_change(before, accept_first_read=index == 0)

        self._enter(SessionState.SCRAPING)
        highlights = await self._scrape_pages(book)
        return RawRecord(
            title=book.title,
            author=book.author,
            highlights=tuple(highlights),
            source=Source.KINDLE,
            extractor=self.extractor_name,
        )

    async def _scrape_pages(self, book: NotebookBook) -> list[RawHighlight]:
        collected: list[RawHighlight] = []
        seen: set[str] = set()
        pages = 0

        while True:
            html = await self._page.content()
            parsed = parse_highlight_page(html)
            pages += 1
            for highlight in parsed.highlights:
                key = normalize_highlight_text(highlight.text)
                if key not in seen:
                    seen.add(key)
                    collected.append(highlight)

            if not parsed.has_more:
                break
            if pages >= self._config.max_pages:
                LOGGER.warning("Stopping '%s' at the %d-page safety limit", book.title, self._config.max_pages)
                break

            control = next_page_control(html)
            if control is None:
                LOGGER.debug("No next-page control for '%s' after page %d", book.title, pages)
                break

            before = content_fingerprint(html)
            try:
                if control is NextPageControl.LINK:
                    await self._page.click(NEXT_PAGE_SELECTOR)
                else:
                    await self._page.submit_form(NEXT_PAGE_FORM_SELECTOR)
                await self._await_change(before, accept_first_read=False)
            except (_PollTimeout, BrowserError) as exc:
                reason = f"page {pages + 1} did not load: {exc}"
                LOGGER.warning("Partial highlights for '%s': %s", book.title, reason)
                self._result.skipped.append(SkippedItem(label=book.title, reason=reason))
                break

        return collected

    async def _await_change(self, before: str | None, *, accept_first_read: bool) -> str:
        async def _probe() -> str | None:
            html = await self._read_content()
            if html is None:
                return None
            current = content_fingerprint(html)
            if current is None:
                return None
            if accept_first_read or current != before:
                return current
            return None

        return await self._poll(_probe, timeout=self._config.book_timeout)

    async def _poll(self, probe: Callable[[], Awaitable[T | None]], *, timeout: float) -> T:
        deadline = self._clock() + timeout
        while True:
            self._check_cancelled()
            value = await probe()
            if value is not None:
                return value
            if self._clock() >= deadline:
                raise _PollTimeout(f"timed out after {timeout:.0f}s")
            await self._sleep(self._config.poll_interval)

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise _Cancelled()

    def _enter(self, state: SessionState) -> None:
        self.state = state
        self.history.append(state)
        LOGGER.debug("Kindle session -> %s", state.value)

    def _fail(self, reason: SessionFailure, detail: str) -> SessionResult:
        self._enter(SessionState.FAILED)
        self._result.failure = reason
        self._result.detail = detail
        level = logging.WARNING if reason is SessionFailure.NO_BOOKS_FOUND else logging.ERROR
        LOGGER.log(level, "Kindle session failed (%s): %s", reason.value, detail)
        return self._result
