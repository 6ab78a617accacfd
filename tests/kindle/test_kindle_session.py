from __future__ import annotations

import asyncio

import pytest

from readingsync.extractors.kindle.browser import BrowserError
from readingsync.extractors.kindle.notebook import NEXT_PAGE_FORM_SELECTOR, NEXT_PAGE_SELECTOR
from readingsync.extractors.kindle.session import (
    KindleNotebookSession,
    SessionConfig,
    SessionFailure,
    SessionState,
)
from readingsync.models import Source

NOTEBOOK_URL = "https://read.amazon.com/notebook"
SIGNIN_URL = "https://www.amazon.com/ap/signin?openid.return_to=notebook"
LOGIN_HTML = "<html><body><form name='signIn'><input id='ap_email'></form></body></html>"


def _library(books: list[tuple[str, str, str | None]], panel: str = "") -> str:
    entries = "".join(
        f'<div id="{asin}" class="kp-notebook-library-each-book"><h2>{title}</h2>'
        + (f'<p class="kp-notebook-searchable">By: {author}</p>' if author else "")
        + "</div>"
        for asin, title, author in books
    )
    return f'<html><body><div id="kp-notebook-library">{entries}</div>{panel}</body></html>'


def _panel(asin: str, texts: list[str], token: str = "", *, paging: str = "link") -> str:
    rows = "".join(
        f'<div id="{asin}-{index}" class="a-row a-spacing-base"><span id="highlight">{text}</span>'
        f'<input type="hidden" id="kp-annotation-location" value="{index * 10}"></div>'
        for index, text in enumerate(texts, start=1)
    )
    token_input = f'<input type="hidden" class="kp-notebook-annotations-next-page-start" value="{token}">'
    if paging == "link" and token:
        token_input += f'<div class="kp-notebook-annotations-paging"><a href="/notebook?token={token}">Next</a></div>'
    elif paging == "form":
        token_input = f'<form action="/notebook" method="get">{token_input}</form>'
    return (
        '<div id="kp-notebook-annotations">'
        f'<input type="hidden" id="kp-notebook-annotations-asin" value="{asin}">{rows}{token_input}'
        "</div>"
    )


class _FakeClock:
    def __init__(self, *, on_sleep=None) -> None:
        self.now = 0.0
        self.sleeps = 0
        self._on_sleep = on_sleep

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps += 1
        self.now += seconds
        if self._on_sleep is not None:
            self._on_sleep()


class _FakeNotebookPage:
    """Serves scripted DOM snapshots; each interaction queues the frames that follow it."""

    def __init__(self, html: str, *, landing_url: str | None = None, goto_error: bool = False) -> None:
        self.url = "about:blank"
        self._html = html
        self._landing_url = landing_url
        self._goto_error = goto_error
        self._pending: list[str | BrowserError] = []
        self._scripts: dict[str, list[list[str | BrowserError]]] = {}
        self._failing: set[str] = set()
        self.clicks: list[str] = []

    def after_goto(self, *frames: str | BrowserError) -> None:
        self._scripts.setdefault("__goto__", []).append(list(frames))

    def script_click(self, selector: str, *frames: str | BrowserError) -> None:
        self._scripts.setdefault(selector, []).append(list(frames))

    def fail_click(self, selector: str) -> None:
        self._failing.add(selector)

    def _advance(self, key: str) -> None:
        queue = self._scripts.get(key)
        self._pending = queue.pop(0) if queue else []

    async def goto(self, url: str) -> None:
        if self._goto_error:
            raise BrowserError("navigate", f"Failed to navigate to {url}: net::ERR_NAME_NOT_RESOLVED")
        self.url = self._landing_url or url
        self._advance("__goto__")

    async def content(self) -> str:
        if self._pending:
            frame = self._pending.pop(0)
            if isinstance(frame, BrowserError):
                raise frame
            self._html = frame
        return self._html

    async def click(self, selector: str) -> None:
        self.clicks.append(selector)
        if selector in self._failing:
            raise BrowserError("click", f"Failed to click {selector}: element detached")
        self._advance(selector)

    async def submit_form(self, selector: str) -> None:
        self.clicks.append(f"submit:{selector}")
        self._advance(f"submit:{selector}")


def _session(page: _FakeNotebookPage, clock: _FakeClock, **overrides) -> KindleNotebookSession:
    options = {"notebook_url": NOTEBOOK_URL, "login_timeout": 5.0, "book_timeout": 10.0, "poll_interval": 0.5}
    options.update(overrides)
    cancel_event = options.pop("cancel_event", None)
    return KindleNotebookSession(
        page,
        SessionConfig(**options),
        cancel_event=cancel_event,
        sleep=clock.sleep,
        clock=clock,
    )


BOOKS = [
    ("B1", "Steve Jobs", "Walter Isaacson"),
    ("B2", "Dune", "Frank Herbert"),
    ("B3", "Sapiens", "Yuval Noah Harari"),
    ("B4", "Thinking, Fast and Slow", "Daniel Kahneman"),
    ("B5", "The Hobbit", "J.R.R. Tolkien"),
]


@pytest.mark.asyncio
async def test_single_book_walks_the_happy_path() -> None:
    books = BOOKS[:1]
    page = _FakeNotebookPage(_library(books))
    page.script_click('[id="B1"]', _library(books, _panel("B1", ["Stay hungry.", "Real artists ship."])))
    clock = _FakeClock()
    session = _session(page, clock)

    result = await session.run()

    assert result.succeeded
    assert result.books_listed == 1
    assert session.history == [
        SessionState.LAUNCHING,
        SessionState.NAVIGATING,
        SessionState.CHECKING_AUTH,
        SessionState.LISTING_BOOKS,
        SessionState.SELECTING_BOOK,
        SessionState.AWAITING_CONTENT,
        SessionState.SCRAPING,
        SessionState.DONE,
    ]
    record = result.records[0]
    assert (record.title, record.author, record.source) == ("Steve Jobs", "Walter Isaacson", Source.KINDLE)
    assert [highlight.text for highlight in record.highlights] == ["Stay hungry.", "Real artists ship."]
    assert record.highlights[0].position == "10"
    assert clock.sleeps == 0


@pytest.mark.asyncio
async def test_waits_for_panel_to_change_between_books() -> None:
    books = BOOKS[:2]
    first = _library(books, _panel("B1", ["Stay hungry."]))
    second = _library(books, _panel("B2", ["Fear is the mind-killer."]))
    page = _FakeNotebookPage(_library(books))
    page.script_click('[id="B1"]', first)
    page.script_click('[id="B2"]', first, first, second)
    clock = _FakeClock()

    result = await _session(page, clock).run()

    assert [record.title for record in result.records] == ["Steve Jobs", "Dune"]
    assert [highlight.text for highlight in result.records[1].highlights] == ["Fear is the mind-killer."]
    assert clock.sleeps == 2


@pytest.mark.asyncio
async def test_book_that_never_renders_is_skipped_and_the_rest_continue() -> None:
    page = _FakeNotebookPage(_library(BOOKS))
    for asin, _, _ in BOOKS:
        if asin == "B3":
            page.script_click('[id="B3"]')
            continue
        page.script_click(f'[id="{asin}"]', _library(BOOKS, _panel(asin, [f"highlight from {asin}"])))
    clock = _FakeClock()

    result = await _session(page, clock).run()

    assert result.succeeded
    assert [record.title for record in result.records] == [
        "Steve Jobs",
        "Dune",
        "Thinking, Fast and Slow",
        "The Hobbit",
    ]
    assert len(result.skipped) == 1
    assert result.skipped[0].label == "Sapiens"
    assert "did not load within 10s" in result.skipped[0].reason
    assert clock.now >= 10.0


@pytest.mark.asyncio
async def test_paginated_book_collects_every_page_without_duplicates() -> None:
    books = BOOKS[:1]
    page = _FakeNotebookPage(_library(books))
    page.script_click('[id="B1"]', _library(books, _panel("B1", ["one", "two"], token="t2")))
    page.script_click(NEXT_PAGE_SELECTOR, _library(books, _panel("B1", ["three", "One"], token="t3")))
    page.script_click(NEXT_PAGE_SELECTOR, _library(books, _panel("B1", ["four"])))

    result = await _session(page, _FakeClock()).run()

    assert [highlight.text for highlight in result.records[0].highlights] == ["one", "two", "three", "four"]
    assert page.clicks.count(NEXT_PAGE_SELECTOR) == 2
    assert result.skipped == []


@pytest.mark.asyncio
async def test_pagination_stops_at_page_limit() -> None:
    books = BOOKS[:1]
    page = _FakeNotebookPage(_library(books))
    page.script_click('[id="B1"]', _library(books, _panel("B1", ["one"], token="t2")))
    for number in range(2, 6):
        page.script_click(NEXT_PAGE_SELECTOR, _library(books, _panel("B1", [f"page {number}"], token=f"t{number + 1}")))

    result = await _session(page, _FakeClock(), max_pages=2).run()

    assert [highlight.text for highlight in result.records[0].highlights] == ["one", "page 2"]
    assert page.clicks.count(NEXT_PAGE_SELECTOR) == 1


@pytest.mark.asyncio
async def test_stuck_next_page_keeps_earlier_pages() -> None:
    books = BOOKS[:1]
    page = _FakeNotebookPage(_library(books))
    page.script_click('[id="B1"]', _library(books, _panel("B1", ["one"], token="t2")))

    result = await _session(page, _FakeClock()).run()

    assert [highlight.text for highlight in result.records[0].highlights] == ["one"]
    assert result.skipped[0].label == "Steve Jobs"
    assert result.skipped[0].reason.startswith("page 2 did not load")


@pytest.mark.asyncio
async def test_interactive_login_is_awaited() -> None:
    page = _FakeNotebookPage(LOGIN_HTML)
    page.after_goto(LOGIN_HTML, LOGIN_HTML, _library(BOOKS[:1]))
    page.script_click('[id="B1"]', _library(BOOKS[:1], _panel("B1", ["one"])))
    clock = _FakeClock()
    session = _session(page, clock)

    result = await session.run()

    assert result.succeeded
    assert SessionState.AWAITING_LOGIN in session.history
    assert len(result.records) == 1
    assert clock.sleeps == 1


@pytest.mark.asyncio
async def test_login_timeout_fails_without_records() -> None:
    page = _FakeNotebookPage(LOGIN_HTML, landing_url=SIGNIN_URL)
    clock = _FakeClock()
    session = _session(page, clock, login_timeout=5.0)

    result = await session.run()

    assert result.failure is SessionFailure.LOGIN_TIMEOUT
    assert result.records == []
    assert session.state is SessionState.FAILED
    assert clock.now >= 5.0


@pytest.mark.asyncio
async def test_headless_run_reports_expired_session_immediately() -> None:
    page = _FakeNotebookPage(LOGIN_HTML, landing_url=SIGNIN_URL)
    clock = _FakeClock()

    result = await _session(page, clock, interactive=False).run()

    assert result.failure is SessionFailure.SESSION_EXPIRED
    assert "sign in again" in (result.detail or "")
    assert clock.sleeps == 0


@pytest.mark.asyncio
async def test_empty_notebook_reports_no_books() -> None:
    page = _FakeNotebookPage(_library([]))

    result = await _session(page, _FakeClock()).run()

    assert result.failure is SessionFailure.NO_BOOKS_FOUND
    assert result.books_listed == 0
    assert page.clicks == []


@pytest.mark.asyncio
async def test_browser_error_on_one_book_skips_only_that_book() -> None:
    books = BOOKS[:3]
    page = _FakeNotebookPage(_library(books))
    page.script_click('[id="B1"]', _library(books, _panel("B1", ["one"])))
    page.fail_click('[id="B2"]')
    page.script_click('[id="B3"]', _library(books, _panel("B3", ["three"])))

    result = await _session(page, _FakeClock()).run()

    assert result.succeeded
    assert [record.title for record in result.records] == ["Steve Jobs", "Sapiens"]
    assert result.skipped[0].label == "Dune"
    assert "element detached" in result.skipped[0].reason


@pytest.mark.asyncio
async def test_navigation_failure_is_a_browser_error() -> None:
    page = _FakeNotebookPage(_library(BOOKS), goto_error=True)

    result = await _session(page, _FakeClock()).run()

    assert result.failure is SessionFailure.BROWSER_ERROR
    assert "ERR_NAME_NOT_RESOLVED" in (result.detail or "")


def test_cancellation_keeps_books_already_scraped() -> None:
    async def _scenario() -> None:
        books = BOOKS[:2]
        cancel_event = asyncio.Event()
        page = _FakeNotebookPage(_library(books))
        page.script_click('[id="B1"]', _library(books, _panel("B1", ["one"])))
        page.script_click('[id="B2"]')
        clock = _FakeClock(on_sleep=cancel_event.set)

        result = await _session(page, clock, cancel_event=cancel_event).run()

        assert result.failure is SessionFailure.CANCELLED
        assert [record.title for record in result.records] == ["Steve Jobs"]
        assert clock.sleeps == 1

    asyncio.run(_scenario())


def test_invalid_poll_interval_is_rejected() -> None:
    with pytest.raises(ValueError, match="poll_interval"):
        _session(_FakeNotebookPage(""), _FakeClock(), poll_interval=0)


NAVIGATING = BrowserError("content", "Unable to retrieve content because the page is navigating")


@pytest.mark.asyncio
async def test_unreadable_page_during_sign_in_keeps_waiting() -> None:
    page = _FakeNotebookPage(LOGIN_HTML)
    page.after_goto(LOGIN_HTML, NAVIGATING, _library(BOOKS[:1]))
    page.script_click('[id="B1"]', _library(BOOKS[:1], _panel("B1", ["one"])))
    clock = _FakeClock()
    session = _session(page, clock, login_timeout=60.0)

    result = await session.run()

    assert result.succeeded
    assert SessionState.AWAITING_LOGIN in session.history
    assert [record.title for record in result.records] == ["Steve Jobs"]
    assert clock.sleeps == 1


@pytest.mark.asyncio
async def test_unreadable_page_while_book_renders_is_retried() -> None:
    books = BOOKS[:1]
    page = _FakeNotebookPage(_library(books))
    page.script_click('[id="B1"]', NAVIGATING, _library(books, _panel("B1", ["one"])))
    clock = _FakeClock()

    result = await _session(page, clock).run()

    assert [highlight.text for highlight in result.records[0].highlights] == ["one"]
    assert result.skipped == []
    assert clock.sleeps == 1


@pytest.mark.asyncio
async def test_next_page_falls_back_to_token_form() -> None:
    books = BOOKS[:1]
    page = _FakeNotebookPage(_library(books))
    page.script_click('[id="B1"]', _library(books, _panel("B1", ["one"], token="t2", paging="form")))
    page.script_click(f"submit:{NEXT_PAGE_FORM_SELECTOR}", _library(books, _panel("B1", ["two"])))

    result = await _session(page, _FakeClock()).run()

    assert [highlight.text for highlight in result.records[0].highlights] == ["one", "two"]
    assert f"submit:{NEXT_PAGE_FORM_SELECTOR}" in page.clicks
    assert NEXT_PAGE_SELECTOR not in page.clicks
    assert result.skipped == []


@pytest.mark.asyncio
async def test_token_without_paging_control_ends_pagination() -> None:
    books = BOOKS[:1]
    page = _FakeNotebookPage(_library(books))
    page.script_click('[id="B1"]', _library(books, _panel("B1", ["one"], token="t2", paging="none")))
    clock = _FakeClock()

    result = await _session(page, clock).run()

    assert [highlight.text for highlight in result.records[0].highlights] == ["one"]
    assert result.skipped == []
    assert page.clicks == ['[id="B1"]']
    assert clock.sleeps == 0
