from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path

import pytest

from readingsync.extractors.base import ExtractionError, OutcomeStatus, SkippedItem
from readingsync.extractors.kindle.browser import BrowserError
from readingsync.extractors.kindle.extractor import KindleBrowserExtractor, outcome_from_session
from readingsync.extractors.kindle.profile import ProfileLock
from readingsync.extractors.kindle.regions import AmazonRegion
from readingsync.extractors.kindle.session import SessionFailure, SessionResult
from readingsync.models import RawRecord, Source

LIBRARY_HTML = (
    '<html><body><div id="kp-notebook-library">'
    '<div id="B1" class="kp-notebook-library-each-book"><h2>Dune</h2><p class="kp-notebook-searchable">By: Frank Herbert</p></div>'
    "</div>{panel}</body></html>"
)
PANEL_HTML = (
    '<div id="kp-notebook-annotations"><input id="kp-notebook-annotations-asin" value="B1">'
    '<div id="H1" class="a-row a-spacing-base"><span id="highlight">I must not fear.</span></div>'
    "</div>"
)
SIGNIN_HTML = "<html><body><form name='signIn'></form></body></html>"


class _StaticNotebookPage:
    def __init__(self, html: str, *, after_click: str | None = None, landing_url: str | None = None) -> None:
        self.url = "about:blank"
        self._html = html
        self._after_click = after_click
        self._landing_url = landing_url

    async def goto(self, url: str) -> None:
        self.url = self._landing_url or url

    async def content(self) -> str:
        return self._html

    async def click(self, selector: str) -> None:
        if self._after_click is not None:
            self._html = self._after_click


def _factory(page, opened: list[dict] | None = None):
    @asynccontextmanager
    async def _open(profile_dir: Path, *, headless: bool):
        if opened is not None:
            opened.append({"profile_dir": profile_dir, "headless": headless})
        yield page

    return _open


def _extractor(tmp_path: Path, page_factory, **kwargs) -> KindleBrowserExtractor:
    return KindleBrowserExtractor(
        AmazonRegion.from_code("us"),
        tmp_path / "chrome_profile",
        poll_interval=0.01,
        book_timeout=1.0,
        page_factory=page_factory,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_extract_returns_ok_outcome_and_releases_profile(tmp_path: Path) -> None:
    page = _StaticNotebookPage(LIBRARY_HTML.format(panel=""), after_click=LIBRARY_HTML.format(panel=PANEL_HTML))
    opened: list[dict] = []
    extractor = _extractor(tmp_path, _factory(page, opened))

    outcome = await extractor.extract()

    assert outcome.extractor == "kindle_notebook"
    assert outcome.status is OutcomeStatus.OK
    assert outcome.records[0].title == "Dune"
    assert outcome.records[0].highlights[0].text == "I must not fear."
    assert opened == [{"profile_dir": tmp_path / "chrome_profile", "headless": False}]
    assert not ProfileLock(tmp_path / "chrome_profile").path.exists()


@pytest.mark.asyncio
async def test_headless_signed_out_profile_reports_session_expired(tmp_path: Path) -> None:
    page = _StaticNotebookPage(SIGNIN_HTML, landing_url="https://www.amazon.com/ap/signin")
    opened: list[dict] = []

    outcome = await _extractor(tmp_path, _factory(page, opened), headless=True).extract()

    assert outcome.status is OutcomeStatus.SESSION_EXPIRED
    assert outcome.records == []
    assert outcome.error
    assert opened[0]["headless"] is True


@pytest.mark.asyncio
async def test_profile_in_use_raises_extraction_error(tmp_path: Path) -> None:
    page = _StaticNotebookPage(LIBRARY_HTML.format(panel=""))
    held = ProfileLock(tmp_path / "chrome_profile")
    held.acquire()
    try:
        with pytest.raises(ExtractionError, match="in use"):
            await _extractor(tmp_path, _factory(page)).extract()
    finally:
        held.release()


@pytest.mark.asyncio
async def test_launch_failure_raises_extraction_error(tmp_path: Path) -> None:
    @asynccontextmanager
    async def _broken(profile_dir: Path, *, headless: bool):
        raise BrowserError("launch", "Failed to launch browser: chromium missing")
        yield  # pragma: no cover

    with pytest.raises(ExtractionError, match="chromium missing"):
        await _extractor(tmp_path, _broken).extract()
    assert not ProfileLock(tmp_path / "chrome_profile").path.exists()


def _result(failure: SessionFailure | None, *, records: int = 0, skipped: int = 0) -> SessionResult:
    return SessionResult(
        records=[RawRecord(title=f"Book {index}", source=Source.KINDLE) for index in range(records)],
        skipped=[SkippedItem(label=f"Skipped {index}", reason="timeout") for index in range(skipped)],
        failure=failure,
        detail=None if failure is None else f"{failure.value} detail",
    )


@pytest.mark.parametrize(
    ("result", "status"),
    [
        (_result(None, records=2), OutcomeStatus.OK),
        (_result(None, records=2, skipped=1), OutcomeStatus.PARTIAL),
        (_result(SessionFailure.SESSION_EXPIRED), OutcomeStatus.SESSION_EXPIRED),
        (_result(SessionFailure.NO_BOOKS_FOUND), OutcomeStatus.EMPTY),
        (_result(SessionFailure.CANCELLED, records=1), OutcomeStatus.PARTIAL),
        (_result(SessionFailure.LOGIN_TIMEOUT), OutcomeStatus.FAILED),
        (_result(SessionFailure.BROWSER_ERROR), OutcomeStatus.FAILED),
    ],
)
def test_outcome_mapping(result: SessionResult, status: OutcomeStatus) -> None:
    outcome = outcome_from_session("kindle_notebook", result)

    assert outcome.status is status
    assert len(outcome.records) == len(result.records)
    if result.failure is not None:
        assert outcome.error == result.detail
