"""Kindle notebook extractor: browser launch, profile ownership, outcome mapping."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import AsyncContextManager, Callable

from readingsync.extractors.base import ExtractionError, ExtractionOutcome, OutcomeStatus
from readingsync.extractors.kindle.browser import BrowserError, NotebookPage, open_notebook_page
from readingsync.extractors.kindle.profile import ProfileLock, ProfileLockedError
from readingsync.extractors.kindle.regions import AmazonRegion
from readingsync.extractors.kindle.session import (
    DEFAULT_BOOK_TIMEOUT_SECONDS,
    DEFAULT_LOGIN_TIMEOUT_SECONDS,
    DEFAULT_MAX_PAGES,
    DEFAULT_POLL_INTERVAL_SECONDS,
    KindleNotebookSession,
    SessionConfig,
    SessionFailure,
    SessionResult,
)

LOGGER = logging.getLogger(__name__)

PageFactory = Callable[..., AsyncContextManager[NotebookPage]]


def outcome_from_session(extractor: str, result: SessionResult) -> ExtractionOutcome:
    """Translate a session's terminal state into the extractor outcome."""

    outcome = ExtractionOutcome.from_records(extractor, result.records, result.skipped)
    if result.failure is None:
        return outcome

    outcome.error = result.detail
    if result.failure is SessionFailure.SESSION_EXPIRED:
        outcome.status = OutcomeStatus.SESSION_EXPIRED
    elif result.failure is SessionFailure.NO_BOOKS_FOUND:
        outcome.status = OutcomeStatus.EMPTY
    elif result.records:
        outcome.status = OutcomeStatus.PARTIAL
    else:
        outcome.status = OutcomeStatus.FAILED
    return outcome


class KindleBrowserExtractor:
    """Harvest the Kindle notebook through a persistent-profile browser."""

    name = KindleNotebookSession.extractor_name

    def __init__(
        self,
        region: AmazonRegion,
        profile_dir: Path,
        *,
        headless: bool = False,
        login_timeout: float = DEFAULT_LOGIN_TIMEOUT_SECONDS,
        book_timeout: float = DEFAULT_BOOK_TIMEOUT_SECONDS,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_pages: int = DEFAULT_MAX_PAGES,
        cancel_event: asyncio.Event | None = None,
        page_factory: PageFactory = open_notebook_page,
    ) -> None:
        self._profile_dir = profile_dir
        self._headless = headless
        self._cancel_event = cancel_event
        self._page_factory = page_factory
        # A headless browser cannot show the sign-in form, so it never waits for one.
        self._config = SessionConfig(
            notebook_url=region.notebook_url,
            interactive=not headless,
            login_timeout=login_timeout,
            book_timeout=book_timeout,
            poll_interval=poll_interval,
            max_pages=max_pages,
        )

    async def extract(self) -> ExtractionOutcome:
        lock = ProfileLock(self._profile_dir)
        try:
            lock.acquire()
        except ProfileLockedError as exc:
            raise ExtractionError(self.name, str(exc)) from exc

        result: SessionResult | None = None
        try:
            async with self._page_factory(self._profile_dir, headless=self._headless) as page:
                session = KindleNotebookSession(page, self._config, cancel_event=self._cancel_event)
                result = await session.run()
        except BrowserError as exc:
            if result is None:
                raise ExtractionError(self.name, str(exc)) from exc
            LOGGER.warning("Browser shutdown failed after scraping: %s", exc)
        finally:
            lock.release()

        assert result is not None
        return outcome_from_session(self.name, result)
