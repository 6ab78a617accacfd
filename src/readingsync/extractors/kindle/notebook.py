"""Parsers for the rendered Kindle notebook DOM.

The notebook reuses element ids (``#highlight``, ``#note``) once per
annotation row, so lookups are scoped to each row container rather than
relying on document-wide id uniqueness.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from bs4 import BeautifulSoup, Tag

from readingsync.models import RawHighlight
from readingsync.normalization import normalize_whitespace

LIBRARY_SELECTOR = "#kp-notebook-library"
BOOK_ENTRY_SELECTOR = ".kp-notebook-library-each-book"
ANNOTATIONS_SELECTOR = "#kp-notebook-annotations"
ANNOTATION_ROW_SELECTOR = ".a-row.a-spacing-base"
ANNOTATIONS_ASIN_SELECTOR = "#kp-notebook-annotations-asin"
NEXT_PAGE_TOKEN_SELECTOR = ".kp-notebook-annotations-next-page-start"
NEXT_PAGE_SELECTOR = ".kp-notebook-annotations-paging a[href*='token']"
NEXT_PAGE_FORM_SELECTOR = f"form:has({NEXT_PAGE_TOKEN_SELECTOR})"

FINGERPRINT_TEXT_CHARS = 50


@dataclass(frozen=True, slots=True)
class NotebookBook:
    asin: str
    title: str
    author: str | None

    @property
    def selector(self) -> str:
        return f'[id="{self.asin}"]'


@dataclass(frozen=True, slots=True)
class HighlightPage:
    highlights: tuple[RawHighlight, ...]
    next_page_token: str | None

    @property
    def has_more(self) -> bool:
        return bool(self.next_page_token)


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def _text(node: Tag | None) -> str | None:
    if node is None:
        return None
    text = normalize_whitespace(node.get_text(" ", strip=True))
    return text or None


def _verbatim_text(node: Tag | None) -> str | None:
    # highlight and note bodies keep their line breaks and inner spacing
    if node is None:
        return None
    return node.get_text().strip() or None


def _input_value(node: Tag | None) -> str | None:
    if node is None:
        return None
    value = node.get("value")
    if isinstance(value, str) and value.strip():
        return value.strip()
    return _text(node)


def is_authenticated(url: str, html: str) -> bool:
    """The notebook library container only renders for signed-in sessions."""

    lowered = url.lower()
    if "signin" in lowered or "notebook" not in lowered:
        return False
    return _soup(html).select_one(LIBRARY_SELECTOR) is not None


def _strip_by_prefix(author: str | None) -> str | None:
    if author is None:
        return None
    for prefix in ("by:", "by "):
        if author.lower().startswith(prefix):
            author = author[len(prefix):].strip()
            break
    return author or None


def parse_book_list(html: str) -> list[NotebookBook]:
    books: list[NotebookBook] = []
    for entry in _soup(html).select(BOOK_ENTRY_SELECTOR):
        asin = str(entry.get("id") or "").strip()
        title = _text(entry.find("h2"))
        if not asin or not title:
            continue
        author = _strip_by_prefix(_text(entry.select_one("p.kp-notebook-searchable")))
        books.append(NotebookBook(asin=asin, title=title, author=author))
    return books


def _annotation_rows(soup: BeautifulSoup) -> list[Tag]:
    scope = soup.select_one(ANNOTATIONS_SELECTOR) or soup
    return [row for row in scope.select(ANNOTATION_ROW_SELECTOR) if row.select_one('[id="highlight"]') is not None]


def parse_highlight_page(html: str) -> HighlightPage:
    soup = _soup(html)
    highlights: list[RawHighlight] = []
    seen: set[str] = set()

    for row in _annotation_rows(soup):
        text = _verbatim_text(row.select_one('[id="highlight"]'))
        if not text or text in seen:
            continue
        seen.add(text)
        row_id = str(row.get("id") or "").strip() or None
        highlights.append(
            RawHighlight(
                external_id=row_id,
                text=text,
                note=_verbatim_text(row.select_one('[id="note"]')),
                position=_input_value(row.select_one('[id="kp-annotation-location"]')),
            )
        )

    token = _input_value(soup.select_one(NEXT_PAGE_TOKEN_SELECTOR))
    return HighlightPage(highlights=tuple(highlights), next_page_token=token)


def content_fingerprint(html: str) -> str | None:
    """Cheap signature of the annotation panel, ``None`` while it is absent.

    Combines the panel's book marker, the pagination token and the start of
    the first highlight so that both book switches and page turns change it.
    """

    soup = _soup(html)
    panel = soup.select_one(ANNOTATIONS_SELECTOR)
    if panel is None:
        return None
    asin = _input_value(soup.select_one(ANNOTATIONS_ASIN_SELECTOR)) or ""
    token = _input_value(soup.select_one(NEXT_PAGE_TOKEN_SELECTOR)) or ""
    rows = _annotation_rows(soup)
    first = _text(rows[0].select_one('[id="highlight"]')) if rows else None
    return f"{asin}|{token}|{(first or '')[:FINGERPRINT_TEXT_CHARS]}"


class NextPageControl(str, Enum):
    LINK = "link"
    FORM = "form"


def next_page_control(html: str) -> NextPageControl | None:
    """How the next annotation page can be requested, if at all.

    The paging link is preferred; otherwise the form holding a non-empty
    page token is submitted. ``None`` means pagination is over.
    """

    soup = _soup(html)
    if soup.select_one(NEXT_PAGE_SELECTOR) is not None:
        return NextPageControl.LINK
    token_input = soup.select_one(NEXT_PAGE_TOKEN_SELECTOR)
    if _input_value(token_input) and token_input.find_parent("form") is not None:
        return NextPageControl.FORM
    return None
