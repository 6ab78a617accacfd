"""Kindle ``My Clippings.txt`` extractor.

Each entry is separated by a line of ``==========`` and looks like::

    Book Title (Author Name)
    - Your Highlight on page 12 | Location 123-145 | Added on Monday, January 1, 2024 9:15:02 PM

    The highlighted text.

Bookmarks are ignored. Notes are attached to the highlight they annotate
when one ends at the note's location; otherwise they are kept as standalone
entries so no annotation is lost.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import logging
from pathlib import Path
import re

from charset_normalizer import from_bytes

from readingsync.extractors.base import ExtractionError, ExtractionOutcome, SkippedItem
from readingsync.models import RawHighlight, RawRecord, Source
from readingsync.normalization import normalize_whitespace

LOGGER = logging.getLogger(__name__)

EXTRACTOR_NAME = "clippings"
ENTRY_SEPARATOR = "=========="

_TITLE_AUTHOR_RE = re.compile(r"^(?P<title>.+?)\s*\((?P<author>[^()]+)\)\s*$")
_LOCATION_RE = re.compile(r"(?:Location|Loc\.)\s*(\d+(?:-\d+)?)", re.IGNORECASE)
_PAGE_RE = re.compile(r"\bpage\s*(\d+(?:-\d+)?)", re.IGNORECASE)
_ADDED_ON_RE = re.compile(r"Added on\s+(.+)$", re.IGNORECASE)

_DATE_FORMATS = (
    "%A, %B %d, %Y %I:%M:%S %p",
    "%A, %d %B %Y %H:%M:%S",
    "%A, %B %d, %Y",
    "%A, %d %B %Y",
)


class ClippingKind(str, Enum):
    HIGHLIGHT = "highlight"
    NOTE = "note"
    BOOKMARK = "bookmark"


@dataclass(slots=True)
class Clipping:
    title: str
    author: str | None
    kind: ClippingKind
    location: str | None
    added_on: datetime | None
    content: str


@dataclass(slots=True)
class _Entry:
    text: str
    position: str | None
    created_at: datetime | None
    note: str | None = None

    def freeze(self) -> RawHighlight:
        return RawHighlight(text=self.text, note=self.note, position=self.position, created_at=self.created_at)


@dataclass(slots=True)
class _BookAccumulator:
    title: str
    author: str | None
    entries: list[_Entry] = field(default_factory=list)


class ClippingParseError(ValueError):
    """Raised for one malformed entry; the rest of the file is still read."""


def parse_title_author(line: str) -> tuple[str, str | None]:
    cleaned = normalize_whitespace(line.lstrip("\ufeff"))
    match = _TITLE_AUTHOR_RE.match(cleaned)
    if match is None:
        return cleaned, None
    return match.group("title").strip(), match.group("author").strip()


def extract_location(line: str) -> str | None:
    match = _LOCATION_RE.search(line) or _PAGE_RE.search(line)
    return match.group(1) if match else None


def extract_added_on(line: str) -> datetime | None:
    """Parse the ``Added on`` stamp; device local time is stored as UTC."""

    match = _ADDED_ON_RE.search(line)
    if match is None:
        return None
    raw = normalize_whitespace(match.group(1))
    for fmt in _DATE_FORMATS:
        try:
            parsed = datetime.strptime(raw, fmt)
        except ValueError:
            continue
        return parsed.replace(tzinfo=timezone.utc)
    return None


def _detect_kind(line: str) -> ClippingKind:
    lowered = line.casefold()
    if "highlight" in lowered:
        return ClippingKind.HIGHLIGHT
    if "note" in lowered:
        return ClippingKind.NOTE
    if "bookmark" in lowered:
        return ClippingKind.BOOKMARK
    raise ClippingParseError(f"Unrecognized clipping metadata: {line.strip()!r}")


def parse_entry(entry: str) -> Clipping:
    lines = entry.strip().splitlines()
    if len(lines) < 2:
        raise ClippingParseError("Entry is missing its metadata line")

    title, author = parse_title_author(lines[0])
    if not title:
        raise ClippingParseError("Entry has an empty title")

    metadata = lines[1]
    kind = _detect_kind(metadata)
    content = "\n".join(lines[2:]).strip()
    if not content and kind is not ClippingKind.BOOKMARK:
        raise ClippingParseError(f"Empty {kind.value} for '{title}'")

    return Clipping(
        title=title,
        author=author,
        kind=kind,
        location=extract_location(metadata),
        added_on=extract_added_on(metadata),
        content=content,
    )


def _location_end(location: str | None) -> str | None:
    if not location:
        return None
    return location.rsplit("-", 1)[-1]


def parse_clippings_text(text: str, *, extractor: str = EXTRACTOR_NAME) -> tuple[list[RawRecord], list[SkippedItem]]:
    """Parse clippings content into one RawRecord per book, in file order."""

    books: dict[tuple[str, str | None], _BookAccumulator] = {}
    skipped: list[SkippedItem] = []

    chunks = [chunk for chunk in text.split(ENTRY_SEPARATOR) if chunk.strip()]
    for index, chunk in enumerate(chunks, start=1):
        try:
            clipping = parse_entry(chunk)
        except ClippingParseError as exc:
            LOGGER.warning("Skipping clipping entry %d: %s", index, exc)
            skipped.append(SkippedItem(label=f"entry {index}", reason=str(exc)))
            continue

        if clipping.kind is ClippingKind.BOOKMARK:
            continue

        book = books.setdefault(
            (clipping.title, clipping.author),
            _BookAccumulator(title=clipping.title, author=clipping.author),
        )
        if clipping.kind is ClippingKind.NOTE and _attach_note(book, clipping):
            continue

        book.entries.append(_Entry(text=clipping.content, position=clipping.location, created_at=clipping.added_on))

    records = [
        RawRecord(
            title=book.title,
            author=book.author,
            highlights=tuple(entry.freeze() for entry in book.entries),
            source=Source.KINDLE,
            extractor=extractor,
        )
        for book in books.values()
    ]
    return records, skipped


def _attach_note(book: _BookAccumulator, clipping: Clipping) -> bool:
    target = _location_end(clipping.location)
    if target is None:
        return False
    for entry in reversed(book.entries):
        if entry.note is None and _location_end(entry.position) == target:
            entry.note = clipping.content
            return True
    return False


class ClippingsExtractor:
    """Extract highlights from a device-exported clippings file."""

    name = EXTRACTOR_NAME

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()

    def extract(self) -> ExtractionOutcome:
        if not self._path.is_file():
            raise ExtractionError(self.name, f"Clippings file not found: {self._path}")
        try:
            raw = self._path.read_bytes()
        except OSError as exc:
            raise ExtractionError(self.name, f"Failed to read clippings file: {exc}") from exc

        text = self._decode(raw)
        records, skipped = parse_clippings_text(text, extractor=self.name)
        LOGGER.info("Clippings: %d books from %s", len(records), self._path)
        return ExtractionOutcome.from_records(self.name, records, skipped)

    def _decode(self, raw: bytes) -> str:
        if raw.startswith(b"\xef\xbb\xbf"):
            return raw.decode("utf-8-sig")

        best = from_bytes(raw).best()
        if best and best.encoding:
            return str(best)

        for fallback in ("utf-8", "cp1252"):
            try:
                return raw.decode(fallback)
            except UnicodeDecodeError:
                continue
        raise ExtractionError(self.name, "Could not detect clippings file encoding")
