"""Cross-source grouping, metadata union and highlight dedupe."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Iterable

from readingsync.identity import derive_highlight_id, normalize_highlight_text, resolve_book_identity
from readingsync.models import Book, Highlight, Location, RawHighlight, RawRecord, Source

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class MergeError(RuntimeError):
    """Raised when no extractor produced a single record."""

    message: str

    def __str__(self) -> str:
        return self.message


def merge_records(records: Iterable[RawRecord]) -> list[Book]:
    """Merge raw records from every extractor into canonical books.

    Groups keep first-seen order; the assembler is responsible for the final
    deterministic ordering. Raises ``MergeError`` on empty input, because zero
    records means every extraction failed rather than an empty library.
    """

    groups: dict[str, list[RawRecord]] = {}
    for record in records:
        book_id = resolve_book_identity(record.title, record.author)
        groups.setdefault(book_id, []).append(record)

    if not groups:
        raise MergeError("No records were extracted from any source")

    return [_merge_group(book_id, members) for book_id, members in groups.items()]


def _merge_group(book_id: str, members: list[RawRecord]) -> Book:
    first = members[0]
    book = Book(id=book_id, title=first.title, author=first.author)

    for member in members:
        if member.source not in book.sources:
            book.sources.append(member.source)

    book.finished = _merge_finished(member.finished for member in members)
    book.finished_at = _earliest(member.finished_at for member in members)
    book.highlights = _merge_highlights(book_id, members)
    return book


def _merge_finished(values: Iterable[bool | None]) -> bool | None:
    # any True wins; explicit False only when nobody says True
    merged: bool | None = None
    for value in values:
        if value is True:
            return True
        if value is False:
            merged = False
    return merged


def _earliest(values: Iterable[datetime | None]) -> datetime | None:
    present = [value for value in values if value is not None]
    return min(present) if present else None


def _merge_highlights(book_id: str, members: list[RawRecord]) -> list[Highlight]:
    seen: set[str] = set()
    merged: list[Highlight] = []

    for member in members:
        for raw in member.highlights:
            key = normalize_highlight_text(raw.text)
            if not key:
                LOGGER.debug("Dropping blank highlight in '%s' from %s", member.title, member.extractor)
                continue
            if key in seen:
                continue
            seen.add(key)
            merged.append(_to_highlight(book_id, key, raw, member.source))

    return merged


def _to_highlight(book_id: str, key: str, raw: RawHighlight, source: Source) -> Highlight:
    if source.durable_ids and raw.external_id:
        highlight_id = raw.external_id
    else:
        highlight_id = derive_highlight_id(book_id, key)

    return Highlight(
        id=highlight_id,
        text=raw.text,
        note=raw.note,
        location=Location(chapter=raw.chapter, position=raw.position),
        created_at=raw.created_at,
        source=source,
    )
