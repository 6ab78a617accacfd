"""Canonical data structures shared by extractors, merge and export."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Source(str, Enum):
    """Reading platform a record or highlight came from."""

    KINDLE = "kindle"
    APPLE_BOOKS = "apple_books"

    @property
    def durable_ids(self) -> bool:
        """True when the platform's highlight ids survive across exports."""

        return self is Source.APPLE_BOOKS


@dataclass(frozen=True, slots=True)
class RawHighlight:
    """One highlight as an extractor saw it, before merge."""

    text: str
    external_id: str | None = None
    note: str | None = None
    chapter: str | None = None
    position: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class RawRecord:
    """Source-agnostic book record emitted by exactly one extractor run."""

    title: str
    source: Source
    author: str | None = None
    highlights: tuple[RawHighlight, ...] = ()
    finished: bool | None = None
    finished_at: datetime | None = None
    extractor: str = "unknown"


@dataclass(frozen=True, slots=True)
class Location:
    chapter: str | None = None
    position: str | None = None


@dataclass(slots=True)
class Highlight:
    """Canonical highlight owned by one merged Book."""

    id: str
    text: str
    location: Location
    source: Source
    note: str | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class Book:
    """Canonical book with the union of all sources that reported it."""

    id: str
    title: str
    author: str | None = None
    sources: list[Source] = field(default_factory=list)
    highlights: list[Highlight] = field(default_factory=list)
    finished: bool | None = None
    finished_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class Library:
    """Final export structure, built once per run."""

    exported_at: datetime
    books: tuple[Book, ...] = ()
