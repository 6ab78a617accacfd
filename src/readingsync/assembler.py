"""Final library assembly and JSON rendering."""

from __future__ import annotations

from datetime import datetime, timezone
import json
from pathlib import Path
from typing import Any, Iterable

from readingsync.models import Book, Highlight, Library


def assemble_library(books: Iterable[Book], exported_at: datetime) -> Library:
    """Order merged books by id and freeze them into a Library."""

    ordered = tuple(sorted(books, key=lambda book: book.id))
    return Library(exported_at=exported_at, books=ordered)


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _highlight_to_dict(highlight: Highlight) -> dict[str, Any]:
    return {
        "id": highlight.id,
        "text": highlight.text,
        "note": highlight.note,
        "location": {
            "chapter": highlight.location.chapter,
            "position": highlight.location.position,
        },
        "created_at": format_timestamp(highlight.created_at),
        "source": highlight.source.value,
    }


def _book_to_dict(book: Book) -> dict[str, Any]:
    return {
        "id": book.id,
        "title": book.title,
        "author": book.author,
        "sources": [source.value for source in book.sources],
        "highlights": [_highlight_to_dict(highlight) for highlight in book.highlights],
        "finished": book.finished,
        "finished_at": format_timestamp(book.finished_at),
    }


def library_to_dict(library: Library) -> dict[str, Any]:
    return {
        "exported_at": format_timestamp(library.exported_at),
        "books": [_book_to_dict(book) for book in library.books],
    }


def write_library(library: Library, path: str | Path, *, pretty: bool = False) -> Path:
    """Serialize the library to ``path``, creating parent directories."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    payload = library_to_dict(library)
    if pretty:
        text = json.dumps(payload, ensure_ascii=False, indent=2)
    else:
        text = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    target.write_text(text, encoding="utf-8")
    return target
