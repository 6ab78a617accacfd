"""Content-derived identities for books and highlight comparison keys."""

from __future__ import annotations

import hashlib

from readingsync.normalization import normalize_field, normalize_whitespace

BOOK_ID_LENGTH = 16
HIGHLIGHT_ID_LENGTH = 32


def resolve_book_identity(title: str, author: str | None) -> str:
    """Return the stable 16-hex-char id for a (title, author) pair.

    The id is ``sha256(normalize(title) + normalize(author))`` truncated, so
    case and whitespace variants of the same book always collapse together.
    """

    payload = normalize_field(title) + normalize_field(author)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:BOOK_ID_LENGTH]


def normalize_highlight_text(text: str) -> str:
    """Dedupe key for highlight text. Never stored or shown."""

    return normalize_whitespace(text).lower()


def derive_highlight_id(book_id: str, text_key: str) -> str:
    """Deterministic highlight id for sources without durable ids."""

    payload = f"{book_id}\x1f{text_key}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:HIGHLIGHT_ID_LENGTH]
