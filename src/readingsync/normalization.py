"""Text normalization helpers used for identity and highlight dedupe."""

from __future__ import annotations

import re

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_whitespace(text: str) -> str:
    """Collapse repeated whitespace and trim boundaries."""

    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_field(value: str | None) -> str:
    """Lowercased, whitespace-collapsed form of a title or author."""

    if value is None:
        return ""
    return normalize_whitespace(value).lower()
