"""Runtime configuration for extraction runs."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
import sys
from typing import Mapping

from readingsync.extractors.kindle.regions import AmazonRegion
from readingsync.extractors.kindle.session import (
    DEFAULT_BOOK_TIMEOUT_SECONDS,
    DEFAULT_LOGIN_TIMEOUT_SECONDS,
    DEFAULT_MAX_PAGES,
    DEFAULT_POLL_INTERVAL_SECONDS,
)

APP_DIR_NAME = "readingsync"
DEFAULT_REGION = "us"
PROFILE_DIR_NAME = "chrome_profile"
LIBRARY_FILE_NAME = "library.json"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def default_data_dir(environ: Mapping[str, str] | None = None) -> Path:
    """Per-user data directory, following each platform's convention."""

    source: Mapping[str, str] = os.environ if environ is None else environ
    home = Path(source.get("HOME") or Path.home())
    if sys.platform == "darwin":
        base = home / "Library" / "Application Support"
    elif sys.platform.startswith("win"):
        base = Path(source.get("LOCALAPPDATA") or home / "AppData" / "Local")
    else:
        base = Path(source.get("XDG_DATA_HOME") or home / ".local" / "share")
    return base / APP_DIR_NAME


def _parse_bool(*, name: str, raw_value: str) -> bool:
    lowered = raw_value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean (true/false)")


def _parse_positive_int(*, name: str, raw_value: str, minimum: int = 1) -> int:
    value = int(raw_value)
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    return value


def _parse_positive_float(*, name: str, raw_value: str, minimum: float = 0.001) -> float:
    value = float(raw_value)
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    return value


def _optional_path(raw_value: str | None) -> Path | None:
    if raw_value is None or not raw_value.strip():
        return None
    return Path(raw_value.strip()).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    """Validated settings; CLI flags are applied on top with ``dataclasses.replace``."""

    data_dir: Path
    output_path: Path
    region: AmazonRegion
    headless: bool = False
    login_timeout_seconds: float = DEFAULT_LOGIN_TIMEOUT_SECONDS
    book_timeout_seconds: float = DEFAULT_BOOK_TIMEOUT_SECONDS
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    max_pages: int = DEFAULT_MAX_PAGES
    clippings_path: Path | None = None
    apple_books_library_db: Path | None = None
    apple_books_annotation_db: Path | None = None

    @property
    def profile_dir(self) -> Path:
        return self.data_dir / PROFILE_DIR_NAME

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        source: Mapping[str, str] = os.environ if environ is None else environ

        data_dir = _optional_path(source.get("READINGSYNC_DATA_DIR")) or default_data_dir(source)
        output_path = _optional_path(source.get("READINGSYNC_OUTPUT_PATH")) or data_dir / LIBRARY_FILE_NAME

        region_raw = source.get("KINDLE_REGION", DEFAULT_REGION).strip()
        if not region_raw:
            raise ValueError("KINDLE_REGION cannot be empty")
        region = AmazonRegion.from_code(region_raw)

        headless = _parse_bool(name="KINDLE_HEADLESS", raw_value=source.get("KINDLE_HEADLESS", "false"))
        login_timeout = _parse_positive_float(
            name="KINDLE_LOGIN_TIMEOUT_SECONDS",
            raw_value=source.get("KINDLE_LOGIN_TIMEOUT_SECONDS", str(DEFAULT_LOGIN_TIMEOUT_SECONDS)),
            minimum=1.0,
        )
        book_timeout = _parse_positive_float(
            name="KINDLE_BOOK_TIMEOUT_SECONDS",
            raw_value=source.get("KINDLE_BOOK_TIMEOUT_SECONDS", str(DEFAULT_BOOK_TIMEOUT_SECONDS)),
            minimum=0.1,
        )
        poll_interval = _parse_positive_float(
            name="KINDLE_POLL_INTERVAL_SECONDS",
            raw_value=source.get("KINDLE_POLL_INTERVAL_SECONDS", str(DEFAULT_POLL_INTERVAL_SECONDS)),
            minimum=0.01,
        )
        max_pages = _parse_positive_int(
            name="KINDLE_MAX_PAGES",
            raw_value=source.get("KINDLE_MAX_PAGES", str(DEFAULT_MAX_PAGES)),
        )

        return cls(
            data_dir=data_dir,
            output_path=output_path,
            region=region,
            headless=headless,
            login_timeout_seconds=login_timeout,
            book_timeout_seconds=book_timeout,
            poll_interval_seconds=poll_interval,
            max_pages=max_pages,
            clippings_path=_optional_path(source.get("KINDLE_CLIPPINGS_PATH")),
            apple_books_library_db=_optional_path(source.get("APPLE_BOOKS_LIBRARY_DB")),
            apple_books_annotation_db=_optional_path(source.get("APPLE_BOOKS_ANNOTATION_DB")),
        )
