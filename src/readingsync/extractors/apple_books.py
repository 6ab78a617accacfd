"""Apple Books extractor over the local BKLibrary and AEAnnotation databases."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from pathlib import Path
import shutil
import sqlite3
import tempfile

from readingsync.extractors.base import ExtractionError, ExtractionOutcome, SkippedItem
from readingsync.models import RawHighlight, RawRecord, Source

LOGGER = logging.getLogger(__name__)

EXTRACTOR_NAME = "apple_books"

# CoreData timestamps count seconds from 2001-01-01T00:00:00Z.
CORE_DATA_EPOCH = datetime(2001, 1, 1, tzinfo=timezone.utc)

_CONTAINER = Path("~/Library/Containers/com.apple.iBooksX/Data/Documents")
LIBRARY_DB_GLOB = "BKLibrary/BKLibrary*.sqlite"
ANNOTATION_DB_GLOB = "AEAnnotation/AEAnnotation*.sqlite"

_BOOKS_QUERY = """
    SELECT ZASSETID, ZTITLE, ZAUTHOR, ZISFINISHED, ZDATEFINISHED
    FROM ZBKLIBRARYASSET
    WHERE ZTITLE IS NOT NULL
"""

_ANNOTATIONS_QUERY = """
    SELECT
        ZANNOTATIONUUID,
        ZANNOTATIONASSETID,
        ZANNOTATIONSELECTEDTEXT,
        ZANNOTATIONNOTE,
        ZFUTUREPROOFING5,
        ZANNOTATIONLOCATION,
        ZANNOTATIONCREATIONDATE
    FROM ZAEANNOTATION
    WHERE ZANNOTATIONDELETED = 0
      AND ZANNOTATIONSELECTEDTEXT IS NOT NULL
      AND ZANNOTATIONSELECTEDTEXT != ''
    ORDER BY ZANNOTATIONASSETID, ZPLLOCATIONRANGESTART
"""


def core_data_to_datetime(value: float | int | None) -> datetime | None:
    if value is None:
        return None
    try:
        return CORE_DATA_EPOCH + timedelta(seconds=float(value))
    except (TypeError, ValueError, OverflowError):
        return None


def find_database(container: Path, pattern: str) -> Path | None:
    """Return the first matching database file, ignoring WAL/SHM sidecars."""

    root = container.expanduser()
    if not root.is_dir():
        return None
    for candidate in sorted(root.glob(pattern)):
        if candidate.name.endswith(("-wal", "-shm")):
            continue
        if candidate.is_file():
            return candidate
    return None


class AppleBooksExtractor:
    """Read books, finished state and annotations from Apple Books."""

    name = EXTRACTOR_NAME

    def __init__(
        self,
        library_db: str | Path | None = None,
        annotation_db: str | Path | None = None,
        *,
        container: str | Path = _CONTAINER,
    ) -> None:
        self._library_db = Path(library_db).expanduser() if library_db else None
        self._annotation_db = Path(annotation_db).expanduser() if annotation_db else None
        self._container = Path(container)

    def extract(self) -> ExtractionOutcome:
        library_db = self._library_db or find_database(self._container, LIBRARY_DB_GLOB)
        annotation_db = self._annotation_db or find_database(self._container, ANNOTATION_DB_GLOB)
        if library_db is None or annotation_db is None:
            raise ExtractionError(self.name, "No Apple Books databases found")
        for path in (library_db, annotation_db):
            if not path.is_file():
                raise ExtractionError(self.name, f"Apple Books database not found at {path}")

        # Apple Books keeps the live files locked; read private copies instead.
        with tempfile.TemporaryDirectory(prefix="readingsync-") as scratch:
            library_copy = self._copy(library_db, Path(scratch) / "library")
            annotation_copy = self._copy(annotation_db, Path(scratch) / "annotations")
            try:
                books = self._read_books(library_copy)
                annotations, skipped = self._read_annotations(annotation_copy, books)
            except sqlite3.Error as exc:
                raise ExtractionError(self.name, f"Database error: {exc}") from exc

        records = [
            RawRecord(
                title=title,
                author=author,
                highlights=tuple(annotations.get(asset_id, ())),
                finished=finished,
                finished_at=finished_at,
                source=Source.APPLE_BOOKS,
                extractor=self.name,
            )
            for asset_id, (title, author, finished, finished_at) in books.items()
        ]
        LOGGER.info("Apple Books: %d books, %d annotations", len(records), sum(len(v) for v in annotations.values()))
        return ExtractionOutcome.from_records(self.name, records, skipped)

    def _copy(self, source: Path, scratch: Path) -> Path:
        target = scratch / source.name
        try:
            scratch.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)
        except OSError as exc:
            raise ExtractionError(self.name, f"Failed to copy database to temp location: {exc}") from exc
        return target

    def _read_books(self, path: Path) -> dict[str, tuple[str, str | None, bool, datetime | None]]:
        books: dict[str, tuple[str, str | None, bool, datetime | None]] = {}
        connection = sqlite3.connect(str(path))
        connection.row_factory = sqlite3.Row
        try:
            for row in connection.execute(_BOOKS_QUERY):
                asset_id = row["ZASSETID"]
                if not asset_id:
                    continue
                books[str(asset_id)] = (
                    str(row["ZTITLE"]),
                    row["ZAUTHOR"],
                    bool(row["ZISFINISHED"] or 0),
                    core_data_to_datetime(row["ZDATEFINISHED"]),
                )
        finally:
            connection.close()
        return books

    def _read_annotations(
        self,
        path: Path,
        books: dict[str, tuple[str, str | None, bool, datetime | None]],
    ) -> tuple[dict[str, list[RawHighlight]], list[SkippedItem]]:
        annotations: dict[str, list[RawHighlight]] = {}
        orphans: dict[str, int] = {}
        connection = sqlite3.connect(str(path))
        connection.row_factory = sqlite3.Row
        try:
            for row in connection.execute(_ANNOTATIONS_QUERY):
                asset_id = str(row["ZANNOTATIONASSETID"])
                if asset_id not in books:
                    orphans[asset_id] = orphans.get(asset_id, 0) + 1
                    continue
                text = str(row["ZANNOTATIONSELECTEDTEXT"])
                if not text.strip():
                    continue
                annotations.setdefault(asset_id, []).append(
                    RawHighlight(
                        external_id=row["ZANNOTATIONUUID"],
                        text=text,
                        note=row["ZANNOTATIONNOTE"] or None,
                        chapter=row["ZFUTUREPROOFING5"] or None,
                        position=row["ZANNOTATIONLOCATION"] or None,
                        created_at=core_data_to_datetime(row["ZANNOTATIONCREATIONDATE"]),
                    )
                )
        finally:
            connection.close()

        skipped: list[SkippedItem] = []
        for asset_id, count in orphans.items():
            LOGGER.warning("Skipping %d annotations for unknown asset %s", count, asset_id)
            skipped.append(SkippedItem(label=f"asset {asset_id}", reason=f"{count} annotations without a library entry"))
        return annotations, skipped
