"""Shared contract and outcome types for source extractors."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, runtime_checkable

from readingsync.models import RawRecord


class OutcomeStatus(str, Enum):
    OK = "ok"
    PARTIAL = "partial"
    EMPTY = "empty"
    FAILED = "failed"
    SESSION_EXPIRED = "session_expired"


@dataclass(slots=True)
class ExtractionError(Exception):
    """Extractor-fatal failure: the source cannot produce any records."""

    extractor: str
    message: str

    def __str__(self) -> str:
        return f"{self.message} (extractor={self.extractor})"


@dataclass(frozen=True, slots=True)
class SkippedItem:
    """A single book or entry that could not be read."""

    label: str
    reason: str


@dataclass(slots=True)
class ExtractionOutcome:
    """Records plus the partial/failure signal for one extractor run."""

    extractor: str
    records: list[RawRecord] = field(default_factory=list)
    status: OutcomeStatus = OutcomeStatus.OK
    skipped: list[SkippedItem] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def from_records(
        cls,
        extractor: str,
        records: list[RawRecord],
        skipped: list[SkippedItem] | None = None,
    ) -> "ExtractionOutcome":
        skipped_items = list(skipped or [])
        status = OutcomeStatus.PARTIAL if skipped_items else OutcomeStatus.OK
        return cls(extractor=extractor, records=list(records), status=status, skipped=skipped_items)

    @classmethod
    def failed(cls, extractor: str, error: str) -> "ExtractionOutcome":
        return cls(extractor=extractor, status=OutcomeStatus.FAILED, error=error)

    @property
    def highlight_count(self) -> int:
        return sum(len(record.highlights) for record in self.records)


@runtime_checkable
class SourceExtractor(Protocol):
    """Protocol for the local, synchronous extractors."""

    name: str

    def extract(self) -> ExtractionOutcome:
        """Read the source and return its records, or raise ExtractionError."""


@runtime_checkable
class AsyncSourceExtractor(Protocol):
    """Protocol for extractors that suspend, such as the browser session."""

    name: str

    async def extract(self) -> ExtractionOutcome:
        """Drive the source and return its records, or raise ExtractionError."""
