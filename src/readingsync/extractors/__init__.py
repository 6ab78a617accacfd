"""Source extractors and their shared contract."""

from .base import (
    AsyncSourceExtractor,
    ExtractionError,
    ExtractionOutcome,
    OutcomeStatus,
    SkippedItem,
    SourceExtractor,
)

__all__ = [
    "AsyncSourceExtractor",
    "ExtractionError",
    "ExtractionOutcome",
    "OutcomeStatus",
    "SkippedItem",
    "SourceExtractor",
]
