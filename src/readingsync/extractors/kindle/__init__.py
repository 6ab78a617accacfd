"""Kindle notebook browser extraction."""

from .extractor import KindleBrowserExtractor, outcome_from_session
from .regions import SUPPORTED_REGIONS, AmazonRegion
from .session import KindleNotebookSession, SessionConfig, SessionFailure, SessionResult, SessionState

__all__ = [
    "AmazonRegion",
    "KindleBrowserExtractor",
    "KindleNotebookSession",
    "SUPPORTED_REGIONS",
    "SessionConfig",
    "SessionFailure",
    "SessionResult",
    "SessionState",
    "outcome_from_session",
]
