"""Run extractors concurrently, then merge and assemble the library."""

from __future__ import annotations

import asyncio
from datetime import datetime
import inspect
import logging
from typing import Sequence, Union

from readingsync.assembler import assemble_library
from readingsync.extractors.base import (
    AsyncSourceExtractor,
    ExtractionError,
    ExtractionOutcome,
    OutcomeStatus,
    SourceExtractor,
)
from readingsync.merge import merge_records
from readingsync.models import Library, RawRecord

LOGGER = logging.getLogger(__name__)

AnyExtractor = Union[SourceExtractor, AsyncSourceExtractor]


async def _run_extractor(extractor: AnyExtractor) -> ExtractionOutcome:
    """Run one extractor; its failures degrade to a failed outcome."""

    LOGGER.info("Starting %s extraction", extractor.name)
    try:
        if inspect.iscoroutinefunction(extractor.extract):
            outcome = await extractor.extract()
        else:
            # local file/database reads run beside the browser session
            outcome = await asyncio.to_thread(extractor.extract)
    except ExtractionError as exc:
        LOGGER.error("%s extraction failed: %s", extractor.name, exc.message)
        return ExtractionOutcome.failed(extractor.name, exc.message)
    except Exception as exc:
        LOGGER.exception("%s extraction crashed", extractor.name)
        return ExtractionOutcome.failed(extractor.name, f"Unexpected error: {exc}")

    _log_outcome(outcome)
    return outcome


def _log_outcome(outcome: ExtractionOutcome) -> None:
    LOGGER.info(
        "%s: %s, %d books with %d highlights",
        outcome.extractor,
        outcome.status.value,
        len(outcome.records),
        outcome.highlight_count,
    )
    for item in outcome.skipped:
        LOGGER.warning("%s skipped %s: %s", outcome.extractor, item.label, item.reason)
    if outcome.status is OutcomeStatus.SESSION_EXPIRED:
        LOGGER.error("%s needs you to sign in again: %s", outcome.extractor, outcome.error)
    elif outcome.error:
        LOGGER.warning("%s: %s", outcome.extractor, outcome.error)


async def collect_outcomes(extractors: Sequence[AnyExtractor]) -> list[ExtractionOutcome]:
    """Join point: wait for every extractor before anything is merged."""

    return list(await asyncio.gather(*(_run_extractor(extractor) for extractor in extractors)))


def build_library(outcomes: Sequence[ExtractionOutcome], exported_at: datetime) -> Library:
    """Merge every outcome's records; raises ``MergeError`` when there are none."""

    records: list[RawRecord] = [record for outcome in outcomes for record in outcome.records]
    return assemble_library(merge_records(records), exported_at)
