"""CLI entrypoint: extract highlights from the selected sources and write library JSON."""

from __future__ import annotations

import argparse
import asyncio
from contextlib import suppress
from dataclasses import replace
from datetime import datetime, timezone
import logging
from pathlib import Path
import signal

from dotenv import load_dotenv

from readingsync.assembler import write_library
from readingsync.config import Settings
from readingsync.extractors.apple_books import AppleBooksExtractor
from readingsync.extractors.base import ExtractionOutcome, OutcomeStatus
from readingsync.extractors.clippings import ClippingsExtractor
from readingsync.extractors.kindle import SUPPORTED_REGIONS, AmazonRegion, KindleBrowserExtractor
from readingsync.merge import MergeError
from readingsync.models import Library, Source
from readingsync.pipeline import AnyExtractor, build_library, collect_outcomes


load_dotenv()

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_TOTAL_FAILURE = 1
EXIT_USAGE = 2


def _common_options(*, suppress_defaults: bool) -> argparse.ArgumentParser:
    # Subcommands re-declare the global flags with suppressed defaults so
    # they are accepted on either side of the subcommand name.
    default = argparse.SUPPRESS if suppress_defaults else None
    flag_default = argparse.SUPPRESS if suppress_defaults else False
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("-o", "--output", default=default, help="Output path for the library JSON file")
    parser.add_argument("--pretty", action="store_true", default=flag_default, help="Pretty-print JSON output")
    parser.add_argument("-v", "--verbose", action="store_true", default=flag_default, help="Verbose logging")
    return parser


def _add_kindle_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--region", choices=SUPPORTED_REGIONS, default=None, help="Amazon region (default: us)")
    parser.add_argument("--headless", action="store_true", default=None, help="Run the browser without a window")
    parser.add_argument("--login-timeout", type=float, default=None, help="Seconds to wait for sign-in")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="readingsync",
        description="Export reading highlights from Kindle and Apple Books",
        parents=[_common_options(suppress_defaults=False)],
    )
    subparsers = parser.add_subparsers(dest="command")
    common = _common_options(suppress_defaults=True)

    kindle = subparsers.add_parser("kindle", parents=[common], help="Sync highlights from the Kindle notebook via browser")
    _add_kindle_options(kindle)

    apple = subparsers.add_parser("apple-books", parents=[common], help="Export from Apple Books only")
    apple.add_argument("--library-db", default=None, help="Override path to BKLibrary*.sqlite")
    apple.add_argument("--annotation-db", default=None, help="Override path to AEAnnotation*.sqlite")

    clippings = subparsers.add_parser("clippings", parents=[common], help="Import a Kindle My Clippings.txt file")
    clippings.add_argument("path", help="Path to My Clippings.txt")

    everything = subparsers.add_parser("all", parents=[common], help="Run every configured source and merge them")
    _add_kindle_options(everything)
    everything.add_argument("--clippings", default=None, help="Also import this My Clippings.txt file")
    everything.add_argument("--no-kindle", action="store_true", help="Skip the browser-based Kindle sync")

    args = parser.parse_args(argv)
    if args.command is None:
        args.command = "kindle"
        args.region = None
        args.headless = None
        args.login_timeout = None
    return args


def _apply_overrides(args: argparse.Namespace, settings: Settings) -> Settings:
    overrides: dict[str, object] = {}
    if args.output:
        overrides["output_path"] = Path(args.output).expanduser()
    if getattr(args, "region", None):
        overrides["region"] = AmazonRegion.from_code(args.region)
    if getattr(args, "headless", None):
        overrides["headless"] = True
    if getattr(args, "login_timeout", None) is not None:
        if args.login_timeout <= 0:
            raise ValueError("--login-timeout must be positive")
        overrides["login_timeout_seconds"] = args.login_timeout
    if getattr(args, "library_db", None):
        overrides["apple_books_library_db"] = Path(args.library_db).expanduser()
    if getattr(args, "annotation_db", None):
        overrides["apple_books_annotation_db"] = Path(args.annotation_db).expanduser()
    if getattr(args, "clippings", None):
        overrides["clippings_path"] = Path(args.clippings).expanduser()
    return replace(settings, **overrides)


def _kindle_extractor(settings: Settings, cancel_event: asyncio.Event) -> KindleBrowserExtractor:
    return KindleBrowserExtractor(
        settings.region,
        settings.profile_dir,
        headless=settings.headless,
        login_timeout=settings.login_timeout_seconds,
        book_timeout=settings.book_timeout_seconds,
        poll_interval=settings.poll_interval_seconds,
        max_pages=settings.max_pages,
        cancel_event=cancel_event,
    )


def _apple_books_extractor(settings: Settings) -> AppleBooksExtractor:
    return AppleBooksExtractor(settings.apple_books_library_db, settings.apple_books_annotation_db)


def build_extractors(args: argparse.Namespace, settings: Settings, cancel_event: asyncio.Event) -> list[AnyExtractor]:
    if args.command == "kindle":
        return [_kindle_extractor(settings, cancel_event)]
    if args.command == "apple-books":
        return [_apple_books_extractor(settings)]
    if args.command == "clippings":
        return [ClippingsExtractor(args.path)]

    extractors: list[AnyExtractor] = [_apple_books_extractor(settings)]
    if settings.clippings_path is not None:
        extractors.append(ClippingsExtractor(settings.clippings_path))
    if not args.no_kindle:
        extractors.append(_kindle_extractor(settings, cancel_event))
    return extractors


def _install_interrupt_handler(cancel_event: asyncio.Event) -> None:
    """First Ctrl-C ends the browser session early; a second one aborts."""

    loop = asyncio.get_running_loop()

    def _on_interrupt() -> None:
        LOGGER.warning("Interrupted: finishing with the books scraped so far (Ctrl-C again to abort)")
        cancel_event.set()
        loop.remove_signal_handler(signal.SIGINT)

    with suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, _on_interrupt)


def _log_summary(library: Library) -> None:
    total_highlights = sum(len(book.highlights) for book in library.books)
    kindle_count = sum(1 for book in library.books if Source.KINDLE in book.sources)
    apple_count = sum(1 for book in library.books if Source.APPLE_BOOKS in book.sources)
    LOGGER.info(
        "Exported %d books (%d Kindle, %d Apple Books) with %d total highlights",
        len(library.books),
        kindle_count,
        apple_count,
        total_highlights,
    )


def _log_total_failure(exc: MergeError, outcomes: list[ExtractionOutcome]) -> None:
    LOGGER.error("%s", exc)
    for outcome in outcomes:
        if outcome.error:
            LOGGER.error("  %s (%s): %s", outcome.extractor, outcome.status.value, outcome.error)
    if any(outcome.status is OutcomeStatus.SESSION_EXPIRED for outcome in outcomes):
        LOGGER.error("Run 'readingsync kindle' without --headless to sign in to Amazon again")


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    cancel_event = asyncio.Event()
    extractors = build_extractors(args, settings, cancel_event)
    if any(isinstance(extractor, KindleBrowserExtractor) for extractor in extractors):
        _install_interrupt_handler(cancel_event)

    started_at = datetime.now(timezone.utc)
    outcomes = await collect_outcomes(extractors)
    try:
        library = build_library(outcomes, started_at)
    except MergeError as exc:
        _log_total_failure(exc, outcomes)
        return EXIT_TOTAL_FAILURE

    _log_summary(library)
    written = write_library(library, settings.output_path, pretty=args.pretty)
    LOGGER.info("Written to %s", written)
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )

    try:
        settings = _apply_overrides(args, Settings.from_env())
    except ValueError as exc:
        LOGGER.error("Invalid configuration: %s", exc)
        return EXIT_USAGE

    LOGGER.debug("Output path: %s", settings.output_path)
    try:
        return asyncio.run(_run(args, settings))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted")
        return EXIT_TOTAL_FAILURE


if __name__ == "__main__":
    raise SystemExit(main())
