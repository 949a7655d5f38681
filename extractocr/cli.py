"""CLI entrypoint for the pdf text and word-position extraction.

Usage:
    python -m extractocr
    python -m extractocr --config config.yaml
    python -m extractocr --base-path ./files --catalog ./catalog.sqlite --files tsv alto
    python -m extractocr --mode missing --item-ids "2-6 8 38-52 80-"
    python -m extractocr --mode existing --media pdf2xml --store media_pdf media_extracted
    python -m extractocr --item-id 42 --manual
"""

from __future__ import annotations

import argparse
import logging
from logging.handlers import RotatingFileHandler
import signal
import time
from pathlib import Path

from .utils import LOG_FILE_NAME

log = logging.getLogger(__name__)


def _setup_logging(*, level: str, detailed_logging: bool, log_file: Path | None) -> None:
    """Configure the root logger: console always, rotating file if ``log_file``."""
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(root_level)

    fields = ["%(asctime)s", "%(levelname)-8s", "%(name)s"]
    if detailed_logging:
        fields += ["%(threadName)s", "%(filename)s:%(lineno)d"]
    console_handler = logging.StreamHandler()
    console_handler.setLevel(root_level)
    console_handler.setFormatter(
        logging.Formatter(" | ".join(fields + ["%(message)s"]), "%Y-%m-%d %H:%M:%S")
    )
    root_logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file, maxBytes=20 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)-8s | %(name)s | %(filename)s:%(lineno)d | %(message)s",
                "%Y-%m-%d %H:%M:%S",
            )
        )
        root_logger.addHandler(file_handler)

    # Pillow logs every image header it parses at DEBUG.
    logging.getLogger("PIL").setLevel(logging.WARNING)


class _StopFlag:
    """Set by SIGINT/SIGTERM; polled before each document."""

    def __init__(self) -> None:
        self.stopped = False
        self._previous: dict[int, object] = {}

    def __call__(self) -> bool:
        return self.stopped

    def install(self) -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            self._previous[sig] = signal.signal(sig, self._handle)

    def restore(self) -> None:
        for sig, handler in self._previous.items():
            signal.signal(sig, handler)
        self._previous.clear()

    def _handle(self, signum: int, frame: object) -> None:
        log.warning("Signal %s received: stopping after the current pdf", signum)
        self.stopped = True


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Extract text and word positions from the pdf of a catalog"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="YAML settings file (default: config.yaml, skipped if missing)",
    )
    parser.add_argument("--base-path", type=Path, help="Root of the file store")
    parser.add_argument("--base-uri", help="Public url of the file store")
    parser.add_argument("--catalog", type=Path, help="SQLite catalog database")
    parser.add_argument(
        "--mode",
        choices=["all", "existing", "missing"],
        default="all",
        help="all: create or replace; existing: replace only; missing: create only",
    )
    parser.add_argument(
        "--item-ids",
        default="",
        help='Item id ranges, for example "2-6 8 38-52 80-" (default: all items)',
    )
    parser.add_argument("--item-id", type=int, help="Single item id, added to --item-ids")
    parser.add_argument(
        "--files",
        nargs="*",
        metavar="FORMAT",
        help="Formats stored as local files: tsv, tsv-by-word, pdf2xml, alto",
    )
    parser.add_argument(
        "--media",
        nargs="*",
        metavar="FORMAT",
        help="Formats stored as media of the item: tsv, tsv-by-word, pdf2xml, alto",
    )
    parser.add_argument(
        "--store",
        nargs="*",
        metavar="KIND",
        choices=["item", "media_pdf", "media_extracted"],
        help="Resources receiving the extracted text",
    )
    parser.add_argument("--property", help="Property term receiving the text (e.g. bibo:content)")
    parser.add_argument("--language", help="Language of the stored text")
    parser.add_argument(
        "--create-empty-file",
        action="store_true",
        default=None,
        help="Create artifacts even when the pdf has no text layer",
    )
    parser.add_argument(
        "--manual",
        action="store_true",
        help="Run as triggered by an item save (text is not stored on the item)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--detailed-logging",
        action="store_true",
        help="Enable detailed logging (thread, file/line, rotating log file)",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help=(
            "Optional log file path "
            f"(default: <base-path>/logs/{LOG_FILE_NAME} in detailed mode)"
        ),
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Run the extraction."""
    from .catalog import SqliteCatalog
    from .errors import DirectoryUnwritable, ToolUnavailable
    from .orchestrator import reconcile
    from .settings import build_run_options, load_settings

    args = parse_args(argv)
    settings = load_settings(args.config)

    # Command-line values override the settings file.
    if args.base_path is not None:
        settings.base_path = str(args.base_path)
    if args.base_uri is not None:
        settings.base_uri = args.base_uri
    if args.catalog is not None:
        settings.catalog_db = str(args.catalog)
    if args.files is not None:
        settings.types_files = args.files
    if args.media is not None:
        settings.types_media = args.media
    if args.store is not None:
        settings.content_store = args.store
    if args.property is not None:
        settings.content_property = args.property
    if args.language is not None:
        settings.content_language = args.language
    if args.create_empty_file is not None:
        settings.create_empty_file = args.create_empty_file

    log_file = args.log_file or (Path(settings.log_file) if settings.log_file else None)
    if log_file is None and args.detailed_logging:
        log_file = Path(settings.base_path) / "logs" / LOG_FILE_NAME
    _setup_logging(
        level="DEBUG" if args.verbose else settings.log_level,
        detailed_logging=args.detailed_logging,
        log_file=log_file,
    )
    log.debug("Settings: %s", settings)

    try:
        options = build_run_options(
            settings,
            mode=args.mode,
            item_ids=args.item_ids,
            item_id=args.item_id,
            manual=args.manual,
        )
    except ValueError as exc:
        log.error("Invalid configuration: %s", exc)
        raise SystemExit(2) from exc

    catalog = SqliteCatalog(
        Path(settings.catalog_db), options.base_path, base_uri=settings.base_uri
    )
    stop = _StopFlag()
    stop.install()

    t0 = time.perf_counter()
    try:
        stats = reconcile(catalog, options, should_stop=stop)
    except (ToolUnavailable, DirectoryUnwritable) as exc:
        log.error("%s", exc)
        raise SystemExit(1) from exc
    finally:
        stop.restore()

    # --- Summary ---
    log.info("=" * 60)
    log.info("EXTRACTION %s", "STOPPED" if stats.cancelled else "COMPLETE")
    log.info("  Pdf found:          %s", stats.total)
    log.info("  Pdf read:           %s", stats.documents)
    log.info("  Artifacts written:  %s", stats.processed)
    log.info("  Skipped:            %s", stats.skipped)
    log.info("  Failed:             %s", stats.failed)
    log.info("  Without file:       %s", len(stats.no_pdf))
    log.info("  Without text layer: %s", len(stats.no_text_layer))
    log.info("  With issue:         %s", len(stats.issue))
    log.info("  Not stored:         %s", len(stats.storage))
    log.info("  Total runtime:      %.1fs", time.perf_counter() - t0)
