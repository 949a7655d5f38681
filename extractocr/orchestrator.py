"""Reconcile the extraction artifacts of the catalog with the run options.

For every PDF candidate and every configured target, the mode decides
whether the artifact is created, replaced or left alone. Failures are
isolated to one (document, target) pair and counted in ``RunStats``.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from typing import Callable

from . import tools
from .catalog import Catalog
from .conversion import extract_artifact
from .errors import ConversionError, MissingSourceFile, NoTextLayer, StorageError
from .models import (
    TARGET_PRIORITY,
    Action,
    ArtifactRef,
    DocumentWork,
    ExtractionTarget,
    Mode,
    OutputKind,
    PdfCandidate,
    RunContext,
    RunOptions,
    RunStats,
    SourceDocument,
    TextStore,
)
from .storage import StorageMediator, derivative_values, provision_directories
from .utils import parse_id_ranges

log = logging.getLogger(__name__)

ShouldStop = Callable[[], bool]

_DECISIONS = {
    (Mode.ALL, True): Action.REPLACE,
    (Mode.ALL, False): Action.CREATE,
    (Mode.EXISTING, True): Action.REPLACE,
    (Mode.EXISTING, False): Action.SKIP,
    (Mode.MISSING, True): Action.SKIP,
    (Mode.MISSING, False): Action.CREATE,
}


def decide_action(mode: Mode, exists: bool) -> Action:
    return _DECISIONS[(mode, bool(exists))]


def order_targets(targets: list[ExtractionTarget]) -> list[ExtractionTarget]:
    """Sort targets by format priority, local files before derivatives."""
    unique = list(dict.fromkeys(targets))
    return sorted(
        unique,
        key=lambda t: (TARGET_PRIORITY.index(t.format), t.kind is not OutputKind.LOCAL_FILE),
    )


# ---------------------------------------------------------------------------
# Pre-flight
# ---------------------------------------------------------------------------


def _resolve_text_store(catalog: Catalog, options: RunOptions) -> TextStore:
    store = options.text_store
    if not (store.item or store.media_pdf or store.media_extracted):
        return TextStore()
    if not store.property_term or not catalog.property_exists(store.property_term):
        log.warning(
            "The option to store text is set, but no property is defined (%r).",
            store.property_term,
        )
        return TextStore()
    # The item being saved cannot receive values from its own save hook.
    return dataclasses.replace(store, item=store.item and not options.manual)


def _log_mode(options: RunOptions, total: int) -> None:
    if options.mode is Mode.EXISTING:
        log.info("Creating extracted files for %d pdf only if they already exist.", total)
    elif options.mode is Mode.MISSING:
        log.info("Creating extracted files for %d pdf only if they do not exist yet.", total)
    else:
        log.info("Creating extracted files for %d pdf, replacing existing ones.", total)


# ---------------------------------------------------------------------------
# Per document / per target
# ---------------------------------------------------------------------------


def _store_text(ctx: RunContext, work: DocumentWork, text: str | None) -> None:
    """Store the text on the pdf and the item, once per document."""
    store = ctx.text_store
    if not store.enabled or not text or work.text_stored:
        return
    if not (store.media_pdf or store.item):
        return
    document = work.document
    if store.media_pdf:
        ctx.storage.append_text_property(
            document.pdf_id, store.property_term, text, store.language
        )
    if store.item:
        ctx.storage.append_text_property(
            document.container_id, store.property_term, text, store.language
        )
    work.text_stored = True


def _check_source(document: SourceDocument) -> None:
    if not document.file_path.is_file():
        raise MissingSourceFile(
            f"Missing pdf file for media #{document.pdf_id} "
            f"(item #{document.container_id}): {document.file_path}"
        )


def _drop_outdated(ctx: RunContext, document: SourceDocument, existing: ArtifactRef) -> bool:
    """Delete an artifact that cannot be replaced; return False if it stays."""
    try:
        ctx.storage.delete(existing)
    except StorageError as exc:
        log.error("Storage of pdf #%s failed: %s", document.pdf_id, exc)
        ctx.stats.record("storage", document.pdf_id)
        return False
    log.info("Removed outdated %s of item #%s", existing.name, document.container_id)
    return True


def process_target(ctx: RunContext, work: DocumentWork, target: ExtractionTarget) -> Action | None:
    """Run one (document, target) pair; return the action taken or ``None``.

    When the action is a replacement, the existing artifact is removed even
    if no new one can be extracted. It is only kept when storing the new one
    fails.
    """
    document = work.document
    stats = ctx.stats
    options = ctx.options

    existing = ctx.storage.lookup(document, target)
    action = decide_action(options.mode, existing is not None)

    try:
        _check_source(document)
    except MissingSourceFile as exc:
        log.error("%s", exc)
        stats.record("no_pdf", document.pdf_id)
        stats.failed += 1
        if action is Action.REPLACE:
            _drop_outdated(ctx, document, existing)
        return None

    if action is Action.SKIP:
        log.debug("Skipped %s for item #%s (%s)", target, document.container_id, options.mode.value)
        stats.skipped += 1
        return action

    store = ctx.text_store
    with_text = store.enabled and (
        ((store.item or store.media_pdf) and not work.text_stored)
        or (store.media_extracted and target.kind is OutputKind.CATALOGUED_DERIVATIVE)
    )
    try:
        extraction = extract_artifact(
            work,
            target.format,
            options.create_empty_file,
            ctx.started_at,
            with_text=with_text,
        )
    except NoTextLayer as exc:
        log.info("No text layer for pdf #%s: %s", document.pdf_id, exc)
        stats.record("no_text_layer", document.pdf_id)
        if action is Action.REPLACE and not _drop_outdated(ctx, document, existing):
            stats.failed += 1
        return None
    except ConversionError as exc:
        log.error("Extraction of %s failed for pdf #%s: %s", target, document.pdf_id, exc)
        stats.record("issue", document.pdf_id)
        stats.failed += 1
        if action is Action.REPLACE:
            _drop_outdated(ctx, document, existing)
        return None

    values = None
    if target.kind is OutputKind.CATALOGUED_DERIVATIVE and store.enabled and store.media_extracted:
        values = derivative_values(document, store.property_term, extraction.text, store.language)

    try:
        if existing is None:
            artifact = ctx.storage.write(
                document, target, extraction.payload, language=store.language, values=values
            )
        else:
            artifact = ctx.storage.replace(
                existing, document, target, extraction.payload, language=store.language, values=values
            )
        _store_text(ctx, work, extraction.text)
    except StorageError as exc:
        log.error("Storage of %s failed for pdf #%s: %s", target, document.pdf_id, exc)
        stats.record("storage", document.pdf_id)
        stats.failed += 1
        return None

    log.info(
        "%s %s for item #%s: %s",
        "Replaced" if action is Action.REPLACE else "Created",
        target,
        document.container_id,
        artifact.name,
    )
    stats.processed += 1
    return action


def process_document(
    ctx: RunContext, candidate: PdfCandidate, targets: list[ExtractionTarget]
) -> None:
    document = ctx.storage.catalog.read_document(candidate.pdf_id)
    if document is None:
        log.error("Media #%s not found in the catalog", candidate.pdf_id)
        ctx.stats.record("no_pdf", candidate.pdf_id)
        ctx.stats.failed += len(targets)
        return

    ctx.stats.documents += 1
    work = DocumentWork(document)
    for target in targets:
        process_target(ctx, work, target)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def log_summary(stats: RunStats) -> None:
    if stats.cancelled:
        log.warning("Extraction stopped: %s.", stats.summary())
    else:
        log.info("Extraction ended: %s.", stats.summary())
    buckets = (
        ("no_pdf", "Pdf without file"),
        ("no_text_layer", "Pdf without text layer"),
        ("issue", "Pdf with extraction issue"),
        ("storage", "Pdf whose artifact could not be stored"),
    )
    for bucket, label in buckets:
        ids = getattr(stats, bucket)
        if ids:
            log.info("%s: #%s", label, ", #".join(str(i) for i in ids))


def reconcile(
    catalog: Catalog,
    options: RunOptions,
    should_stop: ShouldStop | None = None,
    now: datetime | None = None,
) -> RunStats:
    """Create, replace or skip the artifacts of every matching pdf.

    Raises:
        ToolUnavailable: A poppler converter is missing.
        DirectoryUnwritable: A destination directory is not usable.
        ValueError: The mode is invalid.
    """
    from tqdm import tqdm

    stats = RunStats()
    if not isinstance(options.mode, Mode):
        raise ValueError(f"Invalid mode: {options.mode!r}")

    targets = order_targets(options.targets)
    if not targets:
        log.warning("No extract format to process.")
        return stats

    tools.check_tools()
    provision_directories(options.base_path, targets)

    ctx = RunContext(
        options=options,
        storage=StorageMediator(catalog, options.base_path, options.base_uri),
        stats=stats,
        started_at=now or datetime.now(),
        text_store=_resolve_text_store(catalog, options),
    )

    candidates = catalog.find_pdf_candidates(parse_id_ranges(options.item_ids))
    stats.total = len(candidates)
    if not candidates:
        log.info("No item with a pdf to process.")
        return stats

    log.info("Formats to create: %s", ", ".join(str(t) for t in targets))
    _log_mode(options, stats.total)

    seen_containers: set[int] = set()
    for candidate in tqdm(candidates, desc="Extracting", unit="pdf"):
        if should_stop is not None and should_stop():
            stats.cancelled = True
            break
        if candidate.container_id in seen_containers:
            log.warning(
                "Item #%s has more than one pdf: media #%s skipped",
                candidate.container_id,
                candidate.pdf_id,
            )
            continue
        seen_containers.add(candidate.container_id)
        process_document(ctx, candidate, targets)

    log_summary(stats)
    return stats


def extract_on_item_save(
    catalog: Catalog,
    options: RunOptions,
    item_id: int,
    should_stop: ShouldStop | None = None,
    now: datetime | None = None,
) -> RunStats | None:
    """Extract the artifacts of a saved item unless they all exist already.

    Returns ``None`` when there is nothing to do.
    """
    targets = order_targets(options.targets)
    if not targets:
        return None
    candidates = catalog.find_pdf_candidates([(item_id, item_id)])
    if not candidates:
        return None
    document = catalog.read_document(candidates[0].pdf_id)
    if document is None:
        return None

    storage = StorageMediator(catalog, options.base_path, options.base_uri)
    if all(storage.exists(document, target) for target in targets):
        log.debug("Item #%s: every extracted file exists already", item_id)
        return None

    item_options = dataclasses.replace(
        options, mode=Mode.ALL, item_ids=str(item_id), manual=True
    )
    log.info("Extracting ocr of item #%s in background", item_id)
    return reconcile(catalog, item_options, should_stop=should_stop, now=now)
