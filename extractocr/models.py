"""Shared data models for the extraction pipeline."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional


class Format(enum.Enum):
    """Target formats produced from a PDF."""

    FULL_ORDER_TSV = "text/tab-separated-values"
    GROUPED_WORD_TSV = "text/tab-separated-values;by-word"
    WORD_INDEX_XML = "application/vnd.pdf2xml+xml"
    PAGE_XML = "application/alto+xml"

    @property
    def spec(self) -> "FormatSpec":
        return FORMAT_SPECS[self]

    @property
    def is_tsv(self) -> bool:
        return self in (Format.FULL_ORDER_TSV, Format.GROUPED_WORD_TSV)

    @classmethod
    def parse(cls, value: str) -> "Format":
        """Resolve a short label (``tsv``, ``alto``...) or a format identifier."""
        key = value.strip().lower()
        for fmt, spec in FORMAT_SPECS.items():
            if key in (fmt.value, spec.label, *spec.aliases):
                return fmt
        raise ValueError(f"Unknown extraction format: {value!r}")


class OutputKind(enum.Enum):
    LOCAL_FILE = "file"
    CATALOGUED_DERIVATIVE = "media"


class Mode(enum.Enum):
    """Reconciliation mode."""

    ALL = "all"
    EXISTING = "existing"
    MISSING = "missing"


class Action(enum.Enum):
    SKIP = "skip"
    REPLACE = "replace"
    CREATE = "create"


@dataclass(frozen=True)
class FormatSpec:
    label: str
    directory: str
    extension: str
    suffix: str
    short_extension: str
    media_type: str
    aliases: tuple[str, ...] = ()


FORMAT_SPECS: dict[Format, FormatSpec] = {
    Format.FULL_ORDER_TSV: FormatSpec(
        label="tsv",
        directory="iiif-search",
        extension="full.tsv",
        suffix=".full",
        short_extension="tsv",
        media_type="text/tab-separated-values",
        aliases=("full", "full-tsv"),
    ),
    Format.GROUPED_WORD_TSV: FormatSpec(
        label="tsv-by-word",
        directory="iiif-search",
        extension="by-word.tsv",
        suffix=".by-word",
        short_extension="tsv",
        media_type="text/tab-separated-values",
        aliases=("by-word", "tsv by word"),
    ),
    Format.WORD_INDEX_XML: FormatSpec(
        label="pdf2xml",
        directory="pdf2xml",
        extension="pdf2xml.xml",
        suffix=".pdf2xml",
        short_extension="xml",
        media_type="application/vnd.pdf2xml+xml",
    ),
    Format.PAGE_XML: FormatSpec(
        label="alto",
        directory="alto",
        extension="alto.xml",
        suffix=".alto",
        short_extension="xml",
        media_type="application/alto+xml",
    ),
}

missing_specs = set(Format) - set(FORMAT_SPECS)
if missing_specs:
    raise RuntimeError(f"Formats without a spec entry: {sorted(f.name for f in missing_specs)}")
del missing_specs

# The text of PAGE_XML is derived from the WORD_INDEX_XML intermediate, which
# is itself the most expensive conversion, so cheaper formats come first.
TARGET_PRIORITY: tuple[Format, ...] = (
    Format.FULL_ORDER_TSV,
    Format.GROUPED_WORD_TSV,
    Format.WORD_INDEX_XML,
    Format.PAGE_XML,
)


@dataclass(frozen=True)
class ExtractionTarget:
    format: Format
    kind: OutputKind

    def __str__(self) -> str:
        return f"{self.format.spec.label} ({self.kind.value})"


@dataclass(frozen=True)
class PageImage:
    id: int
    width: int
    height: int
    source: str = ""


@dataclass(frozen=True)
class PdfCandidate:
    pdf_id: int
    container_id: int


@dataclass
class SourceDocument:
    """A PDF media and the pieces of its container needed for extraction."""

    pdf_id: int
    container_id: int
    source: str
    file_path: Path
    original_url: str = ""
    identifier: str = ""
    container_url: str = ""
    container_identifier: str = ""
    images: list[PageImage] = field(default_factory=list)

    @property
    def file_name(self) -> str:
        return self.file_path.name

    def provenance(self) -> dict[str, str]:
        return {
            "source_pdf_file_url": self.original_url,
            "source_pdf_file_name": self.file_name,
            "source_pdf_file_identifier": self.identifier,
            "source_pdf_document_url": self.container_url,
            "source_pdf_document_identifier": self.container_identifier,
        }


@dataclass(frozen=True)
class ArtifactRef:
    kind: OutputKind
    name: str
    id: Optional[int] = None
    path: Optional[Path] = None


@dataclass(frozen=True)
class StagedFile:
    """A payload copied to the staging area so the catalog can ingest it."""

    path: Path
    filename: str
    url: str


@dataclass(frozen=True)
class WordBox:
    text: str
    page: int
    x: int
    y: int
    width: int
    height: int

    @property
    def xywh(self) -> str:
        return f"{self.x},{self.y},{self.width},{self.height}"


@dataclass
class Extraction:
    payload: bytes
    text: Optional[str] = None


@dataclass
class TextStore:
    """Where the extracted raw text is appended, if anywhere."""

    property_term: str = ""
    language: str = ""
    item: bool = False
    media_pdf: bool = False
    media_extracted: bool = False

    @property
    def enabled(self) -> bool:
        return bool(self.property_term) and (self.item or self.media_pdf or self.media_extracted)


@dataclass
class RunOptions:
    base_path: Path
    targets: list[ExtractionTarget]
    mode: Mode = Mode.ALL
    item_ids: str = ""
    base_uri: str = ""
    create_empty_file: bool = False
    text_store: TextStore = field(default_factory=TextStore)
    manual: bool = False


@dataclass
class RunStats:
    """Counters of one pipeline execution."""

    total: int = 0
    documents: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    no_pdf: list[int] = field(default_factory=list)
    no_text_layer: list[int] = field(default_factory=list)
    issue: list[int] = field(default_factory=list)
    storage: list[int] = field(default_factory=list)
    cancelled: bool = False

    def record(self, bucket: str, pdf_id: int) -> None:
        ids = getattr(self, bucket)
        if pdf_id not in ids:
            ids.append(pdf_id)

    def summary(self) -> str:
        return (
            f"{self.documents}/{self.total} pdf files, {self.processed} processed, "
            f"{self.skipped} skipped, {self.failed} failed "
            f"({len(self.no_pdf)} without file, {len(self.no_text_layer)} without text layer, "
            f"{len(self.issue)} with issue, {len(self.storage)} not stored)"
        )


@dataclass
class DocumentWork:
    """Per-document scratch state, dropped once the document is done."""

    document: SourceDocument
    pdf2xml: Any = None
    pdf2xml_failed: bool = False
    text_stored: bool = False


@dataclass
class RunContext:
    options: RunOptions
    storage: Any
    stats: RunStats = field(default_factory=RunStats)
    started_at: datetime = field(default_factory=datetime.now)
    text_store: TextStore = field(default_factory=TextStore)
