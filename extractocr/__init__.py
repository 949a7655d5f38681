"""PDF text and word-position extraction for a digital asset catalog.

Public API -- all symbols that tests and external code import live here.
Internally the code is split across focused submodules; this file
re-exports the stable public surface so ``from extractocr import X`` works.
"""

from .catalog import Catalog, SqliteCatalog
from .conversion import (
    convert_pdf2xml,
    extract_artifact,
    extract_words,
    normalize_word,
    render_alto,
    render_full_tsv,
    render_grouped_tsv,
    render_word_index_xml,
)
from .errors import (
    ConversionError,
    DirectoryUnwritable,
    ExtractOcrError,
    MissingSourceFile,
    NoTextLayer,
    StorageError,
    ToolUnavailable,
)
from .geometry import format_xywh, image_size, round_half_up, scale, scale_box, scale_factors
from .models import (
    FORMAT_SPECS,
    TARGET_PRIORITY,
    Action,
    ArtifactRef,
    ExtractionTarget,
    Format,
    FormatSpec,
    Mode,
    OutputKind,
    PageImage,
    PdfCandidate,
    RunOptions,
    RunStats,
    SourceDocument,
    TextStore,
    WordBox,
)
from .orchestrator import decide_action, extract_on_item_save, order_targets, reconcile
from .sanitize import fix_pdf2xml, fix_utf8, parse_xml, sanitize_pdf2xml, strip_control_chars
from .settings import ExtractSettings, build_run_options, build_targets, load_settings
from .storage import StorageMediator, check_destination_dir, provision_directories
from .tools import check_tools
from .transform import alto_to_text, apply_transform, load_transform, pdf2xml_to_alto, pdf2xml_to_text
from .utils import id_in_ranges, parse_id_ranges, range_conditions

__all__ = [
    # Models
    "Format",
    "FormatSpec",
    "FORMAT_SPECS",
    "TARGET_PRIORITY",
    "OutputKind",
    "Mode",
    "Action",
    "ExtractionTarget",
    "PageImage",
    "PdfCandidate",
    "SourceDocument",
    "ArtifactRef",
    "WordBox",
    "TextStore",
    "RunOptions",
    "RunStats",
    # Errors
    "ExtractOcrError",
    "ToolUnavailable",
    "DirectoryUnwritable",
    "MissingSourceFile",
    "ConversionError",
    "NoTextLayer",
    "StorageError",
    # Utils
    "parse_id_ranges",
    "id_in_ranges",
    "range_conditions",
    # Geometry
    "round_half_up",
    "scale_factors",
    "scale_box",
    "scale",
    "format_xywh",
    "image_size",
    # Sanitizer
    "strip_control_chars",
    "fix_utf8",
    "fix_pdf2xml",
    "parse_xml",
    "sanitize_pdf2xml",
    # Transforms
    "load_transform",
    "apply_transform",
    "pdf2xml_to_alto",
    "alto_to_text",
    "pdf2xml_to_text",
    # Conversion
    "check_tools",
    "convert_pdf2xml",
    "extract_words",
    "normalize_word",
    "render_full_tsv",
    "render_grouped_tsv",
    "render_word_index_xml",
    "render_alto",
    "extract_artifact",
    # Storage
    "Catalog",
    "SqliteCatalog",
    "StorageMediator",
    "check_destination_dir",
    "provision_directories",
    # Settings
    "ExtractSettings",
    "load_settings",
    "build_targets",
    "build_run_options",
    # Orchestration
    "decide_action",
    "order_targets",
    "reconcile",
    "extract_on_item_save",
]
