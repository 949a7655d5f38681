"""PDF conversion into the extraction formats.

The poppler tools are reached through ``tools`` (module attribute access) so
that tests can substitute fixture outputs.
"""

from __future__ import annotations

import logging
import tempfile
import unicodedata
from datetime import datetime
from pathlib import Path

from lxml import etree

from . import tools
from .errors import ConversionError, NoTextLayer
from .geometry import scale_box, scale_factors
from .models import DocumentWork, Extraction, Format, PageImage, SourceDocument, WordBox
from .sanitize import fix_utf8, parse_xml, sanitize_pdf2xml, strip_control_chars
from .transform import alto_to_text, pdf2xml_to_alto, pdf2xml_to_text

log = logging.getLogger(__name__)

TEMP_PREFIX = "extractocr_"


# ---------------------------------------------------------------------------
# pdf2xml (pdftohtml -xml)
# ---------------------------------------------------------------------------


def convert_pdf2xml(pdf_path: Path) -> etree._Element:
    """Run pdftohtml on ``pdf_path`` and return the sanitized pdf2xml root.

    Raises:
        ConversionError: On tool failure, empty output or unparsable XML.
    """
    with tempfile.TemporaryDirectory(prefix=TEMP_PREFIX) as tmp_dir:
        raw = tools.pdftohtml_xml(pdf_path, Path(tmp_dir) / "pdf2xml.xml")

    root = sanitize_pdf2xml(raw)
    if root is None:
        raise ConversionError(f"Output of pdftohtml for {pdf_path.name} is not valid xml")
    log.debug("pdf2xml of %s: %s pages", pdf_path.name, len(root.findall("page")))
    return root


def document_pdf2xml(work: DocumentWork) -> etree._Element:
    """Return the pdf2xml tree of the document, converting it once."""
    if work.pdf2xml is not None:
        return work.pdf2xml
    if work.pdf2xml_failed:
        raise ConversionError(f"pdf2xml conversion of {work.document.file_name} already failed")
    try:
        work.pdf2xml = convert_pdf2xml(work.document.file_path)
    except ConversionError:
        work.pdf2xml_failed = True
        raise
    return work.pdf2xml


def render_word_index_xml(root: etree._Element) -> bytes:
    return etree.tostring(
        root.getroottree(),
        xml_declaration=True,
        encoding="UTF-8",
        pretty_print=True,
    )


def alto_params(document: SourceDocument, now: datetime) -> dict[str, str]:
    params = document.provenance()
    params["datetime"] = now.strftime("%Y-%m-%dT%H:%M:%S")
    return params


def render_alto(
    root: etree._Element, document: SourceDocument, now: datetime
) -> tuple[bytes, str]:
    """Transform pdf2xml into ALTO; return the serialized ALTO and its text."""
    alto = pdf2xml_to_alto(root, alto_params(document, now))
    payload = etree.tostring(alto, xml_declaration=True, encoding="UTF-8", pretty_print=True)
    return payload, alto_to_text(alto)


# ---------------------------------------------------------------------------
# Word boxes (pdftotext -bbox)
# ---------------------------------------------------------------------------


def normalize_word(word: str) -> str:
    """Strip diacritics: NFD, drop non-spacing marks, NFC."""
    decomposed = unicodedata.normalize("NFD", word)
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    # Whitespace would break the tsv columns.
    return "".join(unicodedata.normalize("NFC", stripped).split())


def _float_attr(element: etree._Element, name: str) -> float:
    try:
        return float(element.get(name, 0))
    except ValueError:
        return 0.0


def parse_bbox_words(content: bytes, images: list[PageImage] | None = None) -> list[WordBox]:
    """Read the XHTML of ``pdftotext -bbox`` into scaled word boxes."""
    root = parse_xml(strip_control_chars(fix_utf8(content)))
    if root is None:
        raise ConversionError("Output of pdftotext is not valid xml")

    images = images or []
    words: list[WordBox] = []
    for page_number, page in enumerate(root.iter("{*}page"), start=1):
        image = images[page_number - 1] if page_number <= len(images) else None
        scale_x, scale_y = scale_factors(
            _float_attr(page, "width"),
            _float_attr(page, "height"),
            image.width if image else None,
            image.height if image else None,
        )
        for element in page.iter("{*}word"):
            text = normalize_word(element.text or "")
            if not text:
                continue
            box = (
                _float_attr(element, "xMin"),
                _float_attr(element, "yMin"),
                _float_attr(element, "xMax"),
                _float_attr(element, "yMax"),
            )
            x, y, width, height = scale_box(box, scale_x, scale_y)
            words.append(WordBox(text, page_number, x, y, width, height))
    return words


def extract_words(pdf_path: Path, images: list[PageImage] | None = None) -> list[WordBox]:
    """Run pdftotext on ``pdf_path`` and return its words in reading order."""
    with tempfile.TemporaryDirectory(prefix=TEMP_PREFIX) as tmp_dir:
        raw = tools.pdftotext_bbox(pdf_path, Path(tmp_dir) / "bbox.html")
    words = parse_bbox_words(raw, images)
    log.debug("%s words extracted from %s", len(words), pdf_path.name)
    return words


def render_full_tsv(words: list[WordBox]) -> bytes:
    rows = [f"{w.text}\t{w.page}\t{w.xywh}\n" for w in words]
    return "".join(rows).encode("utf-8")


def render_grouped_tsv(words: list[WordBox]) -> bytes:
    grouped: dict[str, list[str]] = {}
    for w in words:
        grouped.setdefault(w.text.lower(), []).append(f"{w.page}:{w.xywh}")
    rows = [f"{word}\t{';'.join(occurrences)}\n" for word, occurrences in grouped.items()]
    return "".join(rows).encode("utf-8")


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def _tsv_text(work: DocumentWork) -> str | None:
    try:
        return pdf2xml_to_text(document_pdf2xml(work))
    except ConversionError as exc:
        log.warning("No text stored for pdf #%s: %s", work.document.pdf_id, exc)
        return None


def extract_artifact(
    work: DocumentWork,
    fmt: Format,
    create_empty_file: bool = False,
    now: datetime | None = None,
    *,
    with_text: bool = False,
) -> Extraction:
    """Produce the payload of ``fmt`` for the document of ``work``.

    The text of the artifact is returned too when ``with_text`` is set (always
    for xml formats, where it is needed to detect an empty text layer).

    Raises:
        ConversionError: The conversion failed.
        NoTextLayer: Nothing was extracted and empty artifacts are not wanted.
    """
    document = work.document
    now = now or datetime.now()

    if fmt.is_tsv:
        words = extract_words(document.file_path, document.images)
        if not words and not create_empty_file:
            raise NoTextLayer(f"No word in {document.file_name}")
        if fmt is Format.FULL_ORDER_TSV:
            payload = render_full_tsv(words)
        else:
            payload = render_grouped_tsv(words)
        text = _tsv_text(work) if with_text and words else None
        return Extraction(payload, text)

    root = document_pdf2xml(work)
    if fmt is Format.WORD_INDEX_XML:
        payload = render_word_index_xml(root)
        text = pdf2xml_to_text(root)
    elif fmt is Format.PAGE_XML:
        payload, text = render_alto(root, document, now)
    else:
        raise ValueError(f"Unsupported format: {fmt}")

    if not text and not create_empty_file:
        raise NoTextLayer(f"No text in {document.file_name}")
    return Extraction(payload, text or None)
