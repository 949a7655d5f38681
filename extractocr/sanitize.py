"""Best-effort repair of converter output before XML parsing.

pdftohtml and pdftotext emit whatever the PDF text layer holds: control
characters from bad OCR, broken UTF-8, and with some poppler releases
truncated ``<fontspec`` lines. Every function here is pure text in, text out,
except ``parse_xml`` which returns ``None`` instead of raising.
"""

from __future__ import annotations

import logging
import re
import unicodedata

from lxml import etree

log = logging.getLogger(__name__)

# Cc except tab, LF and CR, plus lone surrogates.
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\ud800-\udfff]")
_NON_ASCII_RE = re.compile(r"[^\x00-\x7f]")
_SURROGATE_ESCAPE_RE = re.compile(r"[\udc80-\udcff]+")
# Two-byte UTF-8 sequences that were decoded as cp1252/latin-1 once too often.
_MOJIBAKE_RE = re.compile(r"[Â-ß][\u0080-¿‘-›ŒœŠšŸŽžƒˆ˜]")

_WHITESPACE_RUN_RE = re.compile(r"\s{2,}", re.ASCII)
_BOLD_ITALIC_RE = re.compile(r"</?[bi]>")
_TRUNCATED_FONTSPEC_RE = re.compile(r'<fontspec id="[^>]*$', re.MULTILINE)

LEGACY_DOCTYPE = '<!doctype pdf2xml system "pdf2xml.dtd">'
CANONICAL_DOCTYPE = '<!DOCTYPE pdf2xml SYSTEM "pdf2xml.dtd">'


def _drop_unassigned(match: re.Match) -> str:
    char = match.group()
    return "" if unicodedata.category(char) == "Cn" else char


def strip_control_chars(text: str) -> str:
    """Remove control, surrogate and unassigned code points."""
    text = _CONTROL_RE.sub("", text)
    return _NON_ASCII_RE.sub(_drop_unassigned, text)


def _decode_escaped(match: re.Match) -> str:
    raw = bytes(ord(ch) - 0xDC00 for ch in match.group())
    return raw.decode("cp1252", errors="replace")


def _repair_mojibake(match: re.Match) -> str:
    chunk = match.group()
    for codec in ("cp1252", "latin-1"):
        try:
            return chunk.encode(codec).decode("utf-8")
        except UnicodeError:
            continue
    return chunk


def fix_utf8(content: bytes | str) -> str:
    """Decode converter output as UTF-8, repairing what can be repaired.

    Invalid byte sequences are read as cp1252 and double-encoded two-byte
    sequences (``Ã©`` for ``é``) are folded back.
    """
    if isinstance(content, bytes):
        text = content.decode("utf-8", errors="surrogateescape")
        text = _SURROGATE_ESCAPE_RE.sub(_decode_escaped, text)
    else:
        text = content
    return _MOJIBAKE_RE.sub(_repair_mojibake, text)


def fix_pdf2xml(content: str) -> str:
    if not content:
        return content
    content = _WHITESPACE_RUN_RE.sub(" ", content)
    content = _BOLD_ITALIC_RE.sub("", content)
    # Keep a placeholder for truncated font specs so that later font ids
    # still match their ordinal position.
    content = _TRUNCATED_FONTSPEC_RE.sub("<fontspec/>", content)
    return content.replace(LEGACY_DOCTYPE, CANONICAL_DOCTYPE)


def _parser() -> etree.XMLParser:
    return etree.XMLParser(
        recover=True,
        huge_tree=True,
        remove_blank_text=True,
        resolve_entities=False,
        load_dtd=False,
        no_network=True,
    )


def parse_xml(content: str | bytes) -> etree._Element | None:
    """Parse leniently; return the root element or ``None``."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    if not content or not content.strip():
        return None
    try:
        root = etree.fromstring(content, parser=_parser())
    except etree.XMLSyntaxError as exc:
        log.debug("XML parse failed: %s", exc)
        return None
    return root


def sanitize_pdf2xml(raw: bytes) -> etree._Element | None:
    """Run the whole repair chain on raw pdftohtml output and parse it."""
    text = strip_control_chars(fix_utf8(raw))
    text = fix_pdf2xml(text)
    # lxml refuses str input carrying an encoding declaration.
    return parse_xml(text.encode("utf-8"))
