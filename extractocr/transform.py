"""XSLT transforms between pdf2xml, ALTO and plain text."""

from __future__ import annotations

import functools
import logging
import re
from pathlib import Path

from lxml import etree

from .errors import ConversionError

log = logging.getLogger(__name__)

XSL_DIR = Path(__file__).resolve().parent / "xsl"
PDF2XML_TO_ALTO_XSL = XSL_DIR / "pdf2xml_to_alto.xsl"
ALTO_TO_TEXT_XSL = XSL_DIR / "alto_to_text.xsl"

_SPACES_RE = re.compile(r"[ \t\r\n]+")


@functools.lru_cache(maxsize=None)
def load_transform(xsl_path: Path) -> etree.XSLT:
    """Load and compile an XSLT stylesheet.

    Compiled stylesheets are cached for the life of the process.

    Raises:
        FileNotFoundError: If the stylesheet does not exist.
        etree.XSLTParseError: If the stylesheet is malformed.
    """
    if not xsl_path.exists():
        raise FileNotFoundError(f"XSLT stylesheet not found: {xsl_path}")
    log.debug("Loading XSLT stylesheet: %s", xsl_path)
    return etree.XSLT(etree.parse(str(xsl_path)))


def apply_transform(
    source: etree._Element | etree._ElementTree,
    transform: etree.XSLT,
    params: dict[str, str] | None = None,
) -> etree._XSLTResultTree:
    """Apply a compiled transform, passing ``params`` as string parameters.

    Raises:
        ConversionError: If the transformation fails.
    """
    xsl_params = {
        name: etree.XSLT.strparam(value or "") for name, value in (params or {}).items()
    }
    try:
        result = transform(source, **xsl_params)
    except etree.XSLTApplyError as exc:
        log.error("XSLT error log: %s", transform.error_log)
        raise ConversionError(f"XSLT transformation failed: {exc}") from exc

    for entry in transform.error_log:
        log.warning("XSLT: %s", entry)
    return result


def pdf2xml_to_alto(
    root: etree._Element, params: dict[str, str] | None = None
) -> etree._Element:
    """Convert a sanitized pdf2xml tree into an ALTO tree."""
    result = apply_transform(root, load_transform(PDF2XML_TO_ALTO_XSL), params)
    alto = result.getroot()
    if alto is None:
        raise ConversionError("pdf2xml to alto transformation returned no document")
    return alto


def alto_to_text(alto: etree._Element) -> str:
    """Return the plain text of an ALTO tree, one line per text line."""
    result = apply_transform(alto, load_transform(ALTO_TO_TEXT_XSL))
    return str(result).strip()


def pdf2xml_to_text(root: etree._Element) -> str:
    """Return the plain text of a pdf2xml tree, one line per page."""
    pages = []
    for page in root.iter("page"):
        lines = (_SPACES_RE.sub(" ", "".join(text.itertext())).strip() for text in page.iter("text"))
        pages.append(" ".join(line for line in lines if line))
    return "\n".join(page for page in pages if page).strip()
