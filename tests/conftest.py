"""Shared fixtures for the extraction test suite.

The poppler tools are replaced by fixture outputs: a two-page pdf2xml
document and the matching ``pdftotext -bbox`` stream.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Configure verbose logging for test debugging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
    force=True,
)
log = logging.getLogger("conftest")

PDF2XML_OUTPUT = """<?xml version="1.0" encoding="UTF-8"?>
<!doctype pdf2xml system "pdf2xml.dtd">

<pdf2xml producer="poppler" version="23.08.0">
<page number="1" position="absolute" top="0" left="0" height="842" width="595">
\t<fontspec id="0" size="12" family="Times" color="#000000"/>
<text top="100" left="50" width="120" height="14" font="0"><b>Hello   world</b></text>
<text top="120" left="50" width="40" height="14" font="0">Café</text>
</page>
<page number="2" position="absolute" top="0" left="0" height="842" width="595">
<text top="100" left="50" width="120" height="14" font="0">Hello <i>again</i></text>
</page>
</pdf2xml>
"""

PDF2XML_EMPTY_OUTPUT = """<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE pdf2xml SYSTEM "pdf2xml.dtd">
<pdf2xml producer="poppler" version="23.08.0">
<page number="1" position="absolute" top="0" left="0" height="842" width="595">
</page>
</pdf2xml>
"""

BBOX_OUTPUT = """<!DOCTYPE html PUBLIC "-//W3C//DTD XHTML 1.0 Transitional//EN" "http://www.w3.org/TR/xhtml1/DTD/xhtml1-transitional.dtd">
<html xmlns="http://www.w3.org/1999/xhtml">
<head>
<title></title>
<meta name="Producer" content="pdftotext"/>
</head>
<body>
<doc>
  <page width="595.000000" height="842.000000">
    <word xMin="50.000000" yMin="100.000000" xMax="80.000000" yMax="114.000000">Hello</word>
    <word xMin="85.000000" yMin="100.000000" xMax="120.500000" yMax="114.000000">world</word>
    <word xMin="50.000000" yMin="120.000000" xMax="75.500000" yMax="134.000000">Café</word>
  </page>
  <page width="595.000000" height="842.000000">
    <word xMin="50.000000" yMin="100.000000" xMax="80.000000" yMax="114.000000">hello</word>
    <word xMin="85.000000" yMin="100.000000" xMax="120.500000" yMax="114.000000">again</word>
  </page>
</doc>
</body>
</html>
"""

BBOX_EMPTY_OUTPUT = """<html xmlns="http://www.w3.org/1999/xhtml">
<head><title></title></head>
<body>
<doc>
  <page width="595.000000" height="842.000000">
  </page>
</doc>
</body>
</html>
"""

FIXED_NOW = datetime(2024, 5, 17, 10, 30, 0)


class FakeTools:
    """Stand-in for the poppler adapters, writing fixture outputs."""

    def __init__(self) -> None:
        self.pdf2xml = PDF2XML_OUTPUT.encode("utf-8")
        self.bbox = BBOX_OUTPUT.encode("utf-8")
        self.calls: list[tuple[str, Path]] = []
        self.fail: set[str] = set()

    def _write(self, name: str, pdf_path: Path, output_path: Path, content: bytes) -> bytes:
        from extractocr.errors import ConversionError

        self.calls.append((name, pdf_path))
        if name in self.fail:
            raise ConversionError(f"{name} exited with status 1: broken pdf")
        output_path.write_bytes(content)
        return content

    def pdftohtml_xml(self, pdf_path: Path, output_path: Path) -> bytes:
        return self._write("pdftohtml", pdf_path, output_path, self.pdf2xml)

    def pdftotext_bbox(self, pdf_path: Path, output_path: Path) -> bytes:
        return self._write("pdftotext", pdf_path, output_path, self.bbox)

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)


@pytest.fixture
def fake_tools(monkeypatch) -> FakeTools:
    fake = FakeTools()
    monkeypatch.setattr("extractocr.tools.check_tools", lambda *args: None)
    monkeypatch.setattr("extractocr.tools.pdftohtml_xml", fake.pdftohtml_xml)
    monkeypatch.setattr("extractocr.tools.pdftotext_bbox", fake.pdftotext_bbox)
    return fake


@pytest.fixture
def base_path(tmp_path: Path) -> Path:
    path = tmp_path / "files"
    path.mkdir()
    return path


@pytest.fixture
def catalog(tmp_path: Path, base_path: Path):
    from extractocr import SqliteCatalog

    return SqliteCatalog(
        tmp_path / "catalog.sqlite",
        base_path,
        base_uri="https://example.org/files",
        api_url="https://example.org/api",
    )


@pytest.fixture
def item_with_pdf(catalog) -> dict[str, int]:
    """Item #42 holding report.pdf and one page image (twice the pdf size)."""
    item_id = catalog.add_item(identifier="ark:/12345/item42", item_id=42)
    pdf_id = catalog.add_media(
        item_id,
        "report.pdf",
        content=b"%PDF-1.4 fixture",
        identifier="ark:/12345/pdf42",
    )
    image_id = catalog.add_media(
        item_id,
        "page-1.jpg",
        media_type="image/jpeg",
        extension="jpg",
        width=1190,
        height=1684,
    )
    log.debug("Seeded item #%s with pdf #%s and image #%s", item_id, pdf_id, image_id)
    return {"item_id": item_id, "pdf_id": pdf_id, "image_id": image_id}


@pytest.fixture
def make_options(base_path: Path):
    """Build ``RunOptions`` from format labels."""
    from extractocr import Mode, RunOptions, TextStore, build_targets

    def _make(
        files: list[str] | None = None,
        media: list[str] | None = None,
        mode: Mode = Mode.ALL,
        **kwargs,
    ) -> RunOptions:
        return RunOptions(
            base_path=base_path,
            targets=build_targets(files or [], media or []),
            mode=mode,
            base_uri="https://example.org/files",
            text_store=kwargs.pop("text_store", TextStore()),
            **kwargs,
        )

    return _make
