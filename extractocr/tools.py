"""Adapters around the poppler command-line converters.

Each adapter writes into a caller-provided path and either returns the raw
bytes of the output or raises ``ConversionError``.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import time
from pathlib import Path

from .errors import ConversionError, ToolUnavailable

log = logging.getLogger(__name__)

PDFTOHTML = "pdftohtml"
PDFTOTEXT = "pdftotext"
REQUIRED_TOOLS = (PDFTOHTML, PDFTOTEXT)


def check_tools(names: tuple[str, ...] = REQUIRED_TOOLS) -> None:
    """Raise ``ToolUnavailable`` if one of ``names`` is not on the PATH."""
    missing = [name for name in names if shutil.which(name) is None]
    if missing:
        raise ToolUnavailable(
            f"Required command(s) not found: {', '.join(missing)} (install poppler-utils)"
        )


def _run(command: list[str], output_path: Path) -> bytes:
    t0 = time.perf_counter()
    log.debug("Running: %s", " ".join(command))
    try:
        subprocess.run(command, check=True, capture_output=True)
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or b"").decode("utf-8", errors="replace").strip()
        raise ConversionError(
            f"{command[0]} exited with status {exc.returncode}: {stderr[:500]}"
        ) from exc
    except OSError as exc:
        raise ConversionError(f"{command[0]} could not be run: {exc}") from exc

    if not output_path.is_file():
        raise ConversionError(f"{command[0]} did not create {output_path.name}")
    content = output_path.read_bytes()
    if not content.strip():
        raise ConversionError(f"{command[0]} returned an empty output")
    log.debug("%s done in %.2fs (%s bytes)", command[0], time.perf_counter() - t0, len(content))
    return content


def pdftohtml_xml(pdf_path: Path, output_path: Path) -> bytes:
    """Run ``pdftohtml -xml`` and return the pdf2xml bytes.

    ``output_path`` must end with ``.xml``; pdftohtml appends it otherwise.
    """
    command = [
        PDFTOHTML,
        "-i",
        "-c",
        "-hidden",
        "-nodrm",
        "-enc",
        "UTF-8",
        "-xml",
        str(pdf_path),
        str(output_path),
    ]
    return _run(command, output_path)


def pdftotext_bbox(pdf_path: Path, output_path: Path) -> bytes:
    """Run ``pdftotext -bbox -layout`` and return the XHTML word stream."""
    command = [PDFTOTEXT, "-bbox", "-layout", str(pdf_path), str(output_path)]
    return _run(command, output_path)
