"""Cross-cutting helpers: constants, id ranges, atomic writes."""

from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PDF_MEDIA_TYPE = "application/pdf"
PDF_EXTENSION = "pdf"
STAGING_DIR = Path("temp") / "extractocr"
STAGING_URL_PATH = "temp/extractocr"
LOG_FILE_NAME = "extractocr.log"

TERM_IS_FORMAT_OF = "dcterms:isFormatOf"
TERM_IDENTIFIER = "dcterms:identifier"
DEFAULT_CONTENT_PROPERTY = "bibo:content"

IdRange = tuple[int | None, int | None]

_NOT_RANGE_RE = re.compile(r"[^0-9-]")


# ---------------------------------------------------------------------------
# Id ranges ("2-6 8 38-52 80-")
# ---------------------------------------------------------------------------


def clean_ranges(ids: str | list[str] | None) -> list[str]:
    """Split an id filter into range tokens, dropping malformed ones.

    Characters other than digits and ``-`` act as separators. A lone ``-``
    and tokens with more than one ``-`` are discarded.
    """
    if not ids:
        return []
    if isinstance(ids, str):
        ids = [ids]
    tokens: list[str] = []
    for value in ids:
        tokens.extend(_NOT_RANGE_RE.sub(" ", str(value)).split())
    return [t for t in tokens if t != "-" and t.count("-") <= 1]


def parse_id_ranges(ids: str | list[str] | None) -> list[IdRange]:
    """Parse an id filter into ``(low, high)`` pairs; ``None`` means open."""
    ranges: list[IdRange] = []
    for token in clean_ranges(ids):
        if "-" not in token:
            ranges.append((int(token), int(token)))
            continue
        low, high = token.split("-")
        ranges.append((int(low) if low else None, int(high) if high else None))
    return ranges


def id_in_ranges(value: int, ranges: list[IdRange]) -> bool:
    """Whether ``value`` matches one of ``ranges`` (no range matches all)."""
    if not ranges:
        return True
    for low, high in ranges:
        if (low is None or value >= low) and (high is None or value <= high):
            return True
    return False


def range_conditions(column: str, ranges: list[IdRange]) -> tuple[str, list[int]]:
    """Build an SQL ``OR`` of range conditions on ``column`` with parameters."""
    conditions: list[str] = []
    params: list[int] = []
    for low, high in ranges:
        if low is not None and high is not None:
            conditions.append(f"({column} >= ? AND {column} <= ?)")
            params.extend((low, high))
        elif low is not None:
            conditions.append(f"{column} >= ?")
            params.append(low)
        elif high is not None:
            conditions.append(f"{column} <= ?")
            params.append(high)
    if not conditions:
        return "", []
    return "(" + " OR ".join(conditions) + ")", params


# ---------------------------------------------------------------------------
# File helpers
# ---------------------------------------------------------------------------


def atomic_write_bytes(path: Path, payload: bytes) -> None:
    """Write ``payload`` to a sibling temp file, then rename it over ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(payload)
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
