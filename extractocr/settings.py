"""Configuration management for extractocr."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .models import ExtractionTarget, Format, Mode, OutputKind, RunOptions, TextStore
from .utils import DEFAULT_CONTENT_PROPERTY

log = logging.getLogger(__name__)

CONTENT_STORE_KINDS = ("item", "media_pdf", "media_extracted")


@dataclass
class ExtractSettings:
    """Settings of an extraction run, as read from ``config.yaml``."""

    base_path: str = "files"
    base_uri: str = ""
    catalog_db: str = "catalog.sqlite"
    types_files: list = field(default_factory=lambda: ["tsv", "alto"])
    types_media: list = field(default_factory=list)
    content_store: list = field(default_factory=lambda: ["media_pdf"])
    content_property: str = DEFAULT_CONTENT_PROPERTY
    content_language: str = ""
    create_empty_file: bool = False
    log_level: str = "INFO"
    log_file: str | None = None


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, str):
        return [v for v in value.replace(",", " ").split() if v]
    return list(value)


def load_settings(config_path: Path | None) -> ExtractSettings:
    """Load settings from a YAML file; defaults when there is no file."""
    if config_path is None or not config_path.exists():
        return ExtractSettings()

    with open(config_path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{config_path}: expected a mapping at top level")

    defaults = ExtractSettings()
    settings = ExtractSettings(
        base_path=str(data.get("base_path", defaults.base_path)),
        base_uri=str(data.get("base_uri", defaults.base_uri) or ""),
        catalog_db=str(data.get("catalog_db", defaults.catalog_db)),
        types_files=_as_list(data.get("types_files", defaults.types_files)),
        types_media=_as_list(data.get("types_media", defaults.types_media)),
        content_store=_as_list(data.get("content_store", defaults.content_store)),
        content_property=str(data.get("content_property", defaults.content_property) or ""),
        content_language=str(data.get("content_language", defaults.content_language) or ""),
        create_empty_file=bool(data.get("create_empty_file", defaults.create_empty_file)),
        log_level=str(data.get("log_level", defaults.log_level)).upper(),
        log_file=data.get("log_file", defaults.log_file),
    )
    log.debug("Settings loaded from %s", config_path)
    return settings


def parse_formats(values: list[str]) -> list[Format]:
    """Resolve format labels, dropping duplicates and keeping order."""
    formats: list[Format] = []
    for value in values:
        fmt = Format.parse(value)
        if fmt not in formats:
            formats.append(fmt)
    return formats


def build_targets(types_files: list[str], types_media: list[str]) -> list[ExtractionTarget]:
    targets = [ExtractionTarget(fmt, OutputKind.LOCAL_FILE) for fmt in parse_formats(types_files)]
    targets += [
        ExtractionTarget(fmt, OutputKind.CATALOGUED_DERIVATIVE) for fmt in parse_formats(types_media)
    ]
    return targets


def build_text_store(settings: ExtractSettings) -> TextStore:
    unknown = set(settings.content_store) - set(CONTENT_STORE_KINDS)
    if unknown:
        raise ValueError(f"Unknown content store kind(s): {', '.join(sorted(unknown))}")
    return TextStore(
        property_term=settings.content_property,
        language=settings.content_language,
        item="item" in settings.content_store,
        media_pdf="media_pdf" in settings.content_store,
        media_extracted="media_extracted" in settings.content_store,
    )


def build_run_options(
    settings: ExtractSettings,
    *,
    mode: str | Mode = Mode.ALL,
    item_ids: str = "",
    item_id: int | None = None,
    manual: bool = False,
) -> RunOptions:
    """Turn settings and job arguments into ``RunOptions``.

    Raises:
        ValueError: On an unknown mode, format or content store kind.
    """
    if not isinstance(mode, Mode):
        try:
            mode = Mode(str(mode).strip().lower() or Mode.ALL.value)
        except ValueError:
            raise ValueError(f"Invalid mode: {mode!r} (expected all, existing or missing)") from None
    if item_id:
        item_ids = f"{item_id} {item_ids}".strip()
    return RunOptions(
        base_path=Path(settings.base_path),
        targets=build_targets(settings.types_files, settings.types_media),
        mode=mode,
        item_ids=item_ids,
        base_uri=settings.base_uri,
        create_empty_file=settings.create_empty_file,
        text_store=build_text_store(settings),
        manual=manual,
    )
