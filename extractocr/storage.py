"""Where artifacts go: local files and catalogued derivative media."""

from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from .catalog import Catalog
from .errors import DirectoryUnwritable, StorageError
from .models import ArtifactRef, ExtractionTarget, Format, OutputKind, SourceDocument, StagedFile
from .utils import STAGING_DIR, STAGING_URL_PATH, TERM_IS_FORMAT_OF, atomic_write_bytes

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Directories
# ---------------------------------------------------------------------------


def check_destination_dir(path: Path) -> Path:
    """Create ``path`` if needed and make sure it is a writable directory."""
    if path.exists():
        if not path.is_dir() or not os.access(path, os.R_OK | os.W_OK | os.X_OK):
            raise DirectoryUnwritable(f'The directory "{path}" is not writeable.')
        return path
    try:
        path.mkdir(mode=0o775, parents=True, exist_ok=True)
    except OSError as exc:
        raise DirectoryUnwritable(f'The directory "{path}" is not writeable: {exc}.') from exc
    return path


def provision_directories(base_path: Path, targets: list[ExtractionTarget]) -> list[Path]:
    """Check the staging dir and the dir of every local-file target."""
    dirs = [base_path / STAGING_DIR]
    for target in targets:
        if target.kind is OutputKind.LOCAL_FILE:
            directory = base_path / target.format.spec.directory
            if directory not in dirs:
                dirs.append(directory)
    return [check_destination_dir(d) for d in dirs]


# ---------------------------------------------------------------------------
# Storage mediator
# ---------------------------------------------------------------------------


class StorageMediator:
    """Lookup, write and delete artifacts for a (document, target) pair."""

    def __init__(self, catalog: Catalog, base_path: Path, base_uri: str = ""):
        self.catalog = catalog
        self.base_path = Path(base_path)
        self.base_uri = base_uri.rstrip("/")

    @property
    def staging_dir(self) -> Path:
        return self.base_path / STAGING_DIR

    def local_path(self, document: SourceDocument, fmt: Format) -> Path:
        spec = fmt.spec
        return self.base_path / spec.directory / f"{document.container_id}.{spec.extension}"

    def derivative_name(self, document: SourceDocument, fmt: Format) -> str:
        """``<pdf basename>.<container id><suffix>.<short extension>``."""
        spec = fmt.spec
        stem = Path(urlparse(document.source).path).name
        if stem.endswith(".pdf"):
            stem = stem[: -len(".pdf")]
        if not stem:
            stem = f"{document.pdf_id}-{document.file_path.stem}"
        return f"{stem}.{document.container_id}{spec.suffix}.{spec.short_extension}"

    def lookup(self, document: SourceDocument, target: ExtractionTarget) -> ArtifactRef | None:
        if target.kind is OutputKind.LOCAL_FILE:
            path = self.local_path(document, target.format)
            if not path.is_file():
                return None
            return ArtifactRef(kind=target.kind, name=path.name, path=path)
        spec = target.format.spec
        name = self.derivative_name(document, target.format)
        return self.catalog.lookup_derivative(
            document.container_id, name, spec.short_extension, spec.media_type
        )

    def exists(self, document: SourceDocument, target: ExtractionTarget) -> bool:
        return self.lookup(document, target) is not None

    def delete(self, artifact: ArtifactRef) -> None:
        try:
            if artifact.kind is OutputKind.LOCAL_FILE:
                if artifact.path is not None:
                    artifact.path.unlink(missing_ok=True)
            elif artifact.id is not None:
                self.catalog.delete_derivative(artifact.id)
        except Exception as exc:
            raise StorageError(f"Unable to delete {artifact.name}: {exc}") from exc
        log.debug("Deleted %s", artifact.name)

    def write(
        self,
        document: SourceDocument,
        target: ExtractionTarget,
        payload: bytes,
        *,
        language: str = "",
        values: list[dict[str, Any]] | None = None,
    ) -> ArtifactRef:
        """Store ``payload`` as the artifact of ``target``.

        Raises:
            StorageError: The artifact could not be stored; nothing is left
                behind in that case.
        """
        if target.kind is OutputKind.LOCAL_FILE:
            path = self.local_path(document, target.format)
            try:
                atomic_write_bytes(path, payload)
            except OSError as exc:
                raise StorageError(f"Unable to write {path}: {exc}") from exc
            return ArtifactRef(kind=target.kind, name=path.name, path=path)
        return self._write_derivative(document, target.format, payload, language, values)

    def replace(
        self,
        existing: ArtifactRef,
        document: SourceDocument,
        target: ExtractionTarget,
        payload: bytes,
        *,
        language: str = "",
        values: list[dict[str, Any]] | None = None,
    ) -> ArtifactRef:
        """Replace ``existing`` by a new artifact built from ``payload``.

        A local file is overwritten in one rename. A derivative is created
        first and the old one removed afterwards, so a failed write leaves
        the previous artifact in place.
        """
        if target.kind is OutputKind.LOCAL_FILE:
            if existing.path is not None and existing.path != self.local_path(document, target.format):
                self.delete(existing)
            return self.write(document, target, payload)

        artifact = self.write(document, target, payload, language=language, values=values)
        try:
            self.delete(existing)
        except StorageError:
            self.delete(artifact)
            raise
        return artifact

    def _write_derivative(
        self,
        document: SourceDocument,
        fmt: Format,
        payload: bytes,
        language: str,
        values: list[dict[str, Any]] | None,
    ) -> ArtifactRef:
        spec = fmt.spec
        name = self.derivative_name(document, fmt)
        staged = self.stage(payload, spec.short_extension)
        try:
            try:
                media_id = self.catalog.create_derivative(
                    document.container_id, staged, name, spec.media_type, language, values
                )
            except Exception as exc:
                raise StorageError(f"Unable to create media {name}: {exc}") from exc
            try:
                self.catalog.reorder_last(media_id, spec.media_type)
            except Exception as exc:
                self.catalog.delete_derivative(media_id)
                raise StorageError(f"Unable to move media {name} last: {exc}") from exc
        finally:
            staged.path.unlink(missing_ok=True)
        return ArtifactRef(kind=OutputKind.CATALOGUED_DERIVATIVE, name=name, id=media_id)

    def stage(self, payload: bytes, extension: str, now: datetime | None = None) -> StagedFile:
        """Copy ``payload`` to a unique, downloadable file of the staging dir."""
        directory = self.staging_dir
        stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
        i = 0
        while True:
            filename = f"{stamp}{f'-{i}' if i else ''}.{extension}"
            path = directory / filename
            try:
                with open(path, "xb") as fh:
                    fh.write(payload)
                break
            except FileExistsError:
                i += 1
            except OSError as exc:
                raise StorageError(
                    f'File cannot be saved in temporary directory "{directory}": {exc}'
                ) from exc
        return StagedFile(path=path, filename=filename, url=f"{self.base_uri}/{STAGING_URL_PATH}/{filename}")

    def append_text_property(
        self, resource_id: int, term: str, text: str | None, language: str = ""
    ) -> bool:
        """Append ``text`` to a resource unless the same value is already there."""
        if not text:
            return False
        try:
            if text in self.catalog.resource_values(resource_id, term):
                return False
            self.catalog.update_resource_property(resource_id, term, text, language)
        except Exception as exc:
            raise StorageError(f"Unable to store text in resource #{resource_id}: {exc}") from exc
        return True


def derivative_values(
    document: SourceDocument, term: str, text: str | None, language: str = ""
) -> list[dict[str, Any]]:
    """Values attached to a new derivative: its text and the source pdf link."""
    if not term or not text:
        return []
    return [
        {"term": term, "value": text, "lang": language},
        {"term": TERM_IS_FORMAT_OF, "value_resource_id": document.pdf_id},
    ]

