"""Repository catalog: the protocol the pipeline needs and a SQLite store.

The pipeline only talks to the catalog through ``Catalog``. ``SqliteCatalog``
is a self-contained implementation: items and media are rows of one
``resource`` table, property values rows of ``value``, and media files live
under ``<base>/original/<storage_id>.<extension>``.
"""

from __future__ import annotations

import logging
import shutil
import sqlite3
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Protocol

from .geometry import image_size
from .models import ArtifactRef, OutputKind, PageImage, PdfCandidate, SourceDocument, StagedFile
from .utils import (
    DEFAULT_CONTENT_PROPERTY,
    PDF_EXTENSION,
    PDF_MEDIA_TYPE,
    TERM_IDENTIFIER,
    TERM_IS_FORMAT_OF,
    IdRange,
    range_conditions,
)

log = logging.getLogger(__name__)


class Catalog(Protocol):
    """Operations of the asset repository used by the pipeline."""

    def find_pdf_candidates(self, id_ranges: list[IdRange]) -> list[PdfCandidate]:
        """Return the first pdf (lowest position) of each matching container."""

    def read_document(self, pdf_id: int) -> SourceDocument | None: ...

    def lookup_derivative(
        self, container_id: int, name: str, extension: str, media_type: str
    ) -> ArtifactRef | None: ...

    def create_derivative(
        self,
        container_id: int,
        staged: StagedFile,
        name: str,
        media_type: str,
        language: str = "",
        values: list[dict[str, Any]] | None = None,
    ) -> int: ...

    def reorder_last(self, media_id: int, media_type: str) -> None: ...

    def delete_derivative(self, media_id: int) -> None: ...

    def resource_values(self, resource_id: int, term: str) -> list[str]: ...

    def update_resource_property(
        self, resource_id: int, term: str, value: str, language: str = ""
    ) -> None: ...

    def property_exists(self, term: str) -> bool: ...


DEFAULT_PROPERTIES = (TERM_IDENTIFIER, TERM_IS_FORMAT_OF, DEFAULT_CONTENT_PROPERTY)


class SqliteCatalog:
    """Catalog of items and media stored in a SQLite database."""

    def __init__(self, db_path: Path, base_path: Path, base_uri: str = "", api_url: str = ""):
        """
        Args:
            db_path: Path to the SQLite database file, created if needed.
            base_path: Root of the file store (``original/`` lives there).
            base_uri: Public url of the file store.
            api_url: Public url of the api, used in provenance fields.
        """
        self.db_path = Path(db_path)
        self.base_path = Path(base_path)
        self.base_uri = base_uri.rstrip("/")
        self.api_url = api_url.rstrip("/")
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._transaction() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS resource (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    resource_type TEXT NOT NULL,
                    item_id INTEGER,
                    position INTEGER,
                    source TEXT,
                    storage_id TEXT,
                    extension TEXT,
                    media_type TEXT,
                    lang TEXT,
                    width INTEGER,
                    height INTEGER,
                    UNIQUE(item_id, position)
                );
                CREATE INDEX IF NOT EXISTS idx_resource_item ON resource(item_id);
                CREATE TABLE IF NOT EXISTS value (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    resource_id INTEGER NOT NULL,
                    term TEXT NOT NULL,
                    value TEXT,
                    value_resource_id INTEGER,
                    lang TEXT
                );
                CREATE INDEX IF NOT EXISTS idx_value_resource ON value(resource_id, term);
                CREATE TABLE IF NOT EXISTS property (
                    term TEXT PRIMARY KEY
                );
            """)
            conn.executemany(
                "INSERT OR IGNORE INTO property (term) VALUES (?)",
                [(term,) for term in DEFAULT_PROPERTIES],
            )

    def file_path(self, storage_id: str, extension: str) -> Path:
        filename = f"{storage_id}.{extension}" if extension else storage_id
        return self.base_path / "original" / filename

    def file_url(self, storage_id: str, extension: str) -> str:
        filename = f"{storage_id}.{extension}" if extension else storage_id
        return f"{self.base_uri}/original/{filename}"

    def resource_url(self, resource_type: str, resource_id: int) -> str:
        return f"{self.api_url}/{resource_type}/{resource_id}"

    # ------------------------------------------------------------------
    # Catalog management
    # ------------------------------------------------------------------

    def add_property(self, term: str) -> None:
        with self._transaction() as conn:
            conn.execute("INSERT OR IGNORE INTO property (term) VALUES (?)", (term,))

    def add_item(self, identifier: str = "", item_id: int | None = None) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO resource (id, resource_type) VALUES (?, 'items')", (item_id,)
            )
            item_id = cursor.lastrowid
            if identifier:
                conn.execute(
                    "INSERT INTO value (resource_id, term, value) VALUES (?, ?, ?)",
                    (item_id, TERM_IDENTIFIER, identifier),
                )
        return item_id

    def add_media(
        self,
        item_id: int,
        source: str,
        *,
        media_type: str = PDF_MEDIA_TYPE,
        extension: str = PDF_EXTENSION,
        content: bytes | None = None,
        storage_id: str | None = None,
        width: int | None = None,
        height: int | None = None,
        identifier: str = "",
        lang: str = "",
    ) -> int:
        """Attach a media at the end of an item, storing ``content`` if given."""
        storage_id = storage_id or uuid.uuid4().hex
        if content is not None:
            path = self.file_path(storage_id, extension)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        with self._transaction() as conn:
            media_id = self._insert_media(
                conn, item_id, source, storage_id, extension, media_type, lang, width, height
            )
            if identifier:
                conn.execute(
                    "INSERT INTO value (resource_id, term, value) VALUES (?, ?, ?)",
                    (media_id, TERM_IDENTIFIER, identifier),
                )
        return media_id

    def _insert_media(
        self,
        conn: sqlite3.Connection,
        item_id: int,
        source: str,
        storage_id: str,
        extension: str,
        media_type: str,
        lang: str = "",
        width: int | None = None,
        height: int | None = None,
    ) -> int:
        row = conn.execute(
            "SELECT COALESCE(MAX(position), 0) FROM resource WHERE item_id = ?",
            (item_id,),
        ).fetchone()
        cursor = conn.execute(
            """
            INSERT INTO resource (
                resource_type, item_id, position, source, storage_id,
                extension, media_type, lang, width, height
            ) VALUES ('media', ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (item_id, row[0] + 1, source, storage_id, extension, media_type, lang, width, height),
        )
        return cursor.lastrowid

    def media_of(self, item_id: int) -> list[dict[str, Any]]:
        """Media rows of an item in position order."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM resource WHERE item_id = ? ORDER BY position, id",
                (item_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def media_values(self, resource_id: int) -> list[dict[str, Any]]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT term, value, value_resource_id, lang FROM value "
                "WHERE resource_id = ? ORDER BY id",
                (resource_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    # ------------------------------------------------------------------
    # Catalog protocol
    # ------------------------------------------------------------------

    def find_pdf_candidates(self, id_ranges: list[IdRange]) -> list[PdfCandidate]:
        sql = """
            SELECT m.id, m.item_id
            FROM resource AS m
            WHERE m.resource_type = 'media'
                AND m.position = (
                    SELECT MIN(sub.position)
                    FROM resource AS sub
                    WHERE sub.item_id = m.item_id
                        AND sub.resource_type = 'media'
                        AND sub.media_type = ?
                        AND sub.extension = ?
                )
        """
        params: list[Any] = [PDF_MEDIA_TYPE, PDF_EXTENSION]
        condition, range_params = range_conditions("m.item_id", id_ranges)
        if condition:
            sql += f" AND {condition}"
            params.extend(range_params)
        sql += " ORDER BY m.item_id ASC"
        with self._transaction() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [PdfCandidate(pdf_id=row["id"], container_id=row["item_id"]) for row in rows]

    def read_document(self, pdf_id: int) -> SourceDocument | None:
        with self._transaction() as conn:
            media = conn.execute(
                "SELECT * FROM resource WHERE id = ? AND resource_type = 'media'",
                (pdf_id,),
            ).fetchone()
            if media is None:
                return None
            image_rows = conn.execute(
                "SELECT * FROM resource WHERE item_id = ? AND resource_type = 'media' "
                "AND media_type LIKE 'image/%' ORDER BY position, id",
                (media["item_id"],),
            ).fetchall()

        item_id = media["item_id"]
        return SourceDocument(
            pdf_id=pdf_id,
            container_id=item_id,
            source=media["source"] or "",
            file_path=self.file_path(media["storage_id"], media["extension"]),
            original_url=self.file_url(media["storage_id"], media["extension"]),
            identifier=self._first_value(pdf_id, TERM_IDENTIFIER),
            container_url=self.resource_url("items", item_id),
            container_identifier=self._first_value(item_id, TERM_IDENTIFIER),
            images=[self._page_image(row) for row in image_rows],
        )

    def _first_value(self, resource_id: int, term: str) -> str:
        values = self.resource_values(resource_id, term)
        return values[0] if values else ""

    def _page_image(self, row: sqlite3.Row) -> PageImage:
        width, height = row["width"] or 0, row["height"] or 0
        if not width or not height:
            path = self.file_path(row["storage_id"], row["extension"])
            width, height = image_size(path) if path.is_file() else (0, 0)
        return PageImage(id=row["id"], width=width, height=height, source=row["source"] or "")

    def lookup_derivative(
        self, container_id: int, name: str, extension: str, media_type: str
    ) -> ArtifactRef | None:
        """Find the derivative named ``name``; media of another type never match."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT id, storage_id, extension FROM resource "
                "WHERE item_id = ? AND resource_type = 'media' AND source = ? "
                "AND extension = ? AND media_type = ? "
                "ORDER BY position, id LIMIT 1",
                (container_id, name, extension, media_type),
            ).fetchone()
        if row is None:
            return None
        return ArtifactRef(
            kind=OutputKind.CATALOGUED_DERIVATIVE,
            name=name,
            id=row["id"],
            path=self.file_path(row["storage_id"], row["extension"]),
        )

    def create_derivative(
        self,
        container_id: int,
        staged: StagedFile,
        name: str,
        media_type: str,
        language: str = "",
        values: list[dict[str, Any]] | None = None,
    ) -> int:
        """Ingest a staged file as a new media at the end of the container."""
        storage_id = uuid.uuid4().hex
        extension = Path(staged.filename).suffix.lstrip(".")
        destination = self.file_path(storage_id, extension)
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(staged.path, destination)
        try:
            with self._transaction() as conn:
                media_id = self._insert_media(
                    conn, container_id, name, storage_id, extension, media_type, language
                )
                for value in values or []:
                    conn.execute(
                        "INSERT INTO value (resource_id, term, value, value_resource_id, lang) "
                        "VALUES (?, ?, ?, ?, ?)",
                        (
                            media_id,
                            value["term"],
                            value.get("value"),
                            value.get("value_resource_id"),
                            value.get("lang", ""),
                        ),
                    )
        except sqlite3.Error:
            destination.unlink(missing_ok=True)
            raise
        log.debug("Media #%s created for item #%s from %s", media_id, container_id, staged.url)
        return media_id

    def reorder_last(self, media_id: int, media_type: str) -> None:
        """Move a media to the last position of its item and set its type.

        Positions are renumbered in two passes inside one transaction so the
        ``(item_id, position)`` unique index never sees a duplicate.
        """
        with self._transaction() as conn:
            row = conn.execute("SELECT item_id FROM resource WHERE id = ?", (media_id,)).fetchone()
            if row is None:
                raise LookupError(f"Media #{media_id} does not exist")
            ids = [
                r["id"]
                for r in conn.execute(
                    "SELECT id FROM resource WHERE item_id = ? ORDER BY position, id",
                    (row["item_id"],),
                )
            ]
            ordered = [i for i in ids if i != media_id] + [media_id]
            for i in ordered:
                conn.execute("UPDATE resource SET position = -position - 1 WHERE id = ?", (i,))
            for position, i in enumerate(ordered, start=1):
                conn.execute("UPDATE resource SET position = ? WHERE id = ?", (position, i))
            conn.execute("UPDATE resource SET media_type = ? WHERE id = ?", (media_type, media_id))

    def delete_derivative(self, media_id: int) -> None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT storage_id, extension FROM resource WHERE id = ?", (media_id,)
            ).fetchone()
            if row is None:
                log.debug("Media #%s already deleted", media_id)
                return
            conn.execute("DELETE FROM value WHERE resource_id = ?", (media_id,))
            conn.execute("DELETE FROM resource WHERE id = ?", (media_id,))
        self.file_path(row["storage_id"], row["extension"]).unlink(missing_ok=True)

    def resource_values(self, resource_id: int, term: str) -> list[str]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT value FROM value WHERE resource_id = ? AND term = ? ORDER BY id",
                (resource_id, term),
            ).fetchall()
        return [row["value"] for row in rows if row["value"] is not None]

    def update_resource_property(
        self, resource_id: int, term: str, value: str, language: str = ""
    ) -> None:
        """Append a literal value to a resource."""
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO value (resource_id, term, value, lang) VALUES (?, ?, ?, ?)",
                (resource_id, term, value, language),
            )

    def property_exists(self, term: str) -> bool:
        with self._transaction() as conn:
            row = conn.execute("SELECT 1 FROM property WHERE term = ?", (term,)).fetchone()
        return row is not None
