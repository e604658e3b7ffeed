import sqlite3
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..exceptions import ConstraintViolation
from ..metadata.router import Facet, MetadataRouter
from ..models import FileRecord, Relationship
from ..query.engine import FilterSpec
from . import fields
from .db import DBManager

UPDATE_COLUMNS = [f.column for f in fields.FILE_FIELDS if f.attr in fields.FILE_UPDATE_ATTRS]


class _RowWriter:
    """Writes router-selected facets into their side tables for one file id."""

    def __init__(self, conn: sqlite3.Connection, file_id: int):
        self.conn = conn
        self.file_id = file_id

    def write_facet(self, facet: Facet, payload: Any):
        values = fields.to_columns(facet.fields, payload)
        cols = ['file_id'] + list(values)
        updates = ", ".join(f"{c} = excluded.{c}" for c in values)
        self.conn.execute(
            f"INSERT INTO {facet.table} ({', '.join(cols)}) "
            f"VALUES ({', '.join('?' * len(cols))}) "
            f"ON CONFLICT(file_id) DO UPDATE SET {updates}",
            (self.file_id, *values.values()),
        )

    def clear_facet(self, facet: Facet):
        self.conn.execute(f"DELETE FROM {facet.table} WHERE file_id = ?", (self.file_id,))


class _RowReader:
    def __init__(self, conn: sqlite3.Connection, file_id: int):
        self.conn = conn
        self.file_id = file_id

    def read_facet(self, facet: Facet) -> Optional[Dict[str, Any]]:
        row = self.conn.execute(
            f"SELECT * FROM {facet.table} WHERE file_id = ?", (self.file_id,)
        ).fetchone()
        if row is None:
            return None
        return fields.from_columns(facet.fields, dict(row))


class RelationalBackend:
    """
    SQLite representation of the catalog. Every upsert is one transaction
    touching the files row and all of its side tables.
    """
    name = 'relational'

    def __init__(self, db_path: Path, router: Optional[MetadataRouter] = None):
        self.db = DBManager(db_path)
        self.router = router or MetadataRouter()

    @property
    def location(self) -> Path:
        return self.db.db_path

    def open(self) -> "RelationalBackend":
        self.db.connect()
        return self

    @property
    def conn(self) -> sqlite3.Connection:
        return self.db.conn

    # --- Writes ---

    def upsert(self, rec: FileRecord) -> int:
        """Inserts or updates ``rec`` keyed on its path; returns the file id."""
        rec.validate()
        self.router.check(rec)
        try:
            with self.db.transaction() as conn:
                file_id = self._upsert_file_row(conn, rec)
                self.router.write(rec, _RowWriter(conn, file_id))
                self._replace_exif(conn, file_id, rec.exif)
                self._replace_tags(conn, file_id, rec.tags)
                self._replace_relationships(conn, file_id, rec.relationships)
                self._index_text(conn, file_id, rec)
        except sqlite3.IntegrityError as e:
            raise ConstraintViolation(f"Cannot store {rec.path}: {e}") from e
        return file_id

    def _upsert_file_row(self, conn: sqlite3.Connection, rec: FileRecord) -> int:
        values = fields.to_columns(fields.FILE_FIELDS, rec)
        cols = list(values)
        updates = ", ".join(f"{c} = excluded.{c}" for c in UPDATE_COLUMNS)

        # The DO UPDATE branch does not produce a new rowid (lastrowid stays
        # stale), so an existing row's identity comes from a path lookup.
        existing_id = self._get_file_id(conn, rec.path)
        cur = conn.execute(
            f"INSERT INTO files ({', '.join(cols)}) "
            f"VALUES ({', '.join('?' * len(cols))}) "
            f"ON CONFLICT(path) DO UPDATE SET {updates}",
            tuple(values.values()),
        )
        if existing_id is not None:
            return existing_id

        if cur.lastrowid is None:
            raise ConstraintViolation(f"INSERT for {rec.path} did not return a row id")
        file_id = cur.lastrowid
        # Edges recorded before this file was cataloged can now be resolved
        conn.execute(
            "UPDATE relationships SET related_file_id = ? WHERE related_path = ? AND related_file_id IS NULL",
            (file_id, rec.path),
        )
        return file_id

    def _replace_exif(self, conn: sqlite3.Connection, file_id: int, exif: Optional[Dict[str, Any]]):
        if exif is None:
            conn.execute("DELETE FROM exif_data WHERE file_id = ?", (file_id,))
            return
        conn.execute("""
            INSERT INTO exif_data (file_id, data) VALUES (?, ?)
            ON CONFLICT(file_id) DO UPDATE SET data = excluded.data
        """, (file_id, fields.encode_blob(exif)))

    def _replace_tags(self, conn: sqlite3.Connection, file_id: int, tags: List[str]):
        """Delete-all-then-insert-all: the stored set is exactly ``tags``."""
        conn.execute("DELETE FROM tags WHERE file_id = ?", (file_id,))
        conn.executemany(
            "INSERT INTO tags (file_id, tag) VALUES (?, ?)",
            [(file_id, tag) for tag in dict.fromkeys(tags)],
        )

    def _replace_relationships(self, conn: sqlite3.Connection, file_id: int, rels: List[Relationship]):
        conn.execute("DELETE FROM relationships WHERE file_id = ?", (file_id,))
        for rel in rels:
            conn.execute("""
                INSERT INTO relationships (file_id, related_file_id, related_path, relationship_type)
                VALUES (?, ?, ?, ?)
            """, (file_id, self._get_file_id(conn, rel.target), rel.target, rel.type))

    def _index_text(self, conn: sqlite3.Connection, file_id: int, rec: FileRecord):
        content = []
        text = getattr(rec.metadata, 'text_content', None)
        if text:
            content.append(text)
        if rec.office is not None and rec.office.content_preview:
            content.append(rec.office.content_preview)

        # name and path as stored, which an update may not have overwritten
        row = conn.execute("SELECT name, path FROM files WHERE id = ?", (file_id,)).fetchone()
        conn.execute("DELETE FROM files_fts WHERE rowid = ?", (file_id,))
        conn.execute(
            "INSERT INTO files_fts (rowid, name, path, content, tags) VALUES (?, ?, ?, ?, ?)",
            (file_id, row["name"], row["path"], "\n".join(content), " ".join(dict.fromkeys(rec.tags))),
        )

    def delete(self, path: str) -> bool:
        """Removes a file with its side records, tags and outgoing edges. Edges pointing at it are unlinked, not removed."""
        with self.db.transaction() as conn:
            file_id = self._get_file_id(conn, path)
            if file_id is None:
                return False
            conn.execute("DELETE FROM files_fts WHERE rowid = ?", (file_id,))
            conn.execute("DELETE FROM files WHERE id = ?", (file_id,))
        logging.debug(f"Deleted {path} from {self.location}")
        return True

    def flush(self):
        # Each upsert already committed its own transaction
        pass

    def close(self):
        self.db.close()

    # --- Reads ---

    def get_by_path(self, path: str) -> Optional[FileRecord]:
        row = self.conn.execute("SELECT * FROM files WHERE path = ?", (path,)).fetchone()
        if row is None:
            return None
        return self._hydrate(row)

    def query(self, spec: Optional[FilterSpec] = None) -> List[FileRecord]:
        """
        Applies the indexed predicates (category, extension, size range) in SQL.
        Records come back in insertion order.
        """
        spec = spec or FilterSpec()
        clauses = []
        params: List[Any] = []

        if spec.category is not None:
            clauses.append("category = ?")
            params.append(spec.category)
        if spec.extension is not None:
            clauses.append("extension = ?")
            params.append(spec.extension)
        if spec.min_size is not None:
            clauses.append("size >= ?")
            params.append(spec.min_size)
        if spec.max_size is not None:
            clauses.append("size <= ?")
            params.append(spec.max_size)

        sql = "SELECT * FROM files"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY id"

        rows = self.conn.execute(sql, params).fetchall()
        return [self._hydrate(r) for r in rows]

    def full_text_search(self, term: str) -> List[FileRecord]:
        """FTS5 term search over name, path, free-text content and tags."""
        phrase = '"' + term.replace('"', '""') + '"'
        ids = [r[0] for r in self.conn.execute(
            "SELECT rowid FROM files_fts WHERE files_fts MATCH ? ORDER BY rank", (phrase,)
        )]
        results = []
        for file_id in ids:
            row = self.conn.execute("SELECT * FROM files WHERE id = ?", (file_id,)).fetchone()
            if row is not None:
                results.append(self._hydrate(row))
        return results

    def all_files(self) -> List[FileRecord]:
        return self.query()

    def count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM files").fetchone()[0]

    def _get_file_id(self, conn: sqlite3.Connection, path: str) -> Optional[int]:
        row = conn.execute("SELECT id FROM files WHERE path = ?", (path,)).fetchone()
        return row[0] if row else None

    def _hydrate(self, row: sqlite3.Row) -> FileRecord:
        conn = self.conn
        file_id = row['id']
        kwargs = fields.from_columns(fields.FILE_FIELDS, dict(row))

        metadata, attachments = self.router.read(kwargs.get('category', ''), _RowReader(conn, file_id))

        exif_row = conn.execute("SELECT data FROM exif_data WHERE file_id = ?", (file_id,)).fetchone()
        exif = fields.decode_optional_blob(exif_row[0], f"exif_data[{file_id}]") if exif_row else None

        tags = [r[0] for r in conn.execute(
            "SELECT tag FROM tags WHERE file_id = ? ORDER BY id", (file_id,)
        )]
        relationships = [
            Relationship(target=r[0], type=r[1])
            for r in conn.execute(
                "SELECT related_path, relationship_type FROM relationships WHERE file_id = ? ORDER BY id",
                (file_id,),
            )
        ]

        return FileRecord(
            **kwargs,
            metadata=metadata,
            exif=exif,
            tags=tags,
            relationships=relationships,
            **attachments,
        )
