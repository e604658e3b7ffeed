"""
Database schema definitions.

The logical schema is rendered twice: as SQLite tables (``init_schema``) and
as the skeleton of the JSON document store (``new_document``). Side tables
for category variants and attachments are generated from the same facet
declarations the metadata router dispatches on.
"""
import sqlite3
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from .. import config
from ..metadata.router import ALL_FACETS, Facet
from . import fields

CURRENT_SCHEMA_VERSION = 1

SQL_TYPES = {
    fields.TEXT: 'TEXT',
    fields.INT: 'INTEGER',
    fields.REAL: 'REAL',
    fields.BOOL: 'BOOLEAN',
    fields.DATETIME: 'TEXT',
    fields.JSON: 'TEXT',
}


def side_table_ddl(facet: Facet) -> str:
    """CREATE TABLE for a 1:1 side record keyed by the owning file id."""
    cols = ",\n".join(f"    {f.column} {SQL_TYPES[f.kind]}" for f in facet.fields)
    return f"""
    CREATE TABLE IF NOT EXISTS {facet.table} (
        file_id INTEGER PRIMARY KEY,
    {cols},
        FOREIGN KEY (file_id) REFERENCES files(id) ON DELETE CASCADE
    );
    """


def init_schema(conn: sqlite3.Connection):
    """
    Applies the core schema to the database.
    Idempotent: safe to run on every startup.
    """
    with conn:
        # 1. Version Tracking (For future migrations)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );
        """)

        cur = conn.cursor()
        cur.execute("SELECT version FROM schema_version")
        if not cur.fetchone():
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_SCHEMA_VERSION,))

        # 2. Core File Table
        # Path is the identity; everything else is refreshed on rescans
        conn.execute("""
        CREATE TABLE IF NOT EXISTS files (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            path            TEXT UNIQUE NOT NULL,
            relative_path   TEXT,
            name            TEXT NOT NULL,
            extension       TEXT,
            size            INTEGER,
            created         TEXT,
            modified        TEXT,
            accessed        TEXT,
            mime_type       TEXT,
            category        TEXT NOT NULL,
            md5_hash        TEXT,
            sha256_hash     TEXT,
            processed_at    TEXT,
            processing_time REAL,
            version         TEXT
        );
        """)

        # 3. Category Variants + Attachments (1:1 with files)
        for facet in ALL_FACETS:
            conn.execute(side_table_ddl(facet))

        # 4. Opaque EXIF payload (stored as JSON)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS exif_data (
            file_id INTEGER PRIMARY KEY,
            data    TEXT,
            FOREIGN KEY (file_id) REFERENCES files(id) ON DELETE CASCADE
        );
        """)

        # 5. Tags (replaced wholesale on every upsert)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS tags (
            id      INTEGER PRIMARY KEY AUTOINCREMENT,
            file_id INTEGER NOT NULL,
            tag     TEXT NOT NULL,
            FOREIGN KEY (file_id) REFERENCES files(id) ON DELETE CASCADE
        );
        """)

        # 6. Relationships (directed, typed)
        # related_path is kept so edges to uncataloged or deleted targets survive
        conn.execute("""
        CREATE TABLE IF NOT EXISTS relationships (
            id                INTEGER PRIMARY KEY AUTOINCREMENT,
            file_id           INTEGER NOT NULL,
            related_file_id   INTEGER,
            related_path      TEXT NOT NULL,
            relationship_type TEXT NOT NULL,
            FOREIGN KEY (file_id) REFERENCES files(id) ON DELETE CASCADE,
            FOREIGN KEY (related_file_id) REFERENCES files(id) ON DELETE SET NULL
        );
        """)

        # 7. Full text search (rowid == files.id)
        conn.execute("""
        CREATE VIRTUAL TABLE IF NOT EXISTS files_fts USING fts5(
            name,
            path,
            content,
            tags
        );
        """)

        # 8. Indices for Performance
        conn.execute("CREATE INDEX IF NOT EXISTS idx_files_category ON files(category);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_files_extension ON files(extension);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_files_mime_type ON files(mime_type);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_files_modified ON files(modified);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_files_size ON files(size);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_files_sha256 ON files(sha256_hash);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_tags_file_id ON tags(file_id);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_tags_tag ON tags(tag);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_relationships_file_id ON relationships(file_id);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_relationships_type ON relationships(relationship_type);")

    logging.debug("Database schema initialized.")


def new_document() -> Dict[str, Any]:
    """Empty document store: version marker, summary block, ordered records."""
    return {
        'version': config.DOCUMENT_FORMAT_VERSION,
        'generated_at': datetime.now(timezone.utc).isoformat(),
        'summary': empty_summary(),
        'files': [],
    }


def empty_summary() -> Dict[str, Any]:
    return {
        'total_files': 0,
        'total_size': 0,
        'file_types': {},
        'categories': {},
        'scanned_at': None,
    }
