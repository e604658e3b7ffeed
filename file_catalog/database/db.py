"""
Database connection management.
"""
import sqlite3
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from ..exceptions import InitializationError
from .schema import init_schema


class DBManager:
    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        # SQLite WAL mode allows multiple readers, but writes need serialization
        self._write_lock = threading.RLock()

    def connect(self) -> sqlite3.Connection:
        """
        Connects to the SQLite database, configures pragmas and applies the
        schema. Any failure here is an InitializationError.
        """
        if self._conn:
            return self._conn

        logging.info(f"Connecting to database: {self.db_path}")
        conn = None
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row

            # Crash safety + cascading deletes must both be active
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA temp_store=MEMORY;")
            conn.execute("PRAGMA foreign_keys=ON;")

            init_schema(conn)
        except (sqlite3.Error, OSError) as e:
            if conn is not None:
                conn.close()
            raise InitializationError(f"Cannot open database {self.db_path}: {e}") from e

        self._conn = conn
        return self._conn

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise InitializationError(f"Database {self.db_path} is not open")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Serialized write transaction: commits on success, rolls back on error."""
        with self._write_lock:
            with self.conn as conn:
                yield conn

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None
            logging.info(f"Closed database: {self.db_path}")

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
