"""
Storage coordinator.

Owns the backend(s) selected by the storage mode. Writes fan out to every
active backend; reads go to the relational backend when it is active,
otherwise to the document backend. Results from the two are never merged.

Dual mode is best-effort: when one backend fails a write, the other is still
attempted and keeps its write (no cross-backend rollback). The caller gets a
PartialWriteError naming the failing backend(s).
"""
import logging
from typing import Iterable, List, Optional, Union

from tqdm import tqdm

from .analysis.duplicates import DuplicateDetector, DuplicateGroup
from .analysis.similarity import SimilarityIndex, SimilarMatch
from .config import StorageConfig, DEFAULT_SIMILARITY_THRESHOLD
from .database.document import DocumentBackend
from .database.relational import RelationalBackend
from .exceptions import PartialWriteError
from .metadata.router import MetadataRouter
from .models import FileRecord
from .query.engine import FilterSpec, QueryEngine, QueryResult

Backend = Union[RelationalBackend, DocumentBackend]


class UnavailableBackend:
    """
    Stand-in for a backend the current storage mode does not activate:
    writes are no-ops and reads come back empty.
    """

    def __init__(self, name: str):
        self.name = name

    def open(self):
        return self

    def upsert(self, rec: FileRecord) -> None:
        return None

    def delete(self, path: str) -> bool:
        return False

    def get_by_path(self, path: str) -> Optional[FileRecord]:
        return None

    def query(self, spec: Optional[FilterSpec] = None) -> List[FileRecord]:
        return []

    def all_files(self) -> List[FileRecord]:
        return []

    def count(self) -> int:
        return 0

    def flush(self):
        pass

    def close(self):
        pass


class CatalogStore:
    def __init__(self, storage_config: StorageConfig, router: Optional[MetadataRouter] = None):
        self.config = storage_config
        self.router = router or MetadataRouter()

        self.relational: Optional[RelationalBackend] = None
        self.document: Optional[DocumentBackend] = None
        if storage_config.uses_relational:
            self.relational = RelationalBackend(storage_config.db_path, self.router)
        if storage_config.uses_document:
            self.document = DocumentBackend(storage_config.json_path, self.router)

    @property
    def active_backends(self) -> List[Backend]:
        return [b for b in (self.relational, self.document) if b is not None]

    def backend(self, name: str):
        """The named backend, or an UnavailableBackend if the mode excludes it."""
        for b in self.active_backends:
            if b.name == name:
                return b
        return UnavailableBackend(name)

    @property
    def reader(self) -> Backend:
        return self.relational if self.relational is not None else self.document

    # --- Lifecycle ---

    def open(self) -> "CatalogStore":
        opened = []
        try:
            for b in self.active_backends:
                b.open()
                opened.append(b)
        except Exception:
            for b in opened:
                b.close()
            raise
        logging.info(f"Catalog storage initialized (mode={self.config.mode})")
        return self

    def flush(self):
        """Persists pending document-store changes. Relational writes are already durable."""
        for b in self.active_backends:
            b.flush()

    def close(self):
        """Flushes and closes every backend, even if one of them fails."""
        errors = {}
        for b in self.active_backends:
            try:
                b.close()
            except Exception as e:
                logging.error(f"Failed to close {b.name} backend: {e}")
                errors[b.name] = e
        self._raise_failures(errors)

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # --- Writes ---

    def _raise_failures(self, failures):
        if not failures:
            return
        # With a single backend there is nothing partial to report
        if len(self.active_backends) == 1:
            raise next(iter(failures.values()))
        raise PartialWriteError(failures)

    def upsert_file(self, record: FileRecord) -> Optional[int]:
        """
        Writes ``record`` to every active backend and returns the id assigned
        by the read backend.
        """
        record.validate()
        self.router.check(record)

        ids = {}
        failures = {}
        for b in self.active_backends:
            try:
                ids[b.name] = b.upsert(record)
            except Exception as e:
                logging.error(f"Upsert of {record.path} failed on {b.name} backend: {e}")
                failures[b.name] = e

        self._raise_failures(failures)
        return ids.get(self.reader.name)

    def upsert_files(self, records: Iterable[FileRecord], progress: bool = False) -> int:
        """Upserts records one transaction at a time; returns how many were stored."""
        count = 0
        for record in tqdm(records, desc="Cataloging", disable=not progress):
            self.upsert_file(record)
            count += 1
        logging.info(f"Cataloged {count} files.")
        return count

    def delete_file(self, path: str) -> bool:
        deleted = False
        failures = {}
        for b in self.active_backends:
            try:
                deleted = b.delete(path) or deleted
            except Exception as e:
                logging.error(f"Delete of {path} failed on {b.name} backend: {e}")
                failures[b.name] = e
        self._raise_failures(failures)
        return deleted

    # --- Reads ---

    def get_file(self, path: str) -> Optional[FileRecord]:
        return self.reader.get_by_path(path)

    def query_files(self, spec: Optional[FilterSpec] = None) -> List[FileRecord]:
        return self.reader.query(spec)

    # Backend-shaped names, so the store can serve as a query source
    get_by_path = get_file
    query = query_files

    def count(self) -> int:
        return self.reader.count()

    def all_files(self) -> List[FileRecord]:
        return self.reader.all_files()

    def search(self, spec: Optional[FilterSpec] = None) -> QueryResult:
        return QueryEngine(self).query(spec)

    def stats(self, spec: Optional[FilterSpec] = None):
        return QueryEngine(self).get_stats(spec)

    def find_similar(self, path: str, threshold: int = DEFAULT_SIMILARITY_THRESHOLD) -> List[SimilarMatch]:
        return SimilarityIndex(self).find_similar(path, threshold)

    def find_duplicates(self) -> List[DuplicateGroup]:
        return DuplicateDetector(self).find_duplicates()
