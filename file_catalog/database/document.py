"""
JSON document store.

The whole catalog lives in memory as an ordered list of record documents and
is written to disk only by ``flush()`` (and ``close()``, which flushes).
Upserts do not touch the disk, so the in-memory state runs ahead of the file
until the next flush. Callers that need durability must flush explicitly.
No locking: mutations must not be interleaved from several threads.
"""
import copy
import json
import logging
import os
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..exceptions import InitializationError
from ..metadata.router import Facet, MetadataRouter
from ..models import FileRecord, Relationship
from ..query.engine import FilterSpec
from . import fields
from .schema import new_document, empty_summary


class _DocWriter:
    """Places router-selected facets inline in a record document."""

    def __init__(self, doc: Dict[str, Any]):
        self.doc = doc

    def write_facet(self, facet: Facet, payload: Any):
        encoded = fields.to_document(facet.fields, payload)
        if facet.is_variant:
            self.doc.setdefault('metadata', {})[facet.name] = encoded
        else:
            self.doc[facet.name] = encoded

    def clear_facet(self, facet: Facet):
        if facet.is_variant:
            self.doc.get('metadata', {}).pop(facet.name, None)
        else:
            self.doc.pop(facet.name, None)


class _DocReader:
    def __init__(self, doc: Dict[str, Any]):
        self.doc = doc

    def read_facet(self, facet: Facet) -> Optional[Dict[str, Any]]:
        if facet.is_variant:
            container = self.doc.get('metadata')
            data = container.get(facet.name) if isinstance(container, dict) else None
        else:
            data = self.doc.get(facet.name)

        if data is None:
            return None
        if not isinstance(data, dict):
            logging.warning(f"Skipping malformed {facet.name} payload for {self.doc.get('path')}")
            return None
        return fields.from_document(facet.fields, data)


class DocumentBackend:
    name = 'document'

    def __init__(self, json_path: Path, router: Optional[MetadataRouter] = None):
        self.json_path = Path(json_path)
        self.router = router or MetadataRouter()
        self._data: Optional[Dict[str, Any]] = None
        self._index: Dict[str, int] = {}
        self._dirty = False

    @property
    def location(self) -> Path:
        return self.json_path

    def open(self) -> "DocumentBackend":
        """Loads the document if present, otherwise starts an empty one."""
        if self._data is not None:
            return self

        logging.info(f"Opening document store: {self.json_path}")
        parent = self.json_path.parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise InitializationError(f"Cannot create {parent}: {e}") from e
        if not os.access(parent, os.W_OK) or (self.json_path.exists() and not os.access(self.json_path, os.W_OK)):
            raise InitializationError(f"Document store location is not writable: {self.json_path}")

        if self.json_path.exists():
            data = self._load()
        else:
            data = new_document()

        self._data = data
        self._reindex()
        self._dirty = False
        return self

    def _load(self) -> Dict[str, Any]:
        try:
            with self.json_path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise InitializationError(f"Cannot read document store {self.json_path}: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get('files'), list):
            raise InitializationError(f"Document store {self.json_path} has no 'files' list")
        for entry in data['files']:
            if not isinstance(entry, dict) or not isinstance(entry.get('path'), str):
                raise InitializationError(f"Document store {self.json_path} holds an entry without a path")

        if not isinstance(data.get('summary'), dict):
            data['summary'] = empty_summary()
        return data

    def _require_open(self) -> Dict[str, Any]:
        if self._data is None:
            raise InitializationError(f"Document store {self.json_path} is not open")
        return self._data

    def _reindex(self):
        files = self._require_open()['files']
        self._index = {doc['path']: i for i, doc in enumerate(files)}

    # --- Writes ---

    def upsert(self, rec: FileRecord) -> int:
        """
        Replaces the entry with the same path in place, or appends a new one.
        Returns the 1-based position of the record. Not durable until flush().
        """
        rec.validate()
        self.router.check(rec)
        data = self._require_open()
        doc = self._encode(rec)

        idx = self._index.get(rec.path)
        if idx is None:
            data['files'].append(doc)
            idx = len(data['files']) - 1
            self._index[rec.path] = idx
        else:
            data['files'][idx] = doc

        self._refresh_summary()
        self._dirty = True
        return idx + 1

    def delete(self, path: str) -> bool:
        data = self._require_open()
        idx = self._index.get(path)
        if idx is None:
            return False
        del data['files'][idx]
        self._reindex()
        self._refresh_summary()
        self._dirty = True
        return True

    def _refresh_summary(self):
        data = self._require_open()
        files = data['files']
        summary = data['summary']
        summary['total_files'] = len(files)
        summary['total_size'] = sum(f.get('size') or 0 for f in files)
        summary['file_types'] = dict(Counter(f.get('extension') or 'unknown' for f in files))
        summary['categories'] = dict(Counter(f.get('category') or 'unknown' for f in files))
        summary['scanned_at'] = datetime.now(timezone.utc).isoformat()

    def flush(self):
        """Writes the in-memory document to disk (atomic replace)."""
        data = self._require_open()
        data['generated_at'] = datetime.now(timezone.utc).isoformat()
        tmp_path = self.json_path.with_name(self.json_path.name + ".tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.json_path)
        except (OSError, TypeError, ValueError):
            tmp_path.unlink(missing_ok=True)
            raise
        self._dirty = False
        logging.info(f"Document store saved: {self.json_path} ({len(data['files'])} files)")

    def close(self):
        if self._data is None:
            return
        self.flush()
        self._data = None
        self._index = {}

    @property
    def has_unflushed_changes(self) -> bool:
        return self._dirty

    @property
    def summary(self) -> Dict[str, Any]:
        return copy.deepcopy(self._require_open()['summary'])

    # --- Reads ---

    def get_by_path(self, path: str) -> Optional[FileRecord]:
        data = self._require_open()
        idx = self._index.get(path)
        if idx is None:
            return None
        return self._decode(data['files'][idx])

    def query(self, spec: Optional[FilterSpec] = None) -> List[FileRecord]:
        """Same indexed predicates as the relational backend, in list order."""
        spec = spec or FilterSpec()
        out = []
        for doc in self._require_open()['files']:
            if spec.category is not None and doc.get('category') != spec.category:
                continue
            if spec.extension is not None and doc.get('extension') != spec.extension:
                continue
            size = doc.get('size')
            if spec.min_size is not None and (size is None or size < spec.min_size):
                continue
            if spec.max_size is not None and (size is None or size > spec.max_size):
                continue
            out.append(self._decode(doc))
        return out

    def all_files(self) -> List[FileRecord]:
        return self.query()

    def count(self) -> int:
        return len(self._require_open()['files'])

    # --- Codec ---

    def _encode(self, rec: FileRecord) -> Dict[str, Any]:
        doc = fields.to_document(fields.FILE_FIELDS, rec)
        doc['metadata'] = {}
        self.router.write(rec, _DocWriter(doc))
        if rec.exif is not None:
            doc['exif'] = rec.exif
        doc['tags'] = list(dict.fromkeys(rec.tags))
        doc['relationships'] = [{'target': r.target, 'type': r.type} for r in rec.relationships]
        # Detach from the caller's objects
        return copy.deepcopy(doc)

    def _decode(self, doc: Dict[str, Any]) -> FileRecord:
        kwargs = fields.from_document(fields.FILE_FIELDS, doc)
        kwargs.setdefault('name', os.path.basename(doc['path']))
        metadata, attachments = self.router.read(kwargs.get('category', ''), _DocReader(doc))

        exif = doc.get('exif')
        if exif is not None and not isinstance(exif, dict):
            logging.warning(f"Skipping malformed exif payload for {doc.get('path')}")
            exif = None

        raw_tags = doc.get('tags')
        tags = [t for t in raw_tags if isinstance(t, str)] if isinstance(raw_tags, list) else []

        raw_edges = doc.get('relationships')
        relationships = []
        for edge in raw_edges if isinstance(raw_edges, list) else []:
            if isinstance(edge, dict) and 'target' in edge and 'type' in edge:
                relationships.append(Relationship(target=edge['target'], type=edge['type']))
            else:
                logging.warning(f"Skipping malformed relationship for {doc.get('path')}: {edge!r}")

        return FileRecord(
            **kwargs,
            metadata=metadata,
            exif=copy.deepcopy(exif),
            tags=tags,
            relationships=relationships,
            **attachments,
        )
