import pytest
from datetime import datetime, timezone

from file_catalog import config
from file_catalog.config import StorageConfig
from file_catalog.database.document import DocumentBackend
from file_catalog.database.relational import RelationalBackend
from file_catalog.models import FileRecord
from file_catalog.storage import CatalogStore


def build_record(path, category=config.OTHER, **kwargs):
    """Builds a FileRecord with sensible defaults derived from the path."""
    name = path.rsplit("/", 1)[-1]
    ext = "." + name.rsplit(".", 1)[-1] if "." in name else None
    kwargs.setdefault("size", 100)
    kwargs.setdefault("modified", datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))
    return FileRecord(path=path, name=name, extension=ext, category=category, **kwargs)


@pytest.fixture
def make_record():
    return build_record


@pytest.fixture
def relational(tmp_path):
    """An open relational backend on a fresh database file."""
    backend = RelationalBackend(tmp_path / "catalog.db").open()
    try:
        yield backend
    finally:
        backend.close()


@pytest.fixture
def document(tmp_path):
    """An open document backend on a fresh JSON path."""
    backend = DocumentBackend(tmp_path / "catalog.json").open()
    try:
        yield backend
    finally:
        backend.close()


@pytest.fixture
def store_factory(tmp_path):
    """Returns a callable building an open CatalogStore for a storage mode."""
    stores = []

    def _make(mode):
        cfg = StorageConfig(mode=mode, db_path=tmp_path / "catalog.db", json_path=tmp_path / "catalog.json")
        store = CatalogStore(cfg).open()
        stores.append(store)
        return store

    yield _make
    for store in stores:
        store.close()
