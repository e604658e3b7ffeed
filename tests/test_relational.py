import sqlite3

import pytest
from datetime import datetime, timezone

from file_catalog import config
from file_catalog.database.relational import RelationalBackend
from file_catalog.exceptions import ConstraintViolation, InitializationError
from file_catalog.models import (
    DocumentMetadata, FontMetadata, ImageMetadata, OfficeMetadata, Relationship,
)
from file_catalog.query.engine import FilterSpec


def _image(make_record, path="/photos/sunset.jpg", **kwargs):
    return make_record(
        path,
        category=config.IMAGE,
        mime_type="image/jpeg",
        fast_hash="md5-abc",
        strong_hash="sha-abc",
        created=datetime(2023, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
        metadata=ImageMetadata(
            width=4000, height=3000, aspect_ratio=1.333, has_alpha=False,
            dominant_colors=["#ff0000", "#00ff00"], perceptual_hash="f0f0f0f0f0f0f0f0",
            thumbnail="/thumbs/sunset.jpg",
        ),
        exif={"Make": "Canon", "GPS": {"lat": 1.5, "lon": -2.25}},
        tags=["vacation", "beach"],
        **kwargs,
    )


def test_round_trip(relational, make_record):
    """Everything submitted comes back, including side records and blobs."""
    rec = _image(make_record, font=FontMetadata(family="Inter", is_monospace=False))
    relational.upsert(rec)

    loaded = relational.get_by_path(rec.path)
    assert loaded == rec


def test_upsert_is_idempotent(relational, make_record):
    rec = _image(make_record)
    id1 = relational.upsert(rec)
    id2 = relational.upsert(rec)

    assert id1 == id2, "Same path must resolve to the same identity"
    assert relational.count() == 1
    assert relational.get_by_path(rec.path) == rec


def test_update_keeps_identity_columns(relational, make_record):
    """On conflict only the refreshable columns are overwritten."""
    first = make_record("/docs/a.txt", created=datetime(2020, 1, 1, tzinfo=timezone.utc), size=10)
    file_id = relational.upsert(first)

    second = make_record("/docs/a.txt", size=20, mime_type="text/plain")
    second.name = "renamed.txt"
    assert relational.upsert(second) == file_id

    loaded = relational.get_by_path("/docs/a.txt")
    assert loaded.size == 20
    assert loaded.mime_type == "text/plain"
    assert loaded.name == "a.txt"
    assert loaded.created == datetime(2020, 1, 1, tzinfo=timezone.utc)


def test_tags_replaced_wholesale(relational, make_record):
    relational.upsert(make_record("/a.txt", tags=["a", "b"]))
    relational.upsert(make_record("/a.txt", tags=["c"]))

    assert relational.get_by_path("/a.txt").tags == ["c"]


def test_duplicate_tags_stored_once(relational, make_record):
    relational.upsert(make_record("/a.txt", tags=["x", "y", "x"]))
    assert relational.get_by_path("/a.txt").tags == ["x", "y"]


def test_category_change_drops_stale_variant(relational, make_record):
    relational.upsert(_image(make_record, path="/f.bin"))
    relational.upsert(make_record("/f.bin", category=config.DOCUMENT, metadata=DocumentMetadata(page_count=3)))

    loaded = relational.get_by_path("/f.bin")
    assert loaded.metadata == DocumentMetadata(page_count=3)
    assert loaded.exif is None
    rows = relational.conn.execute("SELECT COUNT(*) FROM image_metadata").fetchone()[0]
    assert rows == 0


def test_delete_cascades(relational, make_record):
    rec = _image(make_record, office=OfficeMetadata(kind="Word Document"))
    rec.relationships = [Relationship(target="/photos/other.jpg", type="similar-to")]
    relational.upsert(rec)

    assert relational.delete(rec.path) is True
    assert relational.get_by_path(rec.path) is None

    conn = relational.conn
    for table in ("image_metadata", "office_metadata", "exif_data", "tags", "relationships"):
        assert conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0] == 0, table
    assert relational.full_text_search("vacation") == []


def test_delete_missing_path(relational):
    assert relational.delete("/nope") is False


def test_relationship_target_resolved_later(relational, make_record):
    """An edge to a file cataloged afterwards gets linked to its id."""
    src = make_record("/src.py", relationships=[Relationship(target="/lib.py", type="depends-on")])
    relational.upsert(src)
    lib_id = relational.upsert(make_record("/lib.py"))

    row = relational.conn.execute(
        "SELECT related_file_id, relationship_type FROM relationships"
    ).fetchone()
    assert row["related_file_id"] == lib_id
    assert row["relationship_type"] == "depends-on"
    assert relational.get_by_path("/src.py").relationships == src.relationships


def test_full_text_search(relational, make_record):
    relational.upsert(make_record(
        "/docs/q3.pdf", category=config.DOCUMENT,
        metadata=DocumentMetadata(text_content="Quarterly revenue grew"),
    ))
    relational.upsert(make_record("/docs/other.pdf", tags=["revenue"]))
    relational.upsert(make_record("/docs/unrelated.txt"))

    paths = {r.path for r in relational.full_text_search("revenue")}
    assert paths == {"/docs/q3.pdf", "/docs/other.pdf"}


def test_query_indexed_predicates(relational, make_record):
    relational.upsert(make_record("/a.jpg", category=config.IMAGE, size=10))
    relational.upsert(make_record("/b.jpg", category=config.IMAGE, size=500))
    relational.upsert(make_record("/c.txt", size=50))

    assert [r.path for r in relational.query(FilterSpec(category=config.IMAGE))] == ["/a.jpg", "/b.jpg"]
    assert [r.path for r in relational.query(FilterSpec(min_size=10, max_size=50))] == ["/a.jpg", "/c.txt"]
    assert [r.path for r in relational.query(FilterSpec(extension=".txt"))] == ["/c.txt"]
    assert len(relational.all_files()) == 3


def test_malformed_exif_is_skipped(relational, make_record):
    rec = _image(make_record)
    file_id = relational.upsert(rec)
    with relational.conn:
        relational.conn.execute("UPDATE exif_data SET data = ? WHERE file_id = ?", ("{not json", file_id))

    loaded = relational.get_by_path(rec.path)
    assert loaded.exif is None
    assert loaded.metadata.width == 4000
    assert loaded.tags == rec.tags


def test_malformed_side_field_is_skipped(relational, make_record):
    rec = _image(make_record)
    file_id = relational.upsert(rec)
    with relational.conn:
        relational.conn.execute(
            "UPDATE image_metadata SET dominant_colors = '[oops' WHERE file_id = ?", (file_id,)
        )

    loaded = relational.get_by_path(rec.path)
    assert loaded.metadata.dominant_colors is None
    assert loaded.metadata.perceptual_hash == "f0f0f0f0f0f0f0f0"


def test_exif_on_non_image_rejected(relational, make_record):
    with pytest.raises(ConstraintViolation):
        relational.upsert(make_record("/a.txt", exif={"Make": "Canon"}))
    assert relational.count() == 0


def test_mismatched_variant_rejected(relational, make_record):
    with pytest.raises(ConstraintViolation):
        relational.upsert(make_record("/a.mp4", category=config.VIDEO, metadata=ImageMetadata(width=1)))


def test_pragmas_active(relational):
    conn = relational.conn
    assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
    assert conn.execute("PRAGMA journal_mode").fetchone()[0].lower() == "wal"


def test_unwritable_location(tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x")

    with pytest.raises(InitializationError):
        RelationalBackend(blocker / "catalog.db").open()


def test_corrupt_database(tmp_path):
    db_path = tmp_path / "corrupt.db"
    db_path.write_bytes(b"this is not a sqlite database" * 100)

    with pytest.raises(InitializationError):
        RelationalBackend(db_path).open()


def test_reads_before_open(tmp_path):
    with pytest.raises(InitializationError):
        RelationalBackend(tmp_path / "catalog.db").get_by_path("/a")


def test_reopen_persists(tmp_path, make_record):
    backend = RelationalBackend(tmp_path / "catalog.db").open()
    backend.upsert(make_record("/a.txt"))
    backend.close()

    reopened = RelationalBackend(tmp_path / "catalog.db").open()
    try:
        assert reopened.get_by_path("/a.txt") is not None
    finally:
        reopened.close()


def test_foreign_keys_enforced(relational):
    assert relational.conn.execute("PRAGMA integrity_check").fetchone()[0] == "ok"
    with pytest.raises(sqlite3.IntegrityError):
        with relational.conn:
            relational.conn.execute("INSERT INTO tags (file_id, tag) VALUES (999, 'x')")


def test_deleting_target_keeps_incoming_edges(relational, make_record):
    """Edges owned by other files survive the target's deletion, just unlinked."""
    relational.upsert(make_record("/lib.py"))
    src = make_record("/src.py", relationships=[Relationship(target="/lib.py", type="depends-on")])
    relational.upsert(src)

    assert relational.delete("/lib.py") is True

    row = relational.conn.execute("SELECT related_file_id, related_path FROM relationships").fetchone()
    assert row["related_file_id"] is None
    assert row["related_path"] == "/lib.py"
    assert relational.get_by_path("/src.py").relationships == src.relationships


def test_text_index_follows_stored_name(relational, make_record):
    """A name the update did not overwrite must not become searchable."""
    relational.upsert(make_record("/docs/a.txt"))
    renamed = make_record("/docs/a.txt")
    renamed.name = "zebra.txt"
    relational.upsert(renamed)

    assert relational.get_by_path("/docs/a.txt").name == "a.txt"
    assert relational.full_text_search("zebra") == []
    assert [r.path for r in relational.full_text_search("a.txt")] == ["/docs/a.txt"]
