import math

import pytest
from datetime import datetime, timezone

from file_catalog import config
from file_catalog.models import DocumentMetadata, ImageMetadata, OfficeMetadata
from file_catalog.query.engine import FilterSpec, QueryEngine, paginate, resolve_field


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def engine(document, make_record):
    """A query engine over a small mixed catalog, in insertion order."""
    records = [
        make_record("/photos/Beach.jpg", category=config.IMAGE, size=300, tags=["vacation"],
                    modified=_utc(2024, 6, 10), metadata=ImageMetadata(width=800)),
        make_record("/photos/alps.jpg", category=config.IMAGE, size=100, tags=["vacation", "snow"],
                    modified=_utc(2024, 1, 5), metadata=ImageMetadata(width=1600)),
        make_record("/photos/cat.png", category=config.IMAGE, size=200,
                    modified=_utc(2023, 12, 31), metadata=ImageMetadata()),
        make_record("/docs/report.pdf", category=config.DOCUMENT, size=50, tags=["work"],
                    modified=_utc(2024, 3, 1),
                    metadata=DocumentMetadata(text_content="Quarterly Revenue summary")),
        make_record("/docs/deck.pptx", category=config.OFFICE, size=75, modified=None,
                    office=OfficeMetadata(content_preview="Roadmap for the year")),
    ]
    for rec in records:
        document.upsert(rec)
    return QueryEngine(document)


def _paths(result):
    return [r.path for r in result.items]


def test_no_filters_returns_everything(engine):
    result = engine.query()
    assert result.total == 5
    assert result.total_pages == 1
    assert len(result.items) == 5


def test_conjunctive_filters(engine):
    result = engine.query(FilterSpec(category=config.IMAGE, min_size=150))
    assert _paths(result) == ["/photos/Beach.jpg", "/photos/cat.png"]


def test_tags_match_any(engine):
    result = engine.query(FilterSpec(tags=["snow", "work"]))
    assert _paths(result) == ["/photos/alps.jpg", "/docs/report.pdf"]


def test_tags_and_other_predicates(engine):
    result = engine.query(FilterSpec(tags=["vacation"], max_size=150))
    assert _paths(result) == ["/photos/alps.jpg"]


def test_date_range_inclusive(engine):
    spec = FilterSpec(date_from=_utc(2024, 1, 5), date_to="2024-03-01T00:00:00+00:00")
    assert _paths(engine.query(spec)) == ["/photos/alps.jpg", "/docs/report.pdf"]


def test_date_range_naive_bounds_are_utc(engine):
    spec = FilterSpec(date_from=datetime(2024, 6, 10))
    assert _paths(engine.query(spec)) == ["/photos/Beach.jpg"]


def test_date_range_on_other_field(engine):
    spec = FilterSpec(date_field="created", date_from=_utc(2000, 1, 1))
    assert engine.query(spec).total == 0


def test_invalid_date_bound(engine):
    with pytest.raises(ValueError):
        engine.query(FilterSpec(date_from="yesterday-ish"))


def test_search_is_case_insensitive(engine):
    assert _paths(engine.query(FilterSpec(search="BEACH"))) == ["/photos/Beach.jpg"]
    assert _paths(engine.query(FilterSpec(search="revenue"))) == ["/docs/report.pdf"]
    assert _paths(engine.query(FilterSpec(search="roadmap"))) == ["/docs/deck.pptx"]
    assert _paths(engine.query(FilterSpec(search="SNOW"))) == ["/photos/alps.jpg"]
    assert _paths(engine.query(FilterSpec(search="/docs/"))) == ["/docs/report.pdf", "/docs/deck.pptx"]


def test_sort_strings_case_insensitive(engine):
    result = engine.query(FilterSpec(category=config.IMAGE, sort_by="name"))
    assert _paths(result) == ["/photos/alps.jpg", "/photos/Beach.jpg", "/photos/cat.png"]


def test_sort_absent_values_last_both_directions(engine):
    asc = engine.query(FilterSpec(sort_by="metadata.image.width"))
    assert _paths(asc)[:2] == ["/photos/Beach.jpg", "/photos/alps.jpg"]
    desc = engine.query(FilterSpec(sort_by="metadata.image.width", sort_order="desc"))
    assert _paths(desc)[:2] == ["/photos/alps.jpg", "/photos/Beach.jpg"]

    # The rest keep their insertion order
    assert _paths(asc)[2:] == _paths(desc)[2:] == ["/photos/cat.png", "/docs/report.pdf", "/docs/deck.pptx"]


def test_sort_by_datetime_nulls_last(engine):
    result = engine.query(FilterSpec(sort_by="modified", sort_order="desc"))
    assert _paths(result) == [
        "/photos/Beach.jpg", "/docs/report.pdf", "/photos/alps.jpg", "/photos/cat.png", "/docs/deck.pptx",
    ]


def test_sort_ties_are_stable(engine):
    result = engine.query(FilterSpec(sort_by="category", sort_order="desc"))
    assert _paths(result) == [
        "/docs/deck.pptx", "/photos/Beach.jpg", "/photos/alps.jpg", "/photos/cat.png", "/docs/report.pdf",
    ]


@pytest.mark.parametrize("order", ["asc", "desc"])
def test_unknown_sort_field_keeps_order(engine, order):
    baseline = _paths(engine.query())
    result = engine.query(FilterSpec(sort_by="metadata.nope.deeper", sort_order=order))
    assert _paths(result) == baseline


def test_resolve_field_never_raises():
    data = {"a": {"b": 1}, "c": [1, 2]}
    assert resolve_field(data, "a.b") == 1
    assert resolve_field(data, "a.b.c") is None
    assert resolve_field(data, "c.0") is None
    assert resolve_field(data, "missing") is None


@pytest.mark.parametrize("page_size", [1, 2, 3, 5, 7])
def test_pagination_law(engine, page_size):
    full = _paths(engine.query(FilterSpec(sort_by="size")))
    pages = math.ceil(len(full) / page_size)

    collected = []
    for page in range(1, pages + 1):
        result = engine.query(FilterSpec(sort_by="size", page=page, page_size=page_size))
        assert result.total == len(full)
        assert result.total_pages == pages
        collected.extend(_paths(result))

    assert collected == full


def test_page_beyond_last_is_empty(engine):
    result = engine.query(FilterSpec(page=10, page_size=2))
    assert result.items == []
    assert result.total == 5
    assert result.total_pages == 3


def test_page_defaults_to_first(engine):
    result = engine.query(FilterSpec(page_size=2))
    assert result.page == 1
    assert len(result.items) == 2


def test_invalid_pagination():
    with pytest.raises(ValueError):
        paginate([], 0, 10)
    with pytest.raises(ValueError):
        paginate([], 1, 0)


def test_empty_result_has_no_pages(engine):
    result = engine.query(FilterSpec(category=config.VIDEO))
    assert result.total == 0
    assert result.total_pages == 0


def test_stats(engine):
    stats = engine.get_stats(now=_utc(2024, 6, 12, 9, 30))

    assert stats["total_files"] == 5
    assert stats["total_size"] == 725
    assert stats["by_category"] == {"image": 3, "document": 1, "office": 1}
    assert stats["by_extension"] == {".jpg": 2, ".png": 1, ".pdf": 1, ".pptx": 1}
    assert stats["by_date_range"] == {"today": 0, "this_week": 1, "this_month": 1, "this_year": 3}


def test_stats_respects_filters(engine):
    stats = engine.get_stats(FilterSpec(category=config.IMAGE, page=2, page_size=1), now=_utc(2024, 6, 10))
    assert stats["total_files"] == 3
    assert stats["by_date_range"]["today"] == 1
