"""
Backend-agnostic querying over the logical record set.

The source (a backend or the storage coordinator) applies the indexed
predicates (category, extension, size range). Tags, date range, free-text
search, sorting and pagination run here, identically for every backend.
"""
import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

from .. import config
from ..models import FileRecord

DateBound = Union[datetime, str, None]

SORT_ASC = 'asc'
SORT_DESC = 'desc'


@dataclass
class FilterSpec:
    category: Optional[str] = None
    extension: Optional[str] = None
    min_size: Optional[int] = None      # inclusive
    max_size: Optional[int] = None      # inclusive

    tags: Optional[List[str]] = None    # matches if the record has ANY of these

    date_from: DateBound = None         # inclusive
    date_to: DateBound = None           # inclusive
    date_field: str = config.DEFAULT_DATE_FIELD

    search: Optional[str] = None        # case-insensitive substring

    sort_by: Optional[str] = None       # dot path, e.g. "metadata.image.width"
    sort_order: str = SORT_ASC

    page: Optional[int] = None          # 1-indexed
    page_size: Optional[int] = None


@dataclass
class QueryResult:
    items: List[FileRecord]
    total: int
    page: int = 1
    page_size: Optional[int] = None
    total_pages: int = 0

    @property
    def paths(self) -> List[str]:
        return [r.path for r in self.items]


class CatalogSource(Protocol):
    def query(self, spec: Optional[FilterSpec] = None) -> List[FileRecord]: ...

    def get_by_path(self, path: str) -> Optional[FileRecord]: ...


# --- Field Resolution ---

def resolve_field(data: Any, path: str) -> Any:
    """
    Walks a dot path through nested dicts. Anything that does not resolve
    yields None rather than an error.
    """
    value = data
    for key in path.split('.'):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return None
    return value


def _as_aware(dt: datetime) -> datetime:
    # Naive timestamps are taken as UTC so they compare with aware ones
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def _coerce_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return _as_aware(value)
    if isinstance(value, str):
        try:
            return _as_aware(datetime.fromisoformat(value))
        except ValueError:
            return None
    return None


def _bound(value: DateBound) -> Optional[datetime]:
    if value is None:
        return None
    dt = _coerce_datetime(value)
    if dt is None:
        raise ValueError(f"Invalid date bound: {value!r}")
    return dt


# --- Predicates ---

def matches_tags(record: FileRecord, tags: Sequence[str]) -> bool:
    wanted = set(tags)
    return any(t in wanted for t in record.tags)


def matches_date_range(record: FileRecord, field_path: str,
                       start: Optional[datetime], end: Optional[datetime]) -> bool:
    value = _coerce_datetime(resolve_field(record.as_dict(), field_path))
    if value is None:
        return False
    if start is not None and value < start:
        return False
    if end is not None and value > end:
        return False
    return True


def searchable_text(record: FileRecord) -> List[str]:
    """Name, path, tags and any free-text content the record carries."""
    texts = [record.name, record.path]
    if record.relative_path:
        texts.append(record.relative_path)
    texts.extend(record.tags)
    content = getattr(record.metadata, 'text_content', None)
    if content:
        texts.append(content)
    if record.office is not None and record.office.content_preview:
        texts.append(record.office.content_preview)
    return [t for t in texts if t]


def matches_search(record: FileRecord, term: str) -> bool:
    needle = term.lower()
    return any(needle in text.lower() for text in searchable_text(record))


# --- Sorting & Pagination ---

def _sort_key(value: Any):
    if isinstance(value, bool):
        return (0, int(value))
    if isinstance(value, (int, float)):
        return (0, value)
    if isinstance(value, str):
        return (1, value.lower())
    if isinstance(value, datetime):
        return (2, _as_aware(value))
    return (3, str(value))


def sort_records(records: Sequence[FileRecord], sort_by: str, order: str = SORT_ASC) -> List[FileRecord]:
    """
    Stable sort on a dot path. Strings compare case-insensitively; records
    whose field is absent go last in either direction, in their prior order.
    """
    present = []
    absent = []
    for rec in records:
        value = resolve_field(rec.as_dict(), sort_by)
        if value is None:
            absent.append(rec)
        else:
            present.append((_sort_key(value), rec))

    # sorted() keeps equal keys in input order even with reverse=True
    present.sort(key=lambda pair: pair[0], reverse=(order == SORT_DESC))
    return [rec for _, rec in present] + absent


def paginate(records: Sequence[FileRecord], page: int, page_size: int) -> QueryResult:
    if page < 1:
        raise ValueError(f"page must be >= 1 (got {page})")
    if page_size < 1:
        raise ValueError(f"page_size must be >= 1 (got {page_size})")

    total = len(records)
    start = (page - 1) * page_size
    return QueryResult(
        items=list(records[start:start + page_size]),
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size),
    )


class QueryEngine:
    def __init__(self, source: CatalogSource):
        self.source = source

    def filter(self, spec: FilterSpec) -> List[FileRecord]:
        """All records matching ``spec``, sorted but not paginated."""
        results = self.source.query(spec)

        if spec.tags:
            results = [r for r in results if matches_tags(r, spec.tags)]

        if spec.date_from is not None or spec.date_to is not None:
            start, end = _bound(spec.date_from), _bound(spec.date_to)
            results = [r for r in results if matches_date_range(r, spec.date_field, start, end)]

        if spec.search:
            results = [r for r in results if matches_search(r, spec.search)]

        if spec.sort_by:
            results = sort_records(results, spec.sort_by, spec.sort_order)

        return results

    def query(self, spec: Optional[FilterSpec] = None) -> QueryResult:
        spec = spec or FilterSpec()
        results = self.filter(spec)

        if spec.page_size is not None:
            return paginate(results, spec.page or 1, spec.page_size)
        return QueryResult(
            items=results,
            total=len(results),
            page=1,
            page_size=None,
            total_pages=1 if results else 0,
        )

    def get_stats(self, spec: Optional[FilterSpec] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Counts, sizes, histograms and modified-time recency buckets."""
        spec = replace(spec or FilterSpec(), page=None, page_size=None)
        files = self.filter(spec)

        now = _as_aware(now or datetime.now(timezone.utc))
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        this_week = now - timedelta(days=7)
        this_month = today.replace(day=1)
        this_year = this_month.replace(month=1)

        stats: Dict[str, Any] = {
            'total_files': len(files),
            'total_size': 0,
            'by_category': {},
            'by_extension': {},
            'by_date_range': {'today': 0, 'this_week': 0, 'this_month': 0, 'this_year': 0},
        }
        buckets = stats['by_date_range']

        for f in files:
            stats['total_size'] += f.size or 0
            stats['by_category'][f.category] = stats['by_category'].get(f.category, 0) + 1
            ext = f.extension or 'unknown'
            stats['by_extension'][ext] = stats['by_extension'].get(ext, 0) + 1

            if f.modified is None:
                continue
            modified = _as_aware(f.modified)
            if modified >= today:
                buckets['today'] += 1
            if modified >= this_week:
                buckets['this_week'] += 1
            if modified >= this_month:
                buckets['this_month'] += 1
            if modified >= this_year:
                buckets['this_year'] += 1

        return stats
