from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List

from ..models import FileRecord
from ..query.engine import CatalogSource


@dataclass
class DuplicateGroup:
    hash: str
    files: List[FileRecord] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.files)

    @property
    def total_size(self) -> int:
        return sum(f.size or 0 for f in self.files)


class DuplicateDetector:
    """Exact duplicates: records sharing a strong (sha256) content hash."""

    def __init__(self, source: CatalogSource):
        self.source = source

    def find_duplicates(self) -> List[DuplicateGroup]:
        """
        Groups of two or more records with the same strong hash, largest
        total size first. Records without a strong hash are ignored.
        """
        by_hash: Dict[str, List[FileRecord]] = defaultdict(list)
        for rec in self.source.query():
            if rec.strong_hash:
                by_hash[rec.strong_hash].append(rec)

        groups = [DuplicateGroup(h, files) for h, files in by_hash.items() if len(files) > 1]
        groups.sort(key=lambda g: g.total_size, reverse=True)
        return groups
