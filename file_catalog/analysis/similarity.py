"""
Near-duplicate image search over perceptual fingerprints.

Fingerprints are hex encoded 64-bit pHashes (``imagehash`` format). The
distance between two fingerprints is the number of differing bits.
"""
import logging
import math
import string
from dataclasses import dataclass
from typing import List, Optional

import imagehash

from .. import config
from ..models import FileRecord
from ..query.engine import CatalogSource, FilterSpec

HEX_DIGITS = frozenset(string.hexdigits)


@dataclass
class SimilarMatch:
    record: FileRecord
    distance: int
    similarity: float


def _decode_fingerprint(value: str) -> Optional[imagehash.ImageHash]:
    bits = len(value) * 4
    side = math.isqrt(bits)
    if not value or side * side != bits or not set(value) <= HEX_DIGITS:
        return None
    return imagehash.hex_to_hash(value)


def hamming_distance(h1: Optional[str], h2: Optional[str]) -> float:
    """
    Differing bits between two hex fingerprints. Missing, malformed or
    unequal-length fingerprints are infinitely far apart.
    """
    if not h1 or not h2 or len(h1) != len(h2):
        return math.inf
    a, b = _decode_fingerprint(h1), _decode_fingerprint(h2)
    if a is None or b is None:
        logging.debug(f"Cannot compare fingerprints {h1!r} / {h2!r}")
        return math.inf
    return int(a - b)


def similarity_score(distance: float, bits: int = config.FINGERPRINT_BITS) -> float:
    return 1 - (distance / bits)


def _fingerprint(record: Optional[FileRecord]) -> Optional[str]:
    if record is None or record.category != config.IMAGE:
        return None
    return getattr(record.metadata, 'perceptual_hash', None)


class SimilarityIndex:
    def __init__(self, source: CatalogSource):
        self.source = source

    def find_similar(self, path: str, threshold: int = config.DEFAULT_SIMILARITY_THRESHOLD) -> List[SimilarMatch]:
        """
        Images within ``threshold`` bits of the image at ``path``, most similar
        first. The reference itself is never part of the result; a missing
        reference or fingerprint yields an empty list.
        """
        reference = _fingerprint(self.source.get_by_path(path))
        if not reference:
            return []

        matches = []
        for other in self.source.query(FilterSpec(category=config.IMAGE)):
            if other.path == path:
                continue
            fingerprint = _fingerprint(other)
            if not fingerprint:
                continue
            distance = hamming_distance(reference, fingerprint)
            if distance <= threshold:
                matches.append(SimilarMatch(other, int(distance), similarity_score(distance)))

        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches
