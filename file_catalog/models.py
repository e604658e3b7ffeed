from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Optional, List, Dict, Any, Union

from . import config
from .exceptions import ConstraintViolation


# --- Category Variants (exactly one per record, chosen by category) ---

@dataclass
class ImageMetadata:
    width: Optional[int] = None
    height: Optional[int] = None
    aspect_ratio: Optional[float] = None
    color_space: Optional[str] = None
    dpi: Optional[int] = None
    bit_depth: Optional[int] = None
    has_alpha: Optional[bool] = None
    dominant_colors: Optional[List[str]] = None
    perceptual_hash: Optional[str] = None   # hex encoded 64-bit fingerprint
    thumbnail: Optional[str] = None


@dataclass
class VideoMetadata:
    duration: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    frame_rate: Optional[float] = None
    codec: Optional[str] = None
    bitrate: Optional[int] = None
    audio_codec: Optional[str] = None
    container: Optional[str] = None


@dataclass
class AudioMetadata:
    duration: Optional[float] = None
    bitrate: Optional[int] = None
    sample_rate: Optional[int] = None
    channels: Optional[int] = None
    codec: Optional[str] = None
    format: Optional[str] = None

    # Tag fields
    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    year: Optional[int] = None
    genre: Optional[str] = None
    track: Optional[int] = None


@dataclass
class DocumentMetadata:
    page_count: Optional[int] = None
    word_count: Optional[int] = None
    char_count: Optional[int] = None
    author: Optional[str] = None
    title: Optional[str] = None
    subject: Optional[str] = None
    language: Optional[str] = None
    format: Optional[str] = None
    text_content: Optional[str] = None   # searchable free text


@dataclass
class CodeMetadata:
    language: Optional[str] = None
    lines_total: Optional[int] = None
    lines_code: Optional[int] = None
    lines_comment: Optional[int] = None
    lines_blank: Optional[int] = None
    complexity: Optional[int] = None


@dataclass
class ArchiveMetadata:
    format: Optional[str] = None
    compressed: Optional[bool] = None
    uncompressed_size: Optional[int] = None
    compression_ratio: Optional[float] = None
    file_count: Optional[int] = None
    encrypted: Optional[bool] = None


CategoryMetadata = Union[
    ImageMetadata, VideoMetadata, AudioMetadata,
    DocumentMetadata, CodeMetadata, ArchiveMetadata,
]


# --- Secondary Attachments (independent of category) ---

@dataclass
class OfficeMetadata:
    kind: Optional[str] = None          # Word Document / Spreadsheet / Presentation
    format: Optional[str] = None
    word_count: Optional[int] = None
    char_count: Optional[int] = None
    paragraph_count: Optional[int] = None
    sheet_count: Optional[int] = None
    slide_count: Optional[int] = None
    content_preview: Optional[str] = None


@dataclass
class FontMetadata:
    format: Optional[str] = None
    family: Optional[str] = None
    subfamily: Optional[str] = None
    full_name: Optional[str] = None
    postscript_name: Optional[str] = None
    weight: Optional[int] = None
    style: Optional[str] = None
    is_monospace: Optional[bool] = None
    is_variable: Optional[bool] = None
    glyph_count: Optional[int] = None


@dataclass
class Relationship:
    """Directed, typed edge from the owning record to ``target`` (a path)."""
    target: str
    type: str


@dataclass
class FileRecord:
    """
    One cataloged file. ``path`` is the identity: re-submitting the same path
    updates the stored record in place.
    """
    path: str
    name: str
    extension: Optional[str] = None
    size: int = 0

    created: Optional[datetime] = None
    modified: Optional[datetime] = None
    accessed: Optional[datetime] = None

    mime_type: Optional[str] = None
    category: str = config.OTHER

    fast_hash: Optional[str] = None      # quick non-cryptographic digest (md5)
    strong_hash: Optional[str] = None    # sha256, used for duplicate grouping

    relative_path: Optional[str] = None

    # Processing metadata
    processed_at: Optional[datetime] = None
    processing_time: Optional[float] = None
    version: str = config.SCHEMA_VERSION

    metadata: Optional[CategoryMetadata] = None
    office: Optional[OfficeMetadata] = None
    font: Optional[FontMetadata] = None
    exif: Optional[Dict[str, Any]] = None

    tags: List[str] = field(default_factory=list)
    relationships: List[Relationship] = field(default_factory=list)

    def validate(self):
        """Raises ConstraintViolation for records no backend may store."""
        if not self.path:
            raise ConstraintViolation("FileRecord.path is required")
        if not self.name:
            raise ConstraintViolation(f"FileRecord.name is required ({self.path})")
        if self.category not in config.CATEGORIES:
            raise ConstraintViolation(f"Unknown category {self.category!r} for {self.path}")
        if self.exif is not None and self.category != config.IMAGE:
            raise ConstraintViolation(f"EXIF payloads belong to image records only ({self.path})")

    def as_dict(self) -> Dict[str, Any]:
        """
        Nested logical view used for dot-path addressing, e.g.
        ``metadata.image.width`` or ``office.word_count``. Values keep their
        Python types (datetimes stay datetimes).
        """
        out: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == 'metadata':
                out['metadata'] = {self.category: _facet_dict(value)} if value is not None else {}
            elif f.name in ('office', 'font'):
                out[f.name] = _facet_dict(value) if value is not None else None
            elif f.name == 'relationships':
                out[f.name] = [{'target': r.target, 'type': r.type} for r in value]
            elif f.name == 'tags':
                out[f.name] = list(value)
            else:
                out[f.name] = value
        return out


def _facet_dict(obj) -> Dict[str, Any]:
    return {f.name: getattr(obj, f.name) for f in fields(obj)}
