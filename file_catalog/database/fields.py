"""
Declarative field map shared by both backends.

Every persisted attribute is declared once as ``Field(attr, column, kind)``.
The relational backend reads and writes ``column``; the document backend
reads and writes ``attr``. ``kind`` selects the codec applied on the way in
and on the way out, so the two representations cannot drift apart.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Sequence

from ..exceptions import MalformedPayload

TEXT = 'text'
INT = 'int'
REAL = 'real'
BOOL = 'bool'
DATETIME = 'datetime'
JSON = 'json'


@dataclass(frozen=True)
class Field:
    attr: str
    column: str
    kind: str = TEXT

    # --- Relational ---

    def to_sql(self, value: Any) -> Any:
        if value is None:
            return None
        if self.kind == BOOL:
            return 1 if value else 0
        if self.kind == DATETIME:
            return value.isoformat() if isinstance(value, datetime) else str(value)
        if self.kind == JSON:
            return encode_blob(value)
        return value

    def from_sql(self, value: Any) -> Any:
        if value is None:
            return None
        if self.kind == BOOL:
            return bool(value)
        if self.kind == INT:
            return int(value)
        if self.kind == REAL:
            return float(value)
        if self.kind == DATETIME:
            return _parse_datetime(value, self.column)
        if self.kind == JSON:
            return decode_blob(value, self.column)
        return value

    # --- Document ---

    def to_json(self, value: Any) -> Any:
        if value is None:
            return None
        if self.kind == DATETIME:
            return value.isoformat() if isinstance(value, datetime) else str(value)
        if self.kind == BOOL:
            return bool(value)
        return value

    def from_json(self, value: Any) -> Any:
        if value is None:
            return None
        if self.kind == DATETIME:
            return _parse_datetime(value, self.attr)
        if self.kind == JSON and not isinstance(value, (list, dict)):
            raise MalformedPayload(f"{self.attr}: expected a JSON structure, got {type(value).__name__}")
        return value


def _parse_datetime(value: Any, name: str) -> datetime:
    try:
        return datetime.fromisoformat(str(value))
    except ValueError as e:
        raise MalformedPayload(f"{name}: {e}") from e


def encode_blob(value: Any) -> str:
    return json.dumps(value)


def decode_blob(raw: Any, name: str = 'data') -> Any:
    """Parses a stored JSON payload; raises MalformedPayload when it cannot."""
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedPayload(f"{name}: {e}") from e


# --- Field Maps ---

FILE_FIELDS = (
    Field('path', 'path'),
    Field('relative_path', 'relative_path'),
    Field('name', 'name'),
    Field('extension', 'extension'),
    Field('size', 'size', INT),
    Field('created', 'created', DATETIME),
    Field('modified', 'modified', DATETIME),
    Field('accessed', 'accessed', DATETIME),
    Field('mime_type', 'mime_type'),
    Field('category', 'category'),
    Field('fast_hash', 'md5_hash'),
    Field('strong_hash', 'sha256_hash'),
    Field('processed_at', 'processed_at', DATETIME),
    Field('processing_time', 'processing_time', REAL),
    Field('version', 'version'),
)

# Columns overwritten when an existing path is upserted again.
# Identity, name and creation timestamp stay as first recorded.
FILE_UPDATE_ATTRS = (
    'size', 'modified', 'accessed', 'mime_type', 'category',
    'fast_hash', 'strong_hash', 'processed_at', 'processing_time',
)

IMAGE_FIELDS = (
    Field('width', 'width', INT),
    Field('height', 'height', INT),
    Field('aspect_ratio', 'aspect_ratio', REAL),
    Field('color_space', 'color_space'),
    Field('dpi', 'dpi', INT),
    Field('bit_depth', 'bit_depth', INT),
    Field('has_alpha', 'has_alpha', BOOL),
    Field('dominant_colors', 'dominant_colors', JSON),
    Field('perceptual_hash', 'perceptual_hash'),
    Field('thumbnail', 'thumbnail_path'),
)

VIDEO_FIELDS = (
    Field('duration', 'duration', REAL),
    Field('width', 'width', INT),
    Field('height', 'height', INT),
    Field('frame_rate', 'frame_rate', REAL),
    Field('codec', 'codec'),
    Field('bitrate', 'bitrate', INT),
    Field('audio_codec', 'audio_codec'),
    Field('container', 'container'),
)

AUDIO_FIELDS = (
    Field('duration', 'duration', REAL),
    Field('bitrate', 'bitrate', INT),
    Field('sample_rate', 'sample_rate', INT),
    Field('channels', 'channels', INT),
    Field('codec', 'codec'),
    Field('format', 'format'),
    Field('title', 'title'),
    Field('artist', 'artist'),
    Field('album', 'album'),
    Field('year', 'year', INT),
    Field('genre', 'genre'),
    Field('track', 'track', INT),
)

DOCUMENT_FIELDS = (
    Field('page_count', 'page_count', INT),
    Field('word_count', 'word_count', INT),
    Field('char_count', 'char_count', INT),
    Field('author', 'author'),
    Field('title', 'title'),
    Field('subject', 'subject'),
    Field('language', 'language'),
    Field('format', 'format'),
    Field('text_content', 'text_content'),
)

CODE_FIELDS = (
    Field('language', 'language'),
    Field('lines_total', 'lines_total', INT),
    Field('lines_code', 'lines_code', INT),
    Field('lines_comment', 'lines_comment', INT),
    Field('lines_blank', 'lines_blank', INT),
    Field('complexity', 'complexity', INT),
)

ARCHIVE_FIELDS = (
    Field('format', 'format'),
    Field('compressed', 'compressed', BOOL),
    Field('uncompressed_size', 'uncompressed_size', INT),
    Field('compression_ratio', 'compression_ratio', REAL),
    Field('file_count', 'file_count', INT),
    Field('encrypted', 'encrypted', BOOL),
)

OFFICE_FIELDS = (
    Field('kind', 'kind'),
    Field('format', 'format'),
    Field('word_count', 'word_count', INT),
    Field('char_count', 'char_count', INT),
    Field('paragraph_count', 'paragraph_count', INT),
    Field('sheet_count', 'sheet_count', INT),
    Field('slide_count', 'slide_count', INT),
    Field('content_preview', 'content_preview'),
)

FONT_FIELDS = (
    Field('format', 'format'),
    Field('family', 'family'),
    Field('subfamily', 'subfamily'),
    Field('full_name', 'full_name'),
    Field('postscript_name', 'postscript_name'),
    Field('weight', 'weight', INT),
    Field('style', 'style'),
    Field('is_monospace', 'is_monospace', BOOL),
    Field('is_variable', 'is_variable', BOOL),
    Field('glyph_count', 'glyph_count', INT),
)


# --- Codecs ---

def to_columns(field_map: Sequence[Field], obj: Any) -> Dict[str, Any]:
    return {f.column: f.to_sql(getattr(obj, f.attr)) for f in field_map}


def to_document(field_map: Sequence[Field], obj: Any) -> Dict[str, Any]:
    return {f.attr: f.to_json(getattr(obj, f.attr)) for f in field_map}


def from_columns(field_map: Sequence[Field], row: Mapping[str, Any]) -> Dict[str, Any]:
    """Decodes a row keyed by column name into constructor kwargs."""
    return _decode(field_map, row, by_column=True)


def from_document(field_map: Sequence[Field], data: Mapping[str, Any]) -> Dict[str, Any]:
    """Decodes a document dict keyed by attribute name into constructor kwargs."""
    return _decode(field_map, data, by_column=False)


def _decode(field_map: Sequence[Field], source: Mapping[str, Any], by_column: bool) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {}
    for f in field_map:
        key = f.column if by_column else f.attr
        if key not in source:
            continue
        try:
            value = f.from_sql(source[key]) if by_column else f.from_json(source[key])
        except MalformedPayload as e:
            # A bad stored value drops that field only, never the whole read.
            logging.warning(f"Skipping malformed stored value: {e}")
            continue
        if value is not None:
            kwargs[f.attr] = value
    return kwargs


def decode_optional_blob(raw: Optional[str], name: str) -> Optional[Any]:
    """Like decode_blob, but logs and returns None for malformed payloads."""
    if raw is None:
        return None
    try:
        return decode_blob(raw, name)
    except MalformedPayload as e:
        logging.warning(f"Skipping malformed stored payload: {e}")
        return None
