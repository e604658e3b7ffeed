"""
Category metadata routing.

A record's primary category selects exactly one side-record variant (the
tagged union); the office and font attachments are checked independently of
the category. Both backends route through ``MetadataRouter`` and only supply
the storage-specific ``FacetWriter`` / ``FacetReader``.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple

from .. import config
from ..database.fields import (
    Field, IMAGE_FIELDS, VIDEO_FIELDS, AUDIO_FIELDS, DOCUMENT_FIELDS,
    CODE_FIELDS, ARCHIVE_FIELDS, OFFICE_FIELDS, FONT_FIELDS,
)
from ..exceptions import ConstraintViolation
from ..models import (
    FileRecord, ImageMetadata, VideoMetadata, AudioMetadata, DocumentMetadata,
    CodeMetadata, ArchiveMetadata, OfficeMetadata, FontMetadata, CategoryMetadata,
)


@dataclass(frozen=True)
class Facet:
    """One side record: where it lives and how its fields are encoded."""
    name: str
    table: str
    model: type
    fields: Sequence[Field]
    is_variant: bool = True


VARIANTS: Dict[str, Facet] = {
    config.IMAGE: Facet(config.IMAGE, 'image_metadata', ImageMetadata, IMAGE_FIELDS),
    config.VIDEO: Facet(config.VIDEO, 'video_metadata', VideoMetadata, VIDEO_FIELDS),
    config.AUDIO: Facet(config.AUDIO, 'audio_metadata', AudioMetadata, AUDIO_FIELDS),
    config.DOCUMENT: Facet(config.DOCUMENT, 'document_metadata', DocumentMetadata, DOCUMENT_FIELDS),
    config.CODE: Facet(config.CODE, 'code_metadata', CodeMetadata, CODE_FIELDS),
    config.ARCHIVE: Facet(config.ARCHIVE, 'archive_metadata', ArchiveMetadata, ARCHIVE_FIELDS),
}

ATTACHMENTS: Tuple[Facet, ...] = (
    Facet('office', 'office_metadata', OfficeMetadata, OFFICE_FIELDS, is_variant=False),
    Facet('font', 'font_metadata', FontMetadata, FONT_FIELDS, is_variant=False),
)

ALL_FACETS: Tuple[Facet, ...] = tuple(VARIANTS.values()) + ATTACHMENTS


class FacetWriter(Protocol):
    def write_facet(self, facet: Facet, payload: Any) -> None: ...

    def clear_facet(self, facet: Facet) -> None: ...


class FacetReader(Protocol):
    def read_facet(self, facet: Facet) -> Optional[Dict[str, Any]]:
        """Returns decoded constructor kwargs, or None when no side record exists."""
        ...


class MetadataRouter:
    def __init__(self, variants: Optional[Dict[str, Facet]] = None,
                 attachments: Optional[Sequence[Facet]] = None):
        self.variants = dict(VARIANTS if variants is None else variants)
        self.attachments = tuple(ATTACHMENTS if attachments is None else attachments)

    def variant_for(self, category: str) -> Optional[Facet]:
        return self.variants.get(category)

    def check(self, record: FileRecord):
        """Raises ConstraintViolation when the payload does not fit the category."""
        if record.metadata is None:
            return
        variant = self.variant_for(record.category)
        if variant is None:
            raise ConstraintViolation(
                f"Category {record.category!r} carries no metadata variant "
                f"(got {type(record.metadata).__name__} for {record.path})"
            )
        if not isinstance(record.metadata, variant.model):
            raise ConstraintViolation(
                f"{record.path}: category {record.category!r} expects {variant.model.__name__}, "
                f"got {type(record.metadata).__name__}"
            )
        for facet in self.attachments:
            payload = getattr(record, facet.name)
            if payload is not None and not isinstance(payload, facet.model):
                raise ConstraintViolation(
                    f"{record.path}: {facet.name} attachment must be {facet.model.__name__}"
                )

    def write(self, record: FileRecord, writer: FacetWriter):
        """
        Writes the selected variant and any present attachments. Every other
        facet is cleared, so the stored side records always mirror ``record``.
        """
        self.check(record)
        selected = self.variant_for(record.category)
        for facet in self.variants.values():
            if facet is selected and record.metadata is not None:
                writer.write_facet(facet, record.metadata)
            else:
                writer.clear_facet(facet)

        for facet in self.attachments:
            payload = getattr(record, facet.name)
            if payload is not None:
                writer.write_facet(facet, payload)
            else:
                writer.clear_facet(facet)

    def read(self, category: str, reader: FacetReader
             ) -> Tuple[Optional[CategoryMetadata], Dict[str, Any]]:
        """
        Returns ``(metadata, attachments)`` where attachments maps
        ``office`` / ``font`` to their payloads (absent ones are omitted).
        """
        metadata = None
        variant = self.variant_for(category)
        if variant is not None:
            kwargs = reader.read_facet(variant)
            if kwargs is not None:
                metadata = variant.model(**kwargs)

        attachments: Dict[str, Any] = {}
        for facet in self.attachments:
            kwargs = reader.read_facet(facet)
            if kwargs is not None:
                attachments[facet.name] = facet.model(**kwargs)
        return metadata, attachments
