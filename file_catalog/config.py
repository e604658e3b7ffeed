"""
Configuration constants for the file catalog.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from .exceptions import ConfigurationError

# --- Categories ---
IMAGE = 'image'
VIDEO = 'video'
AUDIO = 'audio'
DOCUMENT = 'document'
CODE = 'code'
ARCHIVE = 'archive'
FONT = 'font'
OFFICE = 'office'
OTHER = 'other'

CATEGORIES = frozenset({IMAGE, VIDEO, AUDIO, DOCUMENT, CODE, ARCHIVE, FONT, OFFICE, OTHER})

# Categories that carry a category-specific side record
VARIANT_CATEGORIES = (IMAGE, VIDEO, AUDIO, DOCUMENT, CODE, ARCHIVE)

# --- Storage ---
MODE_RELATIONAL = 'sqlite'
MODE_DOCUMENT = 'json'
MODE_DUAL = 'both'
STORAGE_MODES = (MODE_RELATIONAL, MODE_DOCUMENT, MODE_DUAL)

DEFAULT_DB_PATH = Path("./data/metadata.db")
DEFAULT_JSON_PATH = Path("./data/metadata.json")

SCHEMA_VERSION = '1.0.0'
DOCUMENT_FORMAT_VERSION = '1.0.0'

# Environment overrides, FMAO_<SECTION>_<KEY>
ENV_PREFIX = "FMAO_"

# --- Similarity ---
DEFAULT_SIMILARITY_THRESHOLD = 5
FINGERPRINT_BITS = 64

# --- Queries ---
DEFAULT_DATE_FIELD = 'modified'


@dataclass
class StorageConfig:
    """
    Storage mode selector plus the backend location(s) the mode needs.
    """
    mode: str = MODE_DOCUMENT
    db_path: Optional[Path] = DEFAULT_DB_PATH
    json_path: Optional[Path] = DEFAULT_JSON_PATH

    def __post_init__(self):
        if self.mode not in STORAGE_MODES:
            raise ConfigurationError(
                f"storage mode must be one of {', '.join(STORAGE_MODES)} (got {self.mode!r})"
            )
        if self.db_path is not None:
            self.db_path = Path(self.db_path)
        if self.json_path is not None:
            self.json_path = Path(self.json_path)
        if self.uses_relational and self.db_path is None:
            raise ConfigurationError(f"storage mode {self.mode!r} requires a database path")
        if self.uses_document and self.json_path is None:
            raise ConfigurationError(f"storage mode {self.mode!r} requires a JSON path")

    @property
    def uses_relational(self) -> bool:
        return self.mode in (MODE_RELATIONAL, MODE_DUAL)

    @property
    def uses_document(self) -> bool:
        return self.mode in (MODE_DOCUMENT, MODE_DUAL)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "StorageConfig":
        """Builds a config from a ``storage`` block: ``{"type", "dbPath", "jsonPath"}``."""
        return cls(
            mode=data.get('type', MODE_DOCUMENT),
            db_path=data.get('dbPath', DEFAULT_DB_PATH),
            json_path=data.get('jsonPath', DEFAULT_JSON_PATH),
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None,
                 base: Optional["StorageConfig"] = None) -> "StorageConfig":
        """
        Applies FMAO_STORAGE_TYPE / FMAO_STORAGE_DBPATH / FMAO_STORAGE_JSONPATH
        on top of ``base`` (defaults when omitted).
        """
        env = os.environ if environ is None else environ
        base = base or cls()
        return cls(
            mode=env.get(f"{ENV_PREFIX}STORAGE_TYPE", base.mode),
            db_path=env.get(f"{ENV_PREFIX}STORAGE_DBPATH", base.db_path),
            json_path=env.get(f"{ENV_PREFIX}STORAGE_JSONPATH", base.json_path),
        )
