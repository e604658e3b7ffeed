"""
Custom exception hierarchy for the file catalog.

Structural failures (cannot open or write a store) are raised to the caller.
Data-quality problems (malformed stored payloads, unknown query fields) are
absorbed by the component that meets them and never reach this hierarchy's
callers as exceptions.
"""
from typing import Dict


class CatalogError(Exception):
    """Base exception for all file catalog errors."""
    pass


class ConfigurationError(CatalogError):
    """Raised when the storage configuration is invalid."""
    pass


class InitializationError(CatalogError):
    """Raised when a backend location is unwritable or its store is corrupt."""
    pass


class ConstraintViolation(CatalogError):
    """Raised when a record cannot be stored because it breaks a schema rule."""
    pass


class MalformedPayload(CatalogError):
    """Raised internally when a stored free-form payload fails to decode."""
    pass


class PartialWriteError(CatalogError):
    """
    Raised when a fan-out write failed on some active backends.

    Backends that succeeded keep their write; ``failures`` maps each failing
    backend name to the exception it raised.
    """

    def __init__(self, failures: Dict[str, Exception]):
        self.failures = dict(failures)
        details = "; ".join(f"{name}: {exc}" for name, exc in self.failures.items())
        super().__init__(f"Write failed on backend(s) {', '.join(self.failures)} ({details})")

    @property
    def failed_backends(self):
        return sorted(self.failures)
