"""Custom exception hierarchy for wdb-importer."""


class WdbImporterError(Exception):
    """Base exception for all wdb-importer errors."""


class ValidationError(WdbImporterError):
    """Invalid data (protected field change, bad value)."""


class EntityNotFoundError(WdbImporterError):
    """Entity doesn't exist in the store."""


class ConflictError(WdbImporterError):
    """A create hit a uniqueness constraint (natural key already taken)."""


class RowValidationError(WdbImporterError):
    """An import row is missing required data."""


class DataImportError(WdbImporterError):
    """Failed to read the import file (unreadable, empty, no header)."""


class DatabaseError(WdbImporterError):
    """Schema version mismatch, unknown entity kind."""


class ConfigError(WdbImporterError):
    """Invalid importer settings."""
