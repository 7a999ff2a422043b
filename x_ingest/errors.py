from __future__ import annotations


class ConfigError(RuntimeError):
    """Raised when configuration is missing or invalid."""


class ValidationError(ValueError):
    """Raised when a field required by the selected trigger mode is missing."""


class FetchError(RuntimeError):
    """Raised when the provider fails to return a batch or stream item."""


class ReleaseError(RuntimeError):
    """Raised when an open stream session cannot be released cleanly."""


class StorageError(RuntimeError):
    """Raised when reading or writing state in SQLite fails."""
