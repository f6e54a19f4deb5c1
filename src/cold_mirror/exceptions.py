# src/cold_mirror/exceptions.py
"""Custom exceptions for the cold-mirror application."""


class ColdMirrorError(Exception):
    """Base exception for all application-specific errors."""

    pass


class ConfigError(ColdMirrorError):
    """Raised for configuration-related issues."""

    pass


class StorageSetupError(ColdMirrorError):
    """Raised when a bucket is missing, cannot be created or is unreachable."""

    pass


class ListingError(ColdMirrorError):
    """Raised when a listing page cannot be fetched. Fatal to the batch."""

    pass


class TransferError(ColdMirrorError):
    """Raised when a single object transfer fails."""

    pass


class CodecError(ColdMirrorError):
    """Raised when a compressed stream is corrupt or truncated."""

    pass


class BatchCancelledError(ColdMirrorError):
    """Raised when the batch cancellation signal stops the scheduler."""

    pass
