from __future__ import annotations

from pathlib import Path


class PhotoScannerError(Exception):
    """Root of every error raised by the scanner."""


class ConfigurationError(PhotoScannerError):
    """Fatal for the whole run; detected before items are dispatched."""


class InvalidRoot(ConfigurationError):
    pass


class IndexSchemaMismatch(ConfigurationError):
    pass


class ItemError(PhotoScannerError):
    """Failure confined to a single photo. Never aborts sibling work."""

    def __init__(self, message: str, path: Path | str | None = None):
        super().__init__(message)
        self.path = Path(path) if path is not None else None

    @property
    def kind(self) -> str:
        return type(self).__name__


class MetadataUnreadable(ItemError):
    pass


class MetadataWriteFailed(ItemError):
    pass


class ImageUnreadable(ItemError):
    pass


class InferenceError(ItemError):
    pass


class InferenceUnavailable(InferenceError):
    pass


class InferenceRejected(InferenceError):
    pass


class IndexUpsertFailed(ItemError):
    pass


class RetryExhausted(PhotoScannerError):
    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"gave up after {attempts} attempts: {type(last_error).__name__}: {last_error}")
        self.attempts = attempts
        self.last_error = last_error
