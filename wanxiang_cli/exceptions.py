"""
Defines custom exceptions for the updater to allow for more specific error handling.
"""


class UpdaterError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(UpdaterError):
    """Raised for issues related to configuration loading or validation."""


class AccessDeniedError(UpdaterError):
    """Raised when the install root cannot be resolved or is not writable."""

    def __init__(self, reason: str, path: str | None = None):
        self.reason = reason
        self.path = path
        message = f"{reason} ({path})" if path else reason
        super().__init__(message)


class NoRemoteAssetError(UpdaterError):
    """Raised when the release source has no asset matching the component."""


class NetworkError(UpdaterError):
    """Raised when a request or transfer fails."""


class TransferTimeoutError(UpdaterError):
    """Base class for transfer-specific timeouts."""


class StallTimeoutError(TransferTimeoutError):
    """
    Raised when a transfer made no progress for longer than the stall window,
    on every allowed attempt.
    """

    def __init__(self, message: str, attempts: int = 1):
        self.attempts = attempts
        super().__init__(message)


class HardTimeoutError(TransferTimeoutError):
    """Raised when a transfer exceeds its absolute duration bound."""


class DownloadCancelledError(UpdaterError):
    """Raised when the caller cancels a running download."""


class InvalidArchiveError(UpdaterError):
    """Raised when extraction fails or produces no usable files."""


class FileIntegrityError(UpdaterError):
    """Raised when a downloaded file does not match its declared size."""
