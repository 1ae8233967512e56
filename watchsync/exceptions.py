"""
Exception types for watchsync.

Nothing raised here is expected to escape the engine's public operations;
the engine catches these, logs them and falls back to local-only tracking.
"""


class WatchSyncError(Exception):
    """Base class for all watchsync errors."""
    pass


class InvalidKeyError(WatchSyncError, ValueError):
    """Raised when an id/type/season/episode combination cannot form a progress key."""
    pass


class PersistenceError(WatchSyncError):
    """Raised when the durable local slot cannot be read or written."""
    pass


class NetworkError(WatchSyncError):
    """Retryable backend failure (connection problems, timeouts, unexpected responses)."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class CredentialInvalidError(NetworkError):
    """The backend rejected the call as unauthenticated (HTTP 401)."""
    pass


class ConfigurationError(WatchSyncError):
    """Raised for unknown settings or values that fail validation."""
    pass
