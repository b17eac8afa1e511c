"""Error taxonomy for the sync engine."""

from __future__ import annotations


class SyncError(RuntimeError):
    """Base class for failures reported by the sync engine."""

    reason = "sync_failed"

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        if reason is not None:
            self.reason = reason


class ConfigError(SyncError):
    """Raised when engine options fail schema validation."""

    reason = "invalid_config"


class ValidationFailed(SyncError):
    """A caller-supplied validator rejected a value.

    Never retried automatically; the caller has to correct the input.
    """

    reason = "validation_failed"


class RemoteOperationFailed(SyncError):
    """A remote call exhausted its retry budget."""

    def __init__(self, message: str, *, attempts: int, reason: str | None = None) -> None:
        super().__init__(message, reason=reason)
        self.attempts = attempts


class FetchFailed(RemoteOperationFailed):
    reason = "fetch_failed"


class PushFailed(RemoteOperationFailed):
    reason = "push_failed"


class TransportError(SyncError):
    """Channel-level failure. Drives the reconnect state machine."""

    reason = "transport_error"


class StorageError(SyncError):
    """Durable store read/write failure."""

    reason = "storage_error"


__all__ = [
    "ConfigError",
    "FetchFailed",
    "PushFailed",
    "RemoteOperationFailed",
    "StorageError",
    "SyncError",
    "TransportError",
    "ValidationFailed",
]
