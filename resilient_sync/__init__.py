"""Client-side sync helpers: bounded cache, reconnecting channel and synchronizer."""

from .cache import BoundedCache, CacheEntry
from .channel import ChannelState, ReconnectingChannel, SendResult
from .config import SyncEngineConfig
from .engine import SyncEngine
from .errors import (
    ConfigError,
    FetchFailed,
    PushFailed,
    StorageError,
    SyncError,
    TransportError,
    ValidationFailed,
)
from .group import SyncGroup
from .merge import ConflictPolicy, FieldPolicyMerge, shallow_merge
from .network import NetworkMonitor
from .pending import ChangeKind, PendingChange, PendingLog
from .retry import RetryExhausted, retry_async
from .store import DurableStore, JsonFileStore, MemoryStore, open_store
from .sqlite_store import SqliteStore
from .subscriptions import EventRouter, RoomChannel
from .synchronizer import SyncState, SyncStatus, Synchronizer
from .transport import AiohttpWebSocketTransport

__all__ = [
    "BoundedCache",
    "CacheEntry",
    "ChannelState",
    "ReconnectingChannel",
    "SendResult",
    "SyncEngineConfig",
    "SyncEngine",
    "SyncError",
    "ConfigError",
    "ValidationFailed",
    "FetchFailed",
    "PushFailed",
    "TransportError",
    "StorageError",
    "SyncGroup",
    "ConflictPolicy",
    "FieldPolicyMerge",
    "shallow_merge",
    "NetworkMonitor",
    "ChangeKind",
    "PendingChange",
    "PendingLog",
    "RetryExhausted",
    "retry_async",
    "DurableStore",
    "MemoryStore",
    "JsonFileStore",
    "SqliteStore",
    "open_store",
    "EventRouter",
    "RoomChannel",
    "SyncState",
    "SyncStatus",
    "Synchronizer",
    "AiohttpWebSocketTransport",
]
