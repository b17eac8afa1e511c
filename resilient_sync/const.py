"""Option keys and defaults shared by the sync engine components."""

from __future__ import annotations

DOMAIN = "resilient_sync"

# Option keys. Durations are expressed in milliseconds.
CONF_TTL = "ttl"
CONF_MAX_SIZE = "max_size"
CONF_SYNC_INTERVAL = "sync_interval"
CONF_RETRY_ATTEMPTS = "retry_attempts"
CONF_RETRY_DELAY = "retry_delay"
CONF_RECONNECT_ATTEMPTS = "reconnect_attempts"
CONF_RECONNECT_INTERVAL = "reconnect_interval"
CONF_HEARTBEAT_INTERVAL = "heartbeat_interval"
CONF_HEARTBEAT_MESSAGE = "heartbeat_message"

# camelCase spellings accepted from JSON/JS-style option payloads.
OPTION_ALIASES: dict[str, str] = {
    "maxSize": CONF_MAX_SIZE,
    "syncInterval": CONF_SYNC_INTERVAL,
    "retryAttempts": CONF_RETRY_ATTEMPTS,
    "retryDelay": CONF_RETRY_DELAY,
    "reconnectAttempts": CONF_RECONNECT_ATTEMPTS,
    "reconnectInterval": CONF_RECONNECT_INTERVAL,
    "heartbeatInterval": CONF_HEARTBEAT_INTERVAL,
    "heartbeatMessage": CONF_HEARTBEAT_MESSAGE,
}

DEFAULT_TTL = 5 * 60 * 1000
DEFAULT_MAX_SIZE = 100
DEFAULT_SYNC_INTERVAL = 30_000
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 1_000
DEFAULT_RECONNECT_ATTEMPTS = 5
DEFAULT_RECONNECT_INTERVAL = 3_000
DEFAULT_HEARTBEAT_INTERVAL = 30_000
DEFAULT_HEARTBEAT_MESSAGE = "ping"

# Durable store layout
CACHE_KEY_PREFIX = "cache:"
NAMED_CACHE_KEY_PREFIX = "cache@"
PENDING_CHANGES_SUFFIX = "_pending_changes"

# Metric names passed to an optional metrics sink
METRIC_SYNC_SUCCESS = "sync.success"
METRIC_SYNC_FAILURE = "sync.failure"
METRIC_SYNC_DURATION = "sync.duration_ms"
METRIC_SYNC_PENDING = "sync.pending"
