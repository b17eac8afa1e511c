"""Engine options: schema validation and typed access."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import voluptuous as vol
import yaml

from .const import (
    CONF_HEARTBEAT_INTERVAL,
    CONF_HEARTBEAT_MESSAGE,
    CONF_MAX_SIZE,
    CONF_RECONNECT_ATTEMPTS,
    CONF_RECONNECT_INTERVAL,
    CONF_RETRY_ATTEMPTS,
    CONF_RETRY_DELAY,
    CONF_SYNC_INTERVAL,
    CONF_TTL,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_HEARTBEAT_MESSAGE,
    DEFAULT_MAX_SIZE,
    DEFAULT_RECONNECT_ATTEMPTS,
    DEFAULT_RECONNECT_INTERVAL,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RETRY_DELAY,
    DEFAULT_SYNC_INTERVAL,
    DEFAULT_TTL,
    DOMAIN,
    OPTION_ALIASES,
)
from .errors import ConfigError

_NON_NEGATIVE = vol.All(vol.Coerce(int), vol.Range(min=0))
_POSITIVE = vol.All(vol.Coerce(int), vol.Range(min=1))

OPTIONS_SCHEMA = vol.Schema(
    {
        vol.Optional(CONF_TTL, default=DEFAULT_TTL): _POSITIVE,
        vol.Optional(CONF_MAX_SIZE, default=DEFAULT_MAX_SIZE): _POSITIVE,
        vol.Optional(CONF_SYNC_INTERVAL, default=DEFAULT_SYNC_INTERVAL): _NON_NEGATIVE,
        vol.Optional(CONF_RETRY_ATTEMPTS, default=DEFAULT_RETRY_ATTEMPTS): _POSITIVE,
        vol.Optional(CONF_RETRY_DELAY, default=DEFAULT_RETRY_DELAY): _NON_NEGATIVE,
        vol.Optional(CONF_RECONNECT_ATTEMPTS, default=DEFAULT_RECONNECT_ATTEMPTS): _NON_NEGATIVE,
        vol.Optional(CONF_RECONNECT_INTERVAL, default=DEFAULT_RECONNECT_INTERVAL): _NON_NEGATIVE,
        vol.Optional(CONF_HEARTBEAT_INTERVAL, default=DEFAULT_HEARTBEAT_INTERVAL): _NON_NEGATIVE,
        vol.Optional(CONF_HEARTBEAT_MESSAGE, default=DEFAULT_HEARTBEAT_MESSAGE): vol.Any(str, dict),
    },
    extra=vol.REMOVE_EXTRA,
)


def normalise_options(options: Mapping[str, Any]) -> dict[str, Any]:
    """Map camelCase option names onto their canonical keys."""

    normalised = {str(key): value for key, value in options.items() if key not in OPTION_ALIASES}
    for alias, canonical in OPTION_ALIASES.items():
        if alias in options:
            normalised.setdefault(canonical, options[alias])
    return normalised


@dataclass(slots=True, frozen=True)
class SyncEngineConfig:
    """Validated engine options. All durations are milliseconds."""

    ttl: int = DEFAULT_TTL
    max_size: int = DEFAULT_MAX_SIZE
    sync_interval: int = DEFAULT_SYNC_INTERVAL
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_delay: int = DEFAULT_RETRY_DELAY
    reconnect_attempts: int = DEFAULT_RECONNECT_ATTEMPTS
    reconnect_interval: int = DEFAULT_RECONNECT_INTERVAL
    heartbeat_interval: int = DEFAULT_HEARTBEAT_INTERVAL
    heartbeat_message: str | dict[str, Any] = DEFAULT_HEARTBEAT_MESSAGE

    @classmethod
    def from_options(cls, options: Mapping[str, Any] | None = None) -> SyncEngineConfig:
        try:
            validated = OPTIONS_SCHEMA(normalise_options(options or {}))
        except vol.Invalid as err:
            raise ConfigError(f"invalid sync options: {err}") from err
        return cls(
            ttl=validated[CONF_TTL],
            max_size=validated[CONF_MAX_SIZE],
            sync_interval=validated[CONF_SYNC_INTERVAL],
            retry_attempts=validated[CONF_RETRY_ATTEMPTS],
            retry_delay=validated[CONF_RETRY_DELAY],
            reconnect_attempts=validated[CONF_RECONNECT_ATTEMPTS],
            reconnect_interval=validated[CONF_RECONNECT_INTERVAL],
            heartbeat_interval=validated[CONF_HEARTBEAT_INTERVAL],
            heartbeat_message=validated[CONF_HEARTBEAT_MESSAGE],
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> SyncEngineConfig:
        """Load options from a YAML file.

        The options may live at the top level or under a ``resilient_sync``
        or ``sync`` section.
        """

        p = Path(path)
        try:
            with p.open("r", encoding="utf-8") as handle:
                raw = yaml.safe_load(handle) or {}
        except (OSError, yaml.YAMLError) as err:
            raise ConfigError(f"unable to read {p}: {err}") from err
        if not isinstance(raw, Mapping):
            raise ConfigError(f"{p} must contain a mapping of options")
        for section in (DOMAIN, "sync"):
            nested = raw.get(section)
            if isinstance(nested, Mapping):
                raw = nested
                break
        return cls.from_options(raw)

    def with_overrides(self, **overrides: Any) -> SyncEngineConfig:
        """Return a validated copy with ``overrides`` applied."""

        if not overrides:
            return self
        merged = {**self.as_options(), **normalise_options(overrides)}
        return SyncEngineConfig.from_options(merged)

    def as_options(self) -> dict[str, Any]:
        return {
            CONF_TTL: self.ttl,
            CONF_MAX_SIZE: self.max_size,
            CONF_SYNC_INTERVAL: self.sync_interval,
            CONF_RETRY_ATTEMPTS: self.retry_attempts,
            CONF_RETRY_DELAY: self.retry_delay,
            CONF_RECONNECT_ATTEMPTS: self.reconnect_attempts,
            CONF_RECONNECT_INTERVAL: self.reconnect_interval,
            CONF_HEARTBEAT_INTERVAL: self.heartbeat_interval,
            CONF_HEARTBEAT_MESSAGE: self.heartbeat_message,
        }


def ms_to_seconds(value: int | float) -> float:
    return max(float(value), 0.0) / 1000.0


__all__ = ["OPTIONS_SCHEMA", "SyncEngineConfig", "ms_to_seconds", "normalise_options"]
