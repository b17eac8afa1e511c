"""Reconnecting duplex channel with an outbound queue and heartbeat."""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from collections.abc import Callable
from enum import Enum
from typing import Any

from .config import ms_to_seconds
from .const import (
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_HEARTBEAT_MESSAGE,
    DEFAULT_RECONNECT_ATTEMPTS,
    DEFAULT_RECONNECT_INTERVAL,
)
from .errors import TransportError
from .log_utils import WarnOnce
from .network import NetworkMonitor
from .transport import ChannelTransport, TransportHandle

_LOGGER = logging.getLogger(__name__)

Callback = Callable[..., None]


class ChannelState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class SendResult(str, Enum):
    SENT = "sent"
    QUEUED = "queued"


def encode_message(message: Any) -> str:
    if isinstance(message, str):
        return message
    return json.dumps(message, separators=(",", ":"))


def decode_message(text: str) -> Any:
    """Return the JSON value of ``text``, or ``text`` itself when it is not JSON."""

    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return text


class _ConnectionListener:
    """Forward transport events tagged with the connection generation."""

    __slots__ = ("_channel", "_generation")

    def __init__(self, channel: ReconnectingChannel, generation: int) -> None:
        self._channel = channel
        self._generation = generation

    def on_open(self) -> None:
        self._channel._handle_open(self._generation)

    def on_close(self, code: int | None = None, reason: str | None = None) -> None:
        self._channel._handle_close(self._generation, code, reason)

    def on_error(self, error: Exception) -> None:
        self._channel._handle_error(self._generation, error)

    def on_message(self, text: str) -> None:
        self._channel._handle_message(self._generation, text)


class ReconnectingChannel:
    """One logical duplex connection that survives drops.

    ``closed -> connecting -> open``; an unexpected close schedules a
    reconnect after ``reconnect_interval`` ms until ``reconnect_attempts``
    consecutive retries have been spent. Messages sent while not open are
    queued and flushed in order on the next open. :meth:`close` tears
    everything down and discards the queue.

    Transports must deliver their callbacks from the event loop after
    :meth:`ChannelTransport.open` has returned.
    """

    def __init__(
        self,
        url: str,
        transport: ChannelTransport,
        *,
        reconnect_attempts: int = DEFAULT_RECONNECT_ATTEMPTS,
        reconnect_interval: int = DEFAULT_RECONNECT_INTERVAL,
        heartbeat_interval: int = DEFAULT_HEARTBEAT_INTERVAL,
        heartbeat_message: Any = DEFAULT_HEARTBEAT_MESSAGE,
        network: NetworkMonitor | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.url = url
        self._transport = transport
        self.reconnect_attempts = reconnect_attempts
        self.reconnect_interval = reconnect_interval
        self.heartbeat_interval = heartbeat_interval
        self.heartbeat_message = heartbeat_message
        self._network = network
        self._loop = loop
        self._warn = WarnOnce(_LOGGER)

        self._state = ChannelState.CLOSED
        self._reconnect_attempt = 0
        self._queue: deque[str] = deque()
        self._handle: TransportHandle | None = None
        self._generation = 0
        self._active = False
        self._attempted = False
        self._has_opened = False
        self._reconnect_timer: asyncio.TimerHandle | None = None
        self._heartbeat_timer: asyncio.TimerHandle | None = None
        self._remove_network_listener: Callable[[], None] | None = None

        self.last_message: Any = None
        self._subscribers: list[Callback] = []
        self._open_callbacks: list[Callback] = []
        self._close_callbacks: list[Callback] = []
        self._reconnect_callbacks: list[Callback] = []
        self._error_callbacks: list[Callback] = []

    # ------------------------------------------------------------------
    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def reconnect_attempt(self) -> int:
        return self._reconnect_attempt

    @property
    def queued(self) -> tuple[str, ...]:
        return tuple(self._queue)

    @property
    def reconnect_scheduled(self) -> bool:
        return self._reconnect_timer is not None

    # ------------------------------------------------------------------
    def subscribe(self, callback: Callable[[Any], None]) -> Callable[[], None]:
        """Receive every inbound message; returns an unsubscribe callable."""

        return _register(self._subscribers, callback)

    def on_open(self, callback: Callable[[], None]) -> Callable[[], None]:
        return _register(self._open_callbacks, callback)

    def on_close(self, callback: Callable[[int | None, str | None], None]) -> Callable[[], None]:
        return _register(self._close_callbacks, callback)

    def on_reconnect(self, callback: Callable[[], None]) -> Callable[[], None]:
        return _register(self._reconnect_callbacks, callback)

    def on_error(self, callback: Callable[[Exception], None]) -> Callable[[], None]:
        return _register(self._error_callbacks, callback)

    # ------------------------------------------------------------------
    def connect(self) -> None:
        """Start (or resume) the connection; no-op while connecting or open."""

        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._active = True
        if self._network is not None and self._remove_network_listener is None:
            self._remove_network_listener = self._network.add_listener(self._on_network_change)
        if self._state in (ChannelState.CONNECTING, ChannelState.OPEN):
            return
        self._cancel_reconnect()
        if not self._online:
            _LOGGER.debug("Channel %s waiting for network before connecting", self.url)
            return
        self._open_connection()

    def close(self) -> None:
        """Tear down the connection, cancel timers and discard queued messages."""

        self._active = False
        self._cancel_reconnect()
        self._stop_heartbeat()
        if self._remove_network_listener is not None:
            self._remove_network_listener()
            self._remove_network_listener = None
        dropped = len(self._queue)
        self._queue.clear()
        handle = self._handle
        self._handle = None
        self._generation += 1
        if handle is not None:
            self._state = ChannelState.CLOSING
            try:
                handle.close()
            except Exception as err:  # noqa: BLE001 - teardown continues regardless
                _LOGGER.debug("Transport close for %s raised: %s", self.url, err)
        self._state = ChannelState.CLOSED
        self._reconnect_attempt = 0
        self._attempted = False
        self._has_opened = False
        if dropped:
            _LOGGER.debug("Channel %s closed with %d queued message(s) discarded", self.url, dropped)
        _LOGGER.info("Channel %s closed", self.url)

    def send(self, message: Any) -> SendResult:
        """Transmit ``message`` now when open, otherwise queue it.

        Older queued messages always go out first.
        """

        text = encode_message(message)
        if self._state is ChannelState.OPEN and self._handle is not None and self._queue:
            self._queue.append(text)
            self._flush_queue()
            return SendResult.SENT if not self._queue else SendResult.QUEUED
        if self._state is ChannelState.OPEN and self._handle is not None:
            try:
                self._handle.send(text)
            except Exception as err:  # noqa: BLE001 - a failed write is retried after reconnect
                self._queue.append(text)
                self._report(TransportError(f"send on {self.url} failed: {err}"))
                return SendResult.QUEUED
            return SendResult.SENT
        self._queue.append(text)
        return SendResult.QUEUED

    # ------------------------------------------------------------------
    @property
    def _online(self) -> bool:
        return self._network.online if self._network is not None else True

    def _open_connection(self) -> None:
        self._generation += 1
        self._state = ChannelState.CONNECTING
        self._attempted = True
        _LOGGER.debug("Channel %s connecting (attempt %d)", self.url, self._reconnect_attempt)
        try:
            self._handle = self._transport.open(self.url, _ConnectionListener(self, self._generation))
        except Exception as err:  # noqa: BLE001 - open failures drive the reconnect machine
            self._handle = None
            self._state = ChannelState.CLOSED
            self._report(TransportError(f"opening {self.url} failed: {err}"))
            self._schedule_reconnect()

    def _handle_open(self, generation: int) -> None:
        if generation != self._generation:
            return
        reconnected = self._has_opened
        self._state = ChannelState.OPEN
        self._reconnect_attempt = 0
        self._has_opened = True
        _LOGGER.info("Channel %s open", self.url)
        self._flush_queue()
        self._start_heartbeat()
        _notify(self._open_callbacks)
        if reconnected:
            _notify(self._reconnect_callbacks)

    def _handle_close(self, generation: int, code: int | None, reason: str | None) -> None:
        if generation != self._generation:
            return
        was_open = self._state is ChannelState.OPEN
        self._handle = None
        self._state = ChannelState.CLOSED
        self._stop_heartbeat()
        if was_open:
            _LOGGER.info("Channel %s dropped (code=%s, reason=%s)", self.url, code, reason)
        _notify(self._close_callbacks, code, reason)
        self._schedule_reconnect()

    def _handle_error(self, generation: int, error: Exception) -> None:
        if generation != self._generation:
            return
        if not isinstance(error, TransportError):
            error = TransportError(f"transport error on {self.url}: {error}")
        self._report(error)

    def _handle_message(self, generation: int, text: str) -> None:
        if generation != self._generation:
            return
        payload = decode_message(text)
        self.last_message = payload
        _notify(self._subscribers, payload)

    def _flush_queue(self) -> None:
        while self._queue and self._handle is not None:
            text = self._queue[0]
            try:
                self._handle.send(text)
            except Exception as err:  # noqa: BLE001 - keep the rest queued for the next open
                self._report(TransportError(f"flushing queue on {self.url} failed: {err}"))
                return
            self._queue.popleft()

    # ------------------------------------------------------------------
    def _schedule_reconnect(self) -> None:
        if not self._active or self._reconnect_timer is not None:
            return
        if not self._online:
            _LOGGER.debug("Channel %s offline; reconnect deferred until network returns", self.url)
            return
        if self._reconnect_attempt >= self.reconnect_attempts:
            self._warn(
                "reconnect_exhausted",
                "Channel %s giving up after %d reconnect attempt(s)",
                self.url,
                self._reconnect_attempt,
            )
            return
        self._reconnect_attempt += 1
        assert self._loop is not None
        self._reconnect_timer = self._loop.call_later(ms_to_seconds(self.reconnect_interval), self._reconnect_due)
        _LOGGER.debug(
            "Channel %s reconnect %d/%d in %d ms",
            self.url,
            self._reconnect_attempt,
            self.reconnect_attempts,
            self.reconnect_interval,
        )

    def _reconnect_due(self) -> None:
        self._reconnect_timer = None
        if not self._active or self._state is not ChannelState.CLOSED or not self._online:
            return
        self._open_connection()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    def _on_network_change(self, online: bool) -> None:
        if not self._active:
            return
        if not online:
            self._cancel_reconnect()
            return
        if self._state is not ChannelState.CLOSED or self._reconnect_timer is not None:
            return
        if self._attempted:
            if self._reconnect_attempt >= self.reconnect_attempts:
                _LOGGER.debug("Channel %s back online but reconnect attempts are spent", self.url)
                return
            self._reconnect_attempt += 1
        _LOGGER.debug("Channel %s back online; connecting", self.url)
        self._open_connection()

    # ------------------------------------------------------------------
    def _start_heartbeat(self) -> None:
        self._stop_heartbeat()
        if self.heartbeat_interval <= 0:
            return
        assert self._loop is not None
        self._heartbeat_timer = self._loop.call_later(ms_to_seconds(self.heartbeat_interval), self._heartbeat_due)

    def _heartbeat_due(self) -> None:
        self._heartbeat_timer = None
        if self._state is not ChannelState.OPEN:
            return
        self.send(self.heartbeat_message)
        self._start_heartbeat()

    def _stop_heartbeat(self) -> None:
        if self._heartbeat_timer is not None:
            self._heartbeat_timer.cancel()
            self._heartbeat_timer = None

    def _report(self, error: TransportError) -> None:
        self._warn("transport_error", "Channel %s: %s", self.url, error)
        _notify(self._error_callbacks, error)


def _register(callbacks: list[Callback], callback: Callback) -> Callable[[], None]:
    callbacks.append(callback)

    def _remove() -> None:
        if callback in callbacks:
            callbacks.remove(callback)

    return _remove


def _notify(callbacks: list[Callback], *args: Any) -> None:
    for callback in list(callbacks):
        try:
            callback(*args)
        except Exception as err:  # pragma: no cover - defensive log
            _LOGGER.debug("Channel callback raised error: %s", err, exc_info=True)


__all__ = ["ChannelState", "ReconnectingChannel", "SendResult", "decode_message", "encode_message"]
