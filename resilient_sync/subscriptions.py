"""Event and room subscriptions layered on a :class:`ReconnectingChannel`."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Mapping
from typing import Any

from .channel import ChannelState, ReconnectingChannel, SendResult

_LOGGER = logging.getLogger(__name__)

EventHandler = Callable[[Any], None]


class EventRouter:
    """Dispatch ``{"event": name, "data": ...}`` messages to per-event handlers.

    The server is told about every subscribed event with a
    ``{"type": "subscribe", "event": name}`` message while the channel is
    open, and again each time it reopens.
    """

    def __init__(self, channel: ReconnectingChannel) -> None:
        self.channel = channel
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._detach = [channel.subscribe(self._dispatch), channel.on_open(self._resubscribe)]

    @property
    def events(self) -> tuple[str, ...]:
        return tuple(self._handlers)

    def subscribe(self, event: str, handler: EventHandler) -> Callable[[], None]:
        first = event not in self._handlers
        self._handlers[event].append(handler)
        if first and self.channel.state is ChannelState.OPEN:
            self.channel.send({"type": "subscribe", "event": event})

        def _unsubscribe() -> None:
            self.unsubscribe(event, handler)

        return _unsubscribe

    def unsubscribe(self, event: str, handler: EventHandler | None = None) -> None:
        handlers = self._handlers.get(event)
        if handlers is None:
            return
        if handler is None:
            handlers.clear()
        elif handler in handlers:
            handlers.remove(handler)
        if not handlers:
            del self._handlers[event]
            if self.channel.state is ChannelState.OPEN:
                self.channel.send({"type": "unsubscribe", "event": event})

    def emit(self, event: str, data: Any = None) -> SendResult:
        return self.channel.send({"event": event, "data": data})

    def detach(self) -> None:
        for remove in self._detach:
            remove()
        self._detach = []

    def _resubscribe(self) -> None:
        for event in self._handlers:
            self.channel.send({"type": "subscribe", "event": event})

    def _dispatch(self, message: Any) -> None:
        if not isinstance(message, Mapping):
            return
        event = message.get("event")
        if not isinstance(event, str):
            return
        for handler in list(self._handlers.get(event, ())):
            try:
                handler(message.get("data"))
            except Exception as err:  # pragma: no cover - defensive log
                _LOGGER.debug("Handler for event %s raised error: %s", event, err, exc_info=True)


class RoomChannel:
    """Join a named room on every open and exchange ``room_message`` payloads."""

    def __init__(self, channel: ReconnectingChannel, room: str) -> None:
        self.channel = channel
        self.room = room
        self.joined = False
        self._handlers: list[EventHandler] = []
        self._detach = [
            channel.on_open(self._join),
            channel.on_close(self._left),
            channel.subscribe(self._dispatch),
        ]
        if channel.state is ChannelState.OPEN:
            self._join()

    def on_message(self, handler: EventHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _remove() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _remove

    def send(self, data: Any) -> SendResult:
        return self.channel.send({"type": "room_message", "room": self.room, "data": data})

    def leave(self) -> None:
        if self.joined:
            self.channel.send({"type": "leave", "room": self.room})
        self.joined = False
        for remove in self._detach:
            remove()
        self._detach = []

    def _join(self) -> None:
        self.channel.send({"type": "join", "room": self.room})
        self.joined = True

    def _left(self, _code: int | None = None, _reason: str | None = None) -> None:
        self.joined = False

    def _dispatch(self, message: Any) -> None:
        if not isinstance(message, Mapping):
            return
        if message.get("type") != "room_message" or message.get("room") != self.room:
            return
        for handler in list(self._handlers):
            try:
                handler(message.get("data"))
            except Exception as err:  # pragma: no cover - defensive log
                _LOGGER.debug("Room %s handler raised error: %s", self.room, err, exc_info=True)


__all__ = ["EventHandler", "EventRouter", "RoomChannel"]
