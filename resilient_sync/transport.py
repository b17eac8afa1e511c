"""Duplex transport capability used by :class:`ReconnectingChannel`."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from contextlib import suppress
from typing import Protocol

from aiohttp import ClientError, ClientSession, ClientWebSocketResponse, WSMsgType

from .errors import TransportError

_LOGGER = logging.getLogger(__name__)


class TransportListener(Protocol):
    def on_open(self) -> None: ...

    def on_close(self, code: int | None, reason: str | None) -> None: ...

    def on_error(self, error: Exception) -> None: ...

    def on_message(self, text: str) -> None: ...


class TransportHandle(Protocol):
    def send(self, text: str) -> None: ...

    def close(self) -> None: ...


class ChannelTransport(Protocol):
    """Open one connection; events arrive later on ``listener``."""

    def open(self, url: str, listener: TransportListener) -> TransportHandle: ...


class _WebSocketHandle:
    def __init__(self, session: ClientSession, url: str, listener: TransportListener, protocols: tuple[str, ...]):
        self._session = session
        self._url = url
        self._listener = listener
        self._protocols = protocols
        self._outbox: asyncio.Queue[str] = asyncio.Queue()
        self._ws: ClientWebSocketResponse | None = None
        self._closed = False
        self._task = asyncio.get_running_loop().create_task(self._run())

    def send(self, text: str) -> None:
        if self._closed:
            raise TransportError("websocket handle is closed")
        self._outbox.put_nowait(text)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._task.cancel()

    async def _run(self) -> None:
        code: int | None = None
        reason: str | None = None
        writer: asyncio.Task | None = None
        try:
            async with self._session.ws_connect(self._url, protocols=self._protocols, autoping=True) as ws:
                self._ws = ws
                writer = asyncio.get_running_loop().create_task(self._write(ws))
                self._listener.on_open()
                async for msg in ws:
                    if msg.type is WSMsgType.TEXT:
                        self._listener.on_message(msg.data)
                    elif msg.type is WSMsgType.BINARY:
                        self._listener.on_message(msg.data.decode("utf-8", errors="replace"))
                    elif msg.type is WSMsgType.ERROR:
                        self._listener.on_error(TransportError(f"websocket error: {ws.exception()}"))
                        break
                code = ws.close_code
        except asyncio.CancelledError:
            if self._ws is not None and not self._ws.closed:
                with suppress(ClientError, OSError):
                    await self._ws.close()
            raise
        except (ClientError, OSError, TimeoutError) as err:
            _LOGGER.debug("Websocket %s failed: %s", self._url, err)
            reason = str(err)
            self._listener.on_error(TransportError(f"websocket {self._url} failed: {err}"))
        finally:
            if writer is not None:
                writer.cancel()
        if not self._closed:
            self._closed = True
            self._listener.on_close(code, reason)

    async def _write(self, ws: ClientWebSocketResponse) -> None:
        while True:
            text = await self._outbox.get()
            try:
                await ws.send_str(text)
            except (ClientError, ConnectionResetError) as err:
                self._listener.on_error(TransportError(f"websocket send failed: {err}"))
                return


class AiohttpWebSocketTransport:
    """WebSocket transport backed by an aiohttp :class:`ClientSession`."""

    def __init__(self, session: ClientSession, protocols: Iterable[str] = ()) -> None:
        self._session = session
        self._protocols = tuple(protocols)

    def open(self, url: str, listener: TransportListener) -> TransportHandle:
        return _WebSocketHandle(self._session, url, listener, self._protocols)


__all__ = [
    "AiohttpWebSocketTransport",
    "ChannelTransport",
    "TransportHandle",
    "TransportListener",
]
