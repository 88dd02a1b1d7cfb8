"""Typed, bidirectional, message-framed session over a WebSocket.

A ``TransportSession`` wraps one live connection. A reader task decodes
incoming frames into ``(event, payload)`` pairs and puts them on a
single-consumer queue; ``run()`` drains that queue and calls the handler
registered for each event, one at a time, so handlers for the same
session never run concurrently.

Termination surfaces as exactly one final event:

- ``disconnect``: the peer sent a ``disconnect`` event or closed cleanly;
- ``connect_error``: the connection was reset or closed abnormally.

Two adapters are provided: ``ServerTransportSession`` for a Starlette
``WebSocket`` and ``ClientTransportSession`` for a ``websockets`` client
connection.
"""

import asyncio
import contextlib
import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from echorelay.core import protocol
from echorelay.core.exceptions import ProtocolError, TransportError
from echorelay.core.models import EventName
from echorelay.core.protocol import Frame, Payload

logger = logging.getLogger(__name__)

Handler = Callable[[Payload], Awaitable[None] | None]

# Close codes treated as a clean remote close
_CLEAN_CLOSE_CODES = frozenset({1000, 1001})


class SessionClosed(Exception):
    """Raised by ``_receive_frame`` when the underlying connection ends."""

    def __init__(self, clean: bool, detail: str = "") -> None:
        self.clean = clean
        self.detail = detail
        super().__init__(detail)


class TransportSession(ABC):
    """Event-oriented session over one message-framed connection.

    Args:
        max_frame_bytes: Frames larger than this are rejected as protocol errors.
    """

    def __init__(self, max_frame_bytes: int = 16 * 1024 * 1024) -> None:
        self.session_id: int | None = None
        self._max_frame_bytes = max_frame_bytes
        self._handlers: dict[EventName, Handler] = {}
        self._queue: asyncio.Queue[tuple[EventName, Payload] | None] = asyncio.Queue()
        self._reader: asyncio.Task | None = None
        self._closed = False

    # -- subclass hooks --

    @abstractmethod
    async def _receive_frame(self) -> Frame:
        """Return the next frame or raise ``SessionClosed``."""

    @abstractmethod
    async def _send_frame(self, frame: Frame) -> None:
        """Write one frame; raise ``TransportError`` on failure."""

    @abstractmethod
    async def _close_connection(self) -> None:
        """Release the underlying connection."""

    # -- public API --

    @property
    def closed(self) -> bool:
        return self._closed

    def on_event(self, event: EventName, handler: Handler) -> None:
        """Register the handler invoked once per received ``event``."""
        self._handlers[event] = handler

    async def send(self, event: EventName, payload: Payload | None = None) -> None:
        """Send one event to the peer.

        Delivery is ordered and at-most-once: no retransmission is attempted.

        Raises:
            TransportError: If the session is closed or the write fails.
        """
        if self._closed:
            raise TransportError("Session is closed")
        await self._send_frame(protocol.encode(event, payload))

    async def run(self) -> None:
        """Dispatch received events until the session terminates."""
        self._reader = asyncio.create_task(self._read_loop())
        try:
            while not self._closed:
                item = await self._queue.get()
                if item is None:
                    break
                event, payload = item
                await self._dispatch(event, payload)
        finally:
            await self.close()

    async def close(self) -> None:
        """Release the connection; no handler runs after this returns."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

        reader = self._reader
        if reader is not None and reader is not asyncio.current_task() and not reader.done():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        await self._close_connection()
        logger.debug("Transport session %s closed", self.session_id)

    # -- internals --

    async def _read_loop(self) -> None:
        """Decode frames onto the queue until the connection ends."""
        try:
            while True:
                frame = await self._receive_frame()
                if len(frame) > self._max_frame_bytes:
                    self._queue.put_nowait(
                        _local_error(ProtocolError(f"Frame exceeds {self._max_frame_bytes} bytes"))
                    )
                    continue
                try:
                    event, payload = protocol.decode(frame)
                except ProtocolError as exc:
                    self._queue.put_nowait(_local_error(exc))
                    continue
                self._queue.put_nowait((event, payload))
                if event == EventName.disconnect:
                    break
        except SessionClosed as exc:
            if exc.clean:
                self._queue.put_nowait((EventName.disconnect, {"reason": exc.detail}))
            else:
                self._queue.put_nowait((EventName.connect_error, {"detail": exc.detail}))
        except Exception as exc:
            logger.exception("Reader failed on session %s", self.session_id)
            self._queue.put_nowait((EventName.connect_error, {"detail": f"Connection failed: {exc}"}))
        finally:
            self._queue.put_nowait(None)

    async def _dispatch(self, event: EventName, payload: Payload) -> None:
        handler = self._handlers.get(event)
        if handler is None:
            logger.debug("No handler for %s on session %s", event, self.session_id)
            return
        try:
            result = handler(payload)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Handler for %s failed on session %s", event, self.session_id)


def _local_error(exc: ProtocolError) -> tuple[EventName, dict]:
    """Wrap a decode failure as an ``error`` event raised on this side."""
    return EventName.error, {"code": exc.code, "detail": exc.detail, "origin": "local"}


class ServerTransportSession(TransportSession):
    """Transport session over an accepted Starlette ``WebSocket``."""

    def __init__(self, websocket: WebSocket, max_frame_bytes: int = 16 * 1024 * 1024) -> None:
        super().__init__(max_frame_bytes=max_frame_bytes)
        self._ws = websocket

    async def _receive_frame(self) -> Frame:
        message = await self._ws.receive()
        if message["type"] == "websocket.disconnect":
            code = message.get("code", 1000)
            raise SessionClosed(clean=code in _CLEAN_CLOSE_CODES, detail=f"close code {code}")
        if message.get("bytes") is not None:
            return message["bytes"]
        return message.get("text") or ""

    async def _send_frame(self, frame: Frame) -> None:
        try:
            if isinstance(frame, bytes):
                await self._ws.send_bytes(frame)
            else:
                await self._ws.send_text(frame)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            raise TransportError(f"Send failed: {exc!r}") from exc

    async def _close_connection(self) -> None:
        if self._ws.application_state != WebSocketState.CONNECTED:
            return
        if self._ws.client_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self._ws.close()
        except (RuntimeError, OSError):
            logger.debug("WebSocket for session %s was already closed", self.session_id)


class ClientTransportSession(TransportSession):
    """Transport session over a ``websockets`` client connection."""

    def __init__(self, connection, max_frame_bytes: int = 16 * 1024 * 1024) -> None:  # noqa: ANN001
        super().__init__(max_frame_bytes=max_frame_bytes)
        self._ws = connection

    async def _receive_frame(self) -> Frame:
        try:
            return await self._ws.recv()
        except ConnectionClosedOK as exc:
            raise SessionClosed(clean=True, detail=str(exc)) from exc
        except ConnectionClosed as exc:
            raise SessionClosed(clean=False, detail=str(exc)) from exc
        except OSError as exc:
            raise SessionClosed(clean=False, detail=repr(exc)) from exc

    async def _send_frame(self, frame: Frame) -> None:
        try:
            await self._ws.send(frame)
        except (ConnectionClosed, OSError) as exc:
            raise TransportError(f"Send failed: {exc}") from exc

    async def _close_connection(self) -> None:
        try:
            await self._ws.close()
        except (ConnectionClosed, OSError):
            logger.debug("Connection for session %s was already closed", self.session_id)
