"""Connection supervisor - owns the single live transport session.

``connect()`` always tears down the previous session first, so repeated
calls leave exactly one live session. Handshake failures (refused,
timeout, rejected) move the state to ``error`` within the configured
timeout budget; a clean remote close moves it to ``disconnected``.

Received ``audio-response`` units are handed to the playback sink;
playback problems are logged and never affect the connection state.
"""

import asyncio
import logging
from collections.abc import Callable
from urllib.parse import urlsplit, urlunsplit

import websockets
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential
from websockets.exceptions import InvalidHandshake, InvalidURI, WebSocketException

from echorelay.client.audio.base import PlaybackSink
from echorelay.core.config import Settings, get_settings
from echorelay.core.exceptions import SendFailureError, TransportError
from echorelay.core.models import (
    AudioUnit,
    ClientError,
    ConnectionState,
    ErrorKind,
    EventName,
)
from echorelay.core.protocol import Payload
from echorelay.transport import ClientTransportSession

logger = logging.getLogger(__name__)

# Worth another handshake attempt; malformed endpoints are not
_RETRYABLE = (OSError, TimeoutError, InvalidHandshake)
_CONNECT_ERRORS = (OSError, TimeoutError, WebSocketException, ValueError)

_SCHEMES = {"http": "ws", "https": "wss", "ws": "ws", "wss": "wss"}


def build_ws_url(endpoint: str, relay_path: str = "/ws") -> str:
    """Turn ``http://host:port`` into ``ws://host:port/ws``.

    Raises:
        ValueError: If the endpoint has an unsupported scheme or no host.
    """
    parts = urlsplit(endpoint.strip())
    scheme = _SCHEMES.get(parts.scheme.lower())
    if scheme is None or not parts.netloc:
        raise ValueError(f"Invalid endpoint: {endpoint!r}")
    path = parts.path.rstrip("/")
    if not path.endswith(relay_path.rstrip("/")):
        path += relay_path
    return urlunsplit((scheme, parts.netloc, path, parts.query, ""))


class ConnectionSupervisor:
    """Manages (re)connection to a configurable relay endpoint.

    Args:
        endpoint: Initial endpoint (defaults to ``settings.relay_endpoint``).
        playback: Sink for echoed units; None disables playback.
        settings: Timeouts, retry budget, and frame limits.
        on_state_change: Called with each new ConnectionState.
        on_error: Called with each reported ``ClientError``.
        on_audio_response: Called with each echoed unit after playback starts.
    """

    def __init__(
        self,
        endpoint: str | None = None,
        playback: PlaybackSink | None = None,
        settings: Settings | None = None,
        on_state_change: Callable[[ConnectionState], None] | None = None,
        on_error: Callable[[ClientError], None] | None = None,
        on_audio_response: Callable[[AudioUnit], None] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self.endpoint = endpoint or self._settings.relay_endpoint
        self._playback = playback
        self._on_state_change = on_state_change
        self._on_error = on_error
        self._on_audio_response = on_audio_response

        self.session_id: int | None = None
        self.last_error: ClientError | None = None
        self.units_received = 0
        self._state = ConnectionState.disconnected
        self._session: ClientTransportSession | None = None
        self._task: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == ConnectionState.connected

    async def connect(self, endpoint: str | None = None) -> bool:
        """Replace any live session with a new one to ``endpoint``.

        Calls are serialized, so overlapping connects leave one live session.
        Returns True when the handshake succeeded.
        """
        async with self._lock:
            return await self._connect(endpoint)

    async def _connect(self, endpoint: str | None) -> bool:
        await self._disconnect()
        if endpoint:
            self.endpoint = endpoint

        self.last_error = None
        self._set_state(ConnectionState.connecting)
        try:
            url = build_ws_url(self.endpoint, self._settings.relay_path)
            connection = await self._open(url)
        except _CONNECT_ERRORS as exc:
            self._connect_failed(exc)
            return False

        session = ClientTransportSession(connection, max_frame_bytes=self._settings.max_unit_bytes)
        self._attach(session)
        self._session = session
        self._task = asyncio.create_task(self._run(session))
        self._set_state(ConnectionState.connected)
        logger.info("Connected to %s", url)
        return True

    async def _open(self, url: str):  # noqa: ANN202
        """Perform the WebSocket handshake, retrying transient failures."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, self._settings.connect_attempts)),
            wait=wait_exponential(multiplier=0.5, max=4),
            retry=retry_if_exception_type(_RETRYABLE),
            reraise=True,
        ):
            with attempt:
                return await websockets.connect(
                    url,
                    open_timeout=self._settings.connect_timeout,
                    max_size=self._settings.max_unit_bytes,
                )

    async def disconnect(self) -> None:
        """Close the live session, if any; no handler fires afterwards."""
        async with self._lock:
            await self._disconnect()

    async def _disconnect(self) -> None:
        session, self._session = self._session, None
        task, self._task = self._task, None
        self.session_id = None
        if session is not None:
            await session.close()
            logger.info("Disconnected from %s", self.endpoint)
        if task is not None and task is not asyncio.current_task():
            await task
        self._set_state(ConnectionState.disconnected)

    async def send_unit(self, unit: AudioUnit) -> None:
        """Send one finished unit as a single ``audio-stream`` event.

        Raises:
            SendFailureError: If not connected, the write fails, or it
                exceeds ``send_timeout``.
        """
        session = self._session
        if session is None or not self.connected:
            raise SendFailureError("Not connected to server")
        try:
            await asyncio.wait_for(
                session.send(EventName.audio_stream, unit),
                timeout=self._settings.send_timeout,
            )
        except TransportError as exc:
            raise SendFailureError(f"Error sending audio to server: {exc.detail}") from exc
        except TimeoutError:
            raise SendFailureError("Timed out sending audio to server") from None

    # ------------------------------------------------------------------
    # session handlers
    # ------------------------------------------------------------------

    def _attach(self, session: ClientTransportSession) -> None:
        session.on_event(EventName.connect, self._handle_connect)
        session.on_event(EventName.audio_response, self._handle_audio_response)
        session.on_event(EventName.disconnect, self._handle_disconnect)
        session.on_event(EventName.connect_error, self._handle_connect_error)
        session.on_event(EventName.error, self._handle_server_error)

    async def _run(self, session: ClientTransportSession) -> None:
        try:
            await session.run()
        finally:
            if self._session is session:
                self._session = None
                self._task = None
                self.session_id = None
                if self._state == ConnectionState.connected:
                    self._set_state(ConnectionState.disconnected)

    def _handle_connect(self, payload: Payload) -> None:
        self.session_id = payload.get("session_id")
        logger.info("Relay session %s opened", self.session_id)

    def _handle_audio_response(self, payload: Payload) -> None:
        if not isinstance(payload, AudioUnit):
            logger.warning("Ignoring audio-response without audio")
            return
        self.units_received += 1
        logger.debug("Received echo: %s bytes (%s)", payload.size, payload.mime_type)
        if self._playback is not None:
            try:
                self._playback.play(payload.data, payload.mime_type)
            except Exception:
                logger.exception("Playback failed for %s-byte unit", payload.size)
        if self._on_audio_response is not None:
            self._on_audio_response(payload)

    def _handle_disconnect(self, payload: Payload) -> None:
        logger.info("Disconnected from server: %s", payload.get("reason", ""))
        self._set_state(ConnectionState.disconnected)

    def _handle_connect_error(self, payload: Payload) -> None:
        detail = payload.get("detail", "")
        logger.warning("Connection lost: %s", detail)
        self._set_state(ConnectionState.error)
        self._report(TransportError(f"Connection to server lost: {detail}"))

    def _handle_server_error(self, payload: Payload) -> None:
        detail = payload.get("detail", "Server rejected the request")
        logger.warning("Server error %s: %s", payload.get("code"), detail)
        self._report(SendFailureError(detail))

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _connect_failed(self, exc: Exception) -> None:
        logger.warning("Connection to %s failed: %r", self.endpoint, exc)
        if isinstance(exc, (ValueError, InvalidURI)):
            detail = f"Invalid endpoint: {self.endpoint}"
        else:
            detail = "Failed to connect to server. Please check the endpoint."
        self._set_state(ConnectionState.error)
        self._report(TransportError(detail))

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        logger.debug("Connection state %s -> %s", self._state, state)
        self._state = state
        if self._on_state_change is not None:
            self._on_state_change(state)

    def _report(self, exc: TransportError | SendFailureError) -> None:
        error = ClientError(kind=ErrorKind(exc.code), message=exc.detail)
        self.last_error = error
        if self._on_error is not None:
            self._on_error(error)
