"""WebSocket relay endpoint: echoes each received audio unit to its sender.

Every accepted connection becomes a Session with a fresh identifier.
The client sends one binary ``audio-stream`` frame per finished recording;
the server answers on the same session with an ``audio-response`` frame
carrying the identical bytes.

Per-session state is limited to identity and counters, held in a
``SessionRegistry`` and released when the session ends. Nothing is
persisted.

Pipeline: accept → ``connect`` event → (audio-stream → echo)* → disconnect → release
"""

import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime

from fastapi import WebSocket

from echorelay.core import metrics
from echorelay.core.config import Settings, get_settings
from echorelay.core.exceptions import InvalidAudioUnitError, SessionNotFoundError, TransportError
from echorelay.core.models import AudioUnit, ErrorResponse, EventName, SessionInfo, SessionState
from echorelay.core.protocol import Payload
from echorelay.transport import ServerTransportSession, TransportSession

logger = logging.getLogger(__name__)


@dataclass
class SessionRecord:
    """Identity and accounting for one live session."""

    id: int
    state: SessionState = SessionState.connecting
    opened_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    units: int = 0
    bytes: int = 0

    def to_info(self) -> SessionInfo:
        return SessionInfo(
            id=self.id,
            state=self.state,
            units=self.units,
            bytes=self.bytes,
            opened_at=self.opened_at,
        )


class SessionRegistry:
    """Live sessions keyed by identifier.

    Identifiers come from a monotonically increasing counter and are never
    reused, so a reconnecting client always receives a new one.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._sessions: dict[int, SessionRecord] = {}

    def open(self) -> SessionRecord:
        with self._lock:
            record = SessionRecord(id=next(self._ids))
            self._sessions[record.id] = record
        return record

    def get(self, session_id: int) -> SessionRecord:
        """Return a live session.

        Raises:
            SessionNotFoundError: If no live session has this identifier.
        """
        with self._lock:
            record = self._sessions.get(session_id)
        if record is None:
            raise SessionNotFoundError(session_id)
        return record

    def release(self, session_id: int) -> SessionRecord | None:
        with self._lock:
            return self._sessions.pop(session_id, None)

    def list(self) -> list[SessionInfo]:
        with self._lock:
            records = list(self._sessions.values())
        return [r.to_info() for r in records]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


class RelayDispatcher:
    """Accepts transport sessions and implements the echo contract.

    Args:
        registry: Where live sessions are tracked.
        settings: Frame size limit is read from here.
    """

    def __init__(self, registry: SessionRegistry, settings: Settings | None = None) -> None:
        self.registry = registry
        self._settings = settings or get_settings()

    async def serve(self, websocket: WebSocket) -> None:
        """Run one session from accept to release."""
        await websocket.accept()
        record = self.registry.open()
        metrics.record_session_opened()
        logger.info("Client connected: session=%s", record.id)

        session = ServerTransportSession(websocket, max_frame_bytes=self._settings.max_unit_bytes)
        session.session_id = record.id
        self.attach(session, record)

        try:
            await session.send(EventName.connect, {"session_id": record.id})
            record.state = SessionState.open
            await session.run()
        except TransportError as exc:
            logger.warning("Session %s failed before it opened: %s", record.id, exc.detail)
            await session.close()
        finally:
            record.state = SessionState.closed
            metrics.record_session_closed()
            self.registry.release(record.id)
            logger.info(
                "Client disconnected: session=%s units=%s bytes=%s",
                record.id,
                record.units,
                record.bytes,
            )

    def attach(self, session: TransportSession, record: SessionRecord) -> None:
        """Register this dispatcher's handlers on ``session``."""

        async def on_audio_stream(payload: Payload) -> None:
            await self.handle_audio_stream(session, record, payload)

        def on_disconnect(payload: Payload) -> None:
            record.state = SessionState.closing
            logger.debug("Session %s disconnect: %s", record.id, payload)

        def on_connect_error(payload: Payload) -> None:
            record.state = SessionState.closing
            logger.warning("Session %s dropped: %s", record.id, payload.get("detail", ""))

        async def on_error(payload: Payload) -> None:
            await self.handle_error(session, record, payload)

        session.on_event(EventName.audio_stream, on_audio_stream)
        session.on_event(EventName.disconnect, on_disconnect)
        session.on_event(EventName.connect_error, on_connect_error)
        session.on_event(EventName.error, on_error)

    async def handle_audio_stream(
        self,
        session: TransportSession,
        record: SessionRecord,
        payload: Payload,
    ) -> None:
        """Validate one unit and echo it unchanged to the same session."""
        try:
            unit = _validate_unit(payload)
        except InvalidAudioUnitError as exc:
            metrics.record_unit_rejected()
            logger.warning("Rejected unit on session %s: %s", record.id, exc.detail)
            await _send_error(session, exc.code, exc.detail)
            return

        try:
            await session.send(EventName.audio_response, unit)
        except TransportError as exc:
            logger.warning("Echo failed on session %s: %s", record.id, exc.detail)
            return

        record.units += 1
        record.bytes += unit.size
        metrics.record_unit_echoed(unit.size)
        logger.debug(
            "Echoed unit: session=%s size=%s type=%s captured_at=%s",
            record.id,
            unit.size,
            unit.mime_type,
            unit.captured_at.isoformat(),
        )

    async def handle_error(
        self,
        session: TransportSession,
        record: SessionRecord,
        payload: Payload,
    ) -> None:
        """Report undecodable frames back to the client; log client-sent errors."""
        if payload.get("origin") == "local":
            metrics.record_unit_rejected()
            logger.warning("Bad frame on session %s: %s", record.id, payload.get("detail"))
            await _send_error(session, payload.get("code", "PROTOCOL_ERROR"), payload.get("detail", ""))
        else:
            logger.warning("Client reported error on session %s: %s", record.id, payload)


def _validate_unit(payload: Payload) -> AudioUnit:
    if not isinstance(payload, AudioUnit):
        raise InvalidAudioUnitError("audio-stream payload must be binary audio")
    if payload.size == 0:
        raise InvalidAudioUnitError("Audio unit is empty")
    return payload


async def _send_error(session: TransportSession, code: str, detail: str) -> None:
    try:
        await session.send(EventName.error, ErrorResponse.build(code, detail).model_dump())
    except TransportError:
        logger.warning("Could not deliver error to session %s", session.session_id)


async def relay_ws(websocket: WebSocket) -> None:
    """Full-duplex relay endpoint.

    Protocol:
        - Server sends on accept: ``connect`` with ``{"session_id": int}``.
        - Client sends: one binary ``audio-stream`` frame per recording.
        - Server sends: ``audio-response`` with identical bytes, or ``error``.
    """
    dispatcher: RelayDispatcher = websocket.app.state.dispatcher
    await dispatcher.serve(websocket)
