"""
Pydantic v2 models and enumerated states shared by server and client.

Session / wire: SessionState, EventName, EventMessage, AudioFrameHeader, AudioUnit
Client         : RecordingState, ConnectionState, ErrorKind, ClientError, ClientStatus
REST           : HealthResponse, SessionInfo, ErrorResponse
"""

from collections.abc import Iterable
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from echorelay.core.exceptions import EchoRelayError

# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str = "ok"
    version: str = "0.1.0"
    timestamp: datetime


# ---------------------------------------------------------------------------
# Session (server side)
# ---------------------------------------------------------------------------


class SessionState(StrEnum):
    """Lifecycle of one accepted transport connection."""

    connecting = "connecting"
    open = "open"
    closing = "closing"
    closed = "closed"


class SessionInfo(BaseModel):
    """Observable snapshot of a live session."""

    id: int
    state: SessionState
    units: int = 0
    bytes: int = 0
    opened_at: datetime


# ---------------------------------------------------------------------------
# Wire events
# ---------------------------------------------------------------------------


class EventName(StrEnum):
    """Event names carried over the transport."""

    connect = "connect"
    audio_stream = "audio-stream"
    audio_response = "audio-response"
    disconnect = "disconnect"
    error = "error"
    # Synthesized locally from handshake failures; never sent on the wire
    connect_error = "connect_error"


BINARY_EVENTS = frozenset({EventName.audio_stream, EventName.audio_response})


class EventMessage(BaseModel):
    """Control event sent as a JSON text frame."""

    event: EventName
    data: dict = Field(default_factory=dict)


class AudioFrameHeader(BaseModel):
    """JSON header that prefixes the payload inside a binary frame."""

    event: EventName
    mime_type: str
    captured_at: datetime


class AudioUnit(BaseModel):
    """One complete, immutable recording (a single record-to-stop cycle)."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    mime_type: str
    captured_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_chunks(
        cls,
        chunks: Iterable[bytes],
        mime_type: str,
        captured_at: datetime | None = None,
    ) -> "AudioUnit":
        """Concatenate buffered chunks, in order, into a single unit."""
        return cls(
            data=b"".join(chunks),
            mime_type=mime_type,
            captured_at=captured_at or datetime.now(UTC),
        )


# ---------------------------------------------------------------------------
# Client state machines
# ---------------------------------------------------------------------------


class RecordingState(StrEnum):
    """Capture Controller states."""

    idle = "idle"
    initializing = "initializing"
    recording = "recording"
    stopping = "stopping"
    sending = "sending"


class ConnectionState(StrEnum):
    """Connection Supervisor states."""

    disconnected = "disconnected"
    connecting = "connecting"
    connected = "connected"
    error = "error"


def can_start(recording_state: RecordingState, connection_state: ConnectionState) -> bool:
    """Return True when a new recording cycle may begin."""
    return (
        recording_state == RecordingState.idle
        and connection_state == ConnectionState.connected
    )


class ErrorKind(StrEnum):
    """Categories of errors surfaced to the user."""

    device_unavailable = "DEVICE_UNAVAILABLE"
    permission_denied = "PERMISSION_DENIED"
    capture_failure = "CAPTURE_FAILURE"
    transport_error = "TRANSPORT_ERROR"
    send_failure = "SEND_FAILURE"


class ClientError(BaseModel):
    """Human-readable error reported by a client state machine."""

    kind: ErrorKind
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class InputDevice(BaseModel):
    """An enumerated capture device."""

    id: str
    label: str


class ClientStatus(BaseModel):
    """Everything a UI needs to render: both states plus enabled actions."""

    recording_state: RecordingState
    connection_state: ConnectionState
    endpoint: str
    session_id: int | None = None
    last_error: ClientError | None = None
    can_connect: bool
    can_start: bool
    can_stop: bool


# ---------------------------------------------------------------------------
# Error
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Error envelope shared by REST responses and ``error`` events."""

    detail: str
    code: str
    timestamp: str

    @classmethod
    def build(cls, code: str, detail: str) -> "ErrorResponse":
        return cls(detail=detail, code=code, timestamp=datetime.now(UTC).isoformat())

    @classmethod
    def from_exception(cls, exc: EchoRelayError) -> "ErrorResponse":
        return cls(detail=exc.detail, code=exc.code, timestamp=exc.timestamp)
