"""
EchoRelay exception hierarchy.

All application-specific exceptions inherit from EchoRelayError,
enabling centralized error handling in the API middleware layer and
uniform error reporting in the client state machines.
"""

from datetime import UTC, datetime


class EchoRelayError(Exception):
    """Base exception for all EchoRelay errors."""

    def __init__(
        self,
        detail: str = "An unexpected error occurred",
        code: str = "ECHORELAY_ERROR",
        status_code: int = 500,
    ) -> None:
        self.detail = detail
        self.code = code
        self.status_code = status_code
        self.timestamp = datetime.now(UTC).isoformat()
        super().__init__(detail)


class DeviceUnavailableError(EchoRelayError):
    """Raised when the requested input device cannot be acquired."""

    def __init__(self, device_id: str | None = None) -> None:
        target = f"Input device {device_id!r}" if device_id else "Default input device"
        super().__init__(
            detail=f"{target} is not available",
            code="DEVICE_UNAVAILABLE",
            status_code=503,
        )


class PermissionDeniedError(EchoRelayError):
    """Raised when capture permission is refused."""

    def __init__(self, detail: str = "Microphone access was denied") -> None:
        super().__init__(detail=detail, code="PERMISSION_DENIED", status_code=403)


class CaptureFailureError(EchoRelayError):
    """Raised when the capture device fails while recording."""

    def __init__(self, detail: str = "Error recording audio") -> None:
        super().__init__(detail=detail, code="CAPTURE_FAILURE", status_code=500)


class TransportError(EchoRelayError):
    """Raised when the connection is refused, reset, or times out."""

    def __init__(self, detail: str = "Failed to connect to server") -> None:
        super().__init__(detail=detail, code="TRANSPORT_ERROR", status_code=502)


class SendFailureError(EchoRelayError):
    """Raised when an audio unit could not be transmitted."""

    def __init__(self, detail: str = "Error sending audio to server") -> None:
        super().__init__(detail=detail, code="SEND_FAILURE", status_code=502)


class InvalidAudioUnitError(EchoRelayError):
    """Raised for empty or non-binary `audio-stream` payloads."""

    def __init__(self, detail: str = "Audio unit is empty") -> None:
        super().__init__(detail=detail, code="INVALID_AUDIO_UNIT", status_code=422)


class ProtocolError(EchoRelayError):
    """Raised when a frame cannot be decoded."""

    def __init__(self, detail: str = "Malformed frame") -> None:
        super().__init__(detail=detail, code="PROTOCOL_ERROR", status_code=400)


class SessionNotFoundError(EchoRelayError):
    """Raised when a session ID does not exist."""

    def __init__(self, session_id: int | str) -> None:
        super().__init__(
            detail=f"Session not found: {session_id}",
            code="SESSION_NOT_FOUND",
            status_code=404,
        )
