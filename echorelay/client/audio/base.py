"""
Abstract device collaborators for the capture client.

The capture controller never talks to audio hardware directly; it goes
through an ``AudioBackend`` (enumerate, probe, acquire) and the
``CaptureHandle`` it returns. Received units are handed to a
``PlaybackSink``. Encoded bytes are opaque at this layer.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable

from echorelay.core.models import InputDevice

ChunkCallback = Callable[[bytes], None]
ErrorCallback = Callable[[Exception], None]


class CaptureHandle(ABC):
    """An acquired input device, owned by one recording cycle."""

    @abstractmethod
    def start(self, on_chunk: ChunkCallback, on_error: ErrorCallback, interval_ms: int) -> None:
        """Begin delivering encoded chunks every ``interval_ms``.

        Callbacks may be invoked from a backend thread.

        Raises:
            CaptureFailureError: If capture cannot begin.
        """

    @abstractmethod
    async def stop(self) -> None:
        """Stop capture; return once the final chunk has been delivered."""

    @abstractmethod
    def close(self) -> None:
        """Release the hardware handle."""


class AudioBackend(ABC):
    """Device enumeration, permission, and acquisition."""

    @abstractmethod
    def list_input_devices(self) -> list[InputDevice]:
        """Return available input devices in backend order."""

    @abstractmethod
    async def request_capture_permission(self) -> bool:
        """Return True if audio capture is permitted."""

    @abstractmethod
    async def check_device(self, device_id: str) -> bool:
        """Probe a device by acquiring and immediately releasing it."""

    @abstractmethod
    async def open(self, device_id: str | None) -> CaptureHandle:
        """Acquire ``device_id`` (or the default input when None).

        Raises:
            DeviceUnavailableError: If the device cannot be acquired.
            PermissionDeniedError: If capture is not permitted.
        """


class PlaybackSink(ABC):
    """Plays a received unit; fire-and-forget."""

    @abstractmethod
    def play(self, data: bytes, mime_type: str) -> None:
        """Start playback of ``data`` encoded as ``mime_type``."""
