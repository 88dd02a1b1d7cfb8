"""
Relay client - couples the connection supervisor and the capture controller.

The two state machines stay independent; the only coupling is the
``can_start`` guard. ``status()`` gives a UI everything it needs to render
the current combination and which actions are enabled.
"""

import logging
from collections.abc import Callable

from echorelay.client.audio.base import AudioBackend, PlaybackSink
from echorelay.client.capture import CaptureController
from echorelay.client.supervisor import ConnectionSupervisor
from echorelay.core.config import Settings, get_settings
from echorelay.core.models import AudioUnit, ClientError, ClientStatus, RecordingState

logger = logging.getLogger(__name__)


class RelayClient:
    """One supervisor plus one capture controller sharing a transport.

    Args:
        backend: Capture device collaborator.
        playback: Sink for echoed units.
        settings: Shared configuration.
        endpoint: Initial server endpoint.
        on_change: Called with a fresh ``ClientStatus`` after every state
            change or reported error.
        on_audio_response: Called with each echoed unit.
    """

    def __init__(
        self,
        backend: AudioBackend,
        playback: PlaybackSink | None = None,
        settings: Settings | None = None,
        endpoint: str | None = None,
        on_change: Callable[[ClientStatus], None] | None = None,
        on_audio_response: Callable[[AudioUnit], None] | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._on_change = on_change
        self.supervisor = ConnectionSupervisor(
            endpoint=endpoint,
            playback=playback,
            settings=settings,
            on_state_change=lambda _state: self._notify(),
            on_error=self._handle_error,
            on_audio_response=on_audio_response,
        )
        self.controller = CaptureController(
            backend=backend,
            send_unit=self.supervisor.send_unit,
            connection_state=lambda: self.supervisor.state,
            settings=settings,
            on_state_change=lambda _state: self._notify(),
            on_error=self._handle_error,
        )
        self.last_error: ClientError | None = None

    def status(self) -> ClientStatus:
        recording = self.controller.state
        return ClientStatus(
            recording_state=recording,
            connection_state=self.supervisor.state,
            endpoint=self.supervisor.endpoint,
            session_id=self.supervisor.session_id,
            last_error=self.last_error,
            can_connect=recording == RecordingState.idle,
            can_start=self.controller.can_start,
            can_stop=self.controller.can_stop,
        )

    async def connect(self, endpoint: str | None = None) -> bool:
        """(Re)connect; disabled while a recording cycle is in progress."""
        if self.controller.state != RecordingState.idle:
            logger.debug("Connect ignored while %s", self.controller.state)
            return False
        self.last_error = None
        return await self.supervisor.connect(endpoint)

    async def start_recording(self) -> bool:
        if self.controller.can_start:
            self.last_error = None
        return await self.controller.start()

    async def stop_recording(self) -> bool:
        return await self.controller.stop()

    async def close(self) -> None:
        """Finish any recording in progress and drop the connection."""
        if self.controller.can_stop:
            await self.controller.stop()
        await self.supervisor.disconnect()

    def _handle_error(self, error: ClientError) -> None:
        self.last_error = error
        self._notify()

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self.status())
