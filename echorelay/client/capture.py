"""
Capture controller - handles the full recording state machine.

States: idle -> initializing -> recording -> stopping -> sending -> idle

One recording cycle acquires the input device, buffers encoded chunks,
assembles them into a single ``AudioUnit`` and hands it to the transport.
Every exit path, including errors and cancellation, releases the device
exactly once and ends in ``idle``. Errors are reported through
``on_error`` and ``last_error``; they are never raised to the caller.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from echorelay.client.audio.base import AudioBackend, CaptureHandle
from echorelay.core.config import Settings, get_settings
from echorelay.core.exceptions import (
    CaptureFailureError,
    DeviceUnavailableError,
    EchoRelayError,
    PermissionDeniedError,
    SendFailureError,
)
from echorelay.core.models import (
    AudioUnit,
    ClientError,
    ConnectionState,
    ErrorKind,
    RecordingState,
    can_start,
)

logger = logging.getLogger(__name__)

SendUnit = Callable[[AudioUnit], Awaitable[None]]


class CaptureController:
    """Owns the local recording state machine and the chunk buffer.

    Args:
        backend: Device collaborator used to probe and acquire inputs.
        send_unit: Coroutine that transmits a finished unit (raises
            ``SendFailureError`` on failure).
        connection_state: Returns the current ConnectionState; recording may
            only start while connected.
        settings: Timing and encoding configuration.
        on_state_change: Called with each new RecordingState.
        on_error: Called with each reported ``ClientError``.
    """

    def __init__(
        self,
        backend: AudioBackend,
        send_unit: SendUnit,
        connection_state: Callable[[], ConnectionState],
        settings: Settings | None = None,
        on_state_change: Callable[[RecordingState], None] | None = None,
        on_error: Callable[[ClientError], None] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._backend = backend
        self._send_unit = send_unit
        self._connection_state = connection_state
        self._on_state_change = on_state_change
        self._on_error = on_error

        self.device_id: str | None = self._settings.input_device or None
        self.last_error: ClientError | None = None
        self._state = RecordingState.idle
        self._handle: CaptureHandle | None = None
        self._chunks: list[bytes] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._abort_task: asyncio.Task | None = None

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def can_start(self) -> bool:
        return can_start(self._state, self._connection_state())

    @property
    def can_stop(self) -> bool:
        return self._state == RecordingState.recording

    # ------------------------------------------------------------------
    # start
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Begin a recording cycle. Returns True once ``recording``.

        Ignored (returns False) unless idle and connected, which also
        guards against a second acquisition while one is initializing.
        """
        if not self.can_start:
            logger.debug(
                "Start ignored: recording=%s connection=%s",
                self._state,
                self._connection_state(),
            )
            return False

        self.last_error = None
        self._set_state(RecordingState.initializing)
        self._loop = asyncio.get_running_loop()
        handle: CaptureHandle | None = None
        try:
            # Device warm-up; capturing immediately truncates leading audio
            await asyncio.sleep(self._settings.settle_delay_ms / 1000)

            if not await self._backend.request_capture_permission():
                raise PermissionDeniedError()

            if self.device_id and not await self._backend.check_device(self.device_id):
                raise DeviceUnavailableError(self.device_id)

            handle = await self._backend.open(self.device_id)
            self._chunks = []
            self._handle = handle
            handle.start(
                on_chunk=self._on_chunk,
                on_error=self._on_capture_error,
                interval_ms=self._settings.chunk_interval_ms,
            )
        except EchoRelayError as exc:
            await self._fail_start(exc)
            return False
        except Exception as exc:
            logger.exception("Unexpected error while acquiring input device")
            await self._fail_start(CaptureFailureError(f"Could not start recording: {exc}"))
            return False
        finally:
            if self._state == RecordingState.initializing and self._handle is None:
                # Cancelled before the device was handed over
                self._set_state(RecordingState.idle)
                if handle is not None:
                    self._close_handle(handle)

        self._set_state(RecordingState.recording)
        return True

    async def _fail_start(self, exc: EchoRelayError) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            await self._release(handle)
        self._chunks = []
        self._set_state(RecordingState.idle)
        self._report(exc)

    # ------------------------------------------------------------------
    # stop
    # ------------------------------------------------------------------

    async def stop(self) -> bool:
        """Finish the cycle: release the device, assemble, send, return to idle.

        Only honored from ``recording``. Returns True if a unit was handed
        to the transport successfully.
        """
        if self._state != RecordingState.recording:
            logger.debug("Stop ignored in state %s", self._state)
            return False

        self._set_state(RecordingState.stopping)
        if self._abort_task is not None and not self._abort_task.done():
            self._abort_task.cancel()
        handle, self._handle = self._handle, None
        try:
            if handle is not None:
                release_error = await self._release(handle)
                if release_error is not None:
                    self._report(release_error)

            # Extra wait after the flush acknowledgment for trailing audio
            await asyncio.sleep(self._settings.drain_delay_ms / 1000)

            chunks, self._chunks = self._chunks, []
            unit = AudioUnit.from_chunks(chunks, mime_type=self._settings.audio_mime_type)
            if unit.size == 0:
                self._report(CaptureFailureError("No audio was captured"))
                return False

            self._set_state(RecordingState.sending)
            logger.info("Sending unit: %s chunks, %s bytes", len(chunks), unit.size)
            try:
                await self._send_unit(unit)
            except SendFailureError as exc:
                self._report(exc)
                return False
            except Exception as exc:
                logger.exception("Unexpected error while sending unit")
                self._report(SendFailureError(f"Error sending audio to server: {exc}"))
                return False
            return True
        finally:
            self._chunks = []
            self._set_state(RecordingState.idle)

    # ------------------------------------------------------------------
    # capture callbacks (may arrive on a backend thread)
    # ------------------------------------------------------------------

    def _on_chunk(self, data: bytes) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._append_chunk, data)

    def _append_chunk(self, data: bytes) -> None:
        if data and self._state in (RecordingState.recording, RecordingState.stopping):
            self._chunks.append(data)

    def _on_capture_error(self, exc: Exception) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._schedule_abort, exc)

    def _schedule_abort(self, exc: Exception) -> None:
        if self._state != RecordingState.recording:
            return
        self._abort_task = asyncio.ensure_future(self._abort(exc))

    async def _abort(self, exc: Exception) -> None:
        """Abandon the in-progress unit after a device error."""
        if self._state != RecordingState.recording:
            # stop() already owns the handle
            logger.debug("Capture error ignored in state %s: %s", self._state, exc)
            return
        self._set_state(RecordingState.stopping)
        handle, self._handle = self._handle, None
        self._chunks = []
        try:
            if handle is not None:
                await self._release(handle)
        finally:
            self._set_state(RecordingState.idle)
        if isinstance(exc, CaptureFailureError):
            self._report(exc)
        else:
            self._report(CaptureFailureError(f"Error recording audio: {exc}"))

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _release(self, handle: CaptureHandle) -> CaptureFailureError | None:
        """Stop then close ``handle``; close always runs."""
        error: CaptureFailureError | None = None
        try:
            await handle.stop()
        except CaptureFailureError as exc:
            error = exc
        except Exception as exc:
            logger.exception("Failed to stop input device")
            error = CaptureFailureError(f"Could not stop input device: {exc}")
        finally:
            self._close_handle(handle)
        return error

    def _close_handle(self, handle: CaptureHandle) -> None:
        try:
            handle.close()
        except Exception:
            logger.exception("Failed to release input device")

    def _set_state(self, state: RecordingState) -> None:
        if state == self._state:
            return
        logger.debug("Recording state %s -> %s", self._state, state)
        self._state = state
        if self._on_state_change is not None:
            self._on_state_change(state)

    def _report(self, exc: EchoRelayError) -> None:
        error = ClientError(kind=ErrorKind(exc.code), message=exc.detail)
        self.last_error = error
        logger.warning("Capture error (%s): %s", exc.code, exc.detail)
        if self._on_error is not None:
            self._on_error(error)
