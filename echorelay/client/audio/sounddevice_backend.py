"""PortAudio capture and playback via ``sounddevice``.

Capture produces 16-bit little-endian PCM. The stream delivers blocks of
whatever size PortAudio prefers; they are regrouped into chunks of the
requested interval, and whatever remains when the stream stops is
delivered as the final chunk.
"""

import asyncio
import logging
import threading

import numpy as np
import sounddevice as sd

from echorelay.client.audio import parse_mime_type
from echorelay.client.audio.base import (
    AudioBackend,
    CaptureHandle,
    ChunkCallback,
    ErrorCallback,
    PlaybackSink,
)
from echorelay.core.exceptions import CaptureFailureError, DeviceUnavailableError
from echorelay.core.models import InputDevice

logger = logging.getLogger(__name__)

_SAMPLE_WIDTH = 2  # int16


def _resolve_device(device_id: str | None) -> int | str | None:
    """Map a device id string to what sounddevice expects."""
    if not device_id or device_id == "default":
        return None
    try:
        return int(device_id)
    except ValueError:
        return device_id


class SoundDeviceCapture(CaptureHandle):
    """An open ``RawInputStream``; constructing it acquires the device."""

    def __init__(self, device_id: str | None, sample_rate: int = 16000, channels: int = 1) -> None:
        self.device_id = device_id
        self.sample_rate = sample_rate
        self.channels = channels
        self._lock = threading.Lock()
        self._pending = bytearray()
        self._chunk_bytes = 0
        self._on_chunk: ChunkCallback | None = None
        self._on_error: ErrorCallback | None = None
        self._stopping = False

        try:
            self._stream = sd.RawInputStream(
                device=_resolve_device(device_id),
                samplerate=sample_rate,
                channels=channels,
                dtype="int16",
                callback=self._audio_callback,
                finished_callback=self._finished_callback,
            )
        except (sd.PortAudioError, ValueError) as exc:
            logger.warning("Could not open input device %r: %s", device_id, exc)
            raise DeviceUnavailableError(device_id) from exc

    def _audio_callback(self, indata, frames: int, time_info, status: sd.CallbackFlags) -> None:  # noqa: ANN001
        """Callback for the sounddevice stream (PortAudio thread)."""
        if status:
            logger.warning("Audio callback status: %s", status)
        chunk = None
        with self._lock:
            self._pending.extend(bytes(indata))
            if self._chunk_bytes and len(self._pending) >= self._chunk_bytes:
                chunk = bytes(self._pending)
                self._pending.clear()
        if chunk and self._on_chunk is not None:
            self._on_chunk(chunk)

    def _finished_callback(self) -> None:
        if not self._stopping and self._on_error is not None:
            self._on_error(CaptureFailureError("Input stream stopped unexpectedly"))

    def start(self, on_chunk: ChunkCallback, on_error: ErrorCallback, interval_ms: int) -> None:
        self._on_chunk = on_chunk
        self._on_error = on_error
        frames = max(1, int(self.sample_rate * interval_ms / 1000))
        self._chunk_bytes = frames * self.channels * _SAMPLE_WIDTH
        logger.info("Starting capture: %sHz, %sch, %sms chunks", self.sample_rate, self.channels, interval_ms)
        try:
            self._stream.start()
        except sd.PortAudioError as exc:
            raise CaptureFailureError(f"Could not start capture: {exc}") from exc

    async def stop(self) -> None:
        self._stopping = True
        try:
            # Returns after PortAudio has processed all pending buffers
            await asyncio.to_thread(self._stream.stop)
        except sd.PortAudioError as exc:
            raise CaptureFailureError(f"Could not stop capture: {exc}") from exc
        finally:
            self._flush()

    def _flush(self) -> None:
        with self._lock:
            chunk = bytes(self._pending)
            self._pending.clear()
        if chunk and self._on_chunk is not None:
            self._on_chunk(chunk)

    def close(self) -> None:
        self._stopping = True
        self._stream.close()
        logger.info("Released input device %r", self.device_id)


class SoundDeviceBackend(AudioBackend):
    """Enumerates and acquires PortAudio input devices."""

    def __init__(self, sample_rate: int = 16000, channels: int = 1) -> None:
        self.sample_rate = sample_rate
        self.channels = channels

    def list_input_devices(self) -> list[InputDevice]:
        devices = []
        for i, device in enumerate(sd.query_devices()):
            if device["max_input_channels"] > 0:
                devices.append(InputDevice(id=str(i), label=device["name"]))
        return devices

    async def request_capture_permission(self) -> bool:
        try:
            await asyncio.to_thread(
                sd.check_input_settings,
                device=None,
                channels=self.channels,
                dtype="int16",
                samplerate=self.sample_rate,
            )
        except (sd.PortAudioError, ValueError) as exc:
            logger.warning("Capture not permitted: %s", exc)
            return False
        return True

    async def check_device(self, device_id: str) -> bool:
        try:
            handle = await self.open(device_id)
        except DeviceUnavailableError:
            return False
        handle.close()
        return True

    async def open(self, device_id: str | None) -> CaptureHandle:
        return await asyncio.to_thread(
            SoundDeviceCapture, device_id, self.sample_rate, self.channels
        )


class SoundDevicePlayer(PlaybackSink):
    """Non-blocking playback of PCM units on the default output device."""

    def play(self, data: bytes, mime_type: str) -> None:
        base, params = parse_mime_type(mime_type)
        if base != "audio/pcm" or params.get("format", "s16le") != "s16le":
            raise ValueError(f"Unsupported playback encoding: {mime_type}")
        rate = int(params.get("rate", 16000))
        channels = int(params.get("channels", 1))

        frame_bytes = _SAMPLE_WIDTH * channels
        usable = len(data) - (len(data) % frame_bytes)
        samples = np.frombuffer(data[:usable], dtype="<i2").reshape(-1, channels)
        sd.play(samples, samplerate=rate)
