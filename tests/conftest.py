"""Shared pytest fixtures for the EchoRelay test suite.

Provides settings with zero capture delays, PCM sample data, and fake
collaborators (audio backend, capture handle, playback sink, websockets
client connection) used across unit and integration tests.
"""

import asyncio
import math
import struct

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK
from websockets.frames import Close

from echorelay.client.audio.base import AudioBackend, CaptureHandle, PlaybackSink
from echorelay.core import metrics, protocol
from echorelay.core.config import Settings
from echorelay.core.exceptions import CaptureFailureError, DeviceUnavailableError
from echorelay.core.models import AudioUnit, EventName, InputDevice

MIME = "audio/pcm;format=s16le;rate=16000;channels=1"


# ---------------------------------------------------------------------------
# Settings / metrics
# ---------------------------------------------------------------------------


@pytest.fixture
def settings():
    """Settings with no settle/drain waits and a short connect budget."""
    return Settings(
        settle_delay_ms=0,
        drain_delay_ms=0,
        connect_timeout=1.0,
        connect_attempts=1,
        send_timeout=1.0,
        input_device="",
    )


@pytest.fixture(autouse=True)
def reset_metrics():
    """Start every test with zeroed process-wide metrics."""
    metrics.reset()
    yield
    metrics.reset()


# ---------------------------------------------------------------------------
# Audio Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_pcm_bytes():
    """Generate 1 second of 440Hz sine-wave PCM audio (16kHz, 16-bit, mono).

    Returns:
        bytes: Raw PCM audio data.
    """
    sample_rate = 16000
    frequency = 440.0
    amplitude = 16000  # ~50% of max int16

    samples = []
    for i in range(sample_rate):
        value = int(amplitude * math.sin(2 * math.pi * frequency * i / sample_rate))
        samples.append(struct.pack("<h", value))
    return b"".join(samples)


@pytest.fixture
def sample_unit(sample_pcm_bytes):
    return AudioUnit(data=sample_pcm_bytes, mime_type=MIME)


# ---------------------------------------------------------------------------
# Device fakes
# ---------------------------------------------------------------------------


class FakeCaptureHandle(CaptureHandle):
    """Capture handle driven by the test through ``emit()``.

    ``final_chunk`` is delivered during ``stop()``, like a real flush.
    """

    def __init__(self, final_chunk: bytes = b"", fail_start: Exception | None = None,
                 fail_stop: Exception | None = None) -> None:
        self.final_chunk = final_chunk
        self.fail_start = fail_start
        self.fail_stop = fail_stop
        self.start_calls = 0
        self.stop_calls = 0
        self.close_calls = 0
        self.interval_ms: int | None = None
        self._on_chunk = None
        self._on_error = None

    def start(self, on_chunk, on_error, interval_ms):
        self.start_calls += 1
        self.interval_ms = interval_ms
        if self.fail_start is not None:
            raise self.fail_start
        self._on_chunk = on_chunk
        self._on_error = on_error

    async def stop(self):
        self.stop_calls += 1
        if self.final_chunk and self._on_chunk is not None:
            self._on_chunk(self.final_chunk)
        if self.fail_stop is not None:
            raise self.fail_stop

    def close(self):
        self.close_calls += 1

    def emit(self, chunk: bytes) -> None:
        self._on_chunk(chunk)

    def fail(self, exc: Exception | None = None) -> None:
        self._on_error(exc or CaptureFailureError("device unplugged"))

    @property
    def released(self) -> bool:
        return self.close_calls > 0


class FakeAudioBackend(AudioBackend):
    """In-memory device list; ``available`` toggles per device id."""

    def __init__(self) -> None:
        self.available: dict[str, bool] = {"default": True, "mic-1": True, "mic-2": True}
        self.permitted = True
        self.handle_kwargs: dict = {}
        self.handles: list[FakeCaptureHandle] = []
        self.open_gate: asyncio.Event | None = None
        self.open_error: Exception | None = None

    def list_input_devices(self):
        return [InputDevice(id=d, label=d.title()) for d in self.available if d != "default"]

    async def request_capture_permission(self):
        return self.permitted

    async def check_device(self, device_id):
        return self.available.get(device_id, False)

    async def open(self, device_id):
        if self.open_gate is not None:
            await self.open_gate.wait()
        if self.open_error is not None:
            raise self.open_error
        if not self.available.get(device_id or "default", False):
            raise DeviceUnavailableError(device_id)
        handle = FakeCaptureHandle(**self.handle_kwargs)
        self.handles.append(handle)
        return handle

    @property
    def handle(self) -> FakeCaptureHandle:
        return self.handles[-1]


class FakePlayback(PlaybackSink):
    def __init__(self, error: Exception | None = None) -> None:
        self.played: list[tuple[bytes, str]] = []
        self.error = error

    def play(self, data, mime_type):
        if self.error is not None:
            raise self.error
        self.played.append((data, mime_type))


@pytest.fixture
def backend():
    return FakeAudioBackend()


@pytest.fixture
def playback():
    return FakePlayback()


# ---------------------------------------------------------------------------
# websockets client fake
# ---------------------------------------------------------------------------


def clean_close() -> ConnectionClosedOK:
    return ConnectionClosedOK(Close(1000, ""), Close(1000, ""), rcvd_then_sent=True)


def abnormal_close() -> ConnectionClosedError:
    return ConnectionClosedError(None, None)


class FakeConnection:
    """Simulates a ``websockets`` client connection.

    Frames pushed with ``push()`` are returned by ``recv()``; an exception
    pushed the same way is raised instead. With ``echo=True`` every
    ``audio-stream`` frame is answered with an identical ``audio-response``.
    """

    def __init__(self, session_id: int = 1, echo: bool = False) -> None:
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: list = []
        self.closed = False
        self.echo = echo
        self.send_error: Exception | None = None
        self.send_gate: asyncio.Event | None = None
        self.push(protocol.encode_control(EventName.connect, {"session_id": session_id}))

    def push(self, item) -> None:
        self.incoming.put_nowait(item)

    async def recv(self):
        item = await self.incoming.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def send(self, frame) -> None:
        if self.send_gate is not None:
            await self.send_gate.wait()
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(frame)
        if self.echo and isinstance(frame, bytes):
            event, unit = protocol.decode(frame)
            if event == EventName.audio_stream:
                self.push(protocol.encode_audio(EventName.audio_response, unit))

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.push(clean_close())

    def remote_close(self, clean: bool = True) -> None:
        self.push(clean_close() if clean else abnormal_close())

    def sent_units(self) -> list[AudioUnit]:
        return [protocol.decode(f)[1] for f in self.sent if isinstance(f, bytes)]


@pytest.fixture
def make_connection():
    """Factory for ``FakeConnection`` objects."""
    return FakeConnection
