"""Tests for the sounddevice capture backend and player (mocked PortAudio).

The ``sounddevice`` module is replaced with a MagicMock for the duration of
each test so no audio hardware or PortAudio library is needed.
"""

import importlib
import sys
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from echorelay.core.exceptions import CaptureFailureError, DeviceUnavailableError

BACKEND_MODULE = "echorelay.client.audio.sounddevice_backend"


@pytest.fixture
def fake_sd():
    """A stand-in ``sounddevice`` module with a real PortAudioError class."""
    fake = MagicMock(name="sounddevice")
    fake.PortAudioError = type("PortAudioError", (Exception,), {})
    return fake


@pytest.fixture
def backend_module(fake_sd):
    """Import the backend module against the mocked ``sounddevice``."""
    with patch.dict(sys.modules, {"sounddevice": fake_sd}):
        sys.modules.pop(BACKEND_MODULE, None)
        yield importlib.import_module(BACKEND_MODULE)


@pytest.fixture
def capture(backend_module):
    return backend_module.SoundDeviceCapture(None, sample_rate=16000, channels=1)


# ---------------------------------------------------------------------------
# Device ids
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("device_id", "expected"),
    [(None, None), ("", None), ("default", None), ("3", 3), ("USB Mic", "USB Mic")],
)
def test_resolve_device(backend_module, device_id, expected):
    assert backend_module._resolve_device(device_id) == expected


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------


def test_open_requests_int16_stream(capture, fake_sd):
    kwargs = fake_sd.RawInputStream.call_args.kwargs
    assert kwargs["dtype"] == "int16"
    assert kwargs["samplerate"] == 16000
    assert kwargs["channels"] == 1
    assert kwargs["device"] is None


def test_open_failure_means_device_unavailable(backend_module, fake_sd):
    fake_sd.RawInputStream.side_effect = fake_sd.PortAudioError("Device unavailable")

    with pytest.raises(DeviceUnavailableError):
        backend_module.SoundDeviceCapture("7")


def test_blocks_are_regrouped_into_interval_chunks(capture):
    chunks = []
    capture.start(chunks.append, MagicMock(), interval_ms=100)  # 3200 bytes

    capture._audio_callback(b"\x01" * 2000, 1000, None, 0)
    assert chunks == []
    capture._audio_callback(b"\x02" * 2000, 1000, None, 0)

    assert len(chunks) == 1
    assert len(chunks[0]) == 4000


async def test_stop_flushes_remainder_as_final_chunk(capture, fake_sd):
    chunks = []
    capture.start(chunks.append, MagicMock(), interval_ms=100)
    capture._audio_callback(b"\x03" * 500, 250, None, 0)

    await capture.stop()

    capture._stream.stop.assert_called_once()
    assert chunks == [b"\x03" * 500]


def test_start_failure_is_capture_failure(capture, fake_sd):
    capture._stream.start.side_effect = fake_sd.PortAudioError("boom")

    with pytest.raises(CaptureFailureError):
        capture.start(MagicMock(), MagicMock(), interval_ms=100)


def test_unexpected_stream_end_reports_error(capture):
    on_error = MagicMock()
    capture.start(MagicMock(), on_error, interval_ms=100)

    capture._finished_callback()

    on_error.assert_called_once()
    assert isinstance(on_error.call_args.args[0], CaptureFailureError)


async def test_stream_end_after_stop_is_silent(capture):
    on_error = MagicMock()
    capture.start(MagicMock(), on_error, interval_ms=100)

    await capture.stop()
    capture._finished_callback()

    on_error.assert_not_called()


def test_close_releases_stream(capture):
    capture.close()
    capture._stream.close.assert_called_once()


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------


def test_list_input_devices_skips_outputs(backend_module, fake_sd):
    fake_sd.query_devices.return_value = [
        {"name": "Built-in Microphone", "max_input_channels": 2},
        {"name": "Speakers", "max_input_channels": 0},
        {"name": "USB Mic", "max_input_channels": 1},
    ]

    devices = backend_module.SoundDeviceBackend().list_input_devices()

    assert [(d.id, d.label) for d in devices] == [("0", "Built-in Microphone"), ("2", "USB Mic")]


async def test_permission_granted(backend_module):
    assert await backend_module.SoundDeviceBackend().request_capture_permission() is True


async def test_permission_refused(backend_module, fake_sd):
    fake_sd.check_input_settings.side_effect = fake_sd.PortAudioError("denied")
    assert await backend_module.SoundDeviceBackend().request_capture_permission() is False


async def test_check_device_opens_and_releases(backend_module, fake_sd):
    assert await backend_module.SoundDeviceBackend().check_device("1") is True
    fake_sd.RawInputStream.return_value.close.assert_called_once()


async def test_check_device_unavailable(backend_module, fake_sd):
    fake_sd.RawInputStream.side_effect = ValueError("No input device matching 'ghost'")
    assert await backend_module.SoundDeviceBackend().check_device("ghost") is False


# ---------------------------------------------------------------------------
# Playback
# ---------------------------------------------------------------------------


def test_player_plays_pcm(backend_module, fake_sd):
    data = np.array([0, 1000, -1000, 32767], dtype="<i2").tobytes()

    backend_module.SoundDevicePlayer().play(data, "audio/pcm;format=s16le;rate=8000;channels=2")

    samples = fake_sd.play.call_args.args[0]
    assert samples.shape == (2, 2)
    assert fake_sd.play.call_args.kwargs["samplerate"] == 8000


def test_player_rejects_other_encodings(backend_module):
    with pytest.raises(ValueError, match="Unsupported"):
        backend_module.SoundDevicePlayer().play(b"\x00" * 10, "audio/webm")
