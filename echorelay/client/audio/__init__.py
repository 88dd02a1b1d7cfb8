"""
Audio module - device collaborators for the capture client.

Factory functions for creating the capture backend and playback sink
based on provider configuration.
"""

from .base import AudioBackend, CaptureHandle, PlaybackSink

__all__ = [
    "AudioBackend",
    "CaptureHandle",
    "PlaybackSink",
    "create_backend",
    "create_playback",
    "parse_mime_type",
]


def parse_mime_type(mime_type: str) -> tuple[str, dict[str, str]]:
    """Split ``"audio/pcm;rate=16000"`` into ``("audio/pcm", {"rate": "16000"})``."""
    base, *params = [part.strip() for part in mime_type.split(";")]
    parsed: dict[str, str] = {}
    for param in params:
        key, _, value = param.partition("=")
        if key:
            parsed[key.strip().lower()] = value.strip()
    return base.lower(), parsed


def create_backend(provider: str = "sounddevice", **kwargs) -> AudioBackend:
    """
    Factory function to create a capture backend.

    Args:
        provider: Backend name ("sounddevice").
        **kwargs: Backend-specific configuration (sample_rate, channels).

    Returns:
        AudioBackend implementation instance

    Raises:
        ValueError: If provider is unknown
    """
    if provider == "sounddevice":
        from .sounddevice_backend import SoundDeviceBackend

        return SoundDeviceBackend(**kwargs)
    raise ValueError(f"Unknown audio backend: {provider}")


def create_playback(provider: str = "sounddevice") -> PlaybackSink:
    """Factory function to create a playback sink."""
    if provider == "sounddevice":
        from .sounddevice_backend import SoundDevicePlayer

        return SoundDevicePlayer()
    raise ValueError(f"Unknown playback provider: {provider}")
