"""
Application configuration via pydantic-settings.

Loads values from .env file with sensible defaults for local development.
Use ``get_settings()`` to obtain the cached singleton instance.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """EchoRelay settings loaded from environment / .env file.

    All settings can be overridden via environment variables or a `.env` file.
    Field names map directly to env var names (case-insensitive).

    Attributes:
        relay_endpoint: Server endpoint the client connects to (scheme://host:port).
        connect_timeout: Seconds allowed for one WebSocket handshake.
        audio_mime_type: Encoding tag attached to every AudioUnit.
        settle_delay_ms: Wait before capture starts (device warm-up).
        drain_delay_ms: Extra wait after capture stops, before assembling the unit.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Silently ignore unrecognized env vars
    )

    # --- Server ---
    app_host: str = "0.0.0.0"  # Bind address for the FastAPI server
    app_port: int = 3000
    log_level: str = "INFO"  # Python logging level
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:8501",
    ]

    # --- Transport ---
    relay_path: str = "/ws"  # WebSocket route on the server
    relay_endpoint: str = "http://localhost:3000"  # http(s) is mapped to ws(s)
    connect_timeout: float = 5.0
    connect_attempts: int = 1  # Handshake attempts per connect() call
    send_timeout: float = 30.0  # Upper bound for writing one unit
    max_unit_bytes: int = 16 * 1024 * 1024  # Largest frame either side accepts

    # --- Audio ---
    # The bundled capture backend produces 16-bit little-endian PCM
    # Tag attached to every unit; the relay itself treats payloads as opaque
    audio_mime_type: str = "audio/pcm;format=s16le;rate=16000;channels=1"
    sample_rate: int = 16000
    channels: int = 1
    input_device: str = ""  # Empty = system default input

    # --- Capture timing ---
    chunk_interval_ms: int = 100
    settle_delay_ms: int = 500
    drain_delay_ms: int = 200


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings singleton.

    Uses ``functools.lru_cache`` so the .env file is read only once.
    Subsequent calls return the same ``Settings`` instance.

    Returns:
        Settings: The application-wide configuration object.
    """
    return Settings()
