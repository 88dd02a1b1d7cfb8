"""EchoRelay - real-time audio relay over a full-duplex WebSocket session."""

__version__ = "0.1.0"
