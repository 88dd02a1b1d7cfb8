"""
Transport module - event-framed sessions over WebSocket connections.
"""

from .session import (
    ClientTransportSession,
    ServerTransportSession,
    SessionClosed,
    TransportSession,
)

__all__ = [
    "TransportSession",
    "ServerTransportSession",
    "ClientTransportSession",
    "SessionClosed",
]
