"""
Client module - capture, connection supervision, and the relay client facade.
"""

from .capture import CaptureController
from .relay_client import RelayClient
from .supervisor import ConnectionSupervisor, build_ws_url

__all__ = ["CaptureController", "ConnectionSupervisor", "RelayClient", "build_ws_url"]
