"""Transport implementations for the management API."""

from .base import BaseTransport
from .dummy import DummyTransport
from .websocket import WebSocketTransport, build_ws_url

__all__ = ["BaseTransport", "DummyTransport", "WebSocketTransport", "build_ws_url"]
