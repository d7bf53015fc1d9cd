"""Network stack (transport, backoff, connection state) for the management API."""

from xolib.network.backoff import BackOff
from xolib.network.deferred import Deferred
from xolib.network.errors import (
    AuthenticationError,
    CallTimeoutError,
    ConnectTransportError,
    ConnectionError,
    RemoteError,
    ReservedMethodError,
    SessionError,
    SignInAbortedError,
    XoError,
)
from xolib.network.state import ConnectionStatus, ConnectionTracker
from xolib.network.transport import BaseTransport, DummyTransport, WebSocketTransport

__all__ = [
    "AuthenticationError",
    "BackOff",
    "BaseTransport",
    "CallTimeoutError",
    "ConnectTransportError",
    "ConnectionError",
    "ConnectionStatus",
    "ConnectionTracker",
    "Deferred",
    "DummyTransport",
    "RemoteError",
    "ReservedMethodError",
    "SessionError",
    "SignInAbortedError",
    "WebSocketTransport",
    "XoError",
]
