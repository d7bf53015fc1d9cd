"""Error taxonomy shared by the transport and the session orchestrator."""

from __future__ import annotations

from typing import Any, Optional


class XoError(RuntimeError):
    """Base class for every error raised by xolib."""


class ConnectTransportError(XoError):
    """Raised when the transport cannot establish a connection."""


class ConnectionError(XoError):
    """Raised when a call cannot complete because the connection is gone."""


class SessionError(XoError):
    """Raised when the server rejects a call because no session is open."""


class SignInAbortedError(SessionError):
    """Raised on a pending sign-in superseded by a sign-out or a newer sign-in."""


class ReservedMethodError(XoError):
    """Raised when user code calls a session management method directly."""


class CallTimeoutError(XoError):
    """Raised when the server did not answer a call in time."""


class RemoteError(XoError):
    """JSON-RPC error returned by the server."""

    def __init__(self, message: str, *, code: Optional[int] = None, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data


class AuthenticationError(XoError):
    """Raised on the pending sign-in when the server refuses the credentials."""

    def __init__(self, message: str, *, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


REQUEUE_ERRORS: tuple[type[XoError], ...] = (ConnectionError, SessionError)

__all__ = [
    "AuthenticationError",
    "CallTimeoutError",
    "ConnectTransportError",
    "ConnectionError",
    "REQUEUE_ERRORS",
    "RemoteError",
    "ReservedMethodError",
    "SessionError",
    "SignInAbortedError",
    "XoError",
]
