"""Client for the management API: one self-healing session plus a live object mirror."""

from xolib.client import Xo
from xolib.config import XoSettings, get_settings
from xolib.models import PasswordCredentials, TokenCredentials
from xolib.network import (
    AuthenticationError,
    ConnectionError,
    ConnectionStatus,
    RemoteError,
    ReservedMethodError,
    SessionError,
    SignInAbortedError,
    XoError,
)
from xolib.objects import ObjectsView

__all__ = [
    "AuthenticationError",
    "ConnectionError",
    "ConnectionStatus",
    "ObjectsView",
    "PasswordCredentials",
    "RemoteError",
    "ReservedMethodError",
    "SessionError",
    "SignInAbortedError",
    "TokenCredentials",
    "Xo",
    "XoError",
    "XoSettings",
    "get_settings",
]
