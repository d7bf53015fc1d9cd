"""In-memory transport for offline use and tests."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from xolib.models import Notification
from xolib.network.errors import ConnectTransportError, ConnectionError, RemoteError
from xolib.network.transport.base import BaseTransport

LOGGER = logging.getLogger(__name__)

Handler = Callable[[Any], Any]


class DummyTransport(BaseTransport):
    """Loopback transport answering calls from a local handler table.

    ``fail_connects`` makes the next N ``connect()`` calls fail; ``drop()`` and
    ``push()`` simulate link loss and server notifications.
    """

    def __init__(self, settings=None, handlers: Optional[Dict[str, Handler]] = None) -> None:
        super().__init__()
        self._settings = settings
        self.handlers: Dict[str, Handler] = dict(handlers or {})
        self.calls: List[Tuple[str, Any]] = []
        self.connect_attempts = 0
        self.fail_connects = 0
        self.connected = False

    async def connect(self) -> None:
        self.connect_attempts += 1
        if self.fail_connects > 0:
            self.fail_connects -= 1
            raise ConnectTransportError("dummy connect refused")
        LOGGER.debug("Dummy transport connect()")
        self.connected = True
        self.emit("connected")

    async def call(self, method: str, params: Any = None) -> Any:
        self.calls.append((method, params))
        if not self.connected:
            raise ConnectionError("Transport not connected")
        handler = self.handlers.get(method)
        if handler is None:
            raise RemoteError(f"method not found: {method}", code=-32601)
        result = handler(params)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def close(self) -> None:
        LOGGER.debug("Dummy transport close()")
        self.connected = False

    def drop(self) -> None:
        """Simulate the server closing the link."""

        if not self.connected:
            return
        self.connected = False
        self.emit("disconnected")

    def push(self, method: str, params: Dict[str, Any]) -> None:
        self.emit("notification", Notification(method=method, params=params))

    def calls_to(self, method: str) -> List[Any]:
        return [params for name, params in self.calls if name == method]

    async def settle(self) -> None:
        """Let scheduled callbacks run."""

        for _ in range(5):
            await asyncio.sleep(0)
