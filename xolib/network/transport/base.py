"""Transport abstraction consumed by the session orchestrator."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Callable, Dict, List

LOGGER = logging.getLogger(__name__)

TRANSPORT_EVENTS = frozenset({"connected", "disconnected", "notification"})

Listener = Callable[..., None]


class BaseTransport(ABC):
    """Event-emitting RPC transport.

    Implementations emit ``connected`` once ``connect()`` succeeds, ``disconnected``
    once the established link is lost, and ``notification`` for every server push.
    Listeners are synchronous and run in registration order.
    """

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def call(self, method: str, params: Any = None) -> Any:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    def add_listener(self, event: str, listener: Listener) -> None:
        if event not in TRANSPORT_EVENTS:
            raise ValueError(f"Unknown transport event {event!r}")
        self._listeners[event].append(listener)

    def remove_listener(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def emit(self, event: str, *args: Any) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(*args)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Transport %s listener failed: %s", event, listener)
