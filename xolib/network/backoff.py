"""Exponential reconnection backoff."""

from __future__ import annotations

import asyncio
import random
from typing import Optional

from xolib.config import XoSettings


class BackOff:
    """Stateful delay generator: each ``wait()`` doubles the next delay until ``reset()``."""

    def __init__(
        self,
        settings: Optional[XoSettings] = None,
        *,
        base_delay: float | None = None,
        max_delay: float | None = None,
        jitter: float | None = None,
    ) -> None:
        settings = settings or XoSettings()
        self._base_delay = float(base_delay if base_delay is not None else settings.reconnect_base_delay_seconds)
        self._max_delay = float(max_delay if max_delay is not None else settings.reconnect_max_delay_seconds)
        self._jitter = float(jitter if jitter is not None else settings.reconnect_jitter)
        self._attempt = 0

    @property
    def attempt(self) -> int:
        return self._attempt

    def reset(self) -> None:
        self._attempt = 0

    def next_delay(self) -> float:
        self._attempt += 1
        delay = min(self._max_delay, self._base_delay * (2 ** (self._attempt - 1)))
        jitter_factor = random.uniform(1 - self._jitter, 1 + self._jitter)
        return max(0.0, delay * jitter_factor)

    async def wait(self) -> float:
        """Sleep for the next delay and return it; cancel the awaiting task to abort."""

        delay = self.next_delay()
        await asyncio.sleep(delay)
        return delay
