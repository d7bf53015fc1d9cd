"""JSON-RPC 2.0 over WebSocket transport."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from itertools import count
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit

import websockets
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed

from xolib.config import XoSettings
from xolib.models import Notification, RpcRequest, RpcResponse
from xolib.network.errors import (
    CallTimeoutError,
    ConnectTransportError,
    ConnectionError,
    RemoteError,
    SessionError,
)
from xolib.network.transport.base import BaseTransport

LOGGER = logging.getLogger(__name__)

_SCHEMES = {"http": "ws", "https": "wss", "ws": "ws", "wss": "wss"}


def build_ws_url(url: str, api_path: str = "/api/") -> str:
    """Map an http(s)/ws(s) server URL onto its JSON-RPC WebSocket endpoint."""

    if "://" not in url:
        url = f"ws://{url}"
    parts = urlsplit(url)
    scheme = _SCHEMES.get(parts.scheme.lower())
    if scheme is None:
        raise ValueError(f"Unsupported URL scheme {parts.scheme!r}")
    path = parts.path if parts.path not in ("", "/") else api_path
    return urlunsplit((scheme, parts.netloc, path, parts.query, ""))


class WebSocketTransport(BaseTransport):
    """WebSocket-based management API transport."""

    def __init__(self, settings: XoSettings) -> None:
        super().__init__()
        self._settings = settings
        self._url = build_ws_url(settings.url, settings.api_path)
        self._ws: Optional[Any] = None
        self._recv_task: Optional[asyncio.Task[None]] = None
        self._ids = count(1)
        self._pending: Dict[int, asyncio.Future[Any]] = {}
        self._session_error_codes = frozenset(settings.session_error_codes)

    @property
    def url(self) -> str:
        return self._url

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(self) -> None:
        if self._ws is not None:
            return
        LOGGER.info("Connecting to management API at %s", self._url)
        try:
            ws = await websockets.connect(
                self._url,
                open_timeout=self._settings.connect_timeout_seconds,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ConnectTransportError(f"Could not connect to {self._url}: {exc}") from exc
        self._ws = ws
        self._recv_task = asyncio.create_task(self._receive_loop(ws), name="xo-transport-recv")
        self.emit("connected")

    async def call(self, method: str, params: Any = None) -> Any:
        ws = self._ws
        if ws is None:
            raise ConnectionError("Transport not connected")
        request_id = next(self._ids)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        request = RpcRequest(id=request_id, method=method, params=jsonable_encoder(params))
        payload = json.dumps(request.model_dump(exclude_none=True))
        LOGGER.debug("WebSocket send: %s", method)
        try:
            try:
                await ws.send(payload)
            except ConnectionClosed as exc:
                raise ConnectionError(f"Connection closed while sending {method}") from exc
            timeout = self._settings.call_timeout_seconds or None
            try:
                return await asyncio.wait_for(future, timeout=timeout)
            except asyncio.TimeoutError:
                raise CallTimeoutError(f"No reply to {method} within {timeout}s") from None
        finally:
            self._pending.pop(request_id, None)

    async def close(self) -> None:
        ws = self._ws
        self._ws = None
        self._fail_pending("Transport closed")
        task = self._recv_task
        self._recv_task = None
        if task:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if ws is not None:
            LOGGER.info("Closing WebSocket transport")
            await ws.close()

    async def _receive_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                self._handle_frame(raw)
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as exc:
            LOGGER.info("WebSocket connection closed: %s", exc)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Receive loop terminated due to error")
        self._on_closed(ws)

    def _on_closed(self, ws: Any) -> None:
        # close() detaches the socket first, so an explicit close emits nothing.
        if self._ws is not ws:
            return
        self._ws = None
        self._recv_task = None
        self._fail_pending("Connection lost")
        self.emit("disconnected")

    def _fail_pending(self, reason: str) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(ConnectionError(reason))

    def _handle_frame(self, raw: Any) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            LOGGER.warning("Discarding malformed frame: %.200s", raw)
            return
        frames = data if isinstance(data, list) else [data]
        for frame in frames:
            if not isinstance(frame, dict):
                LOGGER.warning("Discarding non-object frame: %r", frame)
                continue
            if "method" in frame:
                if frame.get("id") is not None:
                    LOGGER.debug("Ignoring server request %s", frame.get("method"))
                    continue
                try:
                    notification = Notification.model_validate(frame)
                except ValidationError as exc:
                    LOGGER.warning("Invalid notification: %s", exc)
                    continue
                self.emit("notification", notification)
                continue
            self._handle_response(frame)

    def _handle_response(self, frame: Dict[str, Any]) -> None:
        try:
            response = RpcResponse.model_validate(frame)
        except ValidationError as exc:
            LOGGER.warning("Invalid response frame: %s", exc)
            return
        future = self._pending.get(response.id) if response.id is not None else None
        if future is None:
            LOGGER.debug("Received response for unknown request id=%s", response.id)
            return
        if future.done():
            return
        error = response.error
        if error is None:
            future.set_result(response.result)
        elif error.code in self._session_error_codes:
            future.set_exception(SessionError(error.message))
        else:
            future.set_exception(RemoteError(error.message, code=error.code, data=error.data))
