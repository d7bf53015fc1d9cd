"""Stateful management API client.

``Xo`` keeps exactly one logical session with the server:

- the transport is (re)connected forever with exponential backoff;
- whenever the link is up and credentials are known, the session is opened
  by a single authentication call, then the object mirror is refilled from a
  full snapshot;
- user calls wait for the session that is current when they are issued and
  are silently reissued when they fail because the connection or the session
  went away;
- ``all`` notifications keep the object mirror in sync between snapshots.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine, Mapping
from typing import Any, Optional, Set, Union

from pydantic import ValidationError

from xolib.config import XoSettings, get_settings
from xolib.models import (
    Credentials,
    Notification,
    ObjectsChange,
    TokenCredentials,
    iter_items,
    parse_credentials,
)
from xolib.network.backoff import BackOff
from xolib.network.deferred import Deferred
from xolib.network.errors import (
    REQUEUE_ERRORS,
    AuthenticationError,
    ConnectionError,
    ReservedMethodError,
    SessionError,
    SignInAbortedError,
)
from xolib.network.state import ConnectionStatus, ConnectionTracker
from xolib.network.transport.base import BaseTransport
from xolib.network.transport.websocket import WebSocketTransport
from xolib.objects import ObjectCollection, ObjectsView, create_object_collection

LOGGER = logging.getLogger(__name__)

SESSION_NAMESPACE = "session."
SIGN_IN_WITH_TOKEN = "session.signInWithToken"
SIGN_IN_WITH_PASSWORD = "session.signInWithPassword"
SIGN_OUT = "session.signOut"
GET_ALL_OBJECTS = "xo.getAllObjects"
ALL_OBJECTS_FEED = "all"

Options = Union[str, Mapping[str, Any], XoSettings, None]
TransportFactory = Callable[[XoSettings], BaseTransport]


def _resolve_settings(opts: Options) -> XoSettings:
    if opts is None:
        return get_settings()
    if isinstance(opts, XoSettings):
        return opts
    if isinstance(opts, str):
        return XoSettings(url=opts)
    if isinstance(opts, Mapping):
        return XoSettings(**{key: value for key, value in opts.items() if key != "credentials"})
    raise TypeError(f"Unsupported client options {type(opts).__name__}")


class Xo:
    """Session orchestrator over an event-emitting RPC transport.

    Must be constructed inside a running event loop: the first connection
    attempt is scheduled immediately.

    Args:
        opts: server URL, ``{"url": ...}`` mapping (other keys map onto
            ``XoSettings`` fields), an ``XoSettings`` instance, or ``None`` to
            load settings from the environment/config file.
        credentials: optional credentials used as soon as the link is up.
        transport_factory: builds the transport from settings
            (``WebSocketTransport`` by default).
        backoff: retry policy for connection attempts.
    """

    def __init__(
        self,
        opts: Options = None,
        *,
        credentials: Credentials | Mapping[str, Any] | None = None,
        transport_factory: Optional[TransportFactory] = None,
        backoff: Optional[BackOff] = None,
    ) -> None:
        self.settings = _resolve_settings(opts)
        if credentials is None and isinstance(opts, Mapping):
            credentials = opts.get("credentials")

        transport = (transport_factory or WebSocketTransport)(self.settings)
        transport.add_listener("connected", self._on_connected)
        transport.add_listener("disconnected", self._on_disconnected)
        transport.add_listener("notification", self._on_notification)

        self._objects: ObjectCollection = create_object_collection()
        self._objects_view = ObjectsView(self._objects)
        self._tracker = ConnectionTracker()
        self._user: Any = None

        self._transport = transport
        self._backoff = backoff or BackOff(self.settings)
        self._credentials: Optional[Credentials] = parse_credentials(credentials) if credentials else None
        self._session: Deferred[None] = Deferred()
        self._sign_in: Optional[Deferred[None]] = None
        # Bumped on every sign-out; an open attempt from an older generation is stale.
        self._generation = 0

        # Bumped on every "connected" event; replies from an older link are stale.
        self._epoch = 0
        self._open_task: Optional[asyncio.Task[None]] = None
        self._open_for: Optional[tuple[int, int]] = None
        self._snapshot_task: Optional[asyncio.Task[None]] = None
        self._tasks: Set[asyncio.Task[Any]] = set()
        self._closed = False

        self._connect()

    # ------------------------------------------------------------------
    # Public surface

    @property
    def status(self) -> ConnectionStatus:
        return self._tracker.state

    @property
    def user(self) -> Any:
        return self._user

    @property
    def objects(self) -> ObjectsView:
        return self._objects_view

    @property
    def transport(self) -> BaseTransport:
        return self._transport

    def call(self, method: str, params: Any = None) -> Awaitable[Any]:
        """Call ``method`` once a session is open.

        ``session.*`` methods are refused right away since they would bypass
        the session management done here.
        """

        if method.startswith(SESSION_NAMESPACE):
            raise ReservedMethodError(f"{SESSION_NAMESPACE}*() methods are disabled from this interface")
        return self._call(method, params)

    async def _call(self, method: str, params: Any) -> Any:
        while True:
            session = self._session
            await session.wait()
            try:
                return await self._transport.call(method, params)
            except REQUEUE_ERRORS as exc:
                LOGGER.debug("Requeueing %s after %s: %s", method, type(exc).__name__, exc)
                if isinstance(exc, SessionError):
                    self._invalidate_session(session)
                else:
                    await self._settle_after_connection_error(session)

    async def _settle_after_connection_error(self, bound: Deferred[None]) -> None:
        # Let a pending disconnect event close the session first.
        await asyncio.sleep(0)
        if self._session is bound and self.status is ConnectionStatus.CONNECTED:
            # No disconnect seen yet: the link is half-closed.
            await asyncio.sleep(self.settings.call_retry_delay_seconds)

    def sign_in(self, credentials: Credentials | Mapping[str, Any]) -> asyncio.Future[None]:
        """Replace the credentials and open a new session with them.

        Any current session is signed out first; a previous sign-in still
        pending is rejected with ``SignInAbortedError``.
        """

        parsed = parse_credentials(credentials)
        self.sign_out()

        self._credentials = parsed
        sign_in: Deferred[None] = Deferred()
        self._sign_in = sign_in

        self._try_to_open_session()

        return sign_in.future

    def sign_out(self) -> asyncio.Future[None]:
        """Close the session and forget the credentials.

        The returned future always resolves; the server-side sign-out is
        best effort and only attempted while connected.
        """

        self._close_session()
        self._credentials = None
        self._generation += 1

        sign_in = self._sign_in
        self._sign_in = None
        if sign_in is not None and sign_in.is_pending():
            sign_in.reject(SignInAbortedError("sign in aborted"))

        if self.status is ConnectionStatus.CONNECTED:
            return self._spawn(self._remote_sign_out(), name="xo-sign-out")

        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        done.set_result(None)
        return done

    async def wait_for_session(self) -> None:
        """Wait until the session current at call time is open."""

        await self._session.wait()

    async def close(self) -> None:
        """Stop reconnecting, close the transport and fail pending waiters."""

        if self._closed:
            return
        self._closed = True
        LOGGER.info("Closing client")

        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        await self._transport.close()

        error = ConnectionError("Client closed")
        self._user = None
        if not self._session.is_pending():
            self._session = Deferred()
        self._session.reject(error)
        if self._sign_in is not None:
            self._sign_in.reject(error)
        if self.status is not ConnectionStatus.DISCONNECTED:
            self._tracker.transition(ConnectionStatus.DISCONNECTED)

    async def __aenter__(self) -> Xo:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Connection lifecycle

    def _connect(self) -> None:
        if self._closed or self.status is ConnectionStatus.CONNECTING:
            return
        self._tracker.transition(ConnectionStatus.CONNECTING)
        self._spawn(self._connect_loop(), name="xo-connect")

    async def _connect_loop(self) -> None:
        attempt = 0
        while not self._closed:
            attempt += 1
            try:
                await self._transport.connect()
                return
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Could not connect to %s (attempt %s): %s", self.settings.url, attempt, exc)
            delay = await self._backoff.wait()
            LOGGER.debug(
                "Retrying connection to %s after %.2fs (attempt %s)", self.settings.url, delay, attempt + 1
            )

    def _on_connected(self) -> None:
        if self._closed or self.status is ConnectionStatus.CONNECTED:
            return
        self._backoff.reset()
        self._epoch += 1
        self._tracker.transition(ConnectionStatus.CONNECTED)
        LOGGER.info("Connected to %s", self.settings.url)

        self._try_to_open_session()

    def _on_disconnected(self) -> None:
        if self._closed or self.status is not ConnectionStatus.CONNECTED:
            return
        LOGGER.warning("Disconnected from %s; reconnecting", self.settings.url)
        self._close_session()
        self._connect()

    # ------------------------------------------------------------------
    # Session lifecycle

    def _close_session(self) -> None:
        # A pending handle already has waiters; keep it for the next session.
        if not self._session.is_pending():
            self._session = Deferred()
        self._user = None

    def _invalidate_session(self, bound: Deferred[None]) -> None:
        if self._session is not bound or bound.is_pending():
            return
        LOGGER.info("Server reported no open session; signing in again")
        self._close_session()
        self._try_to_open_session()

    def _try_to_open_session(self) -> None:
        credentials = self._credentials
        if credentials is None or self.status is not ConnectionStatus.CONNECTED:
            return
        task = self._open_task
        attempt = (self._generation, self._epoch)
        if task is not None and not task.done() and self._open_for == attempt:
            return
        self._open_for = attempt
        self._open_task = self._spawn(self._open_session(credentials, *attempt), name="xo-open-session")

    def _is_current(self, generation: int, epoch: int) -> bool:
        return (
            self._credentials is not None
            and self._generation == generation
            and self._epoch == epoch
            and self.status is ConnectionStatus.CONNECTED
        )

    async def _open_session(self, credentials: Credentials, generation: int, epoch: int) -> None:
        if not self._is_current(generation, epoch):
            return
        method = SIGN_IN_WITH_TOKEN if isinstance(credentials, TokenCredentials) else SIGN_IN_WITH_PASSWORD
        try:
            user = await self._transport.call(method, credentials.model_dump())
        except ConnectionError as exc:
            # Retried on the next "connected" event.
            LOGGER.info("Connection lost while signing in: %s", exc)
            return
        except Exception as exc:  # noqa: BLE001
            if not self._is_current(generation, epoch):
                return
            LOGGER.warning("Sign in failed: %s", exc)
            sign_in = self._sign_in
            if sign_in is not None:
                error = AuthenticationError(str(exc), code=getattr(exc, "code", None))
                error.__cause__ = exc
                sign_in.reject(error)
            return

        if not self._is_current(generation, epoch):
            LOGGER.debug("Discarding stale sign in result")
            return

        self._user = user
        LOGGER.info("Session opened")

        self._refresh_objects()

        sign_in = self._sign_in
        if sign_in is not None:
            sign_in.resolve()

        self._session.resolve()

    async def _remote_sign_out(self) -> None:
        try:
            await self._transport.call(SIGN_OUT)
        except Exception:  # noqa: BLE001
            LOGGER.debug("Ignoring sign out error", exc_info=True)

    # ------------------------------------------------------------------
    # Object mirror

    def _refresh_objects(self) -> None:
        task = self._snapshot_task
        if task is not None and not task.done():
            task.cancel()
        self._snapshot_task = self._spawn(self._fetch_objects(), name="xo-fetch-objects")

    async def _fetch_objects(self) -> None:
        try:
            objects = await self._transport.call(GET_ALL_OBJECTS)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Could not fetch objects: %s", exc)
            return
        self._objects.clear()
        self._objects.set_many(iter_items(objects))
        LOGGER.debug("Object mirror refilled with %s objects", len(self._objects))

    def _on_notification(self, notification: Notification | Mapping[str, Any]) -> None:
        if not isinstance(notification, Notification):
            notification = Notification.model_validate(notification)
        if notification.method != ALL_OBJECTS_FEED:
            return
        try:
            change = ObjectsChange.model_validate(notification.params)
        except ValidationError as exc:
            LOGGER.warning("Invalid objects notification: %s", exc)
            return
        items = iter_items(change.items)
        if change.is_exit:
            self._objects.unset_many(items)
        else:
            self._objects.set_many(items)

    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._finalise_task)
        return task

    def _finalise_task(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Background task %s failed", task.get_name(), exc_info=exc)
