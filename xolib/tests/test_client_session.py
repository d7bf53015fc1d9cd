import asyncio

import pytest

from xolib.client import Xo
from xolib.models import TokenCredentials
from xolib.network.errors import AuthenticationError, RemoteError, SignInAbortedError
from xolib.network.errors import ConnectionError as XoConnectionError
from xolib.network.state import ConnectionStatus
from xolib.network.transport.dummy import DummyTransport


class _InstantBackOff:
    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay

    def reset(self) -> None:
        return None

    async def wait(self) -> float:
        await asyncio.sleep(self.delay)
        return self.delay


async def _wait_for(predicate, *, timeout: float = 1.0, interval: float = 0.005) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


def _password_sign_in(params):
    if params["password"] != "secret":
        raise RemoteError("invalid credentials", code=3)
    return {"id": f"user-{params['email']}", "email": params["email"]}


async def _connected_client(transport: DummyTransport, **kwargs) -> Xo:
    client = Xo("ws://xo.test/", transport_factory=lambda _: transport, backoff=_InstantBackOff(), **kwargs)
    assert await _wait_for(lambda: client.status is ConnectionStatus.CONNECTED)
    return client


@pytest.mark.asyncio
async def test_sign_in_with_password_sets_user():
    transport = DummyTransport(
        handlers={"session.signInWithPassword": _password_sign_in, "xo.getAllObjects": lambda _: []}
    )
    client = await _connected_client(transport)
    try:
        await asyncio.wait_for(client.sign_in({"email": "admin", "password": "secret"}), timeout=1)

        assert client.user == {"id": "user-admin", "email": "admin"}
        assert transport.calls_to("session.signInWithPassword") == [{"email": "admin", "password": "secret"}]
        assert not client._session.is_pending()
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_username_is_accepted_for_password_credentials():
    transport = DummyTransport(
        handlers={"session.signInWithPassword": _password_sign_in, "xo.getAllObjects": lambda _: []}
    )
    client = await _connected_client(transport)
    try:
        await asyncio.wait_for(client.sign_in({"username": "root", "password": "secret"}), timeout=1)
        assert client.user["email"] == "root"
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_token_credentials_use_token_method():
    transport = DummyTransport(
        handlers={
            "session.signInWithToken": lambda params: {"id": "token-user"},
            "xo.getAllObjects": lambda _: [],
        }
    )
    client = await _connected_client(transport)
    try:
        await asyncio.wait_for(client.sign_in({"token": "abc"}), timeout=1)

        assert client.user == {"id": "token-user"}
        assert transport.calls_to("session.signInWithToken") == [{"token": "abc"}]
        assert transport.calls_to("session.signInWithPassword") == []
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_sign_in_while_disconnected_resolves_after_connecting():
    transport = DummyTransport(
        handlers={"session.signInWithPassword": _password_sign_in, "xo.getAllObjects": lambda _: []}
    )
    transport.fail_connects = 2
    client = Xo("ws://xo.test/", transport_factory=lambda _: transport, backoff=_InstantBackOff())
    try:
        signed_in = client.sign_in({"email": "admin", "password": "secret"})
        assert not signed_in.done()

        await asyncio.wait_for(signed_in, timeout=1)
        assert client.status is ConnectionStatus.CONNECTED
        assert client.user["email"] == "admin"
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_failed_authentication_rejects_sign_in_only():
    transport = DummyTransport(
        handlers={"session.signInWithPassword": _password_sign_in, "xo.getAllObjects": lambda _: []}
    )
    client = await _connected_client(transport)
    try:
        with pytest.raises(AuthenticationError) as excinfo:
            await asyncio.wait_for(client.sign_in({"email": "admin", "password": "wrong"}), timeout=1)

        assert excinfo.value.code == 3
        assert isinstance(excinfo.value.__cause__, RemoteError)
        assert client.user is None
        assert client._session.is_pending()
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(client.wait_for_session(), timeout=0.05)
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_credentials_given_at_construction_open_session():
    transport = DummyTransport(
        handlers={"session.signInWithToken": lambda params: {"id": "u"}, "xo.getAllObjects": lambda _: []}
    )
    client = Xo(
        {"url": "https://xo.test", "credentials": {"token": "t0k3n"}},
        transport_factory=lambda _: transport,
        backoff=_InstantBackOff(),
    )
    try:
        await asyncio.wait_for(client.wait_for_session(), timeout=1)
        assert client.settings.url == "https://xo.test"
        assert transport.calls_to("session.signInWithToken") == [{"token": "t0k3n"}]
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_second_sign_in_supersedes_first():
    async def slow_sign_in(params):
        await asyncio.sleep(0.01)
        return {"email": params["email"]}

    transport = DummyTransport(
        handlers={"session.signInWithPassword": slow_sign_in, "xo.getAllObjects": lambda _: []}
    )
    client = await _connected_client(transport)
    try:
        first = client.sign_in({"email": "alice", "password": "a"})
        second = client.sign_in({"email": "bob", "password": "b"})

        with pytest.raises(SignInAbortedError):
            await first
        await asyncio.wait_for(second, timeout=1)

        assert client.user == {"email": "bob"}
        assert all(params["email"] == "bob" for params in transport.calls_to("session.signInWithPassword"))
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_stale_sign_in_reply_is_discarded():
    release = asyncio.Event()

    async def gated_sign_in(params):
        if params["email"] == "alice":
            await release.wait()
        return {"email": params["email"]}

    transport = DummyTransport(
        handlers={"session.signInWithPassword": gated_sign_in, "xo.getAllObjects": lambda _: []}
    )
    client = await _connected_client(transport)
    try:
        first = client.sign_in({"email": "alice", "password": "a"})
        assert await _wait_for(lambda: transport.calls_to("session.signInWithPassword"))

        second = client.sign_in({"email": "bob", "password": "b"})
        await asyncio.wait_for(second, timeout=1)
        release.set()
        await transport.settle()

        with pytest.raises(SignInAbortedError):
            await first
        assert client.user == {"email": "bob"}
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_sign_out_while_disconnected_skips_remote_call():
    transport = DummyTransport(handlers={"session.signOut": lambda _: True})
    transport.fail_connects = 10**6
    client = Xo("ws://xo.test/", transport_factory=lambda _: transport, backoff=_InstantBackOff(0.01))
    try:
        assert client.status is ConnectionStatus.CONNECTING
        assert await asyncio.wait_for(client.sign_out(), timeout=1) is None
        assert transport.calls_to("session.signOut") == []
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_sign_out_ignores_remote_failure():
    def failing_sign_out(params):
        raise RemoteError("boom", code=0)

    transport = DummyTransport(
        handlers={
            "session.signInWithPassword": _password_sign_in,
            "session.signOut": failing_sign_out,
            "xo.getAllObjects": lambda _: [],
        }
    )
    client = await _connected_client(transport)
    try:
        await asyncio.wait_for(client.sign_in({"email": "admin", "password": "secret"}), timeout=1)
        sign_outs = len(transport.calls_to("session.signOut"))

        await asyncio.wait_for(client.sign_out(), timeout=1)

        assert len(transport.calls_to("session.signOut")) == sign_outs + 1
        assert client.user is None
        assert client._credentials is None
        assert client._session.is_pending()
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_sign_out_aborts_pending_sign_in():
    transport = DummyTransport(handlers={"session.signInWithPassword": _password_sign_in})
    transport.fail_connects = 10**6
    client = Xo("ws://xo.test/", transport_factory=lambda _: transport, backoff=_InstantBackOff(0.01))
    try:
        signed_in = client.sign_in({"email": "admin", "password": "secret"})
        await client.sign_out()

        with pytest.raises(SignInAbortedError, match="sign in aborted"):
            await signed_in
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_reconnection_reuses_pending_session_handle():
    transport = DummyTransport(
        handlers={"session.signInWithPassword": _password_sign_in, "xo.getAllObjects": lambda _: []}
    )
    client = await _connected_client(transport)
    try:
        handle = client._session
        transport.fail_connects = 1
        transport.drop()
        assert client._session is handle

        await asyncio.wait_for(client.sign_in({"email": "admin", "password": "secret"}), timeout=1)
        assert handle.future.done()
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_signing_in_again_with_same_credentials_authenticates_again():
    server = {"authed": False}

    async def sign_in_with_token(params):
        server["authed"] = True
        await asyncio.sleep(0.01)
        return {"id": "u"}

    def sign_out(params):
        server["authed"] = False
        return True

    transport = DummyTransport(
        handlers={
            "session.signInWithToken": sign_in_with_token,
            "session.signOut": sign_out,
            "xo.getAllObjects": lambda _: [],
        }
    )
    client = await _connected_client(transport)
    try:
        credentials = TokenCredentials(token="t")
        first = client.sign_in(credentials)
        assert await _wait_for(lambda: transport.calls_to("session.signInWithToken"))

        await asyncio.wait_for(client.sign_in(credentials), timeout=1)
        await transport.settle()

        with pytest.raises(SignInAbortedError):
            await first
        session_calls = [method for method, _ in transport.calls if method.startswith("session.")]
        assert session_calls[-2:] == ["session.signOut", "session.signInWithToken"]
        assert server["authed"] is True
        assert client.user == {"id": "u"}
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_sign_in_interrupted_by_link_loss_completes_after_reconnect():
    attempts = {"count": 0}

    def flaky_sign_in(params):
        attempts["count"] += 1
        if attempts["count"] == 1:
            transport.drop()
            raise XoConnectionError("connection lost")
        return {"email": params["email"]}

    transport = DummyTransport(
        handlers={"session.signInWithPassword": flaky_sign_in, "xo.getAllObjects": lambda _: []}
    )
    client = await _connected_client(transport)
    try:
        signed_in = client.sign_in({"email": "admin", "password": "secret"})

        await asyncio.wait_for(signed_in, timeout=1)

        assert transport.connect_attempts == 2
        assert len(transport.calls_to("session.signInWithPassword")) == 2
        assert client.user == {"email": "admin"}
        assert client.status is ConnectionStatus.CONNECTED
    finally:
        await client.close()
