import asyncio
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from backstop import (
    ApiError,
    AuthenticationError,
    Credential,
    MemoryTokenStore,
    RequestDescriptor,
    SyncTokenManager,
    TokenManager,
)


def _descriptor():
    return RequestDescriptor("GET", "/cart")


@pytest.mark.asyncio
async def test_attach_sets_bearer_header():
    tm = TokenManager(credential=Credential("a1", "r1"))
    d = _descriptor()
    assert await tm.attach(d) == "a1"
    assert d.headers["Authorization"] == "Bearer a1"


@pytest.mark.asyncio
async def test_attach_skips_missing_or_expired_credential():
    d = _descriptor()
    d.headers["authorization"] = "Bearer stale"
    assert await TokenManager().attach(d) is None
    assert d.get_header("Authorization") is None

    tm = TokenManager(credential=Credential("a1", expires_at=100.0), clock=lambda: 200.0)
    d = _descriptor()
    assert await tm.attach(d) is None
    assert "Authorization" not in d.headers


@pytest.mark.asyncio
async def test_refresh_publishes_and_persists():
    store = MemoryTokenStore()

    async def refresher(token):
        assert token == "r1"
        return Credential("a2")

    tm = TokenManager(credential=Credential("a1", "r1"), store=store, refresher=refresher)
    cred = await tm.handle_auth_expired("a1")
    assert cred.access_token == "a2"
    # refresh token kept when the server does not rotate it
    assert cred.refresh_token == "r1"
    assert tm.credential is cred
    assert store.values == {"access-token": "a2", "refresh-token": "r1"}
    assert not cred.refreshing


@pytest.mark.asyncio
async def test_concurrent_waiters_share_one_refresh():
    calls = {"n": 0}
    started = asyncio.Event()
    gate = asyncio.Event()

    async def refresher(token):
        calls["n"] += 1
        started.set()
        await gate.wait()
        return Credential("a2", "r2")

    tm = TokenManager(credential=Credential("a1", "r1"), refresher=refresher)
    waiters = [asyncio.ensure_future(tm.handle_auth_expired("a1")) for _ in range(5)]
    await started.wait()
    assert tm.credential.refreshing
    gate.set()
    results = await asyncio.gather(*waiters)
    assert calls["n"] == 1
    assert {r.access_token for r in results} == {"a2"}
    assert tm.refresh_count == 1


@pytest.mark.asyncio
async def test_late_caller_with_stale_token_does_not_refresh_again():
    calls = {"n": 0}

    async def refresher(token):
        calls["n"] += 1
        return Credential("a2", "r2")

    tm = TokenManager(credential=Credential("a1", "r1"), refresher=refresher)
    await tm.handle_auth_expired("a1")
    cred = await tm.handle_auth_expired("a1")
    assert cred.access_token == "a2"
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_missing_refresh_token_fails_without_network_call():
    store = MemoryTokenStore({"access-token": "a1"})

    async def refresher(token):  # pragma: no cover - must not run
        raise AssertionError("refresher called")

    tm = TokenManager(store=store, refresher=refresher)
    tm.restore()
    assert tm.credential.access_token == "a1"
    with pytest.raises(AuthenticationError):
        await tm.handle_auth_expired("a1")
    assert tm.credential is None
    assert store.load() is None
    assert tm.refresh_count == 0


@pytest.mark.asyncio
async def test_refresh_failure_clears_credential_for_all_waiters():
    gate = asyncio.Event()

    async def refresher(token):
        await gate.wait()
        raise ApiError("Server error. Please try again later.", "server_error", 500)

    tm = TokenManager(credential=Credential("a1", "r1"), refresher=refresher)
    waiters = [asyncio.ensure_future(tm.handle_auth_expired("a1")) for _ in range(3)]
    await asyncio.sleep(0)
    gate.set()
    results = await asyncio.gather(*waiters, return_exceptions=True)
    assert all(isinstance(r, AuthenticationError) for r in results)
    assert tm.credential is None
    # a later attach carries no authorization header
    d = _descriptor()
    await tm.attach(d)
    assert d.get_header("Authorization") is None


@pytest.mark.asyncio
async def test_cancelling_one_waiter_keeps_shared_refresh_alive():
    gate = asyncio.Event()

    async def refresher(token):
        await gate.wait()
        return Credential("a2", "r2")

    tm = TokenManager(credential=Credential("a1", "r1"), refresher=refresher)
    first = asyncio.ensure_future(tm.handle_auth_expired("a1"))
    second = asyncio.ensure_future(tm.handle_auth_expired("a1"))
    await asyncio.sleep(0)
    first.cancel()
    with pytest.raises(asyncio.CancelledError):
        await first
    gate.set()
    cred = await second
    assert cred.access_token == "a2"
    assert tm.credential.access_token == "a2"


@pytest.mark.asyncio
async def test_attach_waits_for_inflight_refresh():
    gate = asyncio.Event()

    async def refresher(token):
        await gate.wait()
        return Credential("a2", "r2")

    tm = TokenManager(credential=Credential("a1", "r1"), refresher=refresher)
    refresh = asyncio.ensure_future(tm.handle_auth_expired("a1"))
    await asyncio.sleep(0)
    d = _descriptor()
    attach = asyncio.ensure_future(tm.attach(d))
    await asyncio.sleep(0)
    assert not attach.done()
    gate.set()
    assert await attach == "a2"
    assert d.headers["Authorization"] == "Bearer a2"
    await refresh


def test_logout_and_set_credential_persist():
    store = MemoryTokenStore()
    tm = SyncTokenManager(store=store)
    tm.set_credential(Credential("a1", "r1"))
    assert store.values["access-token"] == "a1"
    tm.logout()
    assert tm.credential is None
    assert store.values == {}


def test_sync_single_flight_across_threads():
    calls = {"n": 0}
    lock = threading.Lock()

    def refresher(token):
        with lock:
            calls["n"] += 1
        time.sleep(0.05)
        return Credential("a2", "r2")

    tm = SyncTokenManager(credential=Credential("a1", "r1"), refresher=refresher)
    barrier = threading.Barrier(6)

    def worker(_):
        barrier.wait()
        return tm.handle_auth_expired("a1")

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(worker, range(6)))
    assert calls["n"] == 1
    assert {r.access_token for r in results} == {"a2"}


def test_sync_refresh_failure_reaches_waiters():
    started = threading.Event()
    release = threading.Event()

    def refresher(token):
        started.set()
        release.wait(1)
        raise ApiError("boom", "network")

    tm = SyncTokenManager(credential=Credential("a1", "r1"), refresher=refresher)
    with ThreadPoolExecutor(max_workers=2) as pool:
        owner = pool.submit(tm.handle_auth_expired, "a1")
        started.wait(1)
        waiter = pool.submit(tm.handle_auth_expired, "a1")
        time.sleep(0.02)
        release.set()
        with pytest.raises(AuthenticationError):
            owner.result()
        with pytest.raises(AuthenticationError):
            waiter.result()
    assert tm.credential is None
