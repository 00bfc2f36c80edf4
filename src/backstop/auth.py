import asyncio
import contextlib
import logging
import threading
import time
from typing import Any, Awaitable, Callable, Union

from .classifier import classify
from .errors import ApiError, AuthenticationError, message_for
from .state import Credential
from .storage import TokenStore
from .types import AuthConfig, Outcome, RequestDescriptor, join_url

Refresher = Callable[[str], Credential]
AsyncRefresher = Callable[[str], Awaitable[Credential]]


def credential_from_payload(
    body: Any,
    previous_refresh_token: Union[str, None] = None,
    now: Union[float, None] = None,
) -> Credential:
    """Build a Credential from a login/refresh response body.

    Accepts ``token`` (or ``accessToken``/``access_token``), an optional
    rotated ``refreshToken`` and optional ``expiresIn`` seconds, either at
    the top level or wrapped in ``data``.
    """
    if isinstance(body, dict) and isinstance(body.get("data"), dict):
        body = body["data"]
    if not isinstance(body, dict):
        raise AuthenticationError("The server response did not include a token.")
    token = body.get("token") or body.get("accessToken") or body.get("access_token")
    if not isinstance(token, str) or not token.strip():
        raise AuthenticationError("The server response did not include a token.")
    refresh = body.get("refreshToken") or body.get("refresh_token") or previous_refresh_token
    expires_in = body.get("expiresIn", body.get("expires_in"))
    expires_at = None
    if isinstance(expires_in, (int, float)) and not isinstance(expires_in, bool):
        expires_at = (time.time() if now is None else now) + float(expires_in)
    return Credential.from_tokens(token, refresh, expires_at)


def _credential_from_refresh(outcome: Outcome, refresh_token: str) -> Credential:
    if not outcome.ok:
        kind = classify(outcome)
        raise AuthenticationError(
            message_for(kind, outcome.status, outcome.body),
            http_status=outcome.status,
            body=outcome.body,
        )
    return credential_from_payload(outcome.body, refresh_token)


class _HttpRefresherBase:
    def __init__(
        self, transport, auth_config: AuthConfig, base_url: str = "", timeout: float = 30.0
    ):
        self.transport = transport
        self.auth_config = auth_config
        self.base_url = base_url
        self.timeout = timeout

    def _descriptor(self, refresh_token: str) -> RequestDescriptor:
        path = self.auth_config.refresh_path
        return RequestDescriptor(
            method="POST",
            path=path,
            headers={"Content-Type": "application/json"},
            body={self.auth_config.refresh_body_key: refresh_token},
            timeout=self.timeout,
            url=join_url(self.base_url, path),
        )


class AsyncHttpRefresher(_HttpRefresherBase):
    """POST the refresh token once; no retries, no authorization header."""

    async def __call__(self, refresh_token: str) -> Credential:
        outcome = await self.transport.send(self._descriptor(refresh_token))
        return _credential_from_refresh(outcome, refresh_token)


class HttpRefresher(_HttpRefresherBase):
    def __call__(self, refresh_token: str) -> Credential:
        outcome = self.transport.send(self._descriptor(refresh_token))
        return _credential_from_refresh(outcome, refresh_token)


# ---------- Base manager (shared logic; synchronization handled by subclasses) ----------


class _TokenManagerBase:
    def __init__(
        self,
        credential: Union[Credential, None] = None,
        store: Union[TokenStore, None] = None,
        auth_config: Union[AuthConfig, None] = None,
        refresher: Union[Refresher, AsyncRefresher, None] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.auth_config = auth_config or AuthConfig()
        self.store = store
        self.refresher = refresher
        self._credential = credential
        self._clock = clock
        self._logger = logging.getLogger("backstop")
        # Number of refresh exchanges started; observable for diagnostics
        self.refresh_count = 0

    @property
    def credential(self) -> Union[Credential, None]:
        return self._credential

    def _attach(self, descriptor: RequestDescriptor) -> Union[str, None]:
        cred = self._credential
        if cred is None or not cred.is_valid(self._clock()):
            descriptor.remove_header(self.auth_config.header)
            return None
        descriptor.set_header(
            self.auth_config.header, f"{self.auth_config.scheme} {cred.access_token}".strip()
        )
        return cred.access_token

    def _already_refreshed(self, stale_token: Union[str, None]) -> Union[Credential, None]:
        cred = self._credential
        if stale_token is None or cred is None:
            return None
        if cred.access_token != stale_token and cred.is_valid(self._clock()):
            return cred
        return None

    def _set(self, credential: Union[Credential, None]) -> None:
        self._credential = credential
        if self.store is None:
            return
        if credential is None:
            self.store.clear()
        else:
            self.store.save(credential)

    def _begin_refresh(self) -> tuple[Credential, str]:
        cred = self._credential
        if cred is None or not cred.refresh_token:
            self._logger.warning("token refresh impossible: no refresh token stored")
            self._set(None)
            raise AuthenticationError()
        if self.refresher is None:
            self._logger.warning("token refresh impossible: no refresher configured")
            self._set(None)
            raise AuthenticationError()
        self.refresh_count += 1
        cred.refreshing = True
        self._logger.info("access token rejected; refreshing")
        return cred, cred.refresh_token

    def _fail_refresh(self, error: Exception) -> AuthenticationError:
        self._logger.warning(f"token refresh failed: {error}")
        self._set(None)
        if isinstance(error, AuthenticationError):
            return error
        message = error.message if isinstance(error, ApiError) else None
        return AuthenticationError(message or AuthenticationError().message)

    def _finish_refresh(self, old: Credential, new: Credential, refresh_token: str) -> Credential:
        old.refreshing = False
        if not new.refresh_token:
            new.refresh_token = refresh_token
        new.refreshing = False
        self._set(new)
        self._logger.info("access token refreshed")
        return new


# ---------- Async manager (asyncio) ----------


class TokenManager(_TokenManagerBase):
    """Owns the process-wide credential for async clients.

    At most one refresh runs at a time. It runs as its own task so that a
    cancelled waiter cannot cancel it for everybody else.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._lock = asyncio.Lock()
        self._inflight: Union[asyncio.Future, None] = None

    def set_credential(self, credential: Union[Credential, None]) -> None:
        self._set(credential)

    def logout(self) -> None:
        self._set(None)

    def restore(self) -> Union[Credential, None]:
        if self.store is not None and self._credential is None:
            self._credential = self.store.load()
        return self._credential

    async def attach(self, descriptor: RequestDescriptor) -> Union[str, None]:
        inflight = self._inflight
        if inflight is not None:
            # outcome is read through the credential below
            with contextlib.suppress(ApiError):
                await asyncio.shield(inflight)
        return self._attach(descriptor)

    async def handle_auth_expired(self, stale_token: Union[str, None] = None) -> Credential:
        async with self._lock:
            if self._inflight is None:
                current = self._already_refreshed(stale_token)
                if current is not None:
                    return current
                self._inflight = asyncio.ensure_future(self._refresh())
                self._inflight.add_done_callback(self._refresh_done)
            inflight = self._inflight
        return await asyncio.shield(inflight)

    async def _refresh(self) -> Credential:
        cred, refresh_token = self._begin_refresh()
        try:
            new = await self.refresher(refresh_token)
        except Exception as e:
            cred.refreshing = False
            error = self._fail_refresh(e)
            if error is e:
                raise
            raise error from e
        return self._finish_refresh(cred, new, refresh_token)

    def _refresh_done(self, fut: asyncio.Future) -> None:
        if self._inflight is fut:
            self._inflight = None
        # every waiter re-raises; mark it retrieved in case all of them were cancelled
        if not fut.cancelled():
            fut.exception()


# ---------- Sync manager (threads) ----------


class _RefreshCall:
    def __init__(self):
        self.done = threading.Event()
        self.result: Union[Credential, None] = None
        self.error: Union[AuthenticationError, None] = None


class SyncTokenManager(_TokenManagerBase):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._lock = threading.Lock()
        self._inflight: Union[_RefreshCall, None] = None

    def set_credential(self, credential: Union[Credential, None]) -> None:
        with self._lock:
            self._set(credential)

    def logout(self) -> None:
        self.set_credential(None)

    def restore(self) -> Union[Credential, None]:
        with self._lock:
            if self.store is not None and self._credential is None:
                self._credential = self.store.load()
            return self._credential

    def attach(self, descriptor: RequestDescriptor) -> Union[str, None]:
        with self._lock:
            call = self._inflight
        if call is not None:
            call.done.wait()
        with self._lock:
            return self._attach(descriptor)

    def handle_auth_expired(self, stale_token: Union[str, None] = None) -> Credential:
        with self._lock:
            call = self._inflight
            if call is None:
                current = self._already_refreshed(stale_token)
                if current is not None:
                    return current
                call = self._inflight = _RefreshCall()
                owner = True
            else:
                owner = False
        if not owner:
            call.done.wait()
            if call.error is not None:
                raise call.error
            return call.result
        try:
            call.result = self._refresh()
        except AuthenticationError as e:
            call.error = e
            raise
        finally:
            with self._lock:
                self._inflight = None
            call.done.set()
        return call.result

    def _refresh(self) -> Credential:
        with self._lock:
            cred, refresh_token = self._begin_refresh()
        try:
            new = self.refresher(refresh_token)
        except Exception as e:
            with self._lock:
                cred.refreshing = False
                error = self._fail_refresh(e)
            if error is e:
                raise
            raise error from e
        with self._lock:
            return self._finish_refresh(cred, new, refresh_token)
