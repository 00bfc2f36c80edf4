import contextlib
import dataclasses
from typing import Any, Union

from .adapters import HttpxTransport, RequestsTransport
from .auth import (
    AsyncHttpRefresher,
    HttpRefresher,
    SyncTokenManager,
    TokenManager,
    credential_from_payload,
)
from .env import load_config_from_env, load_credential_from_env
from .pipeline import RequestPipeline, SyncRequestPipeline
from .state import Credential
from .types import (
    ApiResponse,
    AuthConfig,
    ClientConfig,
    RequestDescriptor,
    RequestOptions,
    RetryConfig,
    join_url,
)

DEFAULT_LOGIN_PATH = "/auth/login"
SUPPORTED_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"})


def _resolve_config(base_url: Union[str, None], kwargs: dict[str, Any]) -> ClientConfig:
    # Prefer config objects, then individual keyword overrides
    config: ClientConfig = kwargs.pop("config", None) or ClientConfig()
    retry: RetryConfig = kwargs.pop("retry_config", None) or config.retry
    overrides = {
        k: kwargs.pop(k)
        for k in list(kwargs.keys())
        if k in {"base_delay", "initial_timeout", "max_retries", "retry_for_methods"}
    }
    if overrides:
        retry = dataclasses.replace(retry, **overrides)
    auth: AuthConfig = kwargs.pop("auth_config", None) or config.auth
    return ClientConfig(
        base_url=base_url or config.base_url,
        default_headers=kwargs.pop("default_headers", None) or config.default_headers,
        retry=retry,
        auth=auth,
    )


class _ClientBase:
    config: ClientConfig

    def _descriptor(
        self,
        method: str,
        path: str,
        body: Any,
        options: RequestOptions,
        params: Union[dict[str, Any], None],
    ) -> RequestDescriptor:
        method = method.upper()
        if method not in SUPPORTED_METHODS:
            raise ValueError(f"Unsupported HTTP method: {method}")
        headers = dict(self.config.default_headers)
        for name, value in options.extra_headers.items():
            for k in [k for k in headers if k.lower() == name.lower()]:
                del headers[k]
            headers[name] = value
        timeout = self.config.retry.initial_timeout
        if options.timeout_override is not None:
            if options.timeout_override <= 0:
                raise ValueError(
                    f"timeout_override must be positive, got {options.timeout_override!r}"
                )
            timeout = options.timeout_override
        return RequestDescriptor(
            method=method,
            path=path,
            headers=headers,
            body=body,
            params=params,
            timeout=timeout,
            url=join_url(self.config.base_url, path),
        )

    @property
    def credential(self) -> Union[Credential, None]:
        return self.tokens.credential


# ---------- async facade (httpx by default) ----------


class AsyncApiClient(_ClientBase):
    """Entry point for async callers.

    Other keywords for kwargs:
    - config: ClientConfig object
    - retry_config: RetryConfig object
    - auth_config: AuthConfig object
    - base_delay / initial_timeout / max_retries / retry_for_methods
    - default_headers: dict[str, str]
    """

    def __init__(
        self,
        base_url: Union[str, None] = None,
        transport=None,
        store=None,
        credential: Union[Credential, None] = None,
        refresher=None,
        policy=None,
        on_retry=None,
        sleep=None,
        log_level: Union[int, None] = None,
        **kwargs,
    ):
        self.config = _resolve_config(base_url, kwargs)
        if kwargs:
            raise TypeError(f"Unexpected keyword arguments: {sorted(kwargs)}")
        self.transport = transport or HttpxTransport()
        self._own_transport = transport is None
        self.tokens = TokenManager(
            credential=credential,
            store=store,
            auth_config=self.config.auth,
            refresher=refresher
            or AsyncHttpRefresher(
                self.transport,
                self.config.auth,
                base_url=self.config.base_url,
                timeout=self.config.retry.initial_timeout,
            ),
        )
        if credential is None:
            self.tokens.restore()
        elif store is not None:
            store.save(credential)
        self.pipeline = RequestPipeline(
            self.transport,
            self.tokens,
            policy=policy,
            retry_config=self.config.retry,
            auth_config=self.config.auth,
            on_retry=on_retry,
            sleep=sleep,
            log_level=log_level,
        )

    @classmethod
    def from_env(cls, prefix: str = "BACKSTOP_", env_path: Union[str, None] = None, **kwargs):
        """Build a client from ``{prefix}API_URL`` and friends; see load_config_from_env."""
        kwargs.setdefault("config", load_config_from_env(prefix=prefix, env_path=env_path))
        if kwargs.get("store") is None and "credential" not in kwargs:
            kwargs["credential"] = load_credential_from_env(prefix=prefix, env_path=env_path)
        return cls(**kwargs)

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        options: Union[RequestOptions, None] = None,
        params: Union[dict[str, Any], None] = None,
    ) -> ApiResponse:
        options = options or RequestOptions()
        descriptor = self._descriptor(method, path, body, options, params)
        return await self.pipeline.run(descriptor, options)

    async def get(self, path: str, options=None, params=None) -> ApiResponse:
        return await self.request("GET", path, options=options, params=params)

    async def post(self, path: str, body: Any = None, options=None) -> ApiResponse:
        return await self.request("POST", path, body, options)

    async def put(self, path: str, body: Any = None, options=None) -> ApiResponse:
        return await self.request("PUT", path, body, options)

    async def patch(self, path: str, body: Any = None, options=None) -> ApiResponse:
        return await self.request("PATCH", path, body, options)

    async def delete(self, path: str, body: Any = None, options=None) -> ApiResponse:
        return await self.request("DELETE", path, body, options)

    async def login(self, body: Any, path: str = DEFAULT_LOGIN_PATH) -> ApiResponse:
        """POST credentials without an authorization header and keep the returned token."""
        resp = await self.request("POST", path, body, RequestOptions(skip_auth=True))
        self.tokens.set_credential(credential_from_payload(resp.data))
        return resp

    def logout(self) -> None:
        self.tokens.logout()

    async def aclose(self) -> None:
        if self._own_transport:
            with contextlib.suppress(Exception):
                await self.transport.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
        return False


# ---------- sync facade (requests) ----------


class ApiClient(_ClientBase):
    def __init__(
        self,
        base_url: Union[str, None] = None,
        transport=None,
        store=None,
        credential: Union[Credential, None] = None,
        refresher=None,
        policy=None,
        on_retry=None,
        sleep=None,
        log_level: Union[int, None] = None,
        **kwargs,
    ):
        """Initialize an ApiClient.

        Args:
            base_url (str | None): prepended to every relative path
            transport: RequestsTransport by default
            store (TokenStore | None): durable credential storage; restored on startup
            credential (Credential | None): initial credential, overrides the store
            refresher: callable(refresh_token) -> Credential; HTTP refresh by default
            policy: None | RetryConfig | BackoffPolicy | decide callable
            on_retry: hook(descriptor, kind, decision) before each backoff wait
            sleep: replacement for time.sleep (tests)
            log_level (int | None): level for the "backstop" logger
            kwargs: same keywords as AsyncApiClient
        """
        self.config = _resolve_config(base_url, kwargs)
        if kwargs:
            raise TypeError(f"Unexpected keyword arguments: {sorted(kwargs)}")
        self.transport = transport or RequestsTransport()
        self._own_transport = transport is None
        self.tokens = SyncTokenManager(
            credential=credential,
            store=store,
            auth_config=self.config.auth,
            refresher=refresher
            or HttpRefresher(
                self.transport,
                self.config.auth,
                base_url=self.config.base_url,
                timeout=self.config.retry.initial_timeout,
            ),
        )
        if credential is None:
            self.tokens.restore()
        elif store is not None:
            store.save(credential)
        self.pipeline = SyncRequestPipeline(
            self.transport,
            self.tokens,
            policy=policy,
            retry_config=self.config.retry,
            auth_config=self.config.auth,
            on_retry=on_retry,
            sleep=sleep,
            log_level=log_level,
        )

    @classmethod
    def from_env(cls, prefix: str = "BACKSTOP_", env_path: Union[str, None] = None, **kwargs):
        kwargs.setdefault("config", load_config_from_env(prefix=prefix, env_path=env_path))
        if kwargs.get("store") is None and "credential" not in kwargs:
            kwargs["credential"] = load_credential_from_env(prefix=prefix, env_path=env_path)
        return cls(**kwargs)

    def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        options: Union[RequestOptions, None] = None,
        params: Union[dict[str, Any], None] = None,
    ) -> ApiResponse:
        options = options or RequestOptions()
        descriptor = self._descriptor(method, path, body, options, params)
        return self.pipeline.run(descriptor, options)

    # sugar
    def get(self, path: str, options=None, params=None) -> ApiResponse:
        return self.request("GET", path, options=options, params=params)

    def post(self, path: str, body: Any = None, options=None) -> ApiResponse:
        return self.request("POST", path, body, options)

    def put(self, path: str, body: Any = None, options=None) -> ApiResponse:
        return self.request("PUT", path, body, options)

    def patch(self, path: str, body: Any = None, options=None) -> ApiResponse:
        return self.request("PATCH", path, body, options)

    def delete(self, path: str, body: Any = None, options=None) -> ApiResponse:
        return self.request("DELETE", path, body, options)

    def login(self, body: Any, path: str = DEFAULT_LOGIN_PATH) -> ApiResponse:
        resp = self.request("POST", path, body, RequestOptions(skip_auth=True))
        self.tokens.set_credential(credential_from_payload(resp.data))
        return resp

    def logout(self) -> None:
        self.tokens.logout()

    def close(self) -> None:
        if self._own_transport:
            self.transport.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
