import asyncio
import logging
import time
from typing import Any, Callable, Union

from .classifier import classify
from .errors import ApiError, RequestCancelledError, error_from_outcome
from .policies import coerce_policy
from .types import (
    ApiResponse,
    AuthConfig,
    FailureKind,
    Outcome,
    RequestDescriptor,
    RequestOptions,
    RetryConfig,
    RetryDecision,
)

# Actions produced by one classification step
_DONE = "done"
_REFRESH = "refresh"
_RETRY = "retry"
_FAIL = "fail"

RetryHook = Callable[[RequestDescriptor, FailureKind, RetryDecision], Any]


# ---------- Base pipeline (shared logic; suspension handled by subclasses) ----------


class _PipelineBase:
    def __init__(
        self,
        transport,
        tokens=None,
        policy: Union[object, None] = None,
        retry_config: Union[RetryConfig, None] = None,
        auth_config: Union[AuthConfig, None] = None,
        on_retry: Union[RetryHook, None] = None,
        log_level: Union[int, None] = None,
    ):
        """Initialize a pipeline.

        Args:
            transport: object with ``send(descriptor) -> Outcome`` (awaitable for async)
            tokens: TokenManager / SyncTokenManager, or None for unauthenticated use
            policy: None | RetryConfig | BackoffPolicy | decide callable
            retry_config (RetryConfig | None): knobs for the default policy
            auth_config (AuthConfig | None): supplies the expired-token payload markers
            on_retry: hook called before each backoff wait
            log_level (int | None): level for the "backstop" logger
        """
        self.transport = transport
        self.tokens = tokens
        self.retry_config = retry_config or RetryConfig()
        self.policy = coerce_policy(policy, self.retry_config)
        self.expired_markers = (auth_config or AuthConfig()).expired_markers
        self.on_retry = on_retry
        methods = self.retry_config.retry_for_methods
        self._retry_methods = {m.upper() for m in methods} if methods is not None else None
        self._logger = logging.getLogger("backstop")
        if log_level is not None:
            self._logger.setLevel(log_level)

    def _retries(self, method: str) -> bool:
        return self._retry_methods is None or method.upper() in self._retry_methods

    def _next_step(
        self, descriptor: RequestDescriptor, outcome: Outcome, refreshed: bool, skip_auth: bool
    ):
        if outcome.ok:
            return _DONE, None, ApiResponse(outcome.status, outcome.body, outcome.headers)
        kind = classify(outcome, self.expired_markers)
        if kind is FailureKind.AUTH_EXPIRED:
            if not (skip_auth or refreshed or self.tokens is None):
                return _REFRESH, kind, None
            # refresh already spent for this request, or not applicable
            return _FAIL, kind, error_from_outcome(kind, outcome)
        if self._retries(descriptor.method):
            decision = self.policy.decide(kind, descriptor.attempt, descriptor.timeout)
            if decision.retry:
                return _RETRY, kind, decision
            if decision.error is not None:
                return _FAIL, kind, decision.error
        return _FAIL, kind, error_from_outcome(kind, outcome)

    def _log_start(self, descriptor: RequestDescriptor) -> None:
        self._logger.debug(
            f"req start method={descriptor.method} path={descriptor.path} "
            f"attempt={descriptor.attempt} timeout={descriptor.timeout}"
        )

    def _log_done(self, descriptor: RequestDescriptor, outcome: Outcome) -> None:
        self._logger.debug(
            f"req done method={descriptor.method} path={descriptor.path} "
            f"status={outcome.status} elapsed={outcome.elapsed:.3f}"
        )

    def _before_retry(
        self, descriptor: RequestDescriptor, kind: FailureKind, decision: RetryDecision
    ) -> None:
        self._logger.info(
            f"{kind.value} on method={descriptor.method} path={descriptor.path}; "
            f"retry {descriptor.attempt + 1} of {self.policy.max_retries} "
            f"in {decision.delay:.2f}s timeout={decision.timeout}"
        )
        if self.on_retry is not None:
            self.on_retry(descriptor, kind, decision)

    def _apply_retry(self, descriptor: RequestDescriptor, decision: RetryDecision) -> None:
        descriptor.timeout = decision.timeout
        descriptor.attempt += 1

    def _log_failure(self, descriptor: RequestDescriptor, error: ApiError) -> None:
        self._logger.warning(
            f"request failed method={descriptor.method} path={descriptor.path} "
            f"kind={error.kind} status={error.http_status} attempts={descriptor.attempt + 1}"
        )


# ---------- Async pipeline (httpx/aiohttp) ----------


class RequestPipeline(_PipelineBase):
    """Runs one logical call: attach, dispatch, classify, then retry, refresh or stop.

    Cancelling the calling task aborts the transport call or the backoff
    sleep; a shared token refresh keeps running for the other waiters.
    """

    def __init__(self, *args, sleep: Union[Callable[[float], Any], None] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._sleep = sleep or asyncio.sleep

    async def run(
        self, descriptor: RequestDescriptor, options: Union[RequestOptions, None] = None
    ) -> ApiResponse:
        options = options or RequestOptions()
        refreshed = False
        while True:
            token = None
            if not options.skip_auth and self.tokens is not None:
                token = await self.tokens.attach(descriptor)
            self._log_start(descriptor)
            outcome = await self.transport.send(descriptor)
            self._log_done(descriptor, outcome)
            action, kind, value = self._next_step(
                descriptor, outcome, refreshed, options.skip_auth
            )
            if action == _DONE:
                return value
            if action == _REFRESH:
                refreshed = True
                try:
                    await self.tokens.handle_auth_expired(token)
                except ApiError as e:
                    self._log_failure(descriptor, e)
                    raise
                continue
            if action == _RETRY:
                self._before_retry(descriptor, kind, value)
                await self._sleep(value.delay)
                self._apply_retry(descriptor, value)
                continue
            self._log_failure(descriptor, value)
            raise value


# ---------- Sync pipeline (requests) ----------


class SyncRequestPipeline(_PipelineBase):
    def __init__(self, *args, sleep: Union[Callable[[float], Any], None] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._sleep = sleep or time.sleep

    def _wait(self, delay: float, options: RequestOptions) -> None:
        event = options.cancel_event
        if event is None:
            self._sleep(delay)
            return
        if event.wait(delay):
            raise RequestCancelledError()

    def run(
        self, descriptor: RequestDescriptor, options: Union[RequestOptions, None] = None
    ) -> ApiResponse:
        options = options or RequestOptions()
        refreshed = False
        while True:
            if options.cancel_event is not None and options.cancel_event.is_set():
                raise RequestCancelledError()
            token = None
            if not options.skip_auth and self.tokens is not None:
                token = self.tokens.attach(descriptor)
            self._log_start(descriptor)
            outcome = self.transport.send(descriptor)
            self._log_done(descriptor, outcome)
            action, kind, value = self._next_step(
                descriptor, outcome, refreshed, options.skip_auth
            )
            if action == _DONE:
                return value
            if action == _REFRESH:
                refreshed = True
                try:
                    self.tokens.handle_auth_expired(token)
                except ApiError as e:
                    self._log_failure(descriptor, e)
                    raise
                continue
            if action == _RETRY:
                self._before_retry(descriptor, kind, value)
                self._wait(value.delay, options)
                self._apply_retry(descriptor, value)
                continue
            self._log_failure(descriptor, value)
            raise value
