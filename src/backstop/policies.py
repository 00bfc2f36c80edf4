import inspect
from typing import Callable, Union

from .types import FailureKind, RetryConfig, RetryDecision

# decide_fn(kind, attempt, timeout); the timeout is dropped for two-argument functions
DECIDE_WITH_TIMEOUT_ARGC = 3

_LINEAR_KINDS = frozenset({FailureKind.SERVER_ERROR, FailureKind.NETWORK, FailureKind.TIMEOUT})


def _accepts_timeout(fn) -> bool:
    """True unless fn clearly takes only (kind, attempt)."""
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):
        # builtins and some C callables; assume the full signature
        return True
    if any(p.kind is p.VAR_POSITIONAL for p in params):
        return True
    positional = [p for p in params if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)]
    return len(positional) >= DECIDE_WITH_TIMEOUT_ARGC


class BackoffPolicy:
    """Decides whether a failed attempt is retried, after how long, and with which timeout.

    ``attempt`` is the number of retries already made; the decision is about
    retry number ``attempt + 1``. Rate limiting doubles the delay and keeps
    the timeout; server/network/timeout failures grow the delay linearly and
    give the next dispatch a larger timeout.
    """

    def __init__(self, config: Union[RetryConfig, None] = None):
        self.config = config or RetryConfig()

    @property
    def max_retries(self) -> int:
        return self.config.max_retries

    def delay_for(self, kind: FailureKind, attempt: int) -> float:
        n = attempt + 1
        if kind is FailureKind.RATE_LIMITED:
            return self.config.base_delay * (2 ** (n - 1))
        return self.config.base_delay * n

    def timeout_for(self, kind: FailureKind, attempt: int, timeout: Union[float, None]) -> float:
        current = self.config.initial_timeout if timeout is None else timeout
        if kind is FailureKind.RATE_LIMITED:
            return current
        # never shorter than the timeout the failed dispatch already had
        return max(current, self.config.initial_timeout * (attempt + 2))

    def decide(
        self, kind: FailureKind, attempt: int, timeout: Union[float, None] = None
    ) -> RetryDecision:
        if kind is FailureKind.RATE_LIMITED or kind in _LINEAR_KINDS:
            if attempt >= self.config.max_retries:
                return RetryDecision.give_up()
            return RetryDecision.retry_after(
                self.delay_for(kind, attempt), self.timeout_for(kind, attempt, timeout)
            )
        # CLIENT_ERROR, UNKNOWN, and AUTH_EXPIRED once refresh is spent
        return RetryDecision.give_up()


class FunctionalPolicy(BackoffPolicy):
    """Wrap a user-supplied decision function into a BackoffPolicy.

    Accepted function signatures:
        - decide_fn(kind, attempt, timeout) -> RetryDecision
        - decide_fn(kind, attempt) -> RetryDecision

    The retry ceiling still applies: a function cannot push a request past
    ``max_retries``.
    """

    def __init__(self, decide_fn: Callable, config: Union[RetryConfig, None] = None):
        super().__init__(config)
        self.decide_fn = decide_fn
        self._with_timeout = _accepts_timeout(decide_fn)

    def decide(self, kind, attempt, timeout=None):
        if attempt >= self.config.max_retries:
            return RetryDecision.give_up()
        if self._with_timeout:
            decision = self.decide_fn(kind, attempt, timeout)
        else:
            decision = self.decide_fn(kind, attempt)
        if not isinstance(decision, RetryDecision):
            raise TypeError("Custom decide function must return a RetryDecision")
        return decision


def coerce_policy(
    policy: Union[object, None], config: Union[RetryConfig, None] = None
) -> BackoffPolicy:
    """Turn None | RetryConfig | BackoffPolicy | callable into a BackoffPolicy.

    Accepted inputs:
      - None          -> BackoffPolicy(config)
      - RetryConfig   -> BackoffPolicy(policy)
      - BackoffPolicy instance (returned as-is)
      - callable: decide function (kind, attempt[, timeout]) wrapped into FunctionalPolicy
    """
    if policy is None:
        return BackoffPolicy(config)
    if isinstance(policy, BackoffPolicy):
        return policy
    if isinstance(policy, RetryConfig):
        return BackoffPolicy(policy)
    if callable(policy):
        return FunctionalPolicy(policy, config)
    raise TypeError("policy must be None, a RetryConfig, a BackoffPolicy, or a callable")
