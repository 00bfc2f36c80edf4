from collections.abc import Iterable
from typing import Any

from .types import AuthConfig, FailureKind, Outcome

DEFAULT_EXPIRED_MARKERS = AuthConfig().expired_markers


def _has_expired_marker(body: Any, markers: Iterable[str]) -> bool:
    if not isinstance(body, dict):
        return False
    wanted = [m.lower() for m in markers]
    for key in ("code", "error", "message"):
        value = body.get(key)
        if not isinstance(value, str):
            continue
        text = value.lower()
        if any(m in text for m in wanted):
            return True
    return False


def classify(
    outcome: Outcome, expired_markers: Iterable[str] = DEFAULT_EXPIRED_MARKERS
) -> FailureKind:
    """Map one transport outcome to a FailureKind.

    Checks run in order: timeout, no response, 429, 5xx, 401 or an
    expired-token payload marker, other 4xx. Anything else is UNKNOWN.
    """
    if outcome.timed_out or outcome.late:
        return FailureKind.TIMEOUT
    status = outcome.status
    if status is None:
        return FailureKind.NETWORK
    if status == 429:  # noqa: PLR2004, http status code can be constant
        return FailureKind.RATE_LIMITED
    if status >= 500:  # noqa: PLR2004
        return FailureKind.SERVER_ERROR
    if 400 <= status < 500:  # noqa: PLR2004
        if status == 401 or _has_expired_marker(outcome.body, expired_markers):  # noqa: PLR2004
            return FailureKind.AUTH_EXPIRED
        return FailureKind.CLIENT_ERROR
    return FailureKind.UNKNOWN
