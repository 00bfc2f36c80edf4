from typing import Any, Union

from .types import FailureKind, Outcome

STATUS_MESSAGES = {
    400: "Invalid request. Please check your input and try again.",
    401: "Please log in to continue.",
    403: "You do not have permission to perform this action.",
    404: "The requested resource was not found.",
    422: "Validation error. Please check your input.",
    429: "Too many requests. Please try again later.",
    500: "Server error. Please try again later.",
}
DEFAULT_MESSAGE = "An unexpected error occurred. Please try again."
NETWORK_MESSAGE = "Network error: Please check your connection and try again."
TIMEOUT_MESSAGE = "The request timed out. Please try again."


class ApiError(Exception):
    """Terminal failure of one logical request.

    kind is the FailureKind label (e.g. "rate_limited"); http_status is
    set when a response was received.
    """

    def __init__(
        self,
        message: str,
        kind: Union[FailureKind, str] = FailureKind.UNKNOWN,
        http_status: Union[int, None] = None,
        body: Any = None,
    ):
        super().__init__(message)
        self.kind = kind.value if isinstance(kind, FailureKind) else str(kind)
        self.http_status = http_status
        self.message = message
        self.body = body

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(kind={self.kind!r}, http_status={self.http_status!r}, "
            f"message={self.message!r})"
        )


class AuthenticationError(ApiError):
    """The credential is gone; the caller must log in again."""

    def __init__(self, message: str = STATUS_MESSAGES[401], http_status=None, body=None):
        super().__init__(message, FailureKind.AUTH_EXPIRED, http_status, body)


class RequestCancelledError(ApiError):
    def __init__(self, message: str = "The request was cancelled."):
        super().__init__(message, FailureKind.UNKNOWN)


def server_message(body: Any) -> Union[str, None]:
    if not isinstance(body, dict):
        return None
    for key in ("message", "error"):
        msg = body.get(key)
        if isinstance(msg, str) and msg.strip():
            return msg
    return None


def message_for(kind: FailureKind, status: Union[int, None], body: Any = None) -> str:
    """Human-readable message, never empty."""
    if kind is FailureKind.TIMEOUT:
        return TIMEOUT_MESSAGE
    msg = server_message(body)
    if msg:
        return msg
    if status is None:
        return NETWORK_MESSAGE
    return STATUS_MESSAGES.get(status, DEFAULT_MESSAGE)


def error_from_outcome(kind: FailureKind, outcome: Union[Outcome, None]) -> ApiError:
    status = outcome.status if outcome is not None else None
    body = outcome.body if outcome is not None else None
    message = message_for(kind, status, body)
    if kind is FailureKind.AUTH_EXPIRED:
        return AuthenticationError(message, http_status=status, body=body)
    return ApiError(message, kind, status, body)
