import enum
import threading
from dataclasses import dataclass, field
from typing import Any, NamedTuple, Union

DEFAULT_BASE_URL = "http://localhost:5000/api"


class FailureKind(enum.Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    AUTH_EXPIRED = "auth_expired"
    CLIENT_ERROR = "client_error"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE


_RETRYABLE = frozenset(
    {FailureKind.NETWORK, FailureKind.TIMEOUT, FailureKind.RATE_LIMITED, FailureKind.SERVER_ERROR}
)


@dataclass(frozen=True)
class RetryConfig:
    # Delays and timeouts are seconds
    base_delay: float = 2.0
    initial_timeout: float = 30.0
    max_retries: int = 3

    # None retries every verb
    retry_for_methods: Union[tuple[str, ...], None] = None


@dataclass(frozen=True)
class AuthConfig:
    header: str = "Authorization"
    scheme: str = "Bearer"
    refresh_path: str = "/auth/refresh"
    refresh_body_key: str = "refreshToken"
    # Payload markers (code/error/message) that flag an expired token on a non-401 4xx
    expired_markers: tuple[str, ...] = ("token expired", "jwt expired", "token_expired")


@dataclass(frozen=True)
class ClientConfig:
    base_url: str = DEFAULT_BASE_URL
    default_headers: dict[str, str] = field(
        default_factory=lambda: {"Content-Type": "application/json"}
    )
    retry: RetryConfig = field(default_factory=RetryConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)


@dataclass
class RequestOptions:
    timeout_override: Union[float, None] = None
    extra_headers: dict[str, str] = field(default_factory=dict)
    skip_auth: bool = False
    # Sync clients only: set the event to abandon the request between attempts
    cancel_event: Union[threading.Event, None] = None


def join_url(base_url: str, path: str) -> str:
    if path.startswith(("http://", "https://")) or not base_url:
        return path
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


@dataclass
class RequestDescriptor:
    method: str
    path: str
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    params: Union[dict[str, Any], None] = None
    attempt: int = 0
    timeout: float = 30.0
    # absolute URL sent over the wire; path alone when empty
    url: str = ""

    @property
    def target(self) -> str:
        return self.url or self.path

    def set_header(self, name: str, value: str) -> None:
        self.remove_header(name)
        self.headers[name] = value

    def remove_header(self, name: str) -> None:
        for k in [k for k in self.headers if k.lower() == name.lower()]:
            del self.headers[k]

    def get_header(self, name: str) -> Union[str, None]:
        for k, v in self.headers.items():
            if k.lower() == name.lower():
                return v
        return None


@dataclass
class Outcome:
    """What a transport saw for one dispatch.

    ``status`` is None when no response arrived; ``error`` then holds the
    library exception. ``timed_out`` is set by the transport when the
    library reported a timeout abort.
    """

    status: Union[int, None] = None
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    error: Union[BaseException, None] = None
    timed_out: bool = False
    elapsed: float = 0.0
    timeout: Union[float, None] = None

    @property
    def late(self) -> bool:
        return self.timeout is not None and self.elapsed > self.timeout

    @property
    def ok(self) -> bool:
        return (
            self.status is not None
            and 200 <= self.status < 300  # noqa: PLR2004
            and not self.timed_out
            and not self.late
        )


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay: float = 0.0
    timeout: Union[float, None] = None
    error: Union[BaseException, None] = None

    @classmethod
    def retry_after(cls, delay: float, timeout: float) -> "RetryDecision":
        return cls(retry=True, delay=delay, timeout=timeout)

    @classmethod
    def give_up(cls, error: Union[BaseException, None] = None) -> "RetryDecision":
        return cls(retry=False, error=error)


class ApiResponse(NamedTuple):
    status: int
    data: Any
    headers: Union[dict[str, str], None] = None
