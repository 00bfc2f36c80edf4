from .adapters import AiohttpTransport, HttpxTransport, RequestsTransport
from .auth import (
    AsyncHttpRefresher,
    HttpRefresher,
    SyncTokenManager,
    TokenManager,
    credential_from_payload,
)
from .classifier import classify
from .client import ApiClient, AsyncApiClient
from .env import load_config_from_env, load_credential_from_env
from .errors import ApiError, AuthenticationError, RequestCancelledError, message_for
from .pipeline import RequestPipeline, SyncRequestPipeline
from .policies import BackoffPolicy, FunctionalPolicy, coerce_policy
from .state import Credential
from .storage import FileTokenStore, MemoryTokenStore, TokenStore
from .types import (
    ApiResponse,
    AuthConfig,
    ClientConfig,
    FailureKind,
    Outcome,
    RequestDescriptor,
    RequestOptions,
    RetryConfig,
    RetryDecision,
)

__all__ = [
    "ApiClient",
    "AsyncApiClient",
    "ClientConfig",
    "RetryConfig",
    "AuthConfig",
    "RequestOptions",
    "RequestDescriptor",
    "ApiResponse",
    "Outcome",
    "FailureKind",
    "RetryDecision",
    "classify",
    "BackoffPolicy",
    "FunctionalPolicy",
    "coerce_policy",
    "Credential",
    "TokenManager",
    "SyncTokenManager",
    "AsyncHttpRefresher",
    "HttpRefresher",
    "credential_from_payload",
    "RequestPipeline",
    "SyncRequestPipeline",
    "TokenStore",
    "MemoryTokenStore",
    "FileTokenStore",
    "HttpxTransport",
    "AiohttpTransport",
    "RequestsTransport",
    "ApiError",
    "AuthenticationError",
    "RequestCancelledError",
    "message_for",
    "load_config_from_env",
    "load_credential_from_env",
]
