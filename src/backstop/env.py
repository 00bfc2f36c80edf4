import os
from typing import Union

from .state import Credential
from .types import DEFAULT_BASE_URL, AuthConfig, ClientConfig, RetryConfig

DEFAULT_PREFIX = "BACKSTOP_"


def _env_value(raw: str) -> str:
    raw = raw.strip()
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in "\"'":  # noqa: PLR2004
        return raw[1:-1]
    # unquoted values may carry a trailing " # comment"
    return raw.split(" #", 1)[0].rstrip()


def _parse_env_file(env_path: str) -> dict[str, str]:
    """Read KEY=VALUE lines from a .env file; os.environ is left untouched.

    Shell-style ``export KEY=VALUE`` lines are accepted. A missing file
    reads as empty.
    """
    values: dict[str, str] = {}
    try:
        with open(env_path) as f:
            lines = f.readlines()
    except FileNotFoundError:
        return values
    for raw_line in lines:
        line = raw_line.strip()
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, val = line.split("=", 1)
        key = key.strip()
        if key:
            values[key] = _env_value(val)
    return values


def _env_map(env_path: Union[str, None]) -> dict[str, str]:
    # actual environment takes precedence over .env file
    file_env = _parse_env_file(env_path) if env_path else {}
    return {**file_env, **os.environ}


def _number(env: dict[str, str], name: str, default, cast):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


def load_config_from_env(
    prefix: str = DEFAULT_PREFIX,
    env_path: Union[str, None] = None,
) -> ClientConfig:
    """Build a ClientConfig from environment variables.

    Recognized names (after ``prefix``):
    API_URL: base URL (default http://localhost:5000/api)
    BASE_DELAY: seconds between retries, scaled per attempt (default 2.0)
    INITIAL_TIMEOUT: seconds for the first dispatch (default 30.0)
    MAX_RETRIES: retries per request (default 3)
    REFRESH_PATH: token refresh endpoint (default /auth/refresh)

    If 'env_path' is provided, variables from the .env file are used to augment
    lookups; values in the actual environment take precedence over the file.
    """
    env = _env_map(env_path)
    defaults = RetryConfig()
    retry = RetryConfig(
        base_delay=_number(env, f"{prefix}BASE_DELAY", defaults.base_delay, float),
        initial_timeout=_number(env, f"{prefix}INITIAL_TIMEOUT", defaults.initial_timeout, float),
        max_retries=_number(env, f"{prefix}MAX_RETRIES", defaults.max_retries, int),
    )
    auth = AuthConfig(refresh_path=env.get(f"{prefix}REFRESH_PATH") or AuthConfig().refresh_path)
    return ClientConfig(
        base_url=env.get(f"{prefix}API_URL") or DEFAULT_BASE_URL,
        retry=retry,
        auth=auth,
    )


def load_credential_from_env(
    prefix: str = DEFAULT_PREFIX,
    env_path: Union[str, None] = None,
) -> Union[Credential, None]:
    """Read ``{prefix}ACCESS_TOKEN`` / ``{prefix}REFRESH_TOKEN``; None when no access token."""
    env = _env_map(env_path)
    access = env.get(f"{prefix}ACCESS_TOKEN")
    if not access:
        return None
    return Credential.from_tokens(access, env.get(f"{prefix}REFRESH_TOKEN"))
