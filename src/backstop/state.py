import base64
import binascii
import json
from dataclasses import dataclass
from typing import Union

BEARER_PREFIX = "Bearer "


def strip_bearer(token: str) -> str:
    """Stored tokens are bare; older sessions persisted them with the scheme."""
    token = token.strip()
    if token[: len(BEARER_PREFIX)].lower() == BEARER_PREFIX.lower():
        return token[len(BEARER_PREFIX) :].strip()
    return token


def jwt_expiry(token: str) -> Union[float, None]:
    """Return the ``exp`` claim of a JWT, or None if the token is opaque."""
    parts = token.split(".")
    if len(parts) != 3:  # noqa: PLR2004
        return None
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (binascii.Error, ValueError):
        return None
    exp = claims.get("exp") if isinstance(claims, dict) else None
    if isinstance(exp, (int, float)) and not isinstance(exp, bool):
        return float(exp)
    return None


@dataclass
class Credential:
    access_token: str
    refresh_token: Union[str, None] = None
    expires_at: Union[float, None] = None  # epoch seconds; None = unknown
    refreshing: bool = False

    @classmethod
    def from_tokens(
        cls,
        access_token: str,
        refresh_token: Union[str, None] = None,
        expires_at: Union[float, None] = None,
    ) -> "Credential":
        token = strip_bearer(access_token)
        if expires_at is None:
            expires_at = jwt_expiry(token)
        return cls(
            access_token=token,
            refresh_token=refresh_token or None,
            expires_at=expires_at,
        )

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def is_valid(self, now: float) -> bool:
        return bool(self.access_token) and not self.is_expired(now)
