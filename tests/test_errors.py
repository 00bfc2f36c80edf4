import pytest

from backstop import ApiError, AuthenticationError, FailureKind, Outcome, message_for
from backstop.errors import error_from_outcome


@pytest.mark.parametrize(
    ("status", "fragment"),
    [
        (400, "Invalid request"),
        (401, "log in"),
        (403, "permission"),
        (404, "not found"),
        (422, "Validation error"),
        (429, "Too many requests"),
        (500, "Server error"),
        (418, "unexpected error"),
        (502, "unexpected error"),
    ],
)
def test_status_messages(status, fragment):
    msg = message_for(FailureKind.CLIENT_ERROR, status)
    assert fragment in msg


def test_server_message_wins():
    assert message_for(FailureKind.CLIENT_ERROR, 400, {"message": "Coupon expired"}) == (
        "Coupon expired"
    )
    assert message_for(FailureKind.CLIENT_ERROR, 400, {"error": "Out of stock"}) == "Out of stock"
    # blank or non-string server messages fall back to the status text
    assert "Invalid request" in message_for(FailureKind.CLIENT_ERROR, 400, {"message": "  "})
    assert "Invalid request" in message_for(FailureKind.CLIENT_ERROR, 400, {"message": 7})


def test_no_response_messages():
    assert "Network error" in message_for(FailureKind.NETWORK, None)
    assert "timed out" in message_for(FailureKind.TIMEOUT, None)


def test_error_from_outcome():
    err = error_from_outcome(FailureKind.RATE_LIMITED, Outcome(status=429, body=None))
    assert isinstance(err, ApiError)
    assert err.kind == "rate_limited"
    assert err.http_status == 429  # noqa: PLR2004
    assert err.message
    auth = error_from_outcome(FailureKind.AUTH_EXPIRED, Outcome(status=401))
    assert isinstance(auth, AuthenticationError)
    assert auth.kind == "auth_expired"
    assert "kind='auth_expired'" in repr(auth)
