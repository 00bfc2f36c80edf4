import base64
import json

from backstop import Credential, FileTokenStore, MemoryTokenStore


def _jwt(claims):
    def seg(obj):
        return base64.urlsafe_b64encode(json.dumps(obj).encode()).rstrip(b"=").decode()

    return f"{seg({'alg': 'HS256'})}.{seg(claims)}.sig"


def test_bearer_prefix_is_stripped():
    cred = Credential.from_tokens("Bearer abc", "r1")
    assert cred.access_token == "abc"
    assert cred.refresh_token == "r1"
    assert cred.expires_at is None


def test_jwt_exp_claim_sets_expiry():
    cred = Credential.from_tokens(_jwt({"sub": "u1", "exp": 1000}))
    assert cred.expires_at == 1000.0  # noqa: PLR2004
    assert cred.is_expired(1000.0)
    assert cred.is_valid(999.0)


def test_opaque_token_has_unknown_expiry():
    cred = Credential.from_tokens("not.a-jwt.token")
    assert cred.expires_at is None
    assert cred.is_valid(10**12)


def test_memory_store_roundtrip_and_clear():
    store = MemoryTokenStore()
    assert store.load() is None
    store.save(Credential("a1", "r1"))
    assert store.values == {"access-token": "a1", "refresh-token": "r1"}
    loaded = store.load()
    assert (loaded.access_token, loaded.refresh_token) == ("a1", "r1")
    store.clear()
    assert store.load() is None


def test_missing_refresh_key_is_not_an_error():
    store = MemoryTokenStore({"access-token": "a1"})
    cred = store.load()
    assert cred.access_token == "a1"
    assert cred.refresh_token is None
    assert MemoryTokenStore({"refresh-token": "r1"}).load() is None


def test_file_store(tmp_path):
    path = tmp_path / "state" / "auth.json"
    store = FileTokenStore(path)
    assert store.load() is None
    store.save(Credential("a1", "r1"))
    assert json.loads(path.read_text()) == {"access-token": "a1", "refresh-token": "r1"}
    # a second store over the same file sees the credential (process restart)
    assert FileTokenStore(path).load().access_token == "a1"
    store.clear()
    assert not path.exists()
    store.clear()


def test_file_store_tolerates_garbage(tmp_path):
    path = tmp_path / "auth.json"
    path.write_text("{not json")
    assert FileTokenStore(path).load() is None
