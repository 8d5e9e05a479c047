"""
tests/test_tokens.py -- Unit tests for auth/tokens.py.

Covers:
  - bcrypt hash/verify, including malformed hashes (False, not an exception)
  - Session tokens are unique and their HMAC depends on the secret key
  - Cache cookie: decodes for the bound token, rejects a different token,
    a different signing key, an expired exp, and garbage
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from auth.models import AuthSession, Session, User
from auth.tokens import (
    DUMMY_HASH,
    decode_session_cache,
    encode_session_cache,
    generate_session_token,
    hash_password,
    hash_session_token,
    verify_password,
)

SECRET = "tokens-test-secret-0123456789abcdef0123456789"


def _auth_session(token_hash: str = "abc123") -> AuthSession:
    expires = (datetime.now(timezone.utc) + timedelta(days=7)).isoformat()
    return AuthSession(
        session=Session(id="s1", user_id="u1", token_hash=token_hash, expires_at=expires),
        user=User(id="u1", name="Ada", email="ada@example.com", role="admin"),
    )


class TestPasswords:
    def test_round_trip(self) -> None:
        hashed = hash_password("correct horse battery")
        assert hashed != "correct horse battery"
        assert verify_password("correct horse battery", hashed)
        assert not verify_password("wrong horse battery", hashed)

    def test_salted(self) -> None:
        assert hash_password("same password") != hash_password("same password")

    def test_malformed_hash_is_false(self) -> None:
        assert verify_password("anything", "not-a-bcrypt-hash") is False

    def test_dummy_hash_is_valid_bcrypt(self) -> None:
        assert DUMMY_HASH.startswith("$2")
        assert verify_password("anything", DUMMY_HASH) is False


class TestSessionTokens:
    def test_unique(self) -> None:
        tokens = {generate_session_token() for _ in range(50)}
        assert len(tokens) == 50

    def test_hash_is_deterministic_and_keyed(self) -> None:
        token = generate_session_token()
        assert hash_session_token(token, SECRET) == hash_session_token(token, SECRET)
        assert hash_session_token(token, SECRET) != hash_session_token(token, SECRET + "x")
        assert len(hash_session_token(token, SECRET)) == 64


class TestSessionCache:
    def test_decodes_for_bound_token(self) -> None:
        original = _auth_session()
        value = encode_session_cache(original, SECRET, max_age=300)
        decoded = decode_session_cache(value, "abc123", SECRET)
        assert decoded == original

    def test_other_token_rejected(self) -> None:
        value = encode_session_cache(_auth_session(), SECRET, max_age=300)
        assert decode_session_cache(value, "zzz999", SECRET) is None

    def test_other_key_rejected(self) -> None:
        value = encode_session_cache(_auth_session(), SECRET, max_age=300)
        assert decode_session_cache(value, "abc123", "another-secret-key-of-sufficient-length") is None

    def test_expired_rejected(self) -> None:
        value = encode_session_cache(_auth_session(), SECRET, max_age=-10)
        assert decode_session_cache(value, "abc123", SECRET) is None

    def test_garbage_rejected(self) -> None:
        assert decode_session_cache("not.a.jwt", "abc123", SECRET) is None
