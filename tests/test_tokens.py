"""
tests/test_tokens.py -- Unit tests for accounts/tokens.py.

Covers:
  - random token and OTP code shape
  - keyed digests differ per key
  - reset grants: round trip, expiry, tampering, wrong purpose
  - chat token minter selection and payload
"""

from __future__ import annotations

from jose import jwt

from accounts.tokens import (
    JwtChatTokenMinter,
    NullChatTokenMinter,
    build_chat_minter,
    create_reset_grant,
    decode_reset_grant,
    digest,
    digests_match,
    generate_otp_code,
    generate_token,
    password_fingerprint,
)
from core.models import Account, AccountType

KEY = "tokens-test-secret-key-at-least-32-chars"


def test_generate_token_is_random_and_url_safe() -> None:
    tokens = {generate_token() for _ in range(20)}
    assert len(tokens) == 20
    assert all(len(t) >= 43 and all(c.isalnum() or c in "-_" for c in t) for t in tokens)


def test_otp_code_is_zero_padded_digits() -> None:
    for _ in range(50):
        code = generate_otp_code(6)
        assert len(code) == 6 and code.isdigit()
    assert len(generate_otp_code(4)) == 4


def test_digest_is_keyed() -> None:
    assert digest(KEY, "abc") == digest(KEY, "abc")
    assert digest(KEY, "abc") != digest(KEY + "x", "abc")
    assert digests_match(digest(KEY, "abc"), digest(KEY, "abc"))
    assert not digests_match(digest(KEY, "abc"), digest(KEY, "abd"))


class TestResetGrant:
    def test_round_trip(self) -> None:
        grant = create_reset_grant(7, "$2b$04$hash", KEY, ttl_seconds=60)
        decoded = decode_reset_grant(grant, KEY)
        assert decoded == (7, password_fingerprint(KEY, "$2b$04$hash"))

    def test_expired(self) -> None:
        grant = create_reset_grant(7, "$2b$04$hash", KEY, ttl_seconds=-10)
        assert decode_reset_grant(grant, KEY) is None

    def test_wrong_key(self) -> None:
        grant = create_reset_grant(7, "$2b$04$hash", KEY, ttl_seconds=60)
        assert decode_reset_grant(grant, "another-key-that-is-at-least-32-characters") is None

    def test_garbage(self) -> None:
        assert decode_reset_grant("not.a.jwt", KEY) is None

    def test_wrong_purpose(self) -> None:
        token = jwt.encode({"sub": "7", "purpose": "session", "pwd": "x"}, KEY, algorithm="HS256")
        assert decode_reset_grant(token, KEY) is None

    def test_fingerprint_follows_password_hash(self) -> None:
        assert password_fingerprint(KEY, "hash-a") != password_fingerprint(KEY, "hash-b")


class TestChatMinter:
    def test_disabled_without_secret(self) -> None:
        assert isinstance(build_chat_minter(""), NullChatTokenMinter)

    def test_jwt_payload(self) -> None:
        minter = build_chat_minter("chat-secret")
        assert isinstance(minter, JwtChatTokenMinter)
        account = Account(email="a@x.com", password_hash="h", account_type=AccountType.employee, id=42)
        token = minter.mint(account)
        assert jwt.decode(token, "chat-secret", algorithms=["HS256"]) == {"user_id": "42"}
