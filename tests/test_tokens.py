"""
tests/test_tokens.py -- Unit tests for auth/tokens.py.

Covers:
  - bcrypt hashing round trip, malformed-hash handling, 72-byte input limit
  - JWT claims (sub as string, integer iat, exp = iat + lifetime)
  - expired, tampered, and claim-less tokens raise the right AppError
  - reset tokens: only the SHA-256 is returned for storage
"""

from __future__ import annotations

import time
from dataclasses import replace

import pytest
from jose import jwt

from auth.service import validate_new_password
from auth.tokens import (
    MAX_PASSWORD_BYTES,
    create_access_token,
    decode_access_token,
    generate_reset_token,
    hash_password,
    hash_reset_token,
    verify_password,
)
from core.errors import ExpiredToken, InvalidToken, ValidationFailure
from tests.conftest import auth_config


def test_hash_and_verify_password():
    hashed = hash_password("correct horse", rounds=4)
    assert hashed != "correct horse"
    assert verify_password("correct horse", hashed)
    assert not verify_password("wrong horse", hashed)


def test_verify_against_malformed_hash_is_false():
    assert verify_password("anything", "not-a-bcrypt-hash") is False


def test_verify_rejects_input_over_bcrypt_limit():
    hashed = hash_password("a" * MAX_PASSWORD_BYTES, rounds=4)
    assert verify_password("a" * MAX_PASSWORD_BYTES, hashed)
    assert verify_password("a" * (MAX_PASSWORD_BYTES + 1), hashed) is False


@pytest.mark.parametrize("password", ["a" * 73, "\u00e9" * 37])
def test_new_password_over_bcrypt_limit_is_rejected(password):
    with pytest.raises(ValidationFailure, match="at most 72 bytes"):
        validate_new_password(password, password)


def test_token_claims():
    config = auth_config()
    token = create_access_token(42, config, issued_at=1_700_000_000.9)
    claims = jwt.get_unverified_claims(token)
    assert claims["sub"] == "42"
    assert claims["iat"] == 1_700_000_000
    assert claims["exp"] == 1_700_000_000 + config.token_expire_seconds


def test_decode_returns_integer_user_id():
    config = auth_config()
    payload = decode_access_token(create_access_token(7, config), config)
    assert payload["user_id"] == 7


def test_expired_token():
    config = replace(auth_config(), token_expire_seconds=10)
    token = create_access_token(7, config, issued_at=time.time() - 3600)
    with pytest.raises(ExpiredToken):
        decode_access_token(token, config)


def test_token_signed_with_other_secret_is_invalid():
    config = auth_config()
    other = replace(config, secret_key="x" * 64)
    with pytest.raises(InvalidToken):
        decode_access_token(create_access_token(7, other), config)


def test_garbage_token_is_invalid():
    with pytest.raises(InvalidToken):
        decode_access_token("not.a.jwt", auth_config())


def test_token_without_subject_is_invalid():
    config = auth_config()
    token = jwt.encode({"iat": int(time.time()), "exp": int(time.time()) + 60}, config.secret_key, algorithm="HS256")
    with pytest.raises(InvalidToken):
        decode_access_token(token, config)


def test_reset_token_pair():
    raw, digest = generate_reset_token()
    assert len(raw) == 64
    assert digest == hash_reset_token(raw)
    assert digest != raw
