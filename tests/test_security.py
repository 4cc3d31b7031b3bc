import pytest

from bulkmail.core.security import (
    TokenExpiredError,
    TokenValidationError,
    create_access_token,
    decode_token,
)


def test_token_roundtrip():
    payload = decode_token(create_access_token("42"))
    assert payload["sub"] == "42"
    assert payload["type"] == "access"


def test_expired_token():
    with pytest.raises(TokenExpiredError):
        decode_token(create_access_token("42", expires_minutes=-5))


def test_tampered_token():
    token = create_access_token("42")
    with pytest.raises(TokenValidationError):
        decode_token(token[:-2] + ("aa" if not token.endswith("aa") else "bb"))
