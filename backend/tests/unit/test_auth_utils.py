import jwt
import pytest

from app.core.auth_utils import decode_access_token
from app.core.config import get_jwt_secret
from app.core.errors import UnauthorizedError

_SECRET = get_jwt_secret()


def test_decode_access_token_returns_id_and_email(auth_token):
    claims = decode_access_token(auth_token)
    assert claims == {"id": "00000000-0000-0000-0000-000000000000", "email": "test@example.com"}


def test_decode_access_token_accepts_legacy_underscore_id():
    token = jwt.encode({"_id": "legacy-1", "email": "x@example.com"}, _SECRET, algorithm="HS256")
    assert decode_access_token(token)["id"] == "legacy-1"


def test_decode_access_token_rejects_expired_token(expired_token):
    with pytest.raises(UnauthorizedError) as exc:
        decode_access_token(expired_token)
    assert exc.value.status_code == 401


def test_decode_access_token_rejects_wrong_secret():
    token = jwt.encode({"sub": "u1"}, "another-secret", algorithm="HS256")
    with pytest.raises(UnauthorizedError):
        decode_access_token(token)


def test_decode_access_token_requires_subject():
    token = jwt.encode({"email": "x@example.com"}, _SECRET, algorithm="HS256")
    with pytest.raises(UnauthorizedError, match="Invalid token payload"):
        decode_access_token(token)
