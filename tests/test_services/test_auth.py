"""TDD tests for session JWTs."""

from datetime import UTC, datetime

import pytest

from docvault.services.auth import AuthService
from docvault.services.errors import UnauthorizedError

SECRET = "test-secret-key-for-jwt-signing-only"


@pytest.fixture
def auth():
    return AuthService(secret_key=SECRET)


def _expired_token(**claims) -> str:
    from jose import jwt as _jwt

    payload = {
        "user_id": 1,
        "type": "access",
        "exp": datetime(2020, 1, 1, tzinfo=UTC),
        "iat": datetime(2020, 1, 1, tzinfo=UTC),
        **claims,
    }
    return _jwt.encode(payload, SECRET, algorithm="HS256")


class TestAccessToken:
    def test_create_access_token(self, auth):
        token = auth.create_access_token(user_id=1)
        assert isinstance(token, str)
        assert len(token) > 0

    def test_decode_access_token(self, auth):
        payload = auth.decode_token(auth.create_access_token(user_id=42))
        assert payload["user_id"] == 42
        assert payload["type"] == "access"

    def test_access_token_expires(self, auth):
        assert auth.decode_token(_expired_token()) is None

    def test_decode_invalid_token(self, auth):
        assert auth.decode_token("not.a.valid.token") is None

    def test_decode_token_wrong_secret(self, auth):
        token = auth.create_access_token(user_id=1)
        assert AuthService(secret_key="different-secret").decode_token(token) is None

    def test_expected_type_mismatch(self, auth):
        token = auth.create_access_token(user_id=1)
        assert auth.decode_token(token, expected_type="refresh") is None


class TestUserIdFromHeader:
    def test_bearer_token(self, auth):
        header = f"Bearer {auth.create_access_token(user_id=7)}"
        assert auth.user_id_from_header(header) == 7

    def test_scheme_is_case_insensitive(self, auth):
        header = f"bearer {auth.create_access_token(user_id=7)}"
        assert auth.user_id_from_header(header) == 7

    @pytest.mark.parametrize("header", [None, "", "Bearer", "Basic dXNlcjpwdw==", "Bearer junk"])
    def test_rejects_bad_headers(self, auth, header):
        with pytest.raises(UnauthorizedError):
            auth.user_id_from_header(header)

    def test_rejects_expired(self, auth):
        with pytest.raises(UnauthorizedError):
            auth.user_id_from_header(f"Bearer {_expired_token()}")

    def test_rejects_non_integer_user(self, auth):
        from jose import jwt as _jwt

        token = _jwt.encode({"user_id": "7", "type": "access"}, SECRET, algorithm="HS256")
        with pytest.raises(UnauthorizedError):
            auth.user_id_from_header(f"Bearer {token}")
