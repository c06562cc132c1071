from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from docvault.services.errors import UnauthorizedError

ALGORITHM = "HS256"


class AuthService:
    """Issues and checks session JWTs. Sign-in itself is handled by the identity provider."""

    def __init__(self, secret_key: str):
        self._secret_key = secret_key

    def create_access_token(self, user_id: int, expires_minutes: int = 15) -> str:
        now = datetime.now(UTC)
        payload = {
            "user_id": user_id,
            "type": "access",
            "exp": now + timedelta(minutes=expires_minutes),
            "iat": now,
        }
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)

    def decode_token(self, token: str, expected_type: str | None = None) -> dict | None:
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[ALGORITHM])
        except JWTError:
            return None
        if expected_type and payload.get("type") != expected_type:
            return None
        return payload

    def user_id_from_header(self, authorization: str | None) -> int:
        """Extract the user id from an ``Authorization: Bearer <jwt>`` header."""
        if not authorization:
            raise UnauthorizedError()
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token:
            raise UnauthorizedError()
        payload = self.decode_token(token.strip(), expected_type="access")
        if payload is None or not isinstance(payload.get("user_id"), int):
            raise UnauthorizedError()
        return payload["user_id"]
