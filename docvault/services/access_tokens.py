"""Signed, short-lived tokens granting anonymous download access to one file."""

import base64
import binascii
import hashlib
import hmac
import json
import threading
import time
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class TokenClaims:
    file_id: str
    expires_at: int  # epoch milliseconds
    signature: str = ""


@dataclass(frozen=True)
class SignedToken:
    token: str
    file_id: str
    expires_at: int


class UsedTokenStore(Protocol):
    def mark_used(self, signature: str, expires_at: int) -> bool:
        """Record a signature; return False if it was already used."""


class InMemoryUsedTokenStore:
    """Process-local single-use registry; entries are dropped once they expire."""

    def __init__(self):
        self._used: dict[str, int] = {}
        self._lock = threading.Lock()

    def mark_used(self, signature: str, expires_at: int) -> bool:
        now = _now_ms()
        with self._lock:
            self._used = {sig: exp for sig, exp in self._used.items() if exp >= now}
            if signature in self._used:
                return False
            self._used[signature] = expires_at
            return True


def _now_ms() -> int:
    return int(time.time() * 1000)


def _canonical(file_id: str, expires_at: int) -> bytes:
    return json.dumps(
        {"expiresAt": expires_at, "fileId": file_id}, separators=(",", ":"), sort_keys=True
    ).encode("utf-8")


class AccessTokenIssuer:
    DEFAULT_TTL_MINUTES = 1

    def __init__(self, secret: str, used_tokens: UsedTokenStore | None = None):
        self._secret = secret.encode("utf-8")
        self._used_tokens = used_tokens

    def _sign(self, file_id: str, expires_at: int) -> str:
        return hmac.new(self._secret, _canonical(file_id, expires_at), hashlib.sha256).hexdigest()

    def issue(self, file_id, ttl_minutes: float = DEFAULT_TTL_MINUTES) -> SignedToken:
        file_id = str(file_id)
        expires_at = _now_ms() + int(ttl_minutes * 60 * 1000)
        payload = {
            "fileId": file_id,
            "expiresAt": expires_at,
            "signature": self._sign(file_id, expires_at),
        }
        token = base64.urlsafe_b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")
        return SignedToken(token=token, file_id=file_id, expires_at=expires_at)

    def validate(self, token: str, consume: bool = True) -> TokenClaims | None:
        """Return the claims of a well-formed, correctly signed, unexpired token.

        With ``consume=False`` a single-use token is left unspent; call
        :meth:`consume` once the download has actually succeeded.
        """
        try:
            decoded = json.loads(base64.urlsafe_b64decode(token.encode("ascii")))
            file_id = decoded["fileId"]
            expires_at = decoded["expiresAt"]
            signature = decoded["signature"]
        except (ValueError, KeyError, TypeError, binascii.Error, UnicodeError):
            return None

        if not (
            isinstance(file_id, str)
            and isinstance(expires_at, int)
            and not isinstance(expires_at, bool)
            and isinstance(signature, str)
        ):
            return None

        expected = self._sign(file_id, expires_at)
        if not hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8")):
            return None
        if _now_ms() > expires_at:
            return None
        claims = TokenClaims(file_id=file_id, expires_at=expires_at, signature=signature)
        if consume and not self.consume(claims):
            return None
        return claims

    def consume(self, claims: TokenClaims) -> bool:
        """Spend a single-use token; False if it was already spent."""
        if self._used_tokens is None:
            return True
        return self._used_tokens.mark_used(claims.signature, claims.expires_at)
