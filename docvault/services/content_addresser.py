"""Content addressing: SHA-256 digests of raw file bytes."""

import hashlib
import hmac

from docvault.services.timeouts import Deadline, chunks

DIGEST_LENGTH = 64


class ContentAddresser:
    @staticmethod
    def hash(data: bytes, deadline: Deadline | None = None) -> str:
        """Return the hex SHA-256 digest of ``data``.

        Large buffers are hashed chunk by chunk so an expired ``deadline`` stops
        the work early.
        """
        digest = hashlib.sha256()
        for chunk in chunks(data):
            if deadline is not None:
                deadline.check("Hashing")
            digest.update(chunk)
        return digest.hexdigest()

    @classmethod
    def matches(cls, data: bytes, expected: str) -> bool:
        return hmac.compare_digest(cls.hash(data), expected.lower())

    @staticmethod
    def is_digest(value: str) -> bool:
        return len(value) == DIGEST_LENGTH and all(c in "0123456789abcdef" for c in value)
