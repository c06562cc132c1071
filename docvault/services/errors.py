"""Error taxonomy shared by the storage and verification services.

Every error carries an HTTP-style ``status_code`` and a ``message`` that is
safe to show to callers. Internal details (paths, raw I/O errors) belong in
logs only.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


class DocVaultError(Exception):
    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.public_message
        super().__init__(self.message)


class ValidationError(DocVaultError, ValueError):
    status_code = 400
    public_message = "Invalid request"

    def __init__(self, errors: list[FieldError] | str):
        if isinstance(errors, str):
            errors = [FieldError("request", errors)]
        self.errors = list(errors)
        super().__init__("; ".join(e.message for e in self.errors))


class UnauthorizedError(DocVaultError):
    status_code = 401
    public_message = "Authentication required"


class ForbiddenError(DocVaultError):
    status_code = 403
    public_message = "Access denied"

    def __init__(self, reason: str | None = None):
        # The reason is for logs; callers only ever see "Access denied".
        self.reason = reason
        super().__init__(self.public_message)


class NotFoundError(DocVaultError):
    status_code = 404
    public_message = "Not found"


class GoneError(DocVaultError):
    status_code = 410
    public_message = "File is no longer available"


class ConflictError(DocVaultError):
    status_code = 409
    public_message = "Conflict"


class DuplicateContentError(ConflictError):
    public_message = "A document with identical content is already registered"


class IllegalTransitionError(ConflictError):
    public_message = "Illegal status transition"


class NotDeletedError(ConflictError):
    public_message = "File is not deleted"


class RateLimitExceededError(DocVaultError):
    status_code = 429
    public_message = "Too many upload attempts. Please try again later."

    def __init__(self, retry_after: int = 0):
        self.retry_after = retry_after
        super().__init__()


class IntegrityError(DocVaultError):
    public_message = "File integrity check failed"


class StorageError(DocVaultError):
    public_message = "Storage operation failed"


class StorageWriteError(StorageError):
    public_message = "Failed to store file content"


class StorageReadError(StorageError):
    public_message = "Failed to read file content"


class PathViolationError(StorageError):
    public_message = "Invalid file path"


class StorageTimeoutError(StorageError, TimeoutError):
    status_code = 503
    public_message = "Storage operation timed out, please retry"
