"""Deadlines for chunked disk and hashing work."""

import time

from docvault.services.errors import StorageTimeoutError

CHUNK_SIZE = 1024 * 1024


class Deadline:
    """A point in monotonic time after which an operation must stop.

    Long-running loops call :meth:`check` between chunks so they can clean up
    and raise :class:`StorageTimeoutError` instead of hanging the caller.
    """

    def __init__(self, seconds: float | None):
        self._expires = None if seconds is None else time.monotonic() + seconds

    @classmethod
    def none(cls) -> "Deadline":
        return cls(None)

    @property
    def remaining(self) -> float | None:
        if self._expires is None:
            return None
        return max(0.0, self._expires - time.monotonic())

    def expired(self) -> bool:
        return self._expires is not None and time.monotonic() > self._expires

    def check(self, operation: str) -> None:
        if self.expired():
            raise StorageTimeoutError(f"{operation} timed out")


def chunks(data: bytes, size: int = CHUNK_SIZE):
    view = memoryview(data)
    for start in range(0, len(view), size):
        yield view[start : start + size]
