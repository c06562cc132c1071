"""FileStore: raw file bytes in a private, non-web-reachable directory."""

import logging
import os
import time
import uuid
from pathlib import Path

from docvault.services.errors import (
    IntegrityError,
    NotFoundError,
    PathViolationError,
    StorageReadError,
    StorageTimeoutError,
    StorageWriteError,
)
from docvault.services.file_validation import name_fragment
from docvault.services.timeouts import CHUNK_SIZE, Deadline, chunks

logger = logging.getLogger(__name__)


def write_atomic(target: Path, data: bytes, deadline: Deadline | None = None) -> None:
    """Write ``data`` to ``target`` through a hidden temp file and rename it into place.

    On any failure the temp file is removed before the error propagates, so a
    failed write never leaves a partial artifact behind.
    """
    tmp = target.with_name(f".{target.name}.part")
    try:
        with open(tmp, "xb") as fh:
            for chunk in chunks(data):
                if deadline is not None:
                    deadline.check("Write")
                fh.write(chunk)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, target)
    except StorageTimeoutError:
        _discard(tmp)
        raise
    except OSError as exc:
        _discard(tmp)
        logger.error("Write to %s failed: %s", target, exc)
        raise StorageWriteError() from exc


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.exception("Could not remove partial artifact %s", path)


class FileStore:
    def __init__(self, storage_root: str, io_timeout: float | None = None):
        self._root = Path(storage_root, "files", "private").resolve()
        self._io_timeout = io_timeout

    @property
    def root(self) -> Path:
        return self._root

    def _ensure_root(self) -> None:
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageWriteError() from exc

    def _deadline(self, deadline: Deadline | None) -> Deadline:
        return deadline if deadline is not None else Deadline(self._io_timeout)

    @staticmethod
    def generate_name(original_name: str) -> str:
        """Collision-resistant storage name: timestamp, random id, name fragment, extension."""
        base, ext = name_fragment(original_name)
        name = f"main_{int(time.time() * 1000)}_{uuid.uuid4().hex}_{base}"
        return f"{name}.{ext}" if ext else name

    def resolve(self, stored_path: str) -> Path:
        """Resolve a stored path and make sure it stays inside the storage root."""
        resolved = Path(stored_path).resolve()
        if not resolved.is_relative_to(self._root):
            logger.error("Path violation: %s is outside %s", stored_path, self._root)
            raise PathViolationError()
        return resolved

    def save(self, data: bytes, original_name: str, deadline: Deadline | None = None) -> str:
        """Persist ``data`` under a freshly generated name; returns the absolute stored path."""
        self._ensure_root()
        target = self._root / self.generate_name(original_name)
        write_atomic(target, data, self._deadline(deadline))
        return str(target)

    def read(
        self,
        stored_path: str,
        expected_size: int | None = None,
        deadline: Deadline | None = None,
    ) -> bytes:
        path = self.resolve(stored_path)
        deadline = self._deadline(deadline)
        try:
            with open(path, "rb") as fh:
                parts = []
                while chunk := fh.read(CHUNK_SIZE):
                    deadline.check("Read")
                    parts.append(chunk)
        except FileNotFoundError as exc:
            logger.error("Stored file missing on disk: %s", path)
            raise NotFoundError("File content is not available") from exc
        except StorageTimeoutError:
            raise
        except OSError as exc:
            logger.error("Reading %s failed: %s", path, exc)
            raise StorageReadError() from exc

        data = b"".join(parts)
        if expected_size is not None and len(data) != expected_size:
            logger.error(
                "Integrity alarm: %s is %d bytes on disk, metadata says %d",
                path,
                len(data),
                expected_size,
            )
            raise IntegrityError()
        return data

    def exists(self, stored_path: str) -> bool:
        try:
            return self.resolve(stored_path).is_file()
        except PathViolationError:
            return False

    def delete(self, stored_path: str) -> None:
        """Remove a stored file. Only used to undo a failed upload."""
        _discard(self.resolve(stored_path))

    def iter_names(self) -> list[str]:
        if not self._root.is_dir():
            return []
        return sorted(
            p.name for p in self._root.iterdir() if p.is_file() and not p.name.startswith(".")
        )
