"""HashArtifactStore: detached digest files for external verification."""

import re
import time
import uuid
from pathlib import Path

from docvault.services.errors import NotFoundError, StorageReadError, StorageWriteError
from docvault.services.file_store import write_atomic
from docvault.services.file_validation import name_fragment
from docvault.services.timeouts import Deadline

_ARTIFACT_NAME_RE = re.compile(r"^hash_\d+_[0-9a-f]{32}_[A-Za-z0-9_]{0,20}\.hash$")


class HashArtifactStore:
    """Plain-text digest files, kept apart from raw files so names never collide.

    Artifacts are immutable once written, which is what allows them to be
    served with long-lived public caching.
    """

    def __init__(self, storage_root: str, io_timeout: float | None = None):
        self._root = Path(storage_root, "files", "hashes").resolve()
        self._io_timeout = io_timeout

    @property
    def root(self) -> Path:
        return self._root

    @staticmethod
    def generate_name(original_name: str) -> str:
        base, _ = name_fragment(original_name)
        return f"hash_{int(time.time() * 1000)}_{uuid.uuid4().hex}_{base}.hash"

    @staticmethod
    def is_valid_name(filename: str) -> bool:
        return bool(_ARTIFACT_NAME_RE.match(filename))

    def save(self, digest: str, original_name: str, deadline: Deadline | None = None) -> str:
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageWriteError() from exc
        target = self._root / self.generate_name(original_name)
        if deadline is None:
            deadline = Deadline(self._io_timeout)
        write_atomic(target, digest.encode("ascii"), deadline)
        return str(target)

    def _path_for(self, filename: str) -> Path | None:
        if not self.is_valid_name(filename):
            return None
        return self._root / filename

    def exists(self, filename: str) -> bool:
        path = self._path_for(filename)
        return path is not None and path.is_file()

    def read(self, filename: str) -> str:
        path = self._path_for(filename)
        if path is None:
            raise NotFoundError("Hash file not found")
        try:
            return path.read_text(encoding="ascii").strip()
        except FileNotFoundError as exc:
            raise NotFoundError("Hash file not found") from exc
        except OSError as exc:
            raise StorageReadError() from exc

    def delete(self, stored_path: str) -> None:
        path = Path(stored_path).resolve()
        if path.is_relative_to(self._root):
            path.unlink(missing_ok=True)
