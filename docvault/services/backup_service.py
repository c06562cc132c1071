"""Backup store: date-stamped copies of raw files under ``<storage_root>/backups``."""

import logging
import re
import shutil
from datetime import UTC, date, datetime, timedelta
from pathlib import Path

from docvault.services.errors import (
    NotFoundError,
    StorageError,
    StorageTimeoutError,
    StorageWriteError,
)
from docvault.services.file_store import FileStore, write_atomic
from docvault.services.timeouts import Deadline

logger = logging.getLogger(__name__)

_SNAPSHOT_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def today_utc() -> date:
    return datetime.now(UTC).date()


class BackupService:
    """One directory per day, named ``YYYY-MM-DD``; a file copied twice on the
    same day overwrites that day's copy."""

    def __init__(self, storage_root: str, file_store: FileStore, io_timeout: float | None = None):
        self._root = Path(storage_root, "backups").resolve()
        self._files = file_store
        self._io_timeout = io_timeout

    @property
    def root(self) -> Path:
        return self._root

    def snapshot_dir(self, day: date | None = None) -> Path:
        return self._root / (day or today_utc()).isoformat()

    def ensure_snapshot(self, day: date | None = None) -> Path:
        path = self.snapshot_dir(day)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Cannot create backup directory %s: %s", path, exc)
            raise StorageWriteError("Backup directory could not be created") from exc
        return path

    def backup(self, stored_path: str, day: date | None = None) -> Path:
        """Copy one stored file into the day's snapshot and return the copy's path."""
        deadline = Deadline(self._io_timeout)
        target_dir = self.ensure_snapshot(day)
        try:
            data = self._files.read(stored_path, deadline=deadline)
        except StorageTimeoutError:
            raise
        except (NotFoundError, StorageError) as exc:
            logger.error("Backup of %s failed: %s", stored_path, exc.message)
            raise StorageWriteError("Backup failed") from exc
        target = target_dir / Path(stored_path).name
        write_atomic(target, data, deadline)
        return target

    def has_backup(self, stored_path: str, day: date | None = None) -> bool:
        return (self.snapshot_dir(day) / Path(stored_path).name).is_file()

    def list_snapshots(self) -> list[date]:
        if not self._root.is_dir():
            return []
        days = []
        for entry in self._root.iterdir():
            day = _parse_day(entry)
            if day is not None:
                days.append(day)
        return sorted(days)

    def prune(self, retain_days: int, today: date | None = None) -> list[str]:
        """Remove snapshots older than ``retain_days``; returns the removed names.

        Entries that are not date directories are left alone. A directory that
        cannot be removed is logged and skipped.
        """
        cutoff = (today or today_utc()) - timedelta(days=retain_days)
        removed: list[str] = []
        if not self._root.is_dir():
            return removed
        for entry in sorted(self._root.iterdir()):
            day = _parse_day(entry)
            if day is None or day >= cutoff:
                continue
            try:
                shutil.rmtree(entry)
            except OSError:
                logger.warning("Could not remove old backup %s", entry.name, exc_info=True)
                continue
            logger.info("Cleaned up old backup: %s", entry.name)
            removed.append(entry.name)
        return removed


def _parse_day(entry: Path) -> date | None:
    if not entry.is_dir() or not _SNAPSHOT_RE.match(entry.name):
        return None
    try:
        return date.fromisoformat(entry.name)
    except ValueError:
        return None
