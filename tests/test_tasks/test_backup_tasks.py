"""TDD tests for backup Celery tasks."""

from datetime import date, timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from docvault.models.audit_log import AuditAction
from docvault.services.audit_service import AuditService
from docvault.services.backup_service import BackupService
from docvault.services.errors import StorageWriteError
from docvault.services.lifecycle_service import BackupReport, LifecycleService
from docvault.tasks.backup_tasks import (
    daily_backup_task,
    prune_backups_task,
    run_backup_prune,
    run_daily_backup,
)

DAY = date(2026, 5, 1)


@pytest.fixture
def audit():
    return AuditService()


@pytest.fixture
def backups(storage_root, file_store):
    return BackupService(storage_root, file_store)


@pytest.fixture
def lifecycle(backups, audit):
    return LifecycleService(backups, audit=audit)


class TestRunDailyBackup:
    def test_with_caller_session(self, lifecycle, backups, file_store, db_session, user, audit):
        from docvault.models.stored_file import StoredFile

        path = file_store.save(b"nightly", "nightly.pdf")
        db_session.add(
            StoredFile(
                original_name="nightly.pdf",
                mime_type="application/pdf",
                stored_path=path,
                size=7,
                user_id=user.id,
            )
        )
        db_session.flush()

        report = run_daily_backup(session=db_session, lifecycle=lifecycle, today=DAY)
        assert report.ok
        assert report.copied == 1
        assert (backups.snapshot_dir(DAY) / Path(path).name).read_bytes() == b"nightly"
        assert audit.list_logs(db_session, action=AuditAction.DAILY_BACKUP_COMPLETED)

    def test_own_session_committed_and_closed(self):
        session = MagicMock()
        lifecycle = MagicMock()
        lifecycle.daily_backup_sweep.return_value = BackupReport(DAY, copied=3)
        with patch("docvault.tasks.backup_tasks._open_session", return_value=session):
            report = run_daily_backup(lifecycle=lifecycle, today=DAY)
        assert report.copied == 3
        lifecycle.daily_backup_sweep.assert_called_once_with(session, DAY)
        session.commit.assert_called_once()
        session.close.assert_called_once()

    def test_failure_still_commits_audit_entry(self):
        session = MagicMock()
        lifecycle = MagicMock()
        lifecycle.daily_backup_sweep.side_effect = StorageWriteError("disk full")
        with patch("docvault.tasks.backup_tasks._open_session", return_value=session):
            with pytest.raises(StorageWriteError):
                run_daily_backup(lifecycle=lifecycle)
        session.commit.assert_called_once()
        session.close.assert_called_once()

    def test_database_failure_rolls_back(self):
        session = MagicMock()
        lifecycle = MagicMock()
        lifecycle.daily_backup_sweep.side_effect = OperationalError(
            "SELECT", {}, Exception("db down")
        )
        with patch("docvault.tasks.backup_tasks._open_session", return_value=session):
            with pytest.raises(OperationalError):
                run_daily_backup(lifecycle=lifecycle)
        session.rollback.assert_called_once()
        session.commit.assert_not_called()
        session.close.assert_called_once()


class TestRunBackupPrune:
    def test_prunes_old_snapshots(self, lifecycle, backups, db_session):
        backups.ensure_snapshot(DAY - timedelta(days=10))
        backups.ensure_snapshot(DAY - timedelta(days=1))
        removed = run_backup_prune(
            retain_days=7, session=db_session, lifecycle=lifecycle, today=DAY
        )
        assert removed == ["2026-04-21"]
        assert backups.list_snapshots() == [date(2026, 4, 30)]

    def test_retention_defaults_from_settings(self):
        lifecycle = MagicMock()
        lifecycle.prune_backups.return_value = []
        with patch("docvault.config.settings.backup_retention_days", 12):
            run_backup_prune(session=MagicMock(), lifecycle=lifecycle, today=DAY)
        assert lifecycle.prune_backups.call_args.args[1] == 12

    def test_own_session_rolled_back_on_failure(self):
        session = MagicMock()
        lifecycle = MagicMock()
        lifecycle.prune_backups.side_effect = RuntimeError("boom")
        with patch("docvault.tasks.backup_tasks._open_session", return_value=session):
            with pytest.raises(RuntimeError):
                run_backup_prune(retain_days=5, lifecycle=lifecycle)
        session.rollback.assert_called_once()
        session.commit.assert_not_called()
        session.close.assert_called_once()


class TestCeleryEntryPoints:
    def test_task_names(self):
        assert daily_backup_task.name == "docvault.daily_backup"
        assert prune_backups_task.name == "docvault.prune_backups"

    def test_daily_task_serializes_report(self):
        report = BackupReport(DAY, copied=2, failed=["x.pdf"])
        with patch("docvault.tasks.backup_tasks.run_daily_backup", return_value=report):
            result = daily_backup_task.apply().get()
        assert result == {"day": "2026-05-01", "copied": 2, "failed": ["x.pdf"]}

    def test_prune_task_passes_retention(self):
        with patch(
            "docvault.tasks.backup_tasks.run_backup_prune", return_value=["2026-01-01"]
        ) as run:
            result = prune_backups_task.apply(kwargs={"retain_days": 3}).get()
        assert result == ["2026-01-01"]
        run.assert_called_once_with(retain_days=3)
