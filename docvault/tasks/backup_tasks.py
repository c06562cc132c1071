"""Backup Celery tasks. Scheduling (cron or beat) is left to the deployment."""

import logging
from datetime import date

from sqlalchemy.orm import Session

from docvault.services.backup_service import BackupService
from docvault.services.errors import StorageError
from docvault.services.file_store import FileStore
from docvault.services.lifecycle_service import BackupReport, LifecycleService
from docvault.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def _lifecycle() -> LifecycleService:
    from docvault.config import settings

    file_store = FileStore(settings.storage_root, settings.io_timeout_seconds)
    return LifecycleService(
        BackupService(settings.storage_root, file_store, settings.io_timeout_seconds)
    )


def _open_session() -> Session:
    from sqlalchemy import create_engine
    from sqlalchemy.orm import Session as SyncSession

    from docvault.config import settings

    engine = create_engine(settings.database_url_sync)
    return SyncSession(engine)


def run_daily_backup(
    session: Session | None = None,
    lifecycle: LifecycleService | None = None,
    today: date | None = None,
) -> BackupReport:
    """Copy every live file into today's snapshot.

    When called from Celery the session is created here and committed.
    Tests pass one in; in that case the caller manages the transaction.
    """
    own_session = session is None
    if own_session:
        session = _open_session()
    lifecycle = lifecycle or _lifecycle()

    try:
        report = lifecycle.daily_backup_sweep(session, today)
        if own_session:
            session.commit()
        return report
    except StorageError:
        logger.exception("Daily backup failed")
        if own_session:
            # keep the DAILY_BACKUP_FAILED audit entry
            session.commit()
        raise
    except Exception:
        logger.exception("Daily backup failed")
        if own_session:
            session.rollback()
        raise
    finally:
        if own_session:
            session.close()


def run_backup_prune(
    retain_days: int | None = None,
    session: Session | None = None,
    lifecycle: LifecycleService | None = None,
    today: date | None = None,
) -> list[str]:
    """Remove snapshots older than the retention window."""
    if retain_days is None:
        from docvault.config import settings

        retain_days = settings.backup_retention_days

    own_session = session is None
    if own_session:
        session = _open_session()
    lifecycle = lifecycle or _lifecycle()

    try:
        removed = lifecycle.prune_backups(session, retain_days, today)
        if own_session:
            session.commit()
        return removed
    except Exception:
        if own_session:
            session.rollback()
        raise
    finally:
        if own_session:
            session.close()


@celery_app.task(bind=True, name="docvault.daily_backup")
def daily_backup_task(self):
    """Celery entry point for the daily backup sweep."""
    report = run_daily_backup()
    return {
        "day": report.day.isoformat(),
        "copied": report.copied,
        "failed": report.failed,
    }


@celery_app.task(bind=True, name="docvault.prune_backups")
def prune_backups_task(self, retain_days: int | None = None):
    """Celery entry point for backup retention."""
    return run_backup_prune(retain_days=retain_days)
