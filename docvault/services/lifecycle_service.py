"""Lifecycle service: soft delete, restore, trash listing and backup jobs."""

import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from docvault.models.audit_log import AuditAction
from docvault.models.document import Document
from docvault.models.stored_file import StoredFile
from docvault.services.access_control import AccessControl, AccessIntent, SessionActor
from docvault.services.audit_service import (
    CLEANUP_CONTEXT,
    SYSTEM_CONTEXT,
    AuditService,
    RequestContext,
)
from docvault.services.backup_service import BackupService, today_utc
from docvault.services.errors import NotDeletedError, NotFoundError, StorageError
from docvault.services.file_service import parse_id

logger = logging.getLogger(__name__)


@dataclass
class BackupReport:
    day: date
    copied: int = 0
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class LifecycleService:
    def __init__(
        self,
        backups: BackupService,
        audit: AuditService | None = None,
        access: AccessControl | None = None,
    ):
        self._backups = backups
        self._audit = audit or AuditService()
        self._access = access or AccessControl()

    def _load(self, session: Session, file_id) -> StoredFile:
        record = session.get(StoredFile, parse_id(file_id))
        if record is None:
            raise NotFoundError("File not found")
        return record

    def soft_delete(
        self,
        session: Session,
        file_id,
        actor_id: int,
        context: RequestContext | None = None,
    ) -> StoredFile:
        """Back the file up, then move it to the trash.

        If the backup copy fails the error propagates and ``deleted_at`` is
        left untouched.
        """
        record = self._load(session, file_id)
        self._access.authorize(SessionActor(actor_id), record, AccessIntent.DELETE)

        self._backups.backup(record.stored_path)

        record.deleted_at = datetime.now(UTC)
        session.flush()
        logger.info("File %s moved to trash by user %s", record.id, actor_id)
        self._audit.record(
            session,
            actor_id,
            AuditAction.FILE_SOFT_DELETED,
            "file",
            record.id,
            {"originalName": record.original_name, "backupCreated": True},
            context,
        )
        return record

    def restore(
        self,
        session: Session,
        file_id,
        actor_id: int,
        context: RequestContext | None = None,
    ) -> StoredFile:
        record = self._load(session, file_id)
        self._access.authorize(SessionActor(actor_id), record, AccessIntent.RESTORE)
        if record.is_live:
            raise NotDeletedError()

        deleted_at = record.deleted_at
        record.deleted_at = None
        session.flush()
        logger.info("File %s restored by user %s", record.id, actor_id)
        self._audit.record(
            session,
            actor_id,
            AuditAction.FILE_RESTORED,
            "file",
            record.id,
            {"originalName": record.original_name, "deletedAt": deleted_at.isoformat()},
            context,
        )
        return record

    def list_deleted(self, session: Session, user_id: int) -> list[StoredFile]:
        """Trash view: deleted files the user uploaded or was delegated, newest first."""
        stmt = (
            select(StoredFile)
            .where(
                StoredFile.deleted_at.is_not(None),
                or_(StoredFile.user_id == user_id, StoredFile.owner_id == user_id),
            )
            .order_by(StoredFile.deleted_at.desc())
        )
        return list(session.execute(stmt).scalars().all())

    # -- Batch jobs --

    def daily_backup_sweep(self, session: Session, today: date | None = None) -> BackupReport:
        """Copy every live file and every document's raw file into today's snapshot."""
        day = today or today_utc()
        try:
            self._backups.ensure_snapshot(day)
        except StorageError as exc:
            self._audit.record(
                session,
                None,
                AuditAction.DAILY_BACKUP_FAILED,
                "system",
                None,
                {"error": exc.message, "backupDate": day.isoformat()},
                SYSTEM_CONTEXT,
            )
            raise

        paths = list(
            session.execute(
                select(StoredFile.stored_path).where(StoredFile.deleted_at.is_(None))
            ).scalars()
        )
        paths += list(
            session.execute(
                select(Document.raw_file_path).where(Document.raw_file_path.is_not(None))
            ).scalars()
        )

        report = BackupReport(day=day)
        for path in paths:
            try:
                self._backups.backup(path, day)
            except StorageError:
                logger.warning("Failed to back up %s", path, exc_info=True)
                report.failed.append(path.replace("\\", "/").rsplit("/", 1)[-1])
                continue
            report.copied += 1

        logger.info(
            "Daily backup %s: %d copied, %d failed", day, report.copied, len(report.failed)
        )
        self._audit.record(
            session,
            None,
            AuditAction.DAILY_BACKUP_COMPLETED,
            "system",
            None,
            {
                "backupDate": day.isoformat(),
                "automated": True,
                "copied": report.copied,
                "failed": len(report.failed),
            },
            SYSTEM_CONTEXT,
        )
        return report

    def prune_backups(
        self, session: Session, retain_days: int = 30, today: date | None = None
    ) -> list[str]:
        removed = self._backups.prune(retain_days, today)
        self._audit.record(
            session,
            None,
            AuditAction.BACKUP_CLEANUP_COMPLETED,
            "system",
            None,
            {"daysToKeep": retain_days, "removed": removed},
            CLEANUP_CONTEXT,
        )
        return removed
