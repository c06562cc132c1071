"""AuditLog model for tracking user and system actions."""

import enum
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, String, func
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import Mapped, mapped_column

from docvault.models.base import Base


class AuditAction(enum.StrEnum):
    FILE_UPLOADED = "FILE_UPLOADED"
    FILE_VIEWED = "FILE_VIEWED"
    FILE_DOWNLOADED = "FILE_DOWNLOADED"
    FILE_DOWNLOADED_SIGNED = "FILE_DOWNLOADED_SIGNED"
    SIGNED_URL_GENERATED = "SIGNED_URL_GENERATED"
    FILE_SOFT_DELETED = "FILE_SOFT_DELETED"
    FILE_RESTORED = "FILE_RESTORED"
    DOCUMENT_UPLOADED = "DOCUMENT_UPLOADED"
    DOCUMENT_ACCESSED = "DOCUMENT_ACCESSED"
    DOCUMENT_STATUS_UPDATED = "DOCUMENT_STATUS_UPDATED"
    DAILY_BACKUP_COMPLETED = "DAILY_BACKUP_COMPLETED"
    DAILY_BACKUP_FAILED = "DAILY_BACKUP_FAILED"
    BACKUP_CLEANUP_COMPLETED = "BACKUP_CLEANUP_COMPLETED"


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    resource: Mapped[str] = mapped_column(String(100), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
