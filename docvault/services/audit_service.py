"""AuditService: append-only action logging and querying."""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from docvault.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    """Where a request came from, recorded alongside each audit entry."""

    ip_address: str = "unknown"
    user_agent: str = "unknown"


SYSTEM_CONTEXT = RequestContext(ip_address="system", user_agent="backup-service")
CLEANUP_CONTEXT = RequestContext(ip_address="system", user_agent="cleanup-service")


class AuditService:
    def log_action(
        self,
        session: Session,
        user_id: int | None,
        action: str,
        resource: str,
        resource_id=None,
        details: dict | None = None,
        context: RequestContext | None = None,
    ) -> AuditLog:
        """Record an audit log entry."""
        context = context or RequestContext()
        log = AuditLog(
            user_id=user_id,
            action=str(action),
            resource=resource,
            resource_id=None if resource_id is None else str(resource_id),
            details=details,
            ip_address=context.ip_address[:45],
            user_agent=context.user_agent[:512],
        )
        session.add(log)
        session.flush()
        return log

    def record(self, session: Session, *args, **kwargs) -> AuditLog | None:
        """Like :meth:`log_action`, but a failed write is logged and swallowed.

        The insert runs in a SAVEPOINT so a failure leaves the caller's
        transaction usable.
        """
        try:
            with session.begin_nested():
                return self.log_action(session, *args, **kwargs)
        except SQLAlchemyError:
            logger.warning("Audit log write failed", exc_info=True)
            return None

    def list_logs(
        self,
        session: Session,
        action: str | None = None,
        resource: str | None = None,
        resource_id=None,
        user_id: int | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditLog]:
        """List audit logs with optional filters, newest first."""
        stmt = select(AuditLog)

        if action is not None:
            stmt = stmt.where(AuditLog.action == str(action))
        if resource is not None:
            stmt = stmt.where(AuditLog.resource == resource)
        if resource_id is not None:
            stmt = stmt.where(AuditLog.resource_id == str(resource_id))
        if user_id is not None:
            stmt = stmt.where(AuditLog.user_id == user_id)

        stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        stmt = stmt.limit(limit).offset(offset)
        return list(session.execute(stmt).scalars().all())
