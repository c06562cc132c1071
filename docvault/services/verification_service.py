"""Verification state machine for documents.

Every status change goes through :data:`TRANSITIONS`; a pair missing from the
table is illegal. Each allowed transition resolves any in-flight step and
appends the steps listed for it, so the step log always reflects how the
document got to its current status.
"""

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError as SAIntegrityError
from sqlalchemy.orm import Session

from docvault.models.audit_log import AuditAction
from docvault.models.document import Document, DocumentType, VerificationStatus
from docvault.models.verification_step import StepStatus, StepType, VerificationStep
from docvault.services.audit_service import AuditService, RequestContext
from docvault.services.errors import (
    DuplicateContentError,
    FieldError,
    IllegalTransitionError,
    NotFoundError,
    ValidationError,
)
from docvault.services.file_service import parse_id

logger = logging.getLogger(__name__)

SHAREABLE_LINK_BYTES = 32


@dataclass(frozen=True)
class AnchorData:
    """Ledger anchoring details supplied by whoever submitted the hash."""

    transaction_id: str | None = None
    block_number: str | None = None
    blockchain_hash: str | None = None
    network_id: str | None = None
    contract_address: str | None = None

    def missing_fields(self) -> list[str]:
        required = {
            "transactionId": self.transaction_id,
            "blockNumber": self.block_number,
            "blockchainHash": self.blockchain_hash,
        }
        return [name for name, value in required.items() if not value]


@dataclass(frozen=True)
class StepSpec:
    step_type: StepType
    status: StepStatus
    message: str
    anchor_metadata: bool = False


@dataclass(frozen=True)
class Transition:
    resolve_in_flight: StepStatus | None = None
    append: tuple[StepSpec, ...] = ()
    requires_anchor: bool = False


_S = VerificationStatus

_TO_FAILED = Transition(resolve_in_flight=StepStatus.FAILED)

TRANSITIONS: dict[tuple[VerificationStatus, VerificationStatus], Transition] = {
    (_S.PENDING, _S.PROCESSING): Transition(
        append=(
            StepSpec(StepType.HASH_GENERATION, StepStatus.COMPLETED, "Document hash generated"),
            StepSpec(
                StepType.BLOCKCHAIN_SUBMISSION,
                StepStatus.IN_PROGRESS,
                "Submitting hash to the ledger",
            ),
        ),
    ),
    (_S.PROCESSING, _S.VERIFIED): Transition(
        resolve_in_flight=StepStatus.COMPLETED,
        append=(
            StepSpec(
                StepType.TRANSACTION_CONFIRMATION,
                StepStatus.COMPLETED,
                "Transaction confirmed",
                anchor_metadata=True,
            ),
            StepSpec(
                StepType.VERIFICATION_COMPLETE, StepStatus.COMPLETED, "Verification complete"
            ),
        ),
        requires_anchor=True,
    ),
    (_S.PENDING, _S.FAILED): _TO_FAILED,
    (_S.PROCESSING, _S.FAILED): _TO_FAILED,
    (_S.PENDING, _S.EXPIRED): _TO_FAILED,
    (_S.PROCESSING, _S.EXPIRED): _TO_FAILED,
    (_S.VERIFIED, _S.EXPIRED): _TO_FAILED,
    (_S.FAILED, _S.EXPIRED): _TO_FAILED,
}


def parse_status(value) -> VerificationStatus:
    try:
        return VerificationStatus(str(value).upper())
    except ValueError as exc:
        raise ValidationError([FieldError("status", f"Unknown status '{value}'")]) from exc


class VerificationService:
    def __init__(self, audit: AuditService | None = None):
        self._audit = audit or AuditService()

    def find_by_hash(self, session: Session, content_hash: str) -> Document | None:
        return session.execute(
            select(Document).where(Document.content_hash == content_hash)
        ).scalar_one_or_none()

    def get(self, session: Session, document_id, for_update: bool = False) -> Document:
        stmt = select(Document).where(Document.id == parse_id(document_id))
        if for_update:
            stmt = stmt.with_for_update()
        document = session.execute(stmt).scalar_one_or_none()
        if document is None:
            raise NotFoundError("Document not found")
        return document

    def create(
        self,
        session: Session,
        *,
        user_id: int,
        title: str,
        document_type: DocumentType,
        file_name: str,
        file_size: int,
        mime_type: str,
        content_hash: str,
        raw_file_path: str | None = None,
        hash_file_path: str | None = None,
        description: str | None = None,
        tags: list[str] | None = None,
    ) -> Document:
        """Register a document in PENDING with its initial FILE_UPLOAD step.

        Raises :class:`DuplicateContentError` when the content hash is already
        registered, whether found up front or rejected by the unique index.
        """
        if self.find_by_hash(session, content_hash) is not None:
            raise DuplicateContentError()

        document = Document(
            title=title,
            description=description,
            document_type=document_type,
            file_name=file_name,
            file_size=file_size,
            mime_type=mime_type,
            content_hash=content_hash,
            raw_file_path=raw_file_path,
            hash_file_path=hash_file_path,
            tags=list(tags or []),
            status=VerificationStatus.PENDING,
            shareable_link=secrets.token_hex(SHAREABLE_LINK_BYTES),
            user_id=user_id,
        )
        try:
            with session.begin_nested():
                session.add(document)
                session.flush()
        except SAIntegrityError as exc:
            logger.info("Duplicate content hash %s lost the insert race", content_hash)
            raise DuplicateContentError() from exc

        self._append_step(
            session,
            document.id,
            StepSpec(StepType.FILE_UPLOAD, StepStatus.COMPLETED, "File uploaded"),
            position=1,
        )
        session.flush()
        return document

    def steps(self, session: Session, document_id) -> list[VerificationStep]:
        stmt = (
            select(VerificationStep)
            .where(VerificationStep.document_id == parse_id(document_id))
            .order_by(VerificationStep.started_at, VerificationStep.position)
        )
        return list(session.execute(stmt).scalars().all())

    def transition(
        self,
        session: Session,
        document_id,
        new_status,
        anchor: AnchorData | None = None,
        actor_id: int | None = None,
        context: RequestContext | None = None,
    ) -> Document:
        """Move a document to ``new_status`` according to :data:`TRANSITIONS`."""
        new_status = parse_status(new_status)
        document = self.get(session, document_id, for_update=True)
        old_status = VerificationStatus(document.status)

        rule = TRANSITIONS.get((old_status, new_status))
        if rule is None:
            raise IllegalTransitionError(
                f"Cannot change status from {old_status} to {new_status}"
            )
        anchor = anchor or AnchorData()
        if rule.requires_anchor:
            missing = anchor.missing_fields()
            if missing:
                raise ValidationError(
                    [
                        FieldError(name, f"{name} is required to verify a document")
                        for name in missing
                    ]
                )

        now = datetime.now(UTC)
        if rule.resolve_in_flight is not None:
            for step in self.steps(session, document.id):
                if step.status == StepStatus.IN_PROGRESS:
                    step.status = rule.resolve_in_flight
                    step.completed_at = now

        position = self._last_position(session, document.id)
        for spec in rule.append:
            position += 1
            self._append_step(session, document.id, spec, position, anchor)

        if new_status == VerificationStatus.VERIFIED:
            document.blockchain_hash = anchor.blockchain_hash
            document.transaction_id = anchor.transaction_id
            document.block_number = anchor.block_number
            document.network_id = anchor.network_id
            document.contract_address = anchor.contract_address
            document.verified_at = now
        document.status = new_status
        session.flush()

        logger.info("Document %s: %s -> %s", document.id, old_status, new_status)
        self._audit.record(
            session,
            actor_id,
            AuditAction.DOCUMENT_STATUS_UPDATED,
            "document",
            document.id,
            {
                "oldStatus": str(old_status),
                "newStatus": str(new_status),
                "blockchainHash": anchor.blockchain_hash,
                "transactionId": anchor.transaction_id,
            },
            context,
        )
        return document

    # -- Internals --

    def _last_position(self, session: Session, document_id: uuid.UUID) -> int:
        return (
            session.execute(
                select(func.max(VerificationStep.position)).where(
                    VerificationStep.document_id == document_id
                )
            ).scalar()
            or 0
        )

    def _append_step(
        self,
        session: Session,
        document_id: uuid.UUID,
        spec: StepSpec,
        position: int,
        anchor: AnchorData | None = None,
    ) -> VerificationStep:
        now = datetime.now(UTC)
        details = None
        if spec.anchor_metadata and anchor is not None:
            details = {
                "transactionId": anchor.transaction_id,
                "blockNumber": anchor.block_number,
                "blockchainHash": anchor.blockchain_hash,
            }
        step = VerificationStep(
            document_id=document_id,
            position=position,
            step_type=spec.step_type,
            status=spec.status,
            message=spec.message,
            details=details,
            started_at=now,
            completed_at=None if spec.status == StepStatus.IN_PROGRESS else now,
        )
        session.add(step)
        return step
