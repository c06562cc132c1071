"""Document service: deduplicated document uploads, owner views and public verification."""

import logging
import re

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from docvault.models.audit_log import AuditAction
from docvault.models.document import Document, DocumentType, VerificationStatus
from docvault.models.verification_step import VerificationStep
from docvault.services.access_control import AccessControl, AccessIntent, SessionActor
from docvault.services.audit_service import AuditService, RequestContext
from docvault.services.content_addresser import ContentAddresser
from docvault.services.errors import (
    DuplicateContentError,
    FieldError,
    NotFoundError,
    ValidationError,
)
from docvault.services.file_store import FileStore
from docvault.services.file_validation import file_type_category, validate_upload
from docvault.services.hash_artifact_store import HashArtifactStore
from docvault.services.timeouts import Deadline
from docvault.services.verification_service import (
    AnchorData,
    VerificationService,
    parse_status,
)

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 100

_LINK_RE = re.compile(r"^[0-9a-f]{64}$")


def parse_document_type(value) -> DocumentType:
    try:
        return DocumentType(str(value or "OTHER").upper())
    except ValueError as exc:
        raise ValidationError(
            [FieldError("documentType", f"Unknown document type '{value}'")]
        ) from exc


class DocumentService:
    def __init__(
        self,
        file_store: FileStore,
        hash_store: HashArtifactStore,
        verification: VerificationService | None = None,
        audit: AuditService | None = None,
        access: AccessControl | None = None,
        max_file_size: int = 20 * 1024 * 1024,
        allowed_mime_types: list[str] | None = None,
        io_timeout: float | None = None,
    ):
        self._files = file_store
        self._hashes = hash_store
        self._audit = audit or AuditService()
        self._verification = verification or VerificationService(self._audit)
        self._access = access or AccessControl()
        self._max_file_size = max_file_size
        self._allowed_mime_types = allowed_mime_types
        self._io_timeout = io_timeout

    @property
    def verification(self) -> VerificationService:
        return self._verification

    def upload_document(
        self,
        session: Session,
        user_id: int,
        content: bytes,
        filename: str,
        mime_type: str,
        title: str,
        document_type=DocumentType.OTHER,
        description: str | None = None,
        tags: list[str] | None = None,
        context: RequestContext | None = None,
    ) -> Document:
        """Register an uploaded document for verification.

        Identical content is rejected before anything touches the disk; if a
        concurrent upload of the same content wins the insert, the artifacts
        written here are removed again.
        """
        allowed = self._allowed_mime_types
        errors = validate_upload(
            filename,
            len(content),
            mime_type,
            self._max_file_size,
            allowed if allowed is not None else [mime_type],
        )
        title = (title or "").strip()
        if not title:
            errors.append(FieldError("title", "Title is required"))
        if errors:
            raise ValidationError(errors)
        document_type = parse_document_type(document_type)

        deadline = Deadline(self._io_timeout)
        digest = ContentAddresser.hash(content, deadline)
        if self._verification.find_by_hash(session, digest) is not None:
            raise DuplicateContentError()

        raw_path = self._files.save(content, filename, deadline)
        try:
            hash_path = self._hashes.save(digest, filename, deadline)
        except Exception:
            self._files.delete(raw_path)
            raise

        try:
            document = self._verification.create(
                session,
                user_id=user_id,
                title=title,
                document_type=document_type,
                file_name=filename,
                file_size=len(content),
                mime_type=mime_type,
                content_hash=digest,
                raw_file_path=raw_path,
                hash_file_path=hash_path,
                description=description,
                tags=tags,
            )
        except (DuplicateContentError, SQLAlchemyError):
            self._files.delete(raw_path)
            self._hashes.delete(hash_path)
            raise

        logger.info("Registered document %s (%s) for user %s", document.id, digest, user_id)
        self._audit.record(
            session,
            user_id,
            AuditAction.DOCUMENT_UPLOADED,
            "document",
            document.id,
            {
                "title": title,
                "documentType": str(document_type),
                "fileName": filename,
                "fileSize": len(content),
                "documentHash": digest,
            },
            context,
        )
        return document

    def get_document(
        self,
        session: Session,
        document_id,
        actor_id: int,
        context: RequestContext | None = None,
    ) -> Document:
        document = self._verification.get(session, document_id)
        self._access.authorize(SessionActor(actor_id), document, AccessIntent.READ)
        self._audit.record(
            session,
            actor_id,
            AuditAction.DOCUMENT_ACCESSED,
            "document",
            document.id,
            {"title": document.title, "documentType": str(document.document_type)},
            context,
        )
        return document

    def list_documents(
        self,
        session: Session,
        user_id: int,
        status=None,
        document_type=None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Document]:
        stmt = select(Document).where(Document.user_id == user_id)
        if status:
            stmt = stmt.where(Document.status == parse_status(status))
        if document_type:
            stmt = stmt.where(Document.document_type == parse_document_type(document_type))
        stmt = stmt.order_by(Document.created_at.desc(), Document.id)
        stmt = stmt.limit(max(1, min(limit, MAX_LIST_LIMIT))).offset(max(0, offset))
        return list(session.execute(stmt).scalars().all())

    def update_status(
        self,
        session: Session,
        document_id,
        actor_id: int,
        status,
        anchor: AnchorData | None = None,
        context: RequestContext | None = None,
    ) -> Document:
        document = self._verification.get(session, document_id)
        self._access.authorize(SessionActor(actor_id), document, AccessIntent.WRITE)
        return self._verification.transition(
            session, document.id, status, anchor, actor_id, context
        )

    def expire_document(
        self,
        session: Session,
        document_id,
        actor_id: int,
        context: RequestContext | None = None,
    ) -> Document:
        """Owner-driven removal: documents are never deleted, only expired."""
        document = self._verification.get(session, document_id)
        self._access.authorize(SessionActor(actor_id), document, AccessIntent.DELETE)
        return self._verification.transition(
            session, document.id, VerificationStatus.EXPIRED, actor_id=actor_id, context=context
        )

    def read_content(
        self,
        session: Session,
        actor_id: int,
        document_id,
        download: bool = False,
        context: RequestContext | None = None,
    ) -> tuple[Document, bytes]:
        """Owner access to the document's raw file, verified against its recorded size."""
        document = self._verification.get(session, document_id)
        self._access.authorize(SessionActor(actor_id), document, AccessIntent.READ)
        if not document.raw_file_path:
            raise NotFoundError("File not found")
        data = self._files.read(
            document.raw_file_path,
            expected_size=document.file_size,
            deadline=Deadline(self._io_timeout),
        )
        self._audit.record(
            session,
            actor_id,
            AuditAction.FILE_DOWNLOADED if download else AuditAction.FILE_VIEWED,
            "document",
            document.id,
            {
                "fileName": document.file_name,
                "mimeType": document.mime_type,
                "size": document.file_size,
                "mode": "download" if download else "inline",
            },
            context,
        )
        return document, data

    def verify_by_hash(self, session: Session, digest: str) -> dict:
        """Public lookup of a registered document by its SHA-256 content hash."""
        digest = (digest or "").strip().lower()
        if not ContentAddresser.is_digest(digest):
            raise ValidationError(
                [FieldError("hash", "Hash must be a 64-character SHA-256 hex digest")]
            )
        document = self._verification.find_by_hash(session, digest)
        if document is None:
            raise NotFoundError("Document not found")
        return self._public_view(session, document)

    def get_by_shareable_link(self, session: Session, link: str) -> dict:
        """Public verification view; carries no storage paths and no owner identity."""
        if not _LINK_RE.match(link or ""):
            raise NotFoundError("Document not found")
        document = session.execute(
            select(Document).where(Document.shareable_link == link)
        ).scalar_one_or_none()
        if document is None:
            raise NotFoundError("Document not found")
        return self._public_view(session, document)

    def user_stats(self, session: Session, user_id: int) -> dict:
        rows = session.execute(
            select(Document.status, func.count())
            .where(Document.user_id == user_id)
            .group_by(Document.status)
        ).all()
        stats = {str(s).lower(): 0 for s in VerificationStatus}
        for status, count in rows:
            stats[str(status).lower()] = count
        stats["total"] = sum(count for _, count in rows)
        return stats

    # -- Views --

    def _public_view(self, session: Session, document: Document) -> dict:
        view = self._public_fields(document)
        view["steps"] = [
            _step_view(s) for s in self._verification.steps(session, document.id)
        ]
        return view

    def owner_view(self, session: Session, document: Document) -> dict:
        view = self._public_fields(document)
        view.update(
            {
                "description": document.description,
                "fileName": document.file_name,
                "fileSize": document.file_size,
                "mimeType": document.mime_type,
                "fileType": file_type_category(document.mime_type),
                "tags": list(document.tags or []),
                "shareableLink": document.shareable_link,
                "hashFile": _basename(document.hash_file_path),
                "userId": document.user_id,
                "updatedAt": _iso(document.updated_at),
                "steps": [_step_view(s) for s in self._verification.steps(session, document.id)],
            }
        )
        return view

    @staticmethod
    def _public_fields(document: Document) -> dict:
        return {
            "id": str(document.id),
            "title": document.title,
            "documentType": str(document.document_type),
            "status": str(document.status),
            "documentHash": document.content_hash,
            "blockchainHash": document.blockchain_hash,
            "transactionId": document.transaction_id,
            "blockNumber": document.block_number,
            "networkId": document.network_id,
            "contractAddress": document.contract_address,
            "verifiedAt": _iso(document.verified_at),
            "createdAt": _iso(document.created_at),
        }


def _step_view(step: VerificationStep) -> dict:
    return {
        "stepType": str(step.step_type),
        "status": str(step.status),
        "message": step.message,
        "metadata": step.details,
        "startedAt": _iso(step.started_at),
        "completedAt": _iso(step.completed_at),
    }


def _basename(path: str | None) -> str | None:
    if not path:
        return None
    return path.replace("\\", "/").rsplit("/", 1)[-1]


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None
