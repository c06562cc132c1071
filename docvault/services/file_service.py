"""File service: upload, authorized reads, signed URLs and search for stored files."""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from docvault.models.audit_log import AuditAction
from docvault.models.stored_file import StoredFile
from docvault.models.user import User
from docvault.services.access_control import (
    AccessControl,
    AccessIntent,
    Actor,
    SessionActor,
    TokenActor,
)
from docvault.services.access_tokens import AccessTokenIssuer, SignedToken
from docvault.services.audit_service import AuditService, RequestContext
from docvault.services.content_addresser import ContentAddresser
from docvault.services.errors import (
    FieldError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from docvault.services.file_store import FileStore
from docvault.services.file_validation import (
    extract_keywords,
    file_type_category,
    validate_upload,
)
from docvault.services.hash_artifact_store import HashArtifactStore
from docvault.services.timeouts import Deadline

logger = logging.getLogger(__name__)

MAX_SEARCH_LIMIT = 100


def parse_id(value) -> uuid.UUID:
    """Parse a record id; anything malformed is reported as not found."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise NotFoundError() from exc


def _like(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _mime_condition(category: str):
    col = StoredFile.mime_type
    match category.lower():
        case "pdf":
            return col == "application/pdf"
        case "image":
            return col.startswith("image/")
        case "spreadsheet":
            return or_(col.contains("sheet"), col.contains("excel"))
        case "presentation":
            return or_(col.contains("presentation"), col.contains("powerpoint"))
        case "document":
            return or_(
                col.contains("word"),
                and_(
                    col.contains("document"),
                    ~col.contains("sheet"),
                    ~col.contains("presentation"),
                ),
            )
        case "text":
            return col == "text/plain"
        case _:
            return col == category


@dataclass
class SearchFilters:
    type: str | None = None
    tags: list[str] = field(default_factory=list)
    min_size: int | None = None
    max_size: int | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    limit: int = 20
    offset: int = 0


@dataclass
class SearchPage:
    items: list[StoredFile]
    total: int
    limit: int
    offset: int


class FileService:
    def __init__(
        self,
        file_store: FileStore,
        hash_store: HashArtifactStore,
        tokens: AccessTokenIssuer,
        audit: AuditService | None = None,
        access: AccessControl | None = None,
        max_file_size: int = 20 * 1024 * 1024,
        allowed_mime_types: list[str] | None = None,
        signed_url_ttl_minutes: float = AccessTokenIssuer.DEFAULT_TTL_MINUTES,
        io_timeout: float | None = None,
    ):
        self._files = file_store
        self._hashes = hash_store
        self._tokens = tokens
        self._audit = audit or AuditService()
        self._access = access or AccessControl()
        self._max_file_size = max_file_size
        self._allowed_mime_types = allowed_mime_types
        self._signed_url_ttl = signed_url_ttl_minutes
        self._io_timeout = io_timeout

    # -- Upload --

    def upload(
        self,
        session: Session,
        user_id: int,
        content: bytes,
        filename: str,
        mime_type: str,
        owner_id: int | None = None,
        description: str | None = None,
        tags: list[str] | None = None,
        context: RequestContext | None = None,
    ) -> StoredFile:
        """Validate, write raw bytes and the detached hash artifact, then record metadata."""
        allowed = self._allowed_mime_types
        errors = validate_upload(
            filename,
            len(content),
            mime_type,
            self._max_file_size,
            allowed if allowed is not None else [mime_type],
        )
        if owner_id == user_id:
            owner_id = None
        if owner_id is not None and session.get(User, owner_id) is None:
            errors.append(FieldError("ownerId", "Unknown owner"))
        if errors:
            raise ValidationError(errors)

        deadline = Deadline(self._io_timeout)
        digest = ContentAddresser.hash(content, deadline)
        stored_path = self._files.save(content, filename, deadline)
        try:
            hash_path = self._hashes.save(digest, filename, deadline)
        except Exception:
            self._files.delete(stored_path)
            raise

        record = StoredFile(
            original_name=filename,
            mime_type=mime_type,
            stored_path=stored_path,
            hash_path=hash_path,
            size=len(content),
            description=description,
            tags=_clean_tags(tags),
            keywords=extract_keywords(filename),
            user_id=user_id,
            owner_id=owner_id,
        )
        try:
            session.add(record)
            session.flush()
        except SQLAlchemyError:
            self._files.delete(stored_path)
            self._hashes.delete(hash_path)
            raise

        logger.info("Stored file %s (%d bytes) for user %s", record.id, record.size, user_id)
        self._audit.record(
            session,
            user_id,
            AuditAction.FILE_UPLOADED,
            "file",
            record.id,
            {"originalName": filename, "mimeType": mime_type, "size": record.size},
            context,
        )
        return record

    # -- Reads --

    def get_file(self, session: Session, file_id) -> StoredFile:
        """Load a file record regardless of trash state."""
        record = session.get(StoredFile, parse_id(file_id))
        if record is None:
            raise NotFoundError("File not found")
        return record

    def authenticate_token(self, token: str) -> TokenActor:
        claims = self._tokens.validate(token, consume=False)
        if claims is None:
            raise UnauthorizedError("Invalid or expired access token")
        return TokenActor(file_id=claims.file_id, claims=claims)

    def read_content(
        self,
        session: Session,
        actor: Actor,
        file_id,
        download: bool = False,
        context: RequestContext | None = None,
    ) -> tuple[StoredFile, bytes]:
        """Authorize ``actor`` and return the file with its verified bytes."""
        record = self.get_file(session, file_id)
        self._access.authorize(actor, record, AccessIntent.READ)
        data = self._files.read(record.stored_path, expected_size=record.size)
        if isinstance(actor, TokenActor) and actor.claims is not None:
            # single-use tokens are only spent on a successful read
            if not self._tokens.consume(actor.claims):
                raise UnauthorizedError("Invalid or expired access token")

        if isinstance(actor, SessionActor):
            user_id = actor.user_id
            action = AuditAction.FILE_DOWNLOADED if download else AuditAction.FILE_VIEWED
        else:
            user_id = None
            action = AuditAction.FILE_DOWNLOADED_SIGNED
        self._audit.record(
            session,
            user_id,
            action,
            "file",
            record.id,
            {
                "originalName": record.original_name,
                "mimeType": record.mime_type,
                "size": record.size,
                "mode": "download" if download or user_id is None else "inline",
            },
            context,
        )
        return record, data

    def issue_signed_url(
        self,
        session: Session,
        user_id: int,
        file_id,
        context: RequestContext | None = None,
    ) -> SignedToken:
        record = self.get_file(session, file_id)
        self._access.authorize(SessionActor(user_id), record, AccessIntent.READ)
        signed = self._tokens.issue(record.id, self._signed_url_ttl)
        self._audit.record(
            session,
            user_id,
            AuditAction.SIGNED_URL_GENERATED,
            "file",
            record.id,
            {"originalName": record.original_name, "expiresAt": signed.expires_at},
            context,
        )
        return signed

    # -- Search --

    def search(
        self,
        session: Session,
        user_id: int,
        query: str = "",
        filters: SearchFilters | None = None,
    ) -> SearchPage:
        """Search live files the user uploaded or was delegated."""
        filters = filters or SearchFilters()
        limit = max(1, min(filters.limit, MAX_SEARCH_LIMIT))
        offset = max(0, filters.offset)

        stmt = select(StoredFile).where(
            StoredFile.deleted_at.is_(None),
            or_(StoredFile.user_id == user_id, StoredFile.owner_id == user_id),
        )
        for term in query.lower().split():
            pattern = _like(term)
            stmt = stmt.where(
                or_(
                    StoredFile.original_name.ilike(pattern, escape="\\"),
                    StoredFile.description.ilike(pattern, escape="\\"),
                )
            )
        if filters.type:
            stmt = stmt.where(_mime_condition(filters.type))
        if filters.min_size is not None:
            stmt = stmt.where(StoredFile.size >= filters.min_size)
        if filters.max_size is not None:
            stmt = stmt.where(StoredFile.size <= filters.max_size)
        if filters.created_from is not None:
            stmt = stmt.where(StoredFile.created_at >= filters.created_from)
        if filters.created_to is not None:
            stmt = stmt.where(StoredFile.created_at <= filters.created_to)
        stmt = stmt.order_by(StoredFile.created_at.desc(), StoredFile.id)

        wanted_tags = set(_clean_tags(filters.tags))
        if wanted_tags:
            # Tags are a JSON list; filter in Python to stay portable across backends
            matches = [
                f
                for f in session.execute(stmt).scalars().all()
                if wanted_tags.issubset(f.tags or [])
            ]
            return SearchPage(matches[offset : offset + limit], len(matches), limit, offset)

        total = session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
        items = list(session.execute(stmt.limit(limit).offset(offset)).scalars().all())
        return SearchPage(items, total, limit, offset)

    @staticmethod
    def to_metadata(record: StoredFile) -> dict:
        """Caller-facing metadata. Never includes storage paths."""
        return {
            "id": str(record.id),
            "originalName": record.original_name,
            "mimeType": record.mime_type,
            "size": record.size,
            "fileType": file_type_category(record.mime_type),
            "description": record.description,
            "tags": list(record.tags or []),
            "keywords": list(record.keywords or []),
            "userId": record.user_id,
            "ownerId": record.owner_id,
            "hashFile": _basename(record.hash_path),
            "createdAt": _iso(record.created_at),
            "updatedAt": _iso(record.updated_at),
            "deletedAt": _iso(record.deleted_at),
        }


def _clean_tags(tags: list[str] | None) -> list[str]:
    cleaned: list[str] = []
    for tag in tags or []:
        tag = str(tag).strip()
        if tag and tag not in cleaned:
            cleaned.append(tag)
    return cleaned


def _basename(path: str | None) -> str | None:
    if not path:
        return None
    return path.replace("\\", "/").rsplit("/", 1)[-1]


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
