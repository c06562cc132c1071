"""HTTP routes: Starlette endpoints for files, documents and public verification."""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from urllib.parse import quote

from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

from docvault.config import Settings, settings
from docvault.services.access_control import SessionActor
from docvault.services.access_tokens import AccessTokenIssuer
from docvault.services.audit_service import AuditService, RequestContext
from docvault.services.auth import AuthService
from docvault.services.backup_service import BackupService
from docvault.services.document_service import DocumentService
from docvault.services.errors import DocVaultError, FieldError, ValidationError
from docvault.services.file_service import FileService, SearchFilters
from docvault.services.file_store import FileStore
from docvault.services.file_validation import resolve_mime_type
from docvault.services.hash_artifact_store import HashArtifactStore
from docvault.services.lifecycle_service import LifecycleService
from docvault.services.rate_limiter import RateLimiter, build_counter_store
from docvault.services.verification_service import AnchorData

logger = logging.getLogger(__name__)

NO_STORE = "private, no-cache, no-store, must-revalidate"
IMMUTABLE = "public, max-age=31536000, immutable"


@dataclass
class Services:
    auth: AuthService
    files: FileService
    hashes: HashArtifactStore
    documents: DocumentService
    lifecycle: LifecycleService
    limiter: RateLimiter
    preview_cache_seconds: int = 3600


def build_services(config: Settings) -> Services:
    io_timeout = config.io_timeout_seconds
    file_store = FileStore(config.storage_root, io_timeout)
    hash_store = HashArtifactStore(config.storage_root, io_timeout)
    audit = AuditService()
    return Services(
        auth=AuthService(config.secret_key),
        files=FileService(
            file_store,
            hash_store,
            AccessTokenIssuer(config.file_access_secret),
            audit=audit,
            max_file_size=config.max_file_size,
            allowed_mime_types=config.allowed_mime_types,
            signed_url_ttl_minutes=config.signed_url_ttl_minutes,
            io_timeout=io_timeout,
        ),
        hashes=hash_store,
        documents=DocumentService(
            file_store,
            hash_store,
            audit=audit,
            max_file_size=config.max_file_size,
            allowed_mime_types=config.allowed_mime_types,
            io_timeout=io_timeout,
        ),
        lifecycle=LifecycleService(
            BackupService(config.storage_root, file_store, io_timeout), audit=audit
        ),
        limiter=RateLimiter(
            build_counter_store(config.rate_limit_backend, config.redis_url),
            config.upload_rate_limit_max,
            config.upload_rate_limit_window_seconds,
        ),
        preview_cache_seconds=config.preview_cache_seconds,
    )


@lru_cache(maxsize=1)
def _get_services() -> Services:
    return build_services(settings)


@lru_cache(maxsize=1)
def _engine():
    from sqlalchemy import create_engine

    return create_engine(settings.database_url_sync, pool_pre_ping=True)


def _get_session():
    from sqlalchemy.orm import Session as SASession

    return SASession(_engine())


async def _in_session(work):
    """Run ``work(session)`` in the threadpool and commit if it returns normally."""

    def call():
        with _get_session() as session:
            result = work(session)
            session.commit()
            return result

    return await run_in_threadpool(call)


# -- Request helpers --


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


def _context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent") or "unknown",
    )


def _user_id(request: Request, svc: Services) -> int:
    return svc.auth.user_id_from_header(request.headers.get("authorization"))


def _int_param(params, name: str, default: int | None = None) -> int | None:
    raw = params.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError([FieldError(name, f"{name} must be an integer")]) from exc


def _date_param(params, name: str) -> datetime | None:
    raw = params.get(name)
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError as exc:
        raise ValidationError([FieldError(name, f"{name} must be an ISO 8601 date")]) from exc


def _parse_tags(raw) -> list[str]:
    if not raw:
        return []
    raw = str(raw).strip()
    if raw.startswith("["):
        try:
            value = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValidationError([FieldError("tags", "Invalid tags")]) from exc
        if not isinstance(value, list):
            raise ValidationError([FieldError("tags", "Invalid tags")])
        return [str(t).strip() for t in value if str(t).strip()]
    return [t.strip() for t in raw.split(",") if t.strip()]


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Request body must be JSON") from exc
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


async def _read_upload(form) -> tuple[bytes, str, str]:
    upload = form.get("file")
    if not isinstance(upload, UploadFile):
        raise ValidationError([FieldError("file", "No file provided")])
    content = await upload.read()
    filename = upload.filename or ""
    return content, filename, resolve_mime_type(filename, upload.content_type)


def _content_disposition(disposition: str, filename: str) -> str:
    fallback = "".join(
        c if 32 <= ord(c) < 127 and c not in '"\\' else "_" for c in filename
    )
    return f"{disposition}; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


@dataclass(frozen=True)
class ServedFile:
    """Plain values for a file response, detached from the ORM session."""

    id: str
    name: str
    mime_type: str
    data: bytes


def _served(record, data: bytes, name: str | None = None) -> ServedFile:
    return ServedFile(
        id=str(record.id),
        name=name or record.original_name,
        mime_type=record.mime_type,
        data=data,
    )


def _file_response(served: ServedFile, attachment: bool, cache_seconds: int) -> Response:
    headers = {
        "Content-Length": str(len(served.data)),
        "Content-Disposition": _content_disposition(
            "attachment" if attachment else "inline", served.name
        ),
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
    }
    if attachment:
        headers["Cache-Control"] = NO_STORE
        headers["Pragma"] = "no-cache"
        headers["Expires"] = "0"
    else:
        headers["Cache-Control"] = f"private, max-age={cache_seconds}"
    return Response(content=served.data, media_type=served.mime_type, headers=headers)


# -- Files --


async def upload_file(request: Request) -> JSONResponse:
    svc = _get_services()
    user_id = _user_id(request, svc)
    await run_in_threadpool(svc.limiter.check, f"upload:{_client_ip(request)}")

    form = await request.form()
    content, filename, mime_type = await _read_upload(form)
    owner_id = _int_param(form, "ownerId")
    description = form.get("description") or None
    tags = _parse_tags(form.get("tags"))
    context = _context(request)

    def work(session):
        record = svc.files.upload(
            session,
            user_id,
            content,
            filename,
            mime_type,
            owner_id=owner_id,
            description=description,
            tags=tags,
            context=context,
        )
        return FileService.to_metadata(record)

    payload = await _in_session(work)
    return JSONResponse({"success": True, "file": payload}, status_code=201)


async def search_files(request: Request) -> JSONResponse:
    svc = _get_services()
    user_id = _user_id(request, svc)
    params = request.query_params
    filters = SearchFilters(
        type=params.get("type") or None,
        tags=_parse_tags(params.get("tags")),
        min_size=_int_param(params, "minSize"),
        max_size=_int_param(params, "maxSize"),
        created_from=_date_param(params, "from"),
        created_to=_date_param(params, "to"),
        limit=_int_param(params, "limit", 20),
        offset=_int_param(params, "offset", 0),
    )

    def work(session):
        page = svc.files.search(session, user_id, params.get("q", ""), filters)
        return {
            "files": [FileService.to_metadata(f) for f in page.items],
            "total": page.total,
            "limit": page.limit,
            "offset": page.offset,
            "hasMore": page.offset + len(page.items) < page.total,
        }

    return JSONResponse(await _in_session(work))


async def list_deleted_files(request: Request) -> JSONResponse:
    svc = _get_services()
    user_id = _user_id(request, svc)

    def work(session):
        return [FileService.to_metadata(f) for f in svc.lifecycle.list_deleted(session, user_id)]

    return JSONResponse({"files": await _in_session(work)})


async def get_file(request: Request) -> Response:
    svc = _get_services()
    user_id = _user_id(request, svc)
    download = request.query_params.get("download", "").lower() in ("1", "true")
    context = _context(request)

    def work(session):
        record, data = svc.files.read_content(
            session, SessionActor(user_id), request.path_params["file_id"], download, context
        )
        return _served(record, data)

    served = await _in_session(work)
    logger.info("Served file %s to user %s", served.id, user_id)
    return _file_response(served, download, svc.preview_cache_seconds)


async def delete_file(request: Request) -> JSONResponse:
    svc = _get_services()
    user_id = _user_id(request, svc)
    context = _context(request)

    def work(session):
        record = svc.lifecycle.soft_delete(
            session, request.path_params["file_id"], user_id, context
        )
        return FileService.to_metadata(record)

    return JSONResponse({"success": True, "file": await _in_session(work)})


async def restore_file(request: Request) -> JSONResponse:
    svc = _get_services()
    user_id = _user_id(request, svc)
    context = _context(request)

    def work(session):
        record = svc.lifecycle.restore(session, request.path_params["file_id"], user_id, context)
        return FileService.to_metadata(record)

    return JSONResponse({"success": True, "file": await _in_session(work)})


async def create_signed_url(request: Request) -> JSONResponse:
    svc = _get_services()
    user_id = _user_id(request, svc)
    body = await _json_body(request)
    file_id = body.get("fileId")
    if not file_id:
        raise ValidationError([FieldError("fileId", "File ID is required")])
    context = _context(request)

    def work(session):
        return svc.files.issue_signed_url(session, user_id, file_id, context)

    signed = await _in_session(work)
    return JSONResponse(
        {
            "token": signed.token,
            "expiresAt": signed.expires_at,
            "downloadUrl": f"/api/download?token={quote(signed.token, safe='')}",
        }
    )


async def download_with_token(request: Request) -> Response:
    svc = _get_services()
    token = request.query_params.get("token")
    if not token:
        raise ValidationError([FieldError("token", "Access token is required")])
    actor = svc.files.authenticate_token(token)
    context = _context(request)

    def work(session):
        record, data = svc.files.read_content(session, actor, actor.file_id, True, context)
        return _served(record, data)

    served = await _in_session(work)
    logger.info("Served file %s through a signed URL", served.id)
    return _file_response(served, True, svc.preview_cache_seconds)


async def get_hash_artifact(request: Request) -> PlainTextResponse:
    svc = _get_services()
    digest = await run_in_threadpool(svc.hashes.read, request.path_params["filename"])
    return PlainTextResponse(
        digest,
        headers={"Cache-Control": IMMUTABLE, "X-Content-Type-Options": "nosniff"},
    )


# -- Documents --


async def upload_document(request: Request) -> JSONResponse:
    svc = _get_services()
    user_id = _user_id(request, svc)
    await run_in_threadpool(svc.limiter.check, f"upload:{_client_ip(request)}")

    form = await request.form()
    content, filename, mime_type = await _read_upload(form)
    title = form.get("title") or ""
    document_type = form.get("documentType") or "OTHER"
    description = form.get("description") or None
    tags = _parse_tags(form.get("tags"))
    context = _context(request)

    def work(session):
        document = svc.documents.upload_document(
            session,
            user_id,
            content,
            filename,
            mime_type,
            title,
            document_type,
            description=description,
            tags=tags,
            context=context,
        )
        return svc.documents.owner_view(session, document)

    payload = await _in_session(work)
    return JSONResponse({"success": True, "document": payload}, status_code=201)


async def list_documents(request: Request) -> JSONResponse:
    svc = _get_services()
    user_id = _user_id(request, svc)
    params = request.query_params

    def work(session):
        documents = svc.documents.list_documents(
            session,
            user_id,
            status=params.get("status") or None,
            document_type=params.get("type") or None,
            limit=_int_param(params, "limit", 50),
            offset=_int_param(params, "offset", 0),
        )
        return {
            "documents": [svc.documents.owner_view(session, d) for d in documents],
            "stats": svc.documents.user_stats(session, user_id),
        }

    return JSONResponse(await _in_session(work))


async def get_document(request: Request) -> JSONResponse:
    svc = _get_services()
    user_id = _user_id(request, svc)
    context = _context(request)

    def work(session):
        document = svc.documents.get_document(
            session, request.path_params["document_id"], user_id, context
        )
        return svc.documents.owner_view(session, document)

    return JSONResponse({"document": await _in_session(work)})


async def update_document_status(request: Request) -> JSONResponse:
    svc = _get_services()
    user_id = _user_id(request, svc)
    body = await _json_body(request)
    if not body.get("status"):
        raise ValidationError([FieldError("status", "Status is required")])
    anchor = AnchorData(
        transaction_id=_opt_str(body.get("transactionId")),
        block_number=_opt_str(body.get("blockNumber")),
        blockchain_hash=_opt_str(body.get("blockchainHash")),
        network_id=_opt_str(body.get("networkId")),
        contract_address=_opt_str(body.get("contractAddress")),
    )
    context = _context(request)

    def work(session):
        document = svc.documents.update_status(
            session, request.path_params["document_id"], user_id, body["status"], anchor, context
        )
        return svc.documents.owner_view(session, document)

    return JSONResponse({"document": await _in_session(work)})


async def expire_document(request: Request) -> JSONResponse:
    svc = _get_services()
    user_id = _user_id(request, svc)
    context = _context(request)

    def work(session):
        document = svc.documents.expire_document(
            session, request.path_params["document_id"], user_id, context
        )
        return svc.documents.owner_view(session, document)

    return JSONResponse({"success": True, "document": await _in_session(work)})


async def get_document_file(request: Request) -> Response:
    svc = _get_services()
    user_id = _user_id(request, svc)
    download = request.query_params.get("download", "").lower() in ("1", "true")
    context = _context(request)

    def work(session):
        document, data = svc.documents.read_content(
            session, user_id, request.path_params["document_id"], download, context
        )
        return _served(document, data, name=document.file_name)

    served = await _in_session(work)
    logger.info("Served document %s to user %s", served.id, user_id)
    return _file_response(served, download, svc.preview_cache_seconds)


async def search_documents_by_hash(request: Request) -> JSONResponse:
    svc = _get_services()
    digest = request.query_params.get("hash")
    if not digest:
        raise ValidationError([FieldError("hash", "Hash is required")])

    def work(session):
        return svc.documents.verify_by_hash(session, digest)

    return JSONResponse({"document": await _in_session(work)})


async def verify_document(request: Request) -> JSONResponse:
    svc = _get_services()

    def work(session):
        return svc.documents.get_by_shareable_link(session, request.path_params["link"])

    return JSONResponse({"document": await _in_session(work)})


def _opt_str(value) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


# -- Errors --


async def docvault_error(request: Request, exc: DocVaultError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    body: dict = {"error": exc.message}
    if isinstance(exc, ValidationError):
        body["details"] = [{"field": e.field, "message": e.message} for e in exc.errors]
    headers = {}
    retry_after = getattr(exc, "retry_after", 0)
    if retry_after:
        headers["Retry-After"] = str(retry_after)
    return JSONResponse(body, status_code=exc.status_code, headers=headers or None)


async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


exception_handlers = {
    DocVaultError: docvault_error,
    Exception: unexpected_error,
}

api_routes = [
    Route("/api/files", upload_file, methods=["POST"]),
    Route("/api/files/search", search_files, methods=["GET"]),
    Route("/api/files/deleted", list_deleted_files, methods=["GET"]),
    Route("/api/files/signed-url", create_signed_url, methods=["POST"]),
    Route("/api/files/{file_id}", get_file, methods=["GET"]),
    Route("/api/files/{file_id}", delete_file, methods=["DELETE"]),
    Route("/api/files/{file_id}/restore", restore_file, methods=["POST"]),
    Route("/api/download", download_with_token, methods=["GET"]),
    Route("/api/hashes/{filename}", get_hash_artifact, methods=["GET"]),
    Route("/api/documents", upload_document, methods=["POST"]),
    Route("/api/documents", list_documents, methods=["GET"]),
    Route("/api/documents/search", search_documents_by_hash, methods=["GET"]),
    Route("/api/documents/{document_id}", get_document, methods=["GET"]),
    Route("/api/documents/{document_id}/file", get_document_file, methods=["GET"]),
    Route("/api/documents/{document_id}/status", update_document_status, methods=["PUT"]),
    Route("/api/documents/{document_id}", expire_document, methods=["DELETE"]),
    Route("/api/verify/{link}", verify_document, methods=["GET"]),
]
