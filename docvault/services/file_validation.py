"""Upload validation, keyword extraction and filename helpers."""

import mimetypes
import re

from docvault.services.errors import FieldError

MAX_KEYWORDS = 20

_EXTENSION_RE = re.compile(r"\.[^/.]+$")
_KEYWORD_SPLIT_RE = re.compile(r"[\s\-_.,;:!?()\[\]{}]+")
_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")


def validate_upload(
    filename: str,
    size: int,
    mime_type: str,
    max_size: int,
    allowed_mime_types: list[str],
) -> list[FieldError]:
    """Return every problem with an upload; an empty list means it is acceptable."""
    errors: list[FieldError] = []

    if size > max_size:
        errors.append(
            FieldError("file", f"File size must be less than {max_size // (1024 * 1024)}MB")
        )
    if mime_type not in allowed_mime_types:
        errors.append(FieldError("file", f"File type {mime_type} is not allowed"))
    if not filename or ".." in filename or "/" in filename or "\\" in filename:
        errors.append(
            FieldError("file", "Invalid file name contains path traversal characters")
        )
    if size == 0:
        errors.append(FieldError("file", "File cannot be empty"))

    return errors


def resolve_mime_type(filename: str, declared: str | None) -> str:
    """Prefer the client-declared type; fall back to a guess from the extension."""
    if declared and declared != "application/octet-stream":
        return declared.split(";", 1)[0].strip().lower()
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or "application/octet-stream"


def extract_keywords(filename: str) -> list[str]:
    """Lower-cased filename tokens for search.

    The extension is dropped, tokens of two characters or fewer and purely
    numeric tokens are skipped, duplicates keep their first position, and at
    most 20 keywords are returned.
    """
    stem = _EXTENSION_RE.sub("", filename).lower()
    keywords: list[str] = []
    for word in _KEYWORD_SPLIT_RE.split(stem):
        if len(word) <= 2 or word.isdigit() or word in keywords:
            continue
        keywords.append(word)
        if len(keywords) == MAX_KEYWORDS:
            break
    return keywords


def file_type_category(mime_type: str) -> str:
    if mime_type.startswith("image/"):
        return "image"
    if mime_type == "application/pdf":
        return "pdf"
    # OOXML spreadsheet/presentation types also contain "officedocument"
    if "sheet" in mime_type or "excel" in mime_type:
        return "spreadsheet"
    if "presentation" in mime_type or "powerpoint" in mime_type:
        return "presentation"
    if "word" in mime_type or "document" in mime_type:
        return "document"
    if mime_type == "text/plain":
        return "text"
    return "other"


def name_fragment(original_name: str, limit: int = 20) -> tuple[str, str]:
    """Split a user-supplied name into a safe ``(base, ext)`` pair for storage names."""
    base, dot, ext = original_name.rpartition(".")
    if not dot:
        base, ext = original_name, ""
    base = _NON_ALNUM_RE.sub("_", base.rsplit("/", 1)[-1].rsplit("\\", 1)[-1])[:limit]
    ext = _NON_ALNUM_RE.sub("", ext).lower()[:10]
    return base, ext


def sanitize_filename(filename: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9.-]", "_", filename)
    return re.sub(r"_{2,}", "_", cleaned)[:255]
