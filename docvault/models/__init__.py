from docvault.models.audit_log import AuditAction, AuditLog
from docvault.models.base import Base, Owners, SoftDeleteMixin, TimestampMixin, UUIDType
from docvault.models.document import Document, DocumentType, VerificationStatus
from docvault.models.stored_file import StoredFile
from docvault.models.user import User
from docvault.models.verification_step import StepStatus, StepType, VerificationStep

__all__ = [
    "Base",
    "TimestampMixin",
    "SoftDeleteMixin",
    "UUIDType",
    "Owners",
    "User",
    "StoredFile",
    "Document",
    "DocumentType",
    "VerificationStatus",
    "VerificationStep",
    "StepType",
    "StepStatus",
    "AuditLog",
    "AuditAction",
]
