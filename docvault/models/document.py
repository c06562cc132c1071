"""Document model: a file registered for verification and anchoring."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from docvault.models.base import Base, Owners, TimestampMixin, UUIDType


class DocumentType(enum.StrEnum):
    CONTRACT = "CONTRACT"
    CERTIFICATE = "CERTIFICATE"
    AGREEMENT = "AGREEMENT"
    DIPLOMA = "DIPLOMA"
    LICENSE = "LICENSE"
    OTHER = "OTHER"


class VerificationStatus(enum.StrEnum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    VERIFIED = "VERIFIED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


class Document(Base, TimestampMixin):
    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(), primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    document_type: Mapped[DocumentType] = mapped_column(
        Enum(DocumentType, native_enum=False, length=20), nullable=False
    )
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    raw_file_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    hash_file_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[VerificationStatus] = mapped_column(
        Enum(VerificationStatus, native_enum=False, length=20),
        nullable=False,
        default=VerificationStatus.PENDING,
    )

    # Anchoring fields, populated when the document reaches VERIFIED
    blockchain_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    block_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    network_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    contract_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    shareable_link: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False, index=True
    )

    steps: Mapped[list["VerificationStep"]] = relationship(  # noqa: F821
        back_populates="document",
        order_by="VerificationStep.position",
    )

    @property
    def owners(self) -> Owners:
        return Owners(primary=self.user_id)

    @property
    def is_live(self) -> bool:
        return True
