"""VerificationStep model: one entry in a document's verification log."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from docvault.models.base import Base, UUIDType


class StepType(enum.StrEnum):
    FILE_UPLOAD = "FILE_UPLOAD"
    HASH_GENERATION = "HASH_GENERATION"
    BLOCKCHAIN_SUBMISSION = "BLOCKCHAIN_SUBMISSION"
    TRANSACTION_CONFIRMATION = "TRANSACTION_CONFIRMATION"
    VERIFICATION_COMPLETE = "VERIFICATION_COMPLETE"


class StepStatus(enum.StrEnum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class VerificationStep(Base):
    __tablename__ = "verification_steps"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(), primary_key=True, default=uuid.uuid4)
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(), ForeignKey("documents.id"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    step_type: Mapped[StepType] = mapped_column(
        Enum(StepType, native_enum=False, length=30), nullable=False
    )
    status: Mapped[StepStatus] = mapped_column(
        Enum(StepStatus, native_enum=False, length=20),
        nullable=False,
        default=StepStatus.IN_PROGRESS,
    )
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    document: Mapped["Document"] = relationship(back_populates="steps")  # noqa: F821
