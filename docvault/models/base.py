import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import CHAR, TypeDecorator


class UUIDType(TypeDecorator):
    """Platform-independent UUID type. Uses CHAR(32) for SQLite compatibility,
    stores as hex string internally but exposes uuid.UUID to Python."""

    impl = CHAR(32)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            if isinstance(value, uuid.UUID):
                return value.hex
            return uuid.UUID(value).hex
        return value

    def process_result_value(self, value, dialect):
        if value is not None:
            return uuid.UUID(value)
        return value


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class SoftDeleteMixin:
    """Rows with a non-null ``deleted_at`` are in the trash."""

    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )

    @property
    def is_live(self) -> bool:
        return self.deleted_at is None


@dataclass(frozen=True)
class Owners:
    """Users allowed to act on a resource: the uploader plus an optional delegate."""

    primary: int
    delegate: int | None = None

    def __contains__(self, user_id: object) -> bool:
        return user_id is not None and user_id in (self.primary, self.delegate)
