"""
SQLAlchemy declarative base and common model mixins.

Every settlement table uses a UUID primary key. Mutable records (orders,
catalog rows) carry created/updated timestamps; append-only records
(ledger entries, status history) only carry ``created_at``.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(AsyncAttrs, DeclarativeBase):
    """
    Base class for all SQLAlchemy models with async support.

    Provides async attribute loading for every model.
    """

    __abstract__ = True

    def __repr__(self) -> str:
        pk_values = []
        for column in self.__table__.primary_key.columns:
            value = getattr(self, column.name, None)
            if value is not None:
                pk_values.append(f"{column.name}={value!r}")

        pk_str = ", ".join(pk_values) if pk_values else "transient"
        return f"<{self.__class__.__name__}({pk_str})>"


class UUIDMixin:
    """Mixin for a client-generated UUID primary key."""

    @declared_attr
    def id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(
            UUID(as_uuid=True),
            primary_key=True,
            default=uuid.uuid4,
            nullable=False,
            comment="Unique identifier for the record",
        )


class CreatedAtMixin:
    """Mixin for append-only records that are written once."""

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            default=utc_now,
            server_default=func.now(),
            comment="Timestamp when record was created",
        )


class TimestampMixin(CreatedAtMixin):
    """
    Mixin for automatic timestamp management.

    Adds ``updated_at`` on top of ``created_at``; both are maintained by
    the database.
    """

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            onupdate=func.now(),
            comment="Timestamp when record was last updated",
        )


class BaseModel(Base, UUIDMixin, TimestampMixin):
    """
    Base model with UUID primary key and timestamps.

    Example:
        class Supplier(BaseModel):
            __tablename__ = "suppliers"

            company_name: Mapped[str] = mapped_column(String(255))
    """

    __abstract__ = True


class AppendOnlyModel(Base, UUIDMixin, CreatedAtMixin):
    """Base model for immutable audit rows such as ledger entries."""

    __abstract__ = True
