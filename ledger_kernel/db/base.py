"""
Module: ledger_kernel.db.base
Responsibility: The declarative base shared by ledger_kernel and
    ledger_batch models.  Fixes the primary key, the Python-type to column
    mapping and constraint naming in one place.
Architecture position: Kernel > DB.  Imports only db/types.py.

Invariants enforced:
    - Every row has a uuid4 primary key stored as text.
    - Decimal columns are Numeric(38, 9); money is never a float.
    - Tracked rows carry created_by_id; updated_by_id/updated_at change
      even on rows that are otherwise frozen once posted or processed.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, MetaData, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ledger_kernel.db.types import Label, ShortCode, UUIDString

# Applies to constraints declared without an explicit name (foreign keys,
# primary keys) so migrations see stable identifiers.
NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Root of every mapped class; supplies ``id``."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    type_annotation_map: ClassVar[dict] = {
        UUID: UUIDString(),
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        int: BigInteger,
        ShortCode: String(50),
        Label: String(255),
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


def _now_column(**kwargs) -> Mapped[datetime]:
    return mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, **kwargs
    )


class TrackedBase(Base):
    """Adds who/when audit columns. Subclasses declare ``__tablename__``."""

    __abstract__ = True

    created_at: Mapped[datetime] = _now_column()
    updated_at: Mapped[datetime] = _now_column(onupdate=func.now())
    created_by_id: Mapped[UUID] = mapped_column(UUIDString())
    updated_by_id: Mapped[UUID | None] = mapped_column(UUIDString())
