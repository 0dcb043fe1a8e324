"""
Module: ledger_kernel.models.serial_counter
Responsibility: serial_counters, one row per named monotonic counter.
Architecture position: Kernel > Models.  Written only by SequenceService.
"""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base


class SerialCounter(Base):
    __tablename__ = "serial_counters"

    # e.g. "reference:INVOICE"
    name: Mapped[str] = mapped_column(String(100), unique=True)
    current_value: Mapped[int] = mapped_column(default=0)

    def __repr__(self) -> str:
        return f"<SerialCounter {self.name}={self.current_value}>"
