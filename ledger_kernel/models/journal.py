"""
Module: ledger_kernel.models.journal
Responsibility: journal_entries and journal_lines, the ledger of record.
Architecture position: Kernel > Models.  Imports db/ and the enums in
    domain/dtos; never services/ or selectors/.

Notes:
    - JournalEngine rejects unbalanced line sets before anything is
      written; ``is_balanced`` only re-checks a loaded entry.
    - db/immutability.py freezes an entry and its lines once the entry
      leaves DRAFT.  The one change allowed afterwards is POSTED -> REVERSED
      together with ``reversed_by_id``.
    - A reversal is a second entry with swapped sides, linked both ways
      through ``reversal_of_id`` and ``reversed_by_id``.
    - ``reference`` is not unique: manual entries may share one.  Dispatch
      references are unique through event_instances.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase
from ledger_kernel.db.types import UUIDString
from ledger_kernel.domain.dtos import EntryStatus

JournalEntryStatus = EntryStatus


class JournalEntry(TrackedBase):
    __tablename__ = "journal_entries"
    __table_args__ = (
        Index("idx_journal_entry_date", "entry_date"),
        Index("idx_journal_status", "status"),
        Index("idx_journal_reference", "reference"),
        Index("idx_journal_source_instance", "source_instance_id"),
    )

    entry_date: Mapped[date]
    reference: Mapped[str | None] = mapped_column(String(100))
    description: Mapped[str | None] = mapped_column(String(500))
    status: Mapped[EntryStatus] = mapped_column(String(10), default=EntryStatus.DRAFT)
    posted_at: Mapped[datetime | None]

    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("journal_entries.id")
    )
    reversed_by_id: Mapped[UUID | None]

    # EventInstance that produced the entry, for template dispatches
    source_instance_id: Mapped[UUID | None]

    lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="JournalLine.line_seq",
    )

    def __repr__(self) -> str:
        return f"<JournalEntry {self.id} status={self.status}>"

    @property
    def is_balanced(self) -> bool:
        debits = sum((line.debit for line in self.lines), Decimal("0"))
        credits = sum((line.credit for line in self.lines), Decimal("0"))
        return debits == credits


class JournalLine(TrackedBase):
    """One side of an entry. Exactly one of debit/credit is nonzero."""

    __tablename__ = "journal_lines"
    __table_args__ = (
        Index("idx_line_entry", "journal_entry_id"),
        Index("idx_line_account", "account_id"),
    )

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("journal_entries.id")
    )
    account_id: Mapped[UUID] = mapped_column(UUIDString(), ForeignKey("accounts.id"))
    debit: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    credit: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    narration: Mapped[str | None] = mapped_column(String(500))
    line_seq: Mapped[int] = mapped_column(default=0)

    entry: Mapped[JournalEntry] = relationship(back_populates="lines")

    def __repr__(self) -> str:
        return f"<JournalLine dr={self.debit} cr={self.credit}>"
