"""
Module: ledger_kernel.models.account
Responsibility: The accounts table, i.e. the chart of accounts every journal
    line posts against.
Architecture position: Kernel > Models.  Imports db/ and the enums in
    domain/dtos.

Notes:
    - ``code`` is unique; a duplicate insert raises IntegrityError, which
      ChartOfAccountsService turns into DuplicateAccountError.
    - ``normal_balance`` is fixed from ``account_type`` when the row is
      created.
    - ``current_balance`` moves only through ChartOfAccountsService.apply_line.
    - ``parent_code`` is a plain lookup, not a foreign key; children are
      found by querying for it.
"""

from decimal import Decimal

from sqlalchemy import Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase
from ledger_kernel.db.types import Label, ShortCode
from ledger_kernel.domain.dtos import AccountType, NormalBalance


class Account(TrackedBase):
    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("code", name="uq_account_code"),
        Index("idx_account_type", "account_type"),
        Index("idx_account_parent_code", "parent_code"),
    )

    code: Mapped[ShortCode]
    name: Mapped[Label]
    description: Mapped[str | None] = mapped_column(Text)
    account_type: Mapped[AccountType] = mapped_column(String(20))
    normal_balance: Mapped[NormalBalance] = mapped_column(String(10))
    parent_code: Mapped[ShortCode | None]

    opening_balance: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    current_balance: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    # delete_account refuses system accounts
    is_system: Mapped[bool] = mapped_column(default=False)

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"
