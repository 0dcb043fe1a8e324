"""
Module: ledger_kernel.selectors.journal_selector
Responsibility: Read-only query access to journal entries, account activity
    and balances derived from journal lines.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/dtos and selectors/.  MUST NOT import from services/.

Invariants enforced:
    - DRAFT entries never appear in posted_entries(), account_activity() or
      account_balances().
    - A reversed entry and its reversal are both returned; their lines net
      to zero.
    - Lines are sorted by line_seq.

Failure modes:
    - Returns empty results when nothing matches (never raises on absence
      of data); account_activity() raises AccountNotFoundError for an
      unknown account.

Audit relevance:
    account_balances() recomputes balances from lines, independently of the
    running Account.current_balance.  The two must agree; a difference
    means a balance was changed outside the Journal Engine.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from ledger_kernel.domain.account_rules import balance_delta
from ledger_kernel.domain.dtos import EntryStatus, JournalEntryInfo
from ledger_kernel.models.account import Account
from ledger_kernel.models.journal import JournalEntry, JournalLine
from ledger_kernel.selectors.account_selector import AccountSelector
from ledger_kernel.selectors.base import DEFAULT_PAGE_SIZE, BaseSelector

_FINAL_STATUSES = (EntryStatus.POSTED.value, EntryStatus.REVERSED.value)


@dataclass(frozen=True)
class AccountActivityLine:
    """One posted or reversed line touching an account."""

    entry_id: UUID
    entry_date: date
    reference: str | None
    status: EntryStatus
    account_id: UUID
    account_code: str
    debit: Decimal
    credit: Decimal
    narration: str | None


@dataclass(frozen=True)
class AccountBalance:
    """Balance of one account derived from lines, signed by normal balance."""

    account_id: UUID
    account_code: str
    account_name: str
    opening_balance: Decimal
    debit_total: Decimal
    credit_total: Decimal
    balance: Decimal


class JournalSelector(BaseSelector[JournalEntry]):
    """
    Selector for journal entry queries.

    Guarantees:
        - Read-only: No mutations are performed.
        - Eager loading: JournalEntry.lines are loaded via selectinload.
        - Ordering: entry_date, then created_at, then id.
    """

    def __init__(self, session: Session):
        super().__init__(session)
        self._accounts = AccountSelector(session)

    def _entry_query(self):
        return select(JournalEntry).options(selectinload(JournalEntry.lines))

    @staticmethod
    def _ordered(query):
        return query.order_by(
            JournalEntry.entry_date, JournalEntry.created_at, JournalEntry.id
        )

    def get_entry(self, entry_id: UUID) -> JournalEntryInfo | None:
        entry = self.session.execute(
            self._entry_query().where(JournalEntry.id == entry_id)
        ).scalar_one_or_none()
        return JournalEntryInfo.from_model(entry) if entry else None

    def list_entries(
        self,
        status: EntryStatus | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        reference: str | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> list[JournalEntryInfo]:
        """
        Filtered page of entries in any status.

        Args:
            status: Only entries in this status.
            start_date: Inclusive lower bound on entry_date.
            end_date: Inclusive upper bound on entry_date.
            reference: Exact reference match.
        """
        query = self._entry_query()
        if status is not None:
            query = query.where(JournalEntry.status == EntryStatus(status).value)
        if start_date is not None:
            query = query.where(JournalEntry.entry_date >= start_date)
        if end_date is not None:
            query = query.where(JournalEntry.entry_date <= end_date)
        if reference is not None:
            query = query.where(JournalEntry.reference == reference)

        offset, limit = self._page_bounds(page, limit)
        query = self._ordered(query).offset(offset).limit(limit)
        return [JournalEntryInfo.from_model(e) for e in self.session.scalars(query)]

    def count_entries(self, status: EntryStatus | None = None) -> int:
        query = select(func.count(JournalEntry.id))
        if status is not None:
            query = query.where(JournalEntry.status == EntryStatus(status).value)
        return self.session.execute(query).scalar_one()

    def posted_entries(
        self,
        as_of: date | None = None,
        start_date: date | None = None,
    ) -> list[JournalEntryInfo]:
        """
        POSTED and REVERSED entries, oldest first.

        as_of is an inclusive upper bound on entry_date; start_date an
        inclusive lower bound.  Pass both for a period.
        """
        query = self._entry_query().where(JournalEntry.status.in_(_FINAL_STATUSES))
        if as_of is not None:
            query = query.where(JournalEntry.entry_date <= as_of)
        if start_date is not None:
            query = query.where(JournalEntry.entry_date >= start_date)
        return [
            JournalEntryInfo.from_model(e)
            for e in self.session.scalars(self._ordered(query))
        ]

    def entries_for_instance(self, instance_id: UUID) -> list[JournalEntryInfo]:
        query = self._entry_query().where(JournalEntry.source_instance_id == instance_id)
        return [
            JournalEntryInfo.from_model(e)
            for e in self.session.scalars(self._ordered(query))
        ]

    def account_activity(
        self,
        account_id: UUID,
        include_descendants: bool = False,
        as_of: date | None = None,
    ) -> list[AccountActivityLine]:
        """
        Posted and reversed lines touching an account.

        With include_descendants=True the lines of every account below it in
        the hierarchy are included as well.
        """
        account = self._accounts.get(account_id)
        account_ids = [account.id]
        if include_descendants:
            account_ids.extend(a.id for a in self._accounts.get_descendants(account.code))

        query = (
            select(JournalLine, JournalEntry, Account.code)
            .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
            .join(Account, JournalLine.account_id == Account.id)
            .where(
                JournalLine.account_id.in_(account_ids),
                JournalEntry.status.in_(_FINAL_STATUSES),
            )
        )
        if as_of is not None:
            query = query.where(JournalEntry.entry_date <= as_of)
        query = self._ordered(query).order_by(JournalLine.line_seq)

        return [
            AccountActivityLine(
                entry_id=entry.id,
                entry_date=entry.entry_date,
                reference=entry.reference,
                status=EntryStatus(entry.status),
                account_id=line.account_id,
                account_code=code,
                debit=line.debit,
                credit=line.credit,
                narration=line.narration,
            )
            for line, entry, code in self.session.execute(query).all()
        ]

    def account_balances(self, as_of: date | None = None) -> list[AccountBalance]:
        """
        Every account's balance: opening balance plus its posted/reversed lines.

        Accounts without activity are included with their opening balance.
        """
        totals = (
            select(
                JournalLine.account_id.label("account_id"),
                func.coalesce(func.sum(JournalLine.debit), 0).label("debit_total"),
                func.coalesce(func.sum(JournalLine.credit), 0).label("credit_total"),
            )
            .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
            .where(JournalEntry.status.in_(_FINAL_STATUSES))
        )
        if as_of is not None:
            totals = totals.where(JournalEntry.entry_date <= as_of)
        totals = totals.group_by(JournalLine.account_id).subquery()

        rows = self.session.execute(
            select(Account, totals.c.debit_total, totals.c.credit_total)
            .outerjoin(totals, totals.c.account_id == Account.id)
            .order_by(Account.code)
        ).all()

        balances = []
        for account, debit_total, credit_total in rows:
            debits = Decimal(str(debit_total or 0))
            credits = Decimal(str(credit_total or 0))
            balances.append(
                AccountBalance(
                    account_id=account.id,
                    account_code=account.code,
                    account_name=account.name,
                    opening_balance=account.opening_balance,
                    debit_total=debits,
                    credit_total=credits,
                    balance=account.opening_balance
                    + balance_delta(account.normal_balance, debits, credits),
                )
            )
        return balances

    def total_debits_credits(self, as_of: date | None = None) -> tuple[Decimal, Decimal]:
        """Ledger-wide (debits, credits) over posted and reversed entries."""
        query = (
            select(
                func.coalesce(func.sum(JournalLine.debit), 0),
                func.coalesce(func.sum(JournalLine.credit), 0),
            )
            .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
            .where(JournalEntry.status.in_(_FINAL_STATUSES))
        )
        if as_of is not None:
            query = query.where(JournalEntry.entry_date <= as_of)
        debits, credits = self.session.execute(query).one()
        return Decimal(str(debits)), Decimal(str(credits))
