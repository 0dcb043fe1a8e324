"""
JournalEngine -- double-entry validation and the journal entry lifecycle.

Responsibility:
    Creates, patches, posts, reverses and deletes journal entries.  Posting
    and reversal apply every line to account balances through
    ChartOfAccountsService.apply_line().

Architecture position:
    Kernel > Services -- imperative shell.  Called by API handlers, the
    Dispatcher and bulk importers.

State machine:

    DRAFT --post--> POSTED --reverse--> REVERSED
      |
      +--delete--> (removed)

Invariants enforced:
    - Each line has exactly one of debit/credit > 0; neither is negative.
    - Sum of debits == sum of credits (exact, after quantizing each line to
      the minor unit) before any persistence or status transition.
    - At least two lines; every account exists.
    - Transitions lock the entry row (SELECT ... FOR UPDATE), so concurrent
      post() calls on one entry serialize and only one succeeds.
    - Bulk post/reverse isolate each entry in its own SAVEPOINT; one
      failure never undoes another entry's success.

Failure modes:
    - InvalidLineError, UnbalancedEntryError, AccountNotFoundError on
      create/patch/post.
    - EntryNotFoundError, EntryNotDraftError, EntryNotPostedError on
      lifecycle operations.  post()/reverse() report these per item in a
      BatchResult instead of raising.
"""

from datetime import date
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO, round_money, to_decimal
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    BatchFailure,
    BatchResult,
    EntrySpec,
    EntryStatus,
    JournalEntryInfo,
    LineSpec,
    LineValidationReport,
)
from ledger_kernel.exceptions import (
    AccountNotFoundError,
    EntryNotDraftError,
    EntryNotFoundError,
    EntryNotPostedError,
    InvalidLineError,
    LedgerKernelError,
    UnbalancedEntryError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.journal import JournalEntry, JournalLine
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.chart_service import ChartOfAccountsService

logger = get_logger("services.journal")

MIN_LINES = 2

_UNSET = object()


class JournalEngine(BaseService[JournalEntry]):
    """
    Journal entry lifecycle.

    Contract:
        Single-entry methods raise typed exceptions.  post()/reverse() and
        bulk_create() never raise for per-item failures; they return a
        BatchResult.

    Non-goals:
        - Does NOT commit.  The caller owns the outer transaction.
    """

    def __init__(
        self,
        session: Session,
        chart: ChartOfAccountsService | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._chart = chart or ChartOfAccountsService(session)
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _normalize_lines(self, lines: Sequence[LineSpec]) -> list[LineSpec]:
        """Quantize amounts and reject malformed lines (first failure raises)."""
        normalized: list[LineSpec] = []
        for index, line in enumerate(lines):
            try:
                debit = round_money(to_decimal(line.debit))
                credit = round_money(to_decimal(line.credit))
            except ValueError as exc:
                raise InvalidLineError(index, str(exc)) from exc
            if debit < ZERO or credit < ZERO:
                raise InvalidLineError(index, "amounts cannot be negative")
            if (debit > ZERO) == (credit > ZERO):
                raise InvalidLineError(
                    index, "exactly one of debit or credit must be nonzero"
                )
            normalized.append(
                LineSpec(
                    account_id=line.account_id,
                    debit=debit,
                    credit=credit,
                    narration=line.narration,
                )
            )
        if len(normalized) < MIN_LINES:
            raise InvalidLineError(
                len(normalized), f"an entry needs at least {MIN_LINES} lines"
            )
        return normalized

    def _check_accounts(self, lines: Sequence[LineSpec]) -> None:
        wanted = {line.account_id for line in lines}
        found = set(
            self.session.scalars(select(Account.id).where(Account.id.in_(wanted)))
        )
        for line in lines:
            if line.account_id not in found:
                raise AccountNotFoundError(str(line.account_id))

    @staticmethod
    def _check_balance(lines: Sequence[LineSpec]) -> None:
        debits = sum((line.debit for line in lines), ZERO)
        credits = sum((line.credit for line in lines), ZERO)
        if debits != credits:
            raise UnbalancedEntryError(debits=str(debits), credits=str(credits))

    def _validated(self, lines: Sequence[LineSpec]) -> list[LineSpec]:
        normalized = self._normalize_lines(lines)
        self._check_accounts(normalized)
        self._check_balance(normalized)
        return normalized

    def validate_lines(self, lines: Sequence[LineSpec]) -> LineValidationReport:
        """
        Check lines without writing anything.

        Unlike create(), every problem is reported, not just the first.
        """
        errors: list[str] = []
        total_debits = ZERO
        total_credits = ZERO
        for index, line in enumerate(lines):
            try:
                debit = round_money(to_decimal(line.debit))
                credit = round_money(to_decimal(line.credit))
            except ValueError as exc:
                errors.append(f"line {index + 1}: {exc}")
                continue
            if debit < ZERO or credit < ZERO:
                errors.append(f"line {index + 1}: amounts cannot be negative")
            elif (debit > ZERO) == (credit > ZERO):
                errors.append(
                    f"line {index + 1}: exactly one of debit or credit must be nonzero"
                )
            total_debits += max(debit, ZERO)
            total_credits += max(credit, ZERO)

        if len(lines) < MIN_LINES:
            errors.append(f"an entry needs at least {MIN_LINES} lines")

        wanted = {line.account_id for line in lines}
        if wanted:
            found = set(
                self.session.scalars(select(Account.id).where(Account.id.in_(wanted)))
            )
            for missing in sorted(str(a) for a in wanted - found):
                errors.append(f"account not found: {missing}")

        if total_debits != total_credits:
            errors.append(
                f"debits {total_debits} do not equal credits {total_credits}"
            )

        return LineValidationReport(
            is_valid=not errors,
            errors=tuple(errors),
            total_debits=total_debits,
            total_credits=total_credits,
        )

    # ------------------------------------------------------------------
    # Create / patch / delete
    # ------------------------------------------------------------------

    def create(self, spec: EntrySpec, actor_id: UUID) -> JournalEntryInfo:
        """Validate and persist a DRAFT entry."""
        lines = self._validated(spec.lines)

        entry = JournalEntry(
            entry_date=spec.entry_date,
            reference=spec.reference,
            description=spec.description,
            status=EntryStatus.DRAFT.value,
            source_instance_id=spec.source_instance_id,
            created_by_id=actor_id,
        )
        entry.lines = self._build_lines(lines, actor_id)
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "journal_entry_created",
            extra={
                "entry_id": str(entry.id),
                "reference": entry.reference,
                "line_count": len(lines),
            },
        )
        return JournalEntryInfo.from_model(entry)

    def bulk_create(self, specs: Sequence[EntrySpec], actor_id: UUID) -> BatchResult:
        """
        Create many DRAFT entries, aggregating per-row failures.

        Each row runs in its own SAVEPOINT; BatchFailure.item is the row
        index.
        """
        succeeded: list[UUID] = []
        failed: list[BatchFailure] = []
        for index, spec in enumerate(specs):
            savepoint = self.session.begin_nested()
            try:
                info = self.create(spec, actor_id)
                savepoint.commit()
                succeeded.append(info.id)
            except LedgerKernelError as exc:
                savepoint.rollback()
                failed.append(BatchFailure(str(index), exc.code, str(exc)))

        logger.info(
            "journal_bulk_create_completed",
            extra={"created": len(succeeded), "failed": len(failed)},
        )
        return BatchResult(succeeded=tuple(succeeded), failed=tuple(failed))

    def patch(
        self,
        entry_id: UUID,
        actor_id: UUID,
        entry_date: date | None = None,
        reference=_UNSET,
        description=_UNSET,
        lines: Sequence[LineSpec] | None = None,
    ) -> JournalEntryInfo:
        """
        Change a DRAFT entry.  Re-validates when lines are replaced.

        reference/description accept None to clear the value.
        """
        entry = self._lock_entry(entry_id)
        if EntryStatus(entry.status) != EntryStatus.DRAFT:
            raise EntryNotDraftError(str(entry_id), entry.status)

        if lines is not None:
            validated = self._validated(lines)
            entry.lines.clear()
            self.session.flush()
            entry.lines.extend(self._build_lines(validated, actor_id))
        if entry_date is not None:
            entry.entry_date = entry_date
        if reference is not _UNSET:
            entry.reference = reference
        if description is not _UNSET:
            entry.description = description
        self._touch(entry, actor_id)
        self.session.flush()

        logger.info("journal_entry_patched", extra={"entry_id": str(entry_id)})
        return JournalEntryInfo.from_model(entry)

    def delete(self, entry_id: UUID) -> None:
        """Hard-delete a DRAFT entry."""
        entry = self._lock_entry(entry_id)
        if EntryStatus(entry.status) != EntryStatus.DRAFT:
            raise EntryNotDraftError(str(entry_id), entry.status)
        self.session.delete(entry)
        self.session.flush()
        logger.info("journal_entry_deleted", extra={"entry_id": str(entry_id)})

    def get(self, entry_id: UUID) -> JournalEntryInfo:
        entry = self.session.get(JournalEntry, entry_id)
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return JournalEntryInfo.from_model(entry)

    # ------------------------------------------------------------------
    # Post / reverse
    # ------------------------------------------------------------------

    def post_entry(self, entry_id: UUID, actor_id: UUID) -> JournalEntryInfo:
        """
        Post one DRAFT entry: re-validate, apply balances, flip to POSTED.

        Raises on failure; the caller decides the savepoint boundary.
        """
        with LogContext.bind(entry_id=entry_id):
            entry = self._lock_entry(entry_id)
            if EntryStatus(entry.status) != EntryStatus.DRAFT:
                raise EntryNotDraftError(str(entry_id), entry.status)

            lines = self._validated([self._as_spec(line) for line in entry.lines])
            for line in lines:
                self._chart.apply_line(line.account_id, line.debit, line.credit)

            entry.status = EntryStatus.POSTED.value
            entry.posted_at = self._clock.now()
            self._touch(entry, actor_id)
            self.session.flush()

            logger.info(
                "journal_posted",
                extra={
                    "reference": entry.reference,
                    "total": str(entry.total_debits),
                },
            )
            return JournalEntryInfo.from_model(entry)

    def reverse_entry(
        self,
        entry_id: UUID,
        actor_id: UUID,
        reversal_date: date | None = None,
    ) -> JournalEntryInfo:
        """
        Reverse one POSTED entry.

        Creates and posts a mirrored entry (debit/credit swapped) and flips
        the original to REVERSED.

        Returns:
            The reversing entry.
        """
        with LogContext.bind(entry_id=entry_id):
            original = self._lock_entry(entry_id)
            if EntryStatus(original.status) != EntryStatus.POSTED:
                raise EntryNotPostedError(str(entry_id), original.status)

            mirrored = [
                LineSpec(
                    account_id=line.account_id,
                    debit=line.credit,
                    credit=line.debit,
                    narration=line.narration,
                )
                for line in sorted(original.lines, key=lambda ln: ln.line_seq)
            ]
            label = original.reference or str(original.id)
            reversal = JournalEntry(
                entry_date=reversal_date or self._clock.now().date(),
                reference=original.reference,
                description=f"Reversal of {label}",
                status=EntryStatus.DRAFT.value,
                reversal_of_id=original.id,
                source_instance_id=original.source_instance_id,
                created_by_id=actor_id,
            )
            reversal.lines = self._build_lines(self._validated(mirrored), actor_id)
            self.session.add(reversal)
            self.session.flush()

            posted = self.post_entry(reversal.id, actor_id)

            original.status = EntryStatus.REVERSED.value
            original.reversed_by_id = reversal.id
            self._touch(original, actor_id)
            self.session.flush()

            logger.info(
                "journal_reversed",
                extra={
                    "reference": original.reference,
                    "reversal_entry_id": str(reversal.id),
                },
            )
            return posted

    def post(self, entry_ids: Sequence[UUID], actor_id: UUID) -> BatchResult:
        """
        Post many entries; each in its own SAVEPOINT.

        Returns:
            BatchResult(succeeded=[posted ids], failed=[BatchFailure(...)]).
        """
        return self._run_batch(
            "post", entry_ids, lambda eid: self.post_entry(eid, actor_id)
        )

    def reverse(
        self,
        entry_ids: Sequence[UUID],
        actor_id: UUID,
        reversal_date: date | None = None,
    ) -> BatchResult:
        """
        Reverse many entries; each in its own SAVEPOINT.

        succeeded lists the ORIGINAL entry ids that are now REVERSED.
        """
        return self._run_batch(
            "reverse",
            entry_ids,
            lambda eid: self.reverse_entry(eid, actor_id, reversal_date),
        )

    def _run_batch(self, operation: str, entry_ids, action) -> BatchResult:
        succeeded: list[UUID] = []
        failed: list[BatchFailure] = []
        for entry_id in entry_ids:
            savepoint = self.session.begin_nested()
            try:
                action(entry_id)
                savepoint.commit()
                succeeded.append(entry_id)
            except LedgerKernelError as exc:
                savepoint.rollback()
                failed.append(BatchFailure(str(entry_id), exc.code, str(exc)))
                logger.warning(
                    f"journal_{operation}_item_failed",
                    extra={
                        "entry_id": str(entry_id),
                        "error_code": exc.code,
                        "error_message": str(exc),
                    },
                )

        logger.info(
            f"journal_bulk_{operation}_completed",
            extra={"succeeded": len(succeeded), "failed": len(failed)},
        )
        return BatchResult(succeeded=tuple(succeeded), failed=tuple(failed))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_entry(self, entry_id: UUID) -> JournalEntry:
        entry = self.session.execute(
            select(JournalEntry)
            .where(JournalEntry.id == entry_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return entry

    @staticmethod
    def _as_spec(line: JournalLine) -> LineSpec:
        return LineSpec(
            account_id=line.account_id,
            debit=Decimal(line.debit),
            credit=Decimal(line.credit),
            narration=line.narration,
        )

    @staticmethod
    def _build_lines(lines: Sequence[LineSpec], actor_id: UUID) -> list[JournalLine]:
        return [
            JournalLine(
                account_id=line.account_id,
                debit=line.debit,
                credit=line.credit,
                narration=line.narration,
                line_seq=seq,
                created_by_id=actor_id,
            )
            for seq, line in enumerate(lines)
        ]
