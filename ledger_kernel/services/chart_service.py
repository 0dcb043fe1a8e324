"""
ChartOfAccountsService -- hierarchical account registry and running balances.

Responsibility:
    Creates, updates, moves and deletes accounts; applies journal lines to
    account balances.  The account hierarchy is a lookup relation by code
    (parent_code); child lists are computed on read by AccountSelector.

Architecture position:
    Kernel > Services -- imperative shell.  Reads through AccountSelector,
    writes through the session; never commits.

Invariants enforced:
    - code is unique.
    - normal_balance is a pure function of account_type; a supplied value
      that disagrees is rejected.
    - A parent and child must share a normal balance unless the caller
      passes allow_mixed_parent=True.
    - current_balance changes only through apply_line(), under a row lock,
      by (debit - credit) for DEBIT-normal and (credit - debit) for
      CREDIT-normal accounts.
    - System accounts, accounts with posted/reversed lines and accounts
      with children cannot be deleted.

Failure modes:
    - DuplicateAccountCodeError, ParentAccountNotFoundError,
      AccountHierarchyError, InvalidAccountError on create/move/update.
    - AccountNotFoundError, SystemAccountError, AccountReferencedError on
      delete.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import exists, select, update
from sqlalchemy.orm import Session

from ledger_kernel.db.types import round_money, to_decimal
from ledger_kernel.domain.account_rules import (
    balance_delta,
    is_mixed_hierarchy,
    normal_balance_for,
)
from ledger_kernel.domain.dtos import (
    AccountInfo,
    AccountNode,
    AccountSpec,
    AccountType,
    EntryStatus,
)
from ledger_kernel.exceptions import (
    AccountHierarchyError,
    AccountNotFoundError,
    AccountReferencedError,
    DuplicateAccountCodeError,
    InvalidAccountError,
    ParentAccountNotFoundError,
    SystemAccountError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.journal import JournalEntry, JournalLine
from ledger_kernel.selectors.account_selector import AccountSelector
from ledger_kernel.services.base import BaseService

logger = get_logger("services.chart")


class ChartOfAccountsService(BaseService[Account]):
    """
    Write side of the chart of accounts.

    Contract:
        Every method flushes; the caller owns the transaction.  apply_line()
        is reserved for the Journal Engine.
    """

    def __init__(self, session: Session):
        super().__init__(session)
        self.selector = AccountSelector(session)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_account(
        self,
        spec: AccountSpec,
        actor_id: UUID,
        allow_mixed_parent: bool = False,
    ) -> AccountInfo:
        """
        Create one account.

        Postconditions:
            current_balance == opening_balance, quantized to the minor unit.
        """
        code = spec.code.strip()
        if not code:
            raise InvalidAccountError(spec.code, "code is required")
        if not spec.name or not spec.name.strip():
            raise InvalidAccountError(code, "name is required")

        account_type = AccountType(spec.account_type)
        normal = normal_balance_for(account_type)
        if spec.normal_balance is not None and spec.normal_balance != normal:
            raise InvalidAccountError(
                code,
                f"{account_type.value} accounts are {normal.value}-normal, "
                f"not {spec.normal_balance.value}",
            )

        if self._find(code) is not None:
            raise DuplicateAccountCodeError(code)

        if spec.parent_code:
            parent = self._find(spec.parent_code)
            if parent is None:
                raise ParentAccountNotFoundError(spec.parent_code)
            if not allow_mixed_parent and is_mixed_hierarchy(
                parent.normal_balance, normal
            ):
                raise AccountHierarchyError(
                    code,
                    spec.parent_code,
                    f"parent is {parent.normal_balance}-normal, "
                    f"child is {normal.value}-normal",
                )

        try:
            opening = round_money(to_decimal(spec.opening_balance))
        except ValueError as exc:
            raise InvalidAccountError(code, f"opening balance: {exc}") from exc
        account = Account(
            code=code,
            name=spec.name.strip(),
            description=spec.description,
            account_type=account_type.value,
            normal_balance=normal.value,
            parent_code=spec.parent_code or None,
            opening_balance=opening,
            current_balance=opening,
            is_system=spec.is_system,
            created_by_id=actor_id,
        )
        self.session.add(account)
        self.session.flush()

        logger.info(
            "account_created",
            extra={
                "account_id": str(account.id),
                "account_code": code,
                "account_type": account_type.value,
                "parent_code": spec.parent_code,
            },
        )
        return AccountInfo.from_model(account)

    def create_from_template(
        self,
        industry: str,
        actor_id: UUID,
        specs: list[AccountSpec] | None = None,
    ) -> list[AccountInfo]:
        """
        Bulk-create an industry starter chart.

        Parents are created before children; codes that already exist are
        skipped, so seeding twice is harmless.  When specs is None the chart
        is loaded from ledger_config (``sets/coa/<industry>.yaml``).
        """
        if specs is None:
            from ledger_config import load_coa_template

            specs = load_coa_template(industry)

        pending = list(specs)
        created: list[AccountInfo] = []
        known = {spec.code for spec in pending}

        while pending:
            progressed = False
            deferred: list[AccountSpec] = []
            for spec in pending:
                if self._find(spec.code) is not None:
                    progressed = True
                    continue
                if (
                    spec.parent_code
                    and spec.parent_code in known
                    and self._find(spec.parent_code) is None
                ):
                    deferred.append(spec)
                    continue
                created.append(
                    self.create_account(spec, actor_id, allow_mixed_parent=True)
                )
                progressed = True
            if not progressed:
                raise AccountHierarchyError(
                    deferred[0].code,
                    deferred[0].parent_code or "",
                    "template parent chain is cyclic",
                )
            pending = deferred

        logger.info(
            "coa_template_applied",
            extra={"industry": industry, "created_count": len(created)},
        )
        return created

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def apply_line(self, account_id: UUID, debit: Decimal, credit: Decimal) -> Decimal:
        """
        Apply one journal line to an account's running balance.

        Locks the account row (SELECT ... FOR UPDATE) so concurrent postings
        against the same account serialize.

        Returns:
            The new current_balance.
        """
        account = self.session.execute(
            select(Account)
            .where(Account.id == account_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(str(account_id))

        delta = balance_delta(account.normal_balance, debit, credit)
        try:
            account.current_balance = round_money(account.current_balance + delta)
        except ValueError as exc:
            raise InvalidAccountError(account.code, f"balance: {exc}") from exc
        self.session.flush()

        logger.debug(
            "account_balance_applied",
            extra={
                "account_code": account.code,
                "delta": str(delta),
                "balance": str(account.current_balance),
            },
        )
        return account.current_balance

    def get_tree(self) -> list[AccountNode]:
        """Account forest with rolled-up balances."""
        return self.selector.get_tree()

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def update_account(
        self,
        account_id: UUID,
        actor_id: UUID,
        name: str | None = None,
        description: str | None = None,
        code: str | None = None,
        account_type: AccountType | None = None,
    ) -> AccountInfo:
        """
        Update an account.

        name and description may always change.  code and account_type may
        change only while the account has no posted or reversed lines; a
        code change re-points the children's parent_code.
        """
        account = self._get_model(account_id)

        structural = (code is not None and code != account.code) or (
            account_type is not None
            and AccountType(account_type).value != account.account_type
        )
        if structural and self._has_final_lines(account.id):
            raise AccountReferencedError(
                str(account.id), "code and type are locked once lines are posted"
            )

        if name is not None:
            if not name.strip():
                raise InvalidAccountError(account.code, "name is required")
            account.name = name.strip()
        if description is not None:
            account.description = description

        if account_type is not None:
            new_type = AccountType(account_type)
            account.account_type = new_type.value
            account.normal_balance = normal_balance_for(new_type).value

        if code is not None and code != account.code:
            code = code.strip()
            if self._find(code) is not None:
                raise DuplicateAccountCodeError(code)
            old_code = account.code
            self.session.execute(
                update(Account)
                .where(Account.parent_code == old_code)
                .values(parent_code=code)
                .execution_options(synchronize_session="fetch")
            )
            account.code = code

        self._touch(account, actor_id)
        self.session.flush()

        logger.info(
            "account_updated",
            extra={"account_id": str(account.id), "account_code": account.code},
        )
        return AccountInfo.from_model(account)

    def move_account(
        self,
        account_id: UUID,
        new_parent_code: str | None,
        actor_id: UUID,
        allow_mixed_parent: bool = False,
    ) -> AccountInfo:
        """
        Re-parent an account (None makes it a root).

        Raises:
            AccountHierarchyError: If the move creates a cycle or mixes
                normal balances.
        """
        account = self._get_model(account_id)

        if new_parent_code:
            parent = self._find(new_parent_code)
            if parent is None:
                raise ParentAccountNotFoundError(new_parent_code)
            if parent.code == account.code:
                raise AccountHierarchyError(
                    account.code, new_parent_code, "an account cannot be its own parent"
                )
            descendant_codes = {
                a.code for a in self.selector.get_descendants(account.code)
            }
            if parent.code in descendant_codes:
                raise AccountHierarchyError(
                    account.code, new_parent_code, "move would create a cycle"
                )
            if not allow_mixed_parent and is_mixed_hierarchy(
                parent.normal_balance, account.normal_balance
            ):
                raise AccountHierarchyError(
                    account.code,
                    new_parent_code,
                    f"parent is {parent.normal_balance}-normal, "
                    f"child is {account.normal_balance}-normal",
                )

        previous = account.parent_code
        account.parent_code = new_parent_code or None
        self._touch(account, actor_id)
        self.session.flush()

        logger.info(
            "account_moved",
            extra={
                "account_code": account.code,
                "from_parent": previous,
                "to_parent": account.parent_code,
            },
        )
        return AccountInfo.from_model(account)

    def delete_account(self, account_id: UUID) -> None:
        """
        Hard-delete an account.

        Raises:
            SystemAccountError: is_system accounts.
            AccountReferencedError: lines in posted/reversed entries, or
                child accounts.
        """
        account = self._get_model(account_id)
        if account.is_system:
            raise SystemAccountError(account.code)
        if self._has_final_lines(account.id):
            raise AccountReferencedError(str(account.id))
        if self.selector.has_children(account.code):
            raise AccountReferencedError(str(account.id), "has child accounts")
        if self._has_any_lines(account.id):
            raise AccountReferencedError(str(account.id), "has draft journal lines")

        self.session.delete(account)
        self.session.flush()
        logger.info(
            "account_deleted",
            extra={"account_id": str(account_id), "account_code": account.code},
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find(self, code: str) -> Account | None:
        return self.session.execute(
            select(Account).where(Account.code == code)
        ).scalar_one_or_none()

    def _get_model(self, account_id: UUID) -> Account:
        account = self.session.get(Account, account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return account

    def _has_final_lines(self, account_id: UUID) -> bool:
        return bool(
            self.session.execute(
                select(
                    exists().where(
                        JournalLine.account_id == account_id,
                        JournalLine.journal_entry_id == JournalEntry.id,
                        JournalEntry.status.in_(
                            [EntryStatus.POSTED.value, EntryStatus.REVERSED.value]
                        ),
                    )
                )
            ).scalar()
        )

    def _has_any_lines(self, account_id: UUID) -> bool:
        return bool(
            self.session.execute(
                select(exists().where(JournalLine.account_id == account_id))
            ).scalar()
        )
