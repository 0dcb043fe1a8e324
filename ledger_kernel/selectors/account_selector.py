"""
Module: ledger_kernel.selectors.account_selector
Responsibility: Read-only queries over the chart of accounts: lookups,
    hierarchy navigation (children, ancestors, descendants, path, level),
    the rolled-up account tree and summary statistics.
Architecture position: Kernel > Selectors.

The hierarchy is a code-keyed index: every query loads the accounts it needs
and computes child lists on read from parent_code.  There is no stored
child pointer.

Invariants enforced:
    - rolled-up balance of a node == own current_balance + sum of the
      rolled-up balances of its children.
    - An account whose parent_code names no existing account is treated as
      a root.
"""

from collections import defaultdict
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select

from ledger_kernel.domain.dtos import (
    AccountInfo,
    AccountNode,
    AccountType,
    CoaStatistics,
)
from ledger_kernel.exceptions import AccountNotFoundError
from ledger_kernel.models.account import Account
from ledger_kernel.selectors.base import DEFAULT_PAGE_SIZE, BaseSelector


class _CodeIndex:
    """In-memory code -> account index with child lists computed on demand."""

    def __init__(self, accounts: list[AccountInfo]):
        self.by_code: dict[str, AccountInfo] = {a.code: a for a in accounts}
        self.children: dict[str, list[AccountInfo]] = defaultdict(list)
        for account in sorted(accounts, key=lambda a: a.code):
            if account.parent_code and account.parent_code in self.by_code:
                self.children[account.parent_code].append(account)

    def roots(self) -> list[AccountInfo]:
        return sorted(
            (
                a
                for a in self.by_code.values()
                if not a.parent_code or a.parent_code not in self.by_code
            ),
            key=lambda a: a.code,
        )

    def node(self, code: str, _seen: frozenset[str] = frozenset()) -> AccountNode:
        account = self.by_code[code]
        seen = _seen | {code}
        children = tuple(
            self.node(child.code, seen)
            for child in self.children.get(code, [])
            if child.code not in seen
        )
        rolled_up = account.current_balance + sum(
            (child.rolled_up_balance for child in children), Decimal("0")
        )
        return AccountNode(account=account, rolled_up_balance=rolled_up, children=children)

    def ancestors(self, code: str) -> list[AccountInfo]:
        """Root first, excluding the account itself."""
        chain: list[AccountInfo] = []
        seen = {code}
        parent = self.by_code[code].parent_code
        while parent and parent in self.by_code and parent not in seen:
            seen.add(parent)
            chain.append(self.by_code[parent])
            parent = self.by_code[parent].parent_code
        chain.reverse()
        return chain


class AccountSelector(BaseSelector[Account]):
    """Read-only access to the chart of accounts."""

    # ------------------------------------------------------------------
    # Single lookups
    # ------------------------------------------------------------------

    def get(self, account_id: UUID) -> AccountInfo:
        account = self.session.get(Account, account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return AccountInfo.from_model(account)

    def find_by_code(self, code: str) -> AccountInfo | None:
        account = self.session.execute(
            select(Account).where(Account.code == code)
        ).scalar_one_or_none()
        return AccountInfo.from_model(account) if account else None

    def get_by_code(self, code: str) -> AccountInfo:
        account = self.find_by_code(code)
        if account is None:
            raise AccountNotFoundError(code)
        return account

    def ids_by_code(self, codes: list[str]) -> dict[str, UUID]:
        """Resolve many codes at once; unknown codes are absent from the result."""
        if not codes:
            return {}
        rows = self.session.execute(
            select(Account.code, Account.id).where(Account.code.in_(set(codes)))
        ).all()
        return {code: account_id for code, account_id in rows}

    def list_accounts(
        self,
        account_type: AccountType | None = None,
        parent_code: str | None = None,
        search: str | None = None,
        is_system: bool | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> list[AccountInfo]:
        """Filtered, code-ordered page of accounts."""
        query = select(Account)
        if account_type is not None:
            query = query.where(Account.account_type == AccountType(account_type).value)
        if parent_code is not None:
            query = query.where(Account.parent_code == parent_code)
        if is_system is not None:
            query = query.where(Account.is_system == is_system)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(Account.code.ilike(pattern), Account.name.ilike(pattern))
            )
        offset, limit = self._page_bounds(page, limit)
        query = query.order_by(Account.code).offset(offset).limit(limit)
        return [AccountInfo.from_model(a) for a in self.session.scalars(query)]

    def count(self) -> int:
        return self.session.execute(select(func.count(Account.id))).scalar_one()

    # ------------------------------------------------------------------
    # Hierarchy
    # ------------------------------------------------------------------

    def _index(self) -> _CodeIndex:
        accounts = self.session.scalars(select(Account).order_by(Account.code)).all()
        return _CodeIndex([AccountInfo.from_model(a) for a in accounts])

    def _require(self, index: _CodeIndex, code: str) -> None:
        if code not in index.by_code:
            raise AccountNotFoundError(code)

    def get_tree(self) -> list[AccountNode]:
        """The whole account forest with rolled-up balances."""
        index = self._index()
        return [index.node(root.code) for root in index.roots()]

    def get_subtree(self, code: str) -> AccountNode:
        index = self._index()
        self._require(index, code)
        return index.node(code)

    def rolled_up_balance(self, code: str) -> Decimal:
        return self.get_subtree(code).rolled_up_balance

    def get_children(self, code: str) -> list[AccountInfo]:
        index = self._index()
        self._require(index, code)
        return list(index.children.get(code, []))

    def get_descendants(self, code: str) -> list[AccountInfo]:
        """Depth-first, excluding the account itself."""
        subtree = self.get_subtree(code)
        return [node.account for node in subtree.walk()][1:]

    def get_ancestors(self, code: str) -> list[AccountInfo]:
        index = self._index()
        self._require(index, code)
        return index.ancestors(code)

    def get_path(self, code: str) -> list[str]:
        """Codes from the root down to and including this account."""
        index = self._index()
        self._require(index, code)
        return [a.code for a in index.ancestors(code)] + [code]

    def get_level(self, code: str) -> int:
        """Depth in the forest; roots are level 0."""
        return len(self.get_path(code)) - 1

    def get_roots(self) -> list[AccountInfo]:
        return self._index().roots()

    def get_leaves(self) -> list[AccountInfo]:
        index = self._index()
        return [
            a
            for code, a in sorted(index.by_code.items())
            if not index.children.get(code)
        ]

    def has_children(self, code: str) -> bool:
        return (
            self.session.execute(
                select(func.count(Account.id)).where(Account.parent_code == code)
            ).scalar_one()
            > 0
        )

    def get_statistics(self) -> CoaStatistics:
        index = self._index()
        by_type: dict[str, int] = {t.value: 0 for t in AccountType}
        for account in index.by_code.values():
            by_type[AccountType(account.account_type).value] += 1
        return CoaStatistics(
            total=len(index.by_code),
            by_type=by_type,
            root_count=len(index.roots()),
            leaf_count=sum(1 for code in index.by_code if not index.children.get(code)),
        )
