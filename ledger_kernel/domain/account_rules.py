"""
Account rules -- normal-balance and sign conventions.

Pure functions; the Chart of Accounts service is the only caller that
turns their results into writes.
"""

from decimal import Decimal

from ledger_kernel.domain.dtos import AccountType, NormalBalance

_NORMAL_BALANCE_BY_TYPE: dict[AccountType, NormalBalance] = {
    AccountType.ASSET: NormalBalance.DEBIT,
    AccountType.EXPENSE: NormalBalance.DEBIT,
    AccountType.LIABILITY: NormalBalance.CREDIT,
    AccountType.EQUITY: NormalBalance.CREDIT,
    AccountType.INCOME: NormalBalance.CREDIT,
}


def normal_balance_for(account_type: AccountType | str) -> NormalBalance:
    """ASSET/EXPENSE are DEBIT-normal; everything else is CREDIT-normal."""
    return _NORMAL_BALANCE_BY_TYPE[AccountType(account_type)]


def balance_delta(
    normal_balance: NormalBalance | str,
    debit: Decimal,
    credit: Decimal,
) -> Decimal:
    """
    Change in current_balance caused by one journal line.

    DEBIT-normal: debit - credit.  CREDIT-normal: credit - debit.
    """
    if NormalBalance(normal_balance) == NormalBalance.DEBIT:
        return debit - credit
    return credit - debit


def is_mixed_hierarchy(
    parent_normal: NormalBalance | str,
    child_normal: NormalBalance | str,
) -> bool:
    """True when a parent and child disagree on normal balance."""
    return NormalBalance(parent_normal) != NormalBalance(child_normal)
