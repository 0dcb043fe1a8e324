"""Selectors for the ledger kernel (read side)."""

from ledger_kernel.selectors.account_selector import AccountSelector
from ledger_kernel.selectors.event_selector import EventSelector
from ledger_kernel.selectors.journal_selector import (
    AccountActivityLine,
    AccountBalance,
    JournalSelector,
)

__all__ = [
    "AccountSelector",
    "EventSelector",
    "JournalSelector",
    "AccountActivityLine",
    "AccountBalance",
]
