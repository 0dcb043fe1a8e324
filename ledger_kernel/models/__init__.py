"""ORM models for the ledger kernel."""

from ledger_kernel.models.account import Account
from ledger_kernel.models.event_instance import (
    TERMINAL_STATUSES,
    EventInstance,
    InstanceStatus,
)
from ledger_kernel.models.journal import JournalEntry, JournalEntryStatus, JournalLine
from ledger_kernel.models.serial_counter import SerialCounter
from ledger_kernel.models.template import EventTemplate

__all__ = [
    "Account",
    "JournalEntry",
    "JournalEntryStatus",
    "JournalLine",
    "EventTemplate",
    "EventInstance",
    "InstanceStatus",
    "TERMINAL_STATUSES",
    "SerialCounter",
]
