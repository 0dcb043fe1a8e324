"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that cross the service boundary:
    account and entry specifications (input), AccountInfo / JournalEntryInfo
    (read models), the account tree, and the result aggregates returned by
    bulk operations.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods exist as boundary converters but are only
    invoked from the service and selector layers.

Invariants enforced:
    - Services accept and return DTOs, never ORM entities.
    - Bulk post/reverse/create failures are values (BatchResult), not
      exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account as AccountModel
    from ledger_kernel.models.event_instance import EventInstance as EventInstanceModel
    from ledger_kernel.models.journal import JournalEntry as JournalEntryModel


# Actor recorded on rows written by bootstrap code (seeding, scheduler)
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


class AccountType(str, Enum):
    """Types of accounts in the chart of accounts."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    INCOME = "income"
    EXPENSE = "expense"


class NormalBalance(str, Enum):
    """Normal balance side for an account."""

    DEBIT = "debit"
    CREDIT = "credit"


class EntryStatus(str, Enum):
    """
    Status of a journal entry.

    Contract:
        Lifecycle: DRAFT -> POSTED -> REVERSED.  DRAFT entries may also be
        deleted outright.  POSTED and REVERSED entries are immutable apart
        from the single POSTED -> REVERSED flip.
    """

    DRAFT = "draft"
    POSTED = "posted"
    REVERSED = "reversed"


# ---------------------------------------------------------------------------
# Chart of accounts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountSpec:
    """
    Input for ChartOfAccountsService.create_account.

    normal_balance is optional; when supplied it must agree with
    account_type or creation is rejected.
    """

    code: str
    name: str
    account_type: AccountType
    parent_code: str | None = None
    description: str | None = None
    opening_balance: Decimal = Decimal("0")
    is_system: bool = False
    normal_balance: NormalBalance | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccountSpec:
        """Build from a plain mapping (YAML industry templates, CLI)."""
        normal = data.get("normal_balance")
        return cls(
            code=str(data["code"]),
            name=str(data["name"]),
            account_type=AccountType(str(data["account_type"]).lower()),
            parent_code=(
                str(data["parent_code"]) if data.get("parent_code") else None
            ),
            description=data.get("description"),
            opening_balance=Decimal(str(data.get("opening_balance", "0"))),
            is_system=bool(data.get("is_system", False)),
            normal_balance=NormalBalance(str(normal).lower()) if normal else None,
        )


@dataclass(frozen=True)
class AccountInfo:
    """Read model of a single account."""

    id: UUID
    code: str
    name: str
    account_type: AccountType
    normal_balance: NormalBalance
    parent_code: str | None
    opening_balance: Decimal
    current_balance: Decimal
    is_system: bool
    description: str | None = None

    @classmethod
    def from_model(cls, model: AccountModel) -> AccountInfo:
        return cls(
            id=model.id,
            code=model.code,
            name=model.name,
            account_type=AccountType(model.account_type),
            normal_balance=NormalBalance(model.normal_balance),
            parent_code=model.parent_code,
            opening_balance=model.opening_balance,
            current_balance=model.current_balance,
            is_system=model.is_system,
            description=model.description,
        )


@dataclass(frozen=True)
class AccountNode:
    """
    One node of the account forest.

    rolled_up_balance is the node's own current_balance plus the rolled-up
    balances of all its children.
    """

    account: AccountInfo
    rolled_up_balance: Decimal
    children: tuple[AccountNode, ...] = ()

    @property
    def code(self) -> str:
        return self.account.code

    def walk(self):
        """Yield this node and every descendant, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()


@dataclass(frozen=True)
class CoaStatistics:
    total: int
    by_type: dict[str, int]
    root_count: int
    leaf_count: int


# ---------------------------------------------------------------------------
# Journal
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LineSpec:
    """
    One proposed journal line.

    Exactly one of debit/credit must be nonzero; the Journal Engine
    enforces that (InvalidLineError) rather than this constructor so that
    validation reports can name every bad line at once.
    """

    account_id: UUID
    debit: Decimal = Decimal("0")
    credit: Decimal = Decimal("0")
    narration: str | None = None


@dataclass(frozen=True)
class EntrySpec:
    """Input for JournalEngine.create."""

    entry_date: date
    lines: tuple[LineSpec, ...]
    reference: str | None = None
    description: str | None = None
    source_instance_id: UUID | None = None


@dataclass(frozen=True)
class LineValidationReport:
    """Outcome of JournalEngine.validate_lines (nothing is written)."""

    is_valid: bool
    errors: tuple[str, ...]
    total_debits: Decimal
    total_credits: Decimal

    @property
    def difference(self) -> Decimal:
        return self.total_debits - self.total_credits


@dataclass(frozen=True)
class JournalLineInfo:
    id: UUID
    account_id: UUID
    debit: Decimal
    credit: Decimal
    narration: str | None
    line_seq: int


@dataclass(frozen=True)
class JournalEntryInfo:
    """Read model of a journal entry with its lines in line_seq order."""

    id: UUID
    entry_date: date
    reference: str | None
    description: str | None
    status: EntryStatus
    lines: tuple[JournalLineInfo, ...]
    reversal_of_id: UUID | None = None
    reversed_by_id: UUID | None = None
    source_instance_id: UUID | None = None
    posted_at: datetime | None = None
    created_by_id: UUID | None = None

    @property
    def total_debits(self) -> Decimal:
        return sum((line.debit for line in self.lines), Decimal("0"))

    @property
    def total_credits(self) -> Decimal:
        return sum((line.credit for line in self.lines), Decimal("0"))

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits

    @classmethod
    def from_model(cls, model: JournalEntryModel) -> JournalEntryInfo:
        return cls(
            id=model.id,
            entry_date=model.entry_date,
            reference=model.reference,
            description=model.description,
            status=EntryStatus(model.status),
            lines=tuple(
                JournalLineInfo(
                    id=line.id,
                    account_id=line.account_id,
                    debit=line.debit,
                    credit=line.credit,
                    narration=line.narration,
                    line_seq=line.line_seq,
                )
                for line in sorted(model.lines, key=lambda ln: ln.line_seq)
            ),
            reversal_of_id=model.reversal_of_id,
            reversed_by_id=model.reversed_by_id,
            source_instance_id=model.source_instance_id,
            posted_at=model.posted_at,
            created_by_id=model.created_by_id,
        )


# ---------------------------------------------------------------------------
# Result aggregates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BatchFailure:
    """
    One item that a bulk operation could not process.

    item is the entry id for post/reverse and the row index for bulk_create.
    """

    item: str
    error_code: str
    message: str


@dataclass(frozen=True)
class BatchResult:
    """
    Partial-success aggregate returned by bulk post/reverse/create.

    Guarantees:
        - Every input item appears in exactly one of succeeded / failed.
        - A failure of one item never rolls back another item's success.
    """

    succeeded: tuple[UUID, ...] = ()
    failed: tuple[BatchFailure, ...] = field(default_factory=tuple)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    @property
    def failed_items(self) -> list[str]:
        return [f.item for f in self.failed]


# ---------------------------------------------------------------------------
# Event instances
# ---------------------------------------------------------------------------


class InstanceStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"


TERMINAL_STATUSES = frozenset({InstanceStatus.PROCESSED, InstanceStatus.FAILED})


@dataclass(frozen=True)
class PluginResult:
    """Outcome of one downstream step of a dispatch ("journal", "stock", ...)."""

    step: str
    success: bool
    result_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "success": self.success,
            "result_id": self.result_id,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PluginResult:
        return cls(
            step=str(data["step"]),
            success=bool(data["success"]),
            result_id=data.get("result_id"),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class EventInstanceInfo:
    """Read model of one dispatch attempt."""

    id: UUID
    template_orchid: str
    event_type: str
    reference: str | None
    payload: dict[str, Any]
    status: InstanceStatus
    results: tuple[PluginResult, ...]
    error_code: str | None = None
    error_message: str | None = None
    journal_entry_id: UUID | None = None
    schedule_id: UUID | None = None
    processed_at: datetime | None = None
    created_by_id: UUID | None = None

    @property
    def is_processed(self) -> bool:
        return self.status == InstanceStatus.PROCESSED

    def result_for(self, step: str) -> PluginResult | None:
        for result in self.results:
            if result.step == step:
                return result
        return None

    @classmethod
    def from_model(cls, model: EventInstanceModel) -> EventInstanceInfo:
        return cls(
            id=model.id,
            template_orchid=model.template_orchid,
            event_type=model.event_type,
            reference=model.reference,
            payload=dict(model.payload or {}),
            status=InstanceStatus(model.status),
            results=tuple(PluginResult.from_dict(r) for r in model.results or []),
            error_code=model.error_code,
            error_message=model.error_message,
            journal_entry_id=model.journal_entry_id,
            schedule_id=model.schedule_id,
            processed_at=model.processed_at,
            created_by_id=model.created_by_id,
        )
