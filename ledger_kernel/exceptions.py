"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger (API handlers, the recurrence scheduler, batch
importers) must react to failures by TYPE, not by parsing messages.  Every
exception carries:

  1. A class-level ``code`` (machine-readable, API-safe)
  2. Structured attributes (not just a message string)

Example:

    try:
        engine.create(spec)
    except UnbalancedEntryError as e:
        return {"error": e.code, "debits": e.debits, "credits": e.credits}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerKernelError (base)
    |
    +-- ValidationError
    |   +-- MissingFieldsError
    |   +-- InvalidLineError
    |   +-- TemplateDefinitionError
    |   +-- FormulaError
    |   +-- NarrationPlaceholderError
    |   +-- InvalidScheduleError
    |   +-- InvalidAccountError
    |
    +-- IntegrityViolationError
    |   +-- UnbalancedEntryError
    |   +-- TemplateImbalanceError
    |
    +-- ReferenceCollisionError
    |
    +-- TemplateError
    |   +-- TemplateNotFoundError
    |   +-- TemplateInactiveError
    |   +-- TemplateAlreadyExistsError
    |   +-- SystemTemplateError
    |
    +-- AccountError
    |   +-- AccountNotFoundError
    |   +-- DuplicateAccountCodeError
    |   +-- ParentAccountNotFoundError
    |   +-- AccountHierarchyError
    |   +-- SystemAccountError
    |   +-- AccountReferencedError
    |
    +-- JournalError
    |   +-- EntryNotFoundError
    |   +-- EntryNotDraftError
    |   +-- EntryNotPostedError
    |
    +-- EventInstanceError
    |   +-- EventInstanceNotFoundError
    |   +-- EventInstanceFinalizedError
    |
    +-- ScheduleError
    |   +-- ScheduleNotFoundError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR            | Malformed input (generic)
                | MISSING_FIELDS              | Payload lacks required template fields
                | INVALID_LINE                | Line has both/neither debit and credit
                | TEMPLATE_DEFINITION_INVALID | Template fails definition-time checks
                | FORMULA_ERROR               | Amount formula cannot be evaluated
                | NARRATION_PLACEHOLDER       | Placeholder has no payload value
                | INVALID_SCHEDULE            | Recurrence definition is malformed
                | INVALID_ACCOUNT             | Account fields are inconsistent
----------------|-----------------------------|-----------------------------------------
Integrity       | UNBALANCED_ENTRY            | Debits != Credits on an entry
                | TEMPLATE_IMBALANCE          | Template rules evaluate unbalanced
----------------|-----------------------------|-----------------------------------------
Reference       | REFERENCE_COLLISION         | Generated reference already in use
----------------|-----------------------------|-----------------------------------------
Template        | TEMPLATE_NOT_FOUND          | Unknown template code
                | TEMPLATE_INACTIVE           | Template is disabled
                | TEMPLATE_ALREADY_EXISTS     | Duplicate template code
                | SYSTEM_TEMPLATE             | System templates can't be deleted
----------------|-----------------------------|-----------------------------------------
Account         | ACCOUNT_NOT_FOUND           | Account ID/code doesn't exist
                | DUPLICATE_ACCOUNT_CODE      | Code already registered
                | PARENT_ACCOUNT_NOT_FOUND    | parent_code doesn't exist
                | ACCOUNT_HIERARCHY_INVALID   | Cycle or normal-balance conflict
                | SYSTEM_ACCOUNT              | System accounts can't be deleted
                | ACCOUNT_REFERENCED          | Account has posted lines / children
----------------|-----------------------------|-----------------------------------------
Journal         | ENTRY_NOT_FOUND             | Journal entry ID doesn't exist
                | ENTRY_NOT_DRAFT             | Mutation/post on non-draft entry
                | ENTRY_NOT_POSTED            | Reversal of non-posted entry
----------------|-----------------------------|-----------------------------------------
Event instance  | EVENT_INSTANCE_NOT_FOUND    | Instance ID doesn't exist
                | EVENT_INSTANCE_FINALIZED    | Second terminal write attempted
----------------|-----------------------------|-----------------------------------------
Schedule        | SCHEDULE_NOT_FOUND          | Recurring schedule ID doesn't exist
----------------|-----------------------------|-----------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT    | Version check lost a race
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying a posted/finalized record

Bulk post/reverse failures are NOT exceptions: they are returned as a
``BatchResult`` (see ``ledger_kernel.domain.dtos``).
"""


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "LEDGER_KERNEL_ERROR"


# Validation exceptions


class ValidationError(LedgerKernelError):
    """Malformed input. Recoverable; nothing has been written."""

    code: str = "VALIDATION_ERROR"


class MissingFieldsError(ValidationError):
    """Payload is missing one or more required template fields."""

    code: str = "MISSING_FIELDS"

    def __init__(self, template_code: str, missing_fields: list[str]):
        self.template_code = template_code
        self.missing_fields = list(missing_fields)
        super().__init__(
            f"Payload for template {template_code} is missing required fields: "
            f"{', '.join(self.missing_fields)}"
        )


class InvalidLineError(ValidationError):
    """Journal line is malformed."""

    code: str = "INVALID_LINE"

    def __init__(self, line_index: int, reason: str):
        self.line_index = line_index
        self.reason = reason
        super().__init__(f"Invalid journal line {line_index}: {reason}")


class TemplateDefinitionError(ValidationError):
    """Template definition failed definition-time validation."""

    code: str = "TEMPLATE_DEFINITION_INVALID"

    def __init__(self, template_code: str, errors: list[str]):
        self.template_code = template_code
        self.errors = list(errors)
        super().__init__(
            f"Template {template_code} is invalid: {'; '.join(self.errors)}"
        )


class FormulaError(ValidationError):
    """Amount formula could not be evaluated against the payload."""

    code: str = "FORMULA_ERROR"

    def __init__(self, source_field: str, operator: str, reason: str):
        self.source_field = source_field
        self.operator = operator
        self.reason = reason
        super().__init__(
            f"Cannot evaluate '{operator}' on field '{source_field}': {reason}"
        )


class NarrationPlaceholderError(ValidationError):
    """Narration placeholder names a field absent from the payload."""

    code: str = "NARRATION_PLACEHOLDER"

    def __init__(self, placeholder: str):
        self.placeholder = placeholder
        super().__init__(
            f"Narration placeholder %{placeholder}% has no value in the payload"
        )


class InvalidScheduleError(ValidationError):
    """Recurring schedule definition is malformed."""

    code: str = "INVALID_SCHEDULE"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid schedule: {reason}")


class InvalidAccountError(ValidationError):
    """Account specification is internally inconsistent."""

    code: str = "INVALID_ACCOUNT"

    def __init__(self, account_code: str, reason: str):
        self.account_code = account_code
        self.reason = reason
        super().__init__(f"Invalid account {account_code}: {reason}")


# Financial-integrity exceptions (never auto-corrected)


class IntegrityViolationError(LedgerKernelError):
    """Base exception for double-entry integrity violations."""

    code: str = "INTEGRITY_VIOLATION"


class UnbalancedEntryError(IntegrityViolationError):
    """Journal entry debits do not equal credits."""

    code: str = "UNBALANCED_ENTRY"

    def __init__(self, debits: str, credits: str):
        self.debits = debits
        self.credits = credits
        super().__init__(f"Unbalanced entry: debits={debits}, credits={credits}")


class TemplateImbalanceError(IntegrityViolationError):
    """Template line rules evaluated to unequal debit and credit totals."""

    code: str = "TEMPLATE_IMBALANCE"

    def __init__(self, template_code: str, debits: str, credits: str):
        self.template_code = template_code
        self.debits = debits
        self.credits = credits
        super().__init__(
            f"Template {template_code} evaluated unbalanced: "
            f"debits={debits}, credits={credits}"
        )


class ReferenceCollisionError(LedgerKernelError):
    """Generated reference is already used by another entry or instance."""

    code: str = "REFERENCE_COLLISION"

    def __init__(self, reference: str, attempts: int = 1):
        self.reference = reference
        self.attempts = attempts
        super().__init__(
            f"Reference {reference} already in use (after {attempts} attempt(s))"
        )


# Template exceptions


class TemplateError(LedgerKernelError):
    """Base exception for template lookup errors."""

    code: str = "TEMPLATE_ERROR"


class TemplateNotFoundError(TemplateError):
    """No template with the given code exists."""

    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_code: str):
        self.template_code = template_code
        super().__init__(f"Template not found: {template_code}")


class TemplateInactiveError(TemplateError):
    """Template exists but is disabled."""

    code: str = "TEMPLATE_INACTIVE"

    def __init__(self, template_code: str):
        self.template_code = template_code
        super().__init__(f"Template {template_code} is inactive")


class TemplateAlreadyExistsError(TemplateError):
    """A template with the given code already exists."""

    code: str = "TEMPLATE_ALREADY_EXISTS"

    def __init__(self, template_code: str):
        self.template_code = template_code
        super().__init__(f"Template already exists: {template_code}")


class SystemTemplateError(TemplateError):
    """System templates cannot be deleted."""

    code: str = "SYSTEM_TEMPLATE"

    def __init__(self, template_code: str):
        self.template_code = template_code
        super().__init__(f"System template {template_code} cannot be deleted")


# Account exceptions


class AccountError(LedgerKernelError):
    """Base exception for account-related errors."""

    code: str = "ACCOUNT_ERROR"


class AccountNotFoundError(AccountError):
    """Account with given ID or code was not found."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class DuplicateAccountCodeError(AccountError):
    """Account code is already registered."""

    code: str = "DUPLICATE_ACCOUNT_CODE"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Account code already exists: {account_code}")


class ParentAccountNotFoundError(AccountError):
    """The referenced parent code does not exist."""

    code: str = "PARENT_ACCOUNT_NOT_FOUND"

    def __init__(self, parent_code: str):
        self.parent_code = parent_code
        super().__init__(f"Parent account not found: {parent_code}")


class AccountHierarchyError(AccountError):
    """Parent/child relation would be inconsistent."""

    code: str = "ACCOUNT_HIERARCHY_INVALID"

    def __init__(self, account_code: str, parent_code: str, reason: str):
        self.account_code = account_code
        self.parent_code = parent_code
        self.reason = reason
        super().__init__(
            f"Account {account_code} cannot sit under {parent_code}: {reason}"
        )


class SystemAccountError(AccountError):
    """System accounts cannot be deleted."""

    code: str = "SYSTEM_ACCOUNT"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"System account {account_code} cannot be deleted")


class AccountReferencedError(AccountError):
    """Account has posted journal lines or child accounts."""

    code: str = "ACCOUNT_REFERENCED"

    def __init__(self, account_id: str, reason: str = "has posted journal lines"):
        self.account_id = account_id
        self.reason = reason
        super().__init__(f"Account {account_id} cannot be changed: {reason}")


# Journal lifecycle exceptions


class JournalError(LedgerKernelError):
    """Base exception for journal lifecycle errors."""

    code: str = "JOURNAL_ERROR"


class EntryNotFoundError(JournalError):
    """Journal entry was not found."""

    code: str = "ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Journal entry not found: {entry_id}")


class EntryNotDraftError(JournalError):
    """Operation requires a DRAFT entry."""

    code: str = "ENTRY_NOT_DRAFT"

    def __init__(self, entry_id: str, status: str):
        self.entry_id = entry_id
        self.status = status
        super().__init__(f"Journal entry {entry_id} is {status}, expected draft")


class EntryNotPostedError(JournalError):
    """Operation requires a POSTED entry."""

    code: str = "ENTRY_NOT_POSTED"

    def __init__(self, entry_id: str, status: str):
        self.entry_id = entry_id
        self.status = status
        super().__init__(f"Journal entry {entry_id} is {status}, expected posted")


# Event instance exceptions


class EventInstanceError(LedgerKernelError):
    """Base exception for event instance errors."""

    code: str = "EVENT_INSTANCE_ERROR"


class EventInstanceNotFoundError(EventInstanceError):
    """Event instance was not found."""

    code: str = "EVENT_INSTANCE_NOT_FOUND"

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Event instance not found: {instance_id}")


class EventInstanceFinalizedError(EventInstanceError):
    """Event instance already carries a terminal status."""

    code: str = "EVENT_INSTANCE_FINALIZED"

    def __init__(self, instance_id: str, status: str):
        self.instance_id = instance_id
        self.status = status
        super().__init__(f"Event instance {instance_id} is already {status}")


# Schedule exceptions


class ScheduleError(LedgerKernelError):
    """Base exception for recurring schedule errors."""

    code: str = "SCHEDULE_ERROR"


class ScheduleNotFoundError(ScheduleError):
    """Recurring schedule was not found."""

    code: str = "SCHEDULE_NOT_FOUND"

    def __init__(self, schedule_id: str):
        self.schedule_id = schedule_id
        super().__init__(f"Recurring schedule not found: {schedule_id}")


# Concurrency exceptions


class ConcurrencyError(LedgerKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Concurrent modification detected via version check."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, expected_version: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"{entity_type} {entity_id} was modified concurrently "
            f"(expected version {expected_version})"
        )


# Immutability exceptions


class ImmutabilityViolationError(LedgerKernelError):
    """Attempted to modify a posted or finalized record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")
