"""
ORM-level immutability enforcement.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners registered here intercept those events and raise
ImmutabilityViolationError so that a finalized record is never rewritten
by application code:

    session.flush()
         |
         v
    [before_update event] --> _check_*_update() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Protected entities:

Entity          | When immutable                 | Permitted change
----------------|--------------------------------|------------------------------------
JournalEntry    | status POSTED or REVERSED      | POSTED -> REVERSED + reversed_by_id
JournalLine     | parent entry not DRAFT         | none
EventInstance   | status PROCESSED or FAILED     | none
Account         | delete while referenced by     | none
                | posted/reversed lines          |

updated_at / updated_by_id are audit metadata and may always change.

Usage:

    from ledger_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, exists, inspect, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history

from ledger_kernel.exceptions import AccountReferencedError, ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})

_listeners_registered = False


def _previous_value(target, attr_name: str):
    """Value of an attribute as loaded from the database, before this flush."""
    history = get_history(target, attr_name)
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return getattr(target, attr_name)


def _changed_fields(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.attrs
        if attr.key not in _AUDIT_FIELDS and attr.history.has_changes()
    ]


def _blocked(entity_type: str, entity_id, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


# ---------------------------------------------------------------------------
# Journal entries and lines
# ---------------------------------------------------------------------------


def _check_journal_entry_update(mapper, connection, target):
    from ledger_kernel.domain.dtos import EntryStatus

    previous = EntryStatus(_previous_value(target, "status"))
    if previous == EntryStatus.DRAFT:
        return

    changed = _changed_fields(target)
    if previous == EntryStatus.POSTED:
        allowed = {"status", "reversed_by_id"}
        flipping = EntryStatus(target.status) == EntryStatus.REVERSED
        if flipping and set(changed) <= allowed:
            return

    for field_name in changed:
        _blocked(
            "JournalEntry",
            target.id,
            "UPDATE",
            f"Cannot modify field '{field_name}' on {previous.value} journal entry",
            field=field_name,
        )


def _check_journal_entry_delete(mapper, connection, target):
    from ledger_kernel.domain.dtos import EntryStatus

    previous = EntryStatus(_previous_value(target, "status"))
    if previous != EntryStatus.DRAFT:
        _blocked(
            "JournalEntry",
            target.id,
            "DELETE",
            f"{previous.value.capitalize()} journal entries cannot be deleted",
        )


def _parent_is_final(target) -> bool:
    from ledger_kernel.domain.dtos import EntryStatus

    entry = target.entry
    if entry is None:
        return False
    return EntryStatus(_previous_value(entry, "status")) != EntryStatus.DRAFT


def _check_journal_line_update(mapper, connection, target):
    if _parent_is_final(target) and _changed_fields(target):
        _blocked(
            "JournalLine",
            target.id,
            "UPDATE",
            "Journal lines cannot be modified after parent entry is posted",
        )


def _check_journal_line_delete(mapper, connection, target):
    if _parent_is_final(target):
        _blocked(
            "JournalLine",
            target.id,
            "DELETE",
            "Journal lines cannot be deleted after parent entry is posted",
        )


# ---------------------------------------------------------------------------
# Event instances
# ---------------------------------------------------------------------------


def _check_event_instance_update(mapper, connection, target):
    from ledger_kernel.models.event_instance import TERMINAL_STATUSES, InstanceStatus

    previous = InstanceStatus(_previous_value(target, "status"))
    if previous in TERMINAL_STATUSES and _changed_fields(target):
        _blocked(
            "EventInstance",
            target.id,
            "UPDATE",
            f"Event instance is {previous.value} and cannot be modified",
        )


def _check_event_instance_delete(mapper, connection, target):
    from ledger_kernel.models.event_instance import TERMINAL_STATUSES, InstanceStatus

    if InstanceStatus(_previous_value(target, "status")) in TERMINAL_STATUSES:
        _blocked(
            "EventInstance",
            target.id,
            "DELETE",
            "Finalized event instances cannot be deleted",
        )


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


def _check_account_deletion_before_flush(session, flush_context, instances):
    """
    Prevent deletion of accounts referenced by posted or reversed lines.

    Runs in SessionEvents.before_flush, before the flush plan is finalized.
    """
    from ledger_kernel.domain.dtos import EntryStatus
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.journal import JournalEntry, JournalLine

    for obj in list(session.deleted):
        if not isinstance(obj, Account):
            continue
        with session.no_autoflush:
            referenced = session.execute(
                select(
                    exists().where(
                        JournalLine.account_id == obj.id,
                        JournalLine.journal_entry_id == JournalEntry.id,
                        JournalEntry.status.in_(
                            [EntryStatus.POSTED.value, EntryStatus.REVERSED.value]
                        ),
                    )
                )
            ).scalar()
        if referenced:
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": "Account",
                    "entity_id": str(obj.id),
                    "operation": "DELETE",
                },
            )
            raise AccountReferencedError(account_id=str(obj.id))


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def _listener_table():
    from ledger_kernel.models.event_instance import EventInstance
    from ledger_kernel.models.journal import JournalEntry, JournalLine

    return [
        (Session, "before_flush", _check_account_deletion_before_flush),
        (JournalEntry, "before_update", _check_journal_entry_update),
        (JournalEntry, "before_delete", _check_journal_entry_delete),
        (JournalLine, "before_update", _check_journal_line_update),
        (JournalLine, "before_delete", _check_journal_line_delete),
        (EventInstance, "before_update", _check_event_instance_update),
        (EventInstance, "before_delete", _check_event_instance_delete),
    ]


def register_immutability_listeners() -> None:
    """Register all immutability listeners (idempotent)."""
    global _listeners_registered
    if _listeners_registered:
        return
    for target, event_name, fn in _listener_table():
        event.listen(target, event_name, fn)
    _listeners_registered = True
    logger.debug("immutability_listeners_registered")


def unregister_immutability_listeners() -> None:
    """Remove immutability listeners. FOR TESTING ONLY."""
    global _listeners_registered
    for target, event_name, fn in _listener_table():
        if event.contains(target, event_name, fn):
            event.remove(target, event_name, fn)
    _listeners_registered = False


def listeners_registered() -> bool:
    return _listeners_registered
