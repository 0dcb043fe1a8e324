"""
ledger_batch.domain -- Pure schedule types and evaluation.

ZERO I/O.  All types are frozen dataclasses.
"""

from ledger_batch.domain.schedule import (
    MONTH_END_POLICY,
    compute_next_run,
    first_run,
    is_due,
    parse_time,
    should_disable,
)
from ledger_batch.domain.types import (
    MonthEndPolicy,
    RecurringScheduleDTO,
    ScheduleSpec,
    ScheduleType,
    TickResult,
)

__all__ = [
    "MONTH_END_POLICY",
    "MonthEndPolicy",
    "RecurringScheduleDTO",
    "ScheduleSpec",
    "ScheduleType",
    "TickResult",
    "compute_next_run",
    "first_run",
    "is_due",
    "parse_time",
    "should_disable",
]
