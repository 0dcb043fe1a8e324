"""
Pure schedule evaluation.

Contract:
    ``compute_next_run()``, ``first_run()``, ``is_due()`` and
    ``should_disable()`` are PURE -- no I/O, no clock reads.  The scheduler
    passes the current time in.

Architecture: ledger_batch/domain.  ZERO I/O.

All datetimes are timezone-aware UTC; naive inputs are taken as UTC.

Schedule types:
    daily             next day at ``time``.
    weekly            next ``day_of_week`` (0 = Sunday) at ``time``.
    monthly           next ``day_of_month`` at ``time`` after the previous
                      run's slot.  A scheduler that was down fires the
                      missed months one tick at a time.
    calendar_monthly  next ``day_of_month`` at ``time`` after now.  Missed
                      months are skipped.

Month end:
    A day_of_month the target month lacks is resolved by MONTH_END_POLICY:
    CLAMP moves it to the month's last day (31 -> Feb 28/29, Apr 30),
    ROLL_FORWARD to the first day of the following month.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta, timezone

from ledger_kernel.domain.clock import ensure_utc
from ledger_kernel.exceptions import InvalidScheduleError

from ledger_batch.domain.types import (
    MonthEndPolicy,
    RecurringScheduleDTO,
    ScheduleSpec,
    ScheduleType,
)

MONTH_END_POLICY = MonthEndPolicy.CLAMP

_TINY = timedelta(microseconds=1)


def parse_time(text: str | None) -> time:
    """"HH:MM" -> time; None means midnight."""
    if not text:
        return time(0, 0)
    try:
        hours, minutes = text.split(":")
        return time(int(hours), int(minutes))
    except ValueError as exc:
        raise InvalidScheduleError(f"time must be HH:MM, got {text!r}") from exc


def _at(day: date, at: time) -> datetime:
    return datetime.combine(day, at, tzinfo=timezone.utc)


def _shift_month(year: int, month: int, offset: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def month_day(
    year: int,
    month: int,
    day_of_month: int,
    policy: MonthEndPolicy = MONTH_END_POLICY,
) -> date:
    """The calendar date a day_of_month resolves to in (year, month)."""
    last = calendar.monthrange(year, month)[1]
    if day_of_month <= last:
        return date(year, month, day_of_month)
    if MonthEndPolicy(policy) == MonthEndPolicy.CLAMP:
        return date(year, month, last)
    next_year, next_month = _shift_month(year, month, 1)
    return date(next_year, next_month, 1)


def _next_month_slot(
    spec: ScheduleSpec,
    after: datetime,
    at: time,
    policy: MonthEndPolicy,
) -> datetime:
    # The previous month is checked too: under ROLL_FORWARD its slot can
    # land inside ``after``'s month.
    for offset in range(-1, 3):
        year, month = _shift_month(after.year, after.month, offset)
        candidate = _at(month_day(year, month, spec.day_of_month, policy), at)
        if candidate > after:
            return candidate
    raise InvalidScheduleError(f"no monthly slot found after {after.isoformat()}")


def compute_next_run(
    spec: ScheduleSpec,
    now: datetime,
    previous_run: datetime | None = None,
    policy: MonthEndPolicy = MONTH_END_POLICY,
) -> datetime:
    """
    The next slot strictly after the anchor.

    The anchor is ``now`` except for monthly schedules with a
    ``previous_run``, which count from that slot instead.

    Raises:
        InvalidScheduleError: If the ScheduleSpec is malformed.
    """
    spec.validate()
    now = ensure_utc(now)
    at = parse_time(spec.time)
    schedule_type = ScheduleType(spec.type)

    if schedule_type == ScheduleType.DAILY:
        candidate = _at(now.date(), at)
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate

    if schedule_type == ScheduleType.WEEKLY:
        # datetime.weekday(): 0 = Monday; schedules use 0 = Sunday
        today = (now.weekday() + 1) % 7
        candidate = _at(now.date() + timedelta(days=(spec.day_of_week - today) % 7), at)
        if candidate <= now:
            candidate += timedelta(days=7)
        return candidate

    if schedule_type == ScheduleType.MONTHLY and previous_run is not None:
        return _next_month_slot(spec, ensure_utc(previous_run), at, policy)
    return _next_month_slot(spec, now, at, policy)


def first_run(
    spec: ScheduleSpec,
    start_at: datetime,
    policy: MonthEndPolicy = MONTH_END_POLICY,
) -> datetime:
    """The first slot at or after start_at."""
    return compute_next_run(spec, ensure_utc(start_at) - _TINY, policy=policy)


def is_due(schedule: RecurringScheduleDTO, now: datetime) -> bool:
    """
    True when the scheduler should fire this schedule now.

    Rules:
        - Disabled schedules never fire.
        - next_run must be set and not in the future.
        - end_at, if set, must still be in the future.
        - max_runs, if set, must not be reached.
    """
    now = ensure_utc(now)
    if not schedule.enabled or schedule.next_run is None:
        return False
    if ensure_utc(schedule.next_run) > now:
        return False
    if schedule.end_at is not None and ensure_utc(schedule.end_at) <= now:
        return False
    if schedule.max_runs is not None and schedule.run_count >= schedule.max_runs:
        return False
    return True


def should_disable(
    run_count: int,
    max_runs: int | None,
    end_at: datetime | None,
    next_run: datetime | None,
    now: datetime,
) -> bool:
    """True once a schedule can never fire again."""
    if max_runs is not None and run_count >= max_runs:
        return True
    if end_at is None:
        return next_run is None
    end_at = ensure_utc(end_at)
    if end_at <= ensure_utc(now):
        return True
    return next_run is None or ensure_utc(next_run) >= end_at
