"""
ledger_batch.domain.types -- Pure frozen dataclasses for recurring dispatch.

ZERO I/O.

Invariants enforced:
    - ScheduleSpec.validate() rejects a definition that could never produce
      a run time: weekly needs day_of_week in 0..6 (0 = Sunday), monthly
      and calendar_monthly need day_of_month in 1..31, time is HH:MM.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from ledger_kernel.exceptions import InvalidScheduleError

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class ScheduleType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CALENDAR_MONTHLY = "calendar_monthly"


class MonthEndPolicy(str, Enum):
    """What a day_of_month that the target month lacks (e.g. 31 in April) becomes."""

    CLAMP = "clamp"  # last day of that month
    ROLL_FORWARD = "roll_forward"  # first day of the following month


@dataclass(frozen=True)
class ScheduleSpec:
    """
    When a recurring schedule fires.

    time is "HH:MM" in UTC and defaults to midnight.  day_of_week uses
    0 = Sunday .. 6 = Saturday.
    """

    type: ScheduleType
    time: str = "00:00"
    day_of_week: int | None = None
    day_of_month: int | None = None

    def validate(self) -> None:
        """Raise InvalidScheduleError for the first problem found."""
        if not _TIME_RE.match(self.time or ""):
            raise InvalidScheduleError(f"time must be HH:MM, got {self.time!r}")
        if self.type == ScheduleType.WEEKLY:
            if self.day_of_week is None or not 0 <= self.day_of_week <= 6:
                raise InvalidScheduleError(
                    "weekly schedules need day_of_week between 0 (Sunday) and 6"
                )
        if self.type in (ScheduleType.MONTHLY, ScheduleType.CALENDAR_MONTHLY):
            if self.day_of_month is None or not 1 <= self.day_of_month <= 31:
                raise InvalidScheduleError(
                    f"{self.type.value} schedules need day_of_month between 1 and 31"
                )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "time": self.time,
            "day_of_week": self.day_of_week,
            "day_of_month": self.day_of_month,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScheduleSpec:
        """Accepts snake_case or camelCase keys (dayOfWeek, dayOfMonth)."""
        try:
            schedule_type = ScheduleType(str(data["type"]).lower())
        except (KeyError, ValueError) as exc:
            raise InvalidScheduleError(f"unknown schedule type: {data.get('type')!r}") from exc

        def _int(*keys: str) -> int | None:
            for key in keys:
                value = data.get(key)
                if value is not None:
                    try:
                        return int(value)
                    except (TypeError, ValueError) as exc:
                        raise InvalidScheduleError(f"{key} must be an integer") from exc
            return None

        spec = cls(
            type=schedule_type,
            time=str(data.get("time") or "00:00"),
            day_of_week=_int("day_of_week", "dayOfWeek"),
            day_of_month=_int("day_of_month", "dayOfMonth"),
        )
        spec.validate()
        return spec


@dataclass(frozen=True)
class RecurringScheduleDTO:
    """Immutable snapshot of a recurring schedule."""

    id: UUID
    template_orchid: str
    payload: dict[str, Any]
    schedule: ScheduleSpec
    start_at: datetime
    end_at: datetime | None = None
    next_run: datetime | None = None
    last_run: datetime | None = None
    enabled: bool = True
    run_count: int = 0
    max_runs: int | None = None
    version: int = 1
    created_by_id: UUID | None = None

    @property
    def has_run(self) -> bool:
        return self.run_count > 0


@dataclass(frozen=True)
class TickResult:
    """
    Outcome of one scheduler tick.

    fired: schedules claimed and dispatched (whatever the dispatch outcome).
    skipped: schedules whose claim was lost to another worker.
    failed: fired schedules whose dispatch raised or returned FAILED.
    disabled: schedules switched off because they ran out.
    """

    fired: tuple[UUID, ...] = ()
    skipped: tuple[UUID, ...] = ()
    failed: tuple[UUID, ...] = ()
    disabled: tuple[UUID, ...] = ()
    instance_ids: tuple[UUID, ...] = field(default_factory=tuple)

    @property
    def fired_count(self) -> int:
        return len(self.fired)
