"""
ORM model for recurring schedules.

Contract:
    RecurringSchedule persists one recurring dispatch of a template.
    ``to_dto()`` converts to the frozen RecurringScheduleDTO.

Invariants enforced:
    - ``version`` increases on every write; the scheduler claims a run with
      ``UPDATE ... WHERE id = ? AND version = ?``.
    - Rows that have run are disabled, never deleted.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase
from ledger_kernel.domain.clock import ensure_utc

if TYPE_CHECKING:
    from ledger_batch.domain.types import RecurringScheduleDTO


class RecurringSchedule(TrackedBase):
    """Persistent recurring schedule."""

    __tablename__ = "recurring_schedules"

    __table_args__ = (
        Index("ix_recurring_due", "enabled", "next_run"),
        Index("ix_recurring_template", "template_orchid"),
    )

    template_orchid: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    # ScheduleSpec.to_dict()
    schedule: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    next_run: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    last_run: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    run_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_runs: Mapped[int | None] = mapped_column(Integer, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    def __repr__(self) -> str:
        return f"<RecurringSchedule {self.id} {self.template_orchid} next={self.next_run}>"

    def to_dto(self) -> RecurringScheduleDTO:
        from ledger_batch.domain.types import RecurringScheduleDTO, ScheduleSpec

        return RecurringScheduleDTO(
            id=self.id,
            template_orchid=self.template_orchid,
            payload=dict(self.payload or {}),
            schedule=ScheduleSpec.from_dict(self.schedule),
            start_at=ensure_utc(self.start_at),
            end_at=ensure_utc(self.end_at),
            next_run=ensure_utc(self.next_run),
            last_run=ensure_utc(self.last_run),
            enabled=self.enabled,
            run_count=self.run_count,
            max_runs=self.max_runs,
            version=self.version,
            created_by_id=self.created_by_id,
        )
