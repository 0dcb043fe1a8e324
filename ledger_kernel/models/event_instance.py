"""
Module: ledger_kernel.models.event_instance
Responsibility: event_instances, one row per dispatch that got as far as
    rule evaluation, whether or not it produced a journal entry.
Architecture position: Kernel > Models.

A row is written PENDING, then finalized exactly once to PROCESSED or
FAILED together with its step results.  After that db/immutability.py
rejects any further UPDATE or DELETE.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase
from ledger_kernel.db.types import Label, ShortCode
from ledger_kernel.domain.dtos import TERMINAL_STATUSES, InstanceStatus

__all__ = ["EventInstance", "InstanceStatus", "TERMINAL_STATUSES"]


class EventInstance(TrackedBase):
    """
    One dispatch attempt.

    ``results`` has one mapping per downstream step, shaped
    ``{"step": str, "success": bool, "result_id": str | None, "error": str | None}``.
    """

    __tablename__ = "event_instances"
    __table_args__ = (
        UniqueConstraint("reference", name="uq_event_instance_reference"),
        Index("idx_event_instance_template", "template_orchid"),
        Index("idx_event_instance_status", "status"),
        Index("idx_event_instance_schedule", "schedule_id"),
    )

    template_orchid: Mapped[ShortCode]
    # Template name at dispatch time
    event_type: Mapped[Label]
    # NULL only when every generated reference collided
    reference: Mapped[str | None] = mapped_column(String(100))
    payload: Mapped[dict[str, Any]] = mapped_column(JSON)
    status: Mapped[InstanceStatus] = mapped_column(String(10), default=InstanceStatus.PENDING)
    processed_at: Mapped[datetime | None]
    error_code: Mapped[ShortCode | None]
    error_message: Mapped[str | None] = mapped_column(Text)
    results: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)

    journal_entry_id: Mapped[UUID | None]
    schedule_id: Mapped[UUID | None]

    def __repr__(self) -> str:
        return f"<EventInstance {self.reference} {self.status}>"
