"""
RecurrenceService -- create, read, disable and delete recurring schedules.

Contract:
    Every write flushes; the caller owns the transaction.

Architecture: ledger_batch/services.  Imports from ledger_batch.domain,
    ledger_batch.models and kernel services.

Invariants enforced:
    - The template must exist when the schedule is created.
    - next_run starts at the first slot at or after start_at.
    - A schedule that has run is disabled instead of deleted.
    - Every write increments version, so an in-flight scheduler claim made
      against the old version loses.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import json_safe
from ledger_kernel.domain.clock import Clock, SystemClock, ensure_utc
from ledger_kernel.exceptions import (
    InvalidScheduleError,
    ScheduleNotFoundError,
    TemplateNotFoundError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.template_service import TemplateService

from ledger_batch.domain.schedule import MONTH_END_POLICY, first_run
from ledger_batch.domain.types import MonthEndPolicy, RecurringScheduleDTO, ScheduleSpec
from ledger_batch.models.recurring import RecurringSchedule

logger = get_logger("batch.recurrence")


class RecurrenceService(BaseService[RecurringSchedule]):
    """Write and read side of recurring schedules."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        month_end_policy: MonthEndPolicy = MONTH_END_POLICY,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._policy = month_end_policy
        self._templates = TemplateService(session)

    def create(
        self,
        template_orchid: str,
        schedule: ScheduleSpec | dict[str, Any],
        payload: dict[str, Any],
        start_at: datetime,
        actor_id: UUID,
        end_at: datetime | None = None,
        max_runs: int | None = None,
    ) -> RecurringScheduleDTO:
        """
        Register a recurring dispatch.

        Raises:
            TemplateNotFoundError: Unknown template.
            InvalidScheduleError: Malformed schedule, end_at not after
                start_at, or max_runs below 1.
        """
        if isinstance(schedule, dict):
            schedule = ScheduleSpec.from_dict(schedule)
        schedule.validate()

        orchid = template_orchid.strip().upper()
        if self._templates.find(orchid) is None:
            raise TemplateNotFoundError(orchid)

        start_at = ensure_utc(start_at)
        end_at = ensure_utc(end_at)
        if end_at is not None and end_at <= start_at:
            raise InvalidScheduleError("end_at must be after start_at")
        if max_runs is not None and max_runs < 1:
            raise InvalidScheduleError("max_runs must be at least 1")

        model = RecurringSchedule(
            template_orchid=orchid,
            payload=json_safe(payload),
            schedule=schedule.to_dict(),
            start_at=start_at,
            end_at=end_at,
            next_run=first_run(schedule, start_at, self._policy),
            enabled=True,
            run_count=0,
            max_runs=max_runs,
            version=1,
            created_by_id=actor_id,
        )
        self.session.add(model)
        self.session.flush()

        logger.info(
            "schedule_created",
            extra={
                "schedule_id": str(model.id),
                "template_code": orchid,
                "schedule_type": schedule.type.value,
                "next_run": model.next_run.isoformat(),
            },
        )
        return model.to_dto()

    def get(self, schedule_id: UUID) -> RecurringScheduleDTO:
        return self._get_model(schedule_id).to_dto()

    def list_schedules(
        self,
        enabled: bool | None = None,
        template_orchid: str | None = None,
    ) -> list[RecurringScheduleDTO]:
        query = select(RecurringSchedule).order_by(
            RecurringSchedule.next_run, RecurringSchedule.id
        )
        if enabled is not None:
            query = query.where(RecurringSchedule.enabled == enabled)
        if template_orchid:
            query = query.where(
                RecurringSchedule.template_orchid == template_orchid.strip().upper()
            )
        return [m.to_dto() for m in self.session.scalars(query)]

    def disable(self, schedule_id: UUID, actor_id: UUID) -> RecurringScheduleDTO:
        model = self._get_model(schedule_id)
        if model.enabled:
            model.enabled = False
            self._bump_version(model, actor_id)
            self.session.flush()
            logger.info("schedule_disabled", extra={"schedule_id": str(model.id)})
        return model.to_dto()

    def delete(self, schedule_id: UUID, actor_id: UUID) -> bool:
        """
        Remove a schedule.

        Returns:
            True if the row was deleted; False if it had already run and was
            disabled instead.
        """
        model = self._get_model(schedule_id)
        if model.run_count > 0:
            self.disable(schedule_id, actor_id)
            return False
        self.session.delete(model)
        self.session.flush()
        logger.info("schedule_deleted", extra={"schedule_id": str(schedule_id)})
        return True

    def _get_model(self, schedule_id: UUID) -> RecurringSchedule:
        model = self.session.get(RecurringSchedule, schedule_id)
        if model is None:
            raise ScheduleNotFoundError(str(schedule_id))
        return model
