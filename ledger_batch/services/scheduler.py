"""
RecurrenceScheduler -- In-process polling scheduler for recurring dispatch.

Contract:
    ``tick()`` claims every due schedule and dispatches its template.  The
    tick loop runs on a daemon thread between ``start()`` and ``stop()``.

Architecture: ledger_batch/services.  Uses ledger_batch.domain.schedule for
    pure evaluation and the kernel Dispatcher for execution.

Claim protocol:

    SELECT due schedules
    for each:
        UPDATE recurring_schedules
           SET version = version + 1, last_run = now, run_count = run_count + 1,
               next_run = <computed>, enabled = <still runnable>
         WHERE id = :id AND version = :seen_version
        rowcount == 0  -> another worker won, skip
        [SAVEPOINT] dispatch(template, payload)
            kernel error   -> SAVEPOINT rolled back, claim kept
            other error    -> whole transaction rolled back, claim undone
        COMMIT                          (claim and instance together)

Invariants enforced:
    - All timestamps from the injected Clock.
    - A schedule is advanced exactly once per claimed run, and only in the
      transaction that records the run's EventInstance.  A failed instance
      still advances it, so a failing template never spins on one instant.
    - A crash or unexpected error before COMMIT leaves the schedule due, so
      the run is retried on a later tick.
    - Dispatch failures are logged (``schedule_dispatch_failed``) and never
      stop the tick or the loop.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import SYSTEM_ACTOR_ID
from ledger_kernel.exceptions import LedgerKernelError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.services.dispatcher import Dispatcher

from ledger_batch.domain.schedule import (
    MONTH_END_POLICY,
    compute_next_run,
    is_due,
    should_disable,
)
from ledger_batch.domain.types import MonthEndPolicy, RecurringScheduleDTO, TickResult
from ledger_batch.models.recurring import RecurringSchedule

logger = get_logger("batch.scheduler")


class RecurrenceScheduler:
    """
    Polling scheduler for recurring schedules.

    Contract:
        - ``tick()`` fires due schedules and returns a TickResult.
        - ``start()`` / ``stop()`` for background thread operation.
        - Respects the stop signal between schedules.

    Non-goals:
        - NOT a distributed scheduler; several workers may tick the same
          database and the claim keeps them from double-firing.
        - Does NOT handle time zones; schedules are UTC.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        dispatcher_factory: Callable[[Session], Dispatcher] | None = None,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
        tick_interval_seconds: float = 60,
        month_end_policy: MonthEndPolicy = MONTH_END_POLICY,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._dispatcher_factory = dispatcher_factory or (
            lambda session: Dispatcher(session, clock=self._clock)
        )
        self._actor_id = actor_id or SYSTEM_ACTOR_ID
        self._tick_interval = tick_interval_seconds
        self._policy = month_end_policy
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> TickResult:
        """Claim and dispatch every due schedule (public for testing)."""
        now = self._clock.now()
        session = self._session_factory()
        fired: list[UUID] = []
        skipped: list[UUID] = []
        failed: list[UUID] = []
        disabled: list[UUID] = []
        instance_ids: list[UUID] = []
        try:
            for schedule in self.due_schedules(session, now):
                if self._stop_event.is_set():
                    break

                claimed, now_disabled = self.claim(session, schedule, now)
                if not claimed:
                    session.rollback()
                    skipped.append(schedule.id)
                    logger.info(
                        "schedule_claim_lost", extra={"schedule_id": str(schedule.id)}
                    )
                    continue

                try:
                    outcome = self._fire(session, schedule)
                except Exception:
                    # Claim and dispatch roll back together; the run is retried
                    session.rollback()
                    failed.append(schedule.id)
                    logger.exception(
                        "schedule_dispatch_failed",
                        extra={
                            "schedule_id": str(schedule.id),
                            "template_code": schedule.template_orchid,
                        },
                    )
                    continue
                session.commit()

                fired.append(schedule.id)
                if now_disabled:
                    disabled.append(schedule.id)
                if outcome is None:
                    failed.append(schedule.id)
                    continue
                instance_id, processed = outcome
                instance_ids.append(instance_id)
                if not processed:
                    failed.append(schedule.id)

            disabled.extend(self._disable_expired(session, now))
            session.commit()
        except Exception:
            session.rollback()
            logger.exception("scheduler_tick_failed")
            raise
        finally:
            session.close()

        return TickResult(
            fired=tuple(fired),
            skipped=tuple(skipped),
            failed=tuple(failed),
            disabled=tuple(disabled),
            instance_ids=tuple(instance_ids),
        )

    def due_schedules(self, session: Session, now: datetime) -> list[RecurringScheduleDTO]:
        """Enabled schedules whose next_run has arrived, oldest first."""
        rows = session.scalars(
            select(RecurringSchedule)
            .where(
                RecurringSchedule.enabled.is_(True),
                RecurringSchedule.next_run.is_not(None),
                RecurringSchedule.next_run <= now,
                or_(RecurringSchedule.end_at.is_(None), RecurringSchedule.end_at > now),
                or_(
                    RecurringSchedule.max_runs.is_(None),
                    RecurringSchedule.run_count < RecurringSchedule.max_runs,
                ),
            )
            .order_by(RecurringSchedule.next_run, RecurringSchedule.id)
            .execution_options(populate_existing=True)
        ).all()
        return [dto for dto in (row.to_dto() for row in rows) if is_due(dto, now)]

    def claim(
        self,
        session: Session,
        schedule: RecurringScheduleDTO,
        now: datetime,
    ) -> tuple[bool, bool]:
        """
        Advance a schedule iff it is still at the version that was read.

        Returns:
            (claimed, disabled): disabled is True when this run was the
            schedule's last one.
        """
        run_count = schedule.run_count + 1
        next_run = compute_next_run(
            schedule.schedule, now, previous_run=schedule.next_run, policy=self._policy
        )
        exhausted = should_disable(
            run_count, schedule.max_runs, schedule.end_at, next_run, now
        )
        result = session.execute(
            update(RecurringSchedule)
            .where(
                RecurringSchedule.id == schedule.id,
                RecurringSchedule.version == schedule.version,
            )
            .values(
                version=RecurringSchedule.version + 1,
                last_run=now,
                run_count=RecurringSchedule.run_count + 1,
                next_run=next_run,
                enabled=not exhausted,
                updated_by_id=self._actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1, exhausted

    def start(self) -> None:
        """Start the tick loop in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="recurrence-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the loop to finish its current schedule."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)

    def _fire(
        self,
        session: Session,
        schedule: RecurringScheduleDTO,
    ) -> tuple[UUID, bool] | None:
        """
        Dispatch one claimed schedule inside a SAVEPOINT of the claim's
        transaction; returns (instance_id, processed).

        A kernel error rolls back the SAVEPOINT only and returns None.  Any
        other exception propagates with the transaction still open.
        """
        with LogContext.bind(schedule_id=schedule.id):
            dispatcher = self._dispatcher_factory(session)
            savepoint = session.begin_nested()
            try:
                instance = dispatcher.dispatch(
                    schedule.template_orchid,
                    schedule.payload,
                    self._actor_id,
                    schedule_id=schedule.id,
                )
                savepoint.commit()
            except LedgerKernelError as exc:
                savepoint.rollback()
                logger.warning(
                    "schedule_dispatch_failed",
                    extra={
                        "template_code": schedule.template_orchid,
                        "error_code": exc.code,
                        "error_message": str(exc),
                    },
                )
                return None
            finally:
                dispatcher.close()

            if not instance.is_processed:
                logger.warning(
                    "schedule_dispatch_failed",
                    extra={
                        "template_code": schedule.template_orchid,
                        "instance_id": str(instance.id),
                        "error_code": instance.error_code,
                        "error_message": instance.error_message,
                    },
                )
            logger.info(
                "schedule_fired",
                extra={
                    "template_code": schedule.template_orchid,
                    "instance_id": str(instance.id),
                    "status": instance.status.value,
                },
            )
            return instance.id, instance.is_processed

    def _disable_expired(self, session: Session, now: datetime) -> list[UUID]:
        """
        Switch off enabled schedules that can never fire again.

        Each row is disabled under the same version check as a claim, so a
        schedule another worker advanced since the read is left alone.
        """
        expired: list[UUID] = []
        candidates = session.scalars(
            select(RecurringSchedule)
            .where(RecurringSchedule.enabled.is_(True))
            .execution_options(populate_existing=True)
        ).all()
        for schedule in (row.to_dto() for row in candidates):
            if not should_disable(
                schedule.run_count, schedule.max_runs, schedule.end_at, schedule.next_run, now
            ):
                continue
            result = session.execute(
                update(RecurringSchedule)
                .where(
                    RecurringSchedule.id == schedule.id,
                    RecurringSchedule.version == schedule.version,
                    RecurringSchedule.enabled.is_(True),
                )
                .values(
                    version=RecurringSchedule.version + 1,
                    enabled=False,
                    updated_by_id=self._actor_id,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                expired.append(schedule.id)
        if expired:
            logger.info(
                "schedules_disabled", extra={"schedule_ids": [str(i) for i in expired]}
            )
        return expired
