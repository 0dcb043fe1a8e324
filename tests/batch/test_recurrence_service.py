"""
Tests for RecurrenceService (schedule CRUD).
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from ledger_batch.domain.types import ScheduleSpec, ScheduleType
from ledger_batch.models.recurring import RecurringSchedule
from ledger_batch.services.recurrence_service import RecurrenceService
from ledger_kernel.exceptions import (
    InvalidScheduleError,
    ScheduleNotFoundError,
    TemplateNotFoundError,
)

START = datetime(2024, 1, 17, 10, 0, tzinfo=timezone.utc)  # a Wednesday
PAYLOAD = {"customer": "Acme", "amount": "25.00"}


@pytest.fixture
def recurrence_service(session, deterministic_clock):
    return RecurrenceService(session, clock=deterministic_clock)


class TestCreate:
    def test_first_run_from_start(self, recurrence_service, make_template, test_actor_id):
        make_template()
        dto = recurrence_service.create(
            "invoice",
            {"type": "weekly", "dayOfWeek": 1, "time": "02:30"},
            PAYLOAD,
            START,
            test_actor_id,
        )

        assert dto.template_orchid == "INVOICE"
        assert dto.schedule == ScheduleSpec(ScheduleType.WEEKLY, "02:30", day_of_week=1)
        assert dto.next_run == datetime(2024, 1, 22, 2, 30, tzinfo=timezone.utc)
        assert dto.enabled and dto.run_count == 0 and dto.version == 1
        assert not dto.has_run

    def test_unknown_template(self, recurrence_service, test_actor_id):
        with pytest.raises(TemplateNotFoundError):
            recurrence_service.create(
                "NOPE", {"type": "daily"}, PAYLOAD, START, test_actor_id
            )

    def test_invalid_schedule(self, recurrence_service, make_template, test_actor_id):
        make_template()
        with pytest.raises(InvalidScheduleError):
            recurrence_service.create(
                "INVOICE", {"type": "monthly"}, PAYLOAD, START, test_actor_id
            )

    def test_end_before_start(self, recurrence_service, make_template, test_actor_id):
        make_template()
        with pytest.raises(InvalidScheduleError):
            recurrence_service.create(
                "INVOICE", {"type": "daily"}, PAYLOAD, START, test_actor_id, end_at=START
            )

    def test_max_runs_below_one(self, recurrence_service, make_template, test_actor_id):
        make_template()
        with pytest.raises(InvalidScheduleError):
            recurrence_service.create(
                "INVOICE", {"type": "daily"}, PAYLOAD, START, test_actor_id, max_runs=0
            )


class TestReadAndRemove:
    @pytest.fixture
    def schedule(self, recurrence_service, make_template, test_actor_id):
        make_template()
        return recurrence_service.create(
            "INVOICE", {"type": "daily", "time": "09:00"}, PAYLOAD, START, test_actor_id
        )

    def test_get(self, recurrence_service, schedule):
        assert recurrence_service.get(schedule.id) == schedule

    def test_get_missing(self, recurrence_service):
        with pytest.raises(ScheduleNotFoundError):
            recurrence_service.get(uuid4())

    def test_list_filters(self, recurrence_service, schedule, test_actor_id):
        recurrence_service.disable(schedule.id, test_actor_id)
        assert recurrence_service.list_schedules(enabled=True) == []
        assert [s.id for s in recurrence_service.list_schedules(template_orchid="invoice")] == [
            schedule.id
        ]

    def test_disable_bumps_version(self, recurrence_service, schedule, test_actor_id):
        disabled = recurrence_service.disable(schedule.id, test_actor_id)
        assert not disabled.enabled
        assert disabled.version == schedule.version + 1

    def test_delete_never_run(self, recurrence_service, schedule, test_actor_id):
        assert recurrence_service.delete(schedule.id, test_actor_id) is True
        with pytest.raises(ScheduleNotFoundError):
            recurrence_service.get(schedule.id)

    def test_delete_after_run_disables(self, recurrence_service, schedule, session, test_actor_id):
        session.get(RecurringSchedule, schedule.id).run_count = 1
        session.flush()

        assert recurrence_service.delete(schedule.id, test_actor_id) is False
        assert not recurrence_service.get(schedule.id).enabled
