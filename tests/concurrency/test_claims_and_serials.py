"""
Multi-session safety on a shared SQLite file.

Each test interleaves independent sessions (one connection each) the way
concurrent workers would, committing between steps since SQLite admits a
single writer at a time.
"""

from datetime import datetime, timezone

import pytest

from ledger_batch.services.recurrence_service import RecurrenceService
from ledger_batch.services.scheduler import RecurrenceScheduler
from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.domain.dtos import AccountSpec, AccountType
from ledger_kernel.selectors.event_selector import EventSelector
from ledger_kernel.services.chart_service import ChartOfAccountsService
from ledger_kernel.services.dispatcher import Dispatcher
from ledger_kernel.services.sequence_service import SequenceService
from ledger_kernel.services.template_service import TemplateService

NOW = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)
PAYLOAD = {"customer": "Acme", "amount": "12.50"}


@pytest.fixture
def seeded(file_session_factory, test_actor_id, template_data):
    with file_session_factory() as session:
        chart = ChartOfAccountsService(session)
        chart.create_account(AccountSpec("1100", "Receivables", AccountType.ASSET), test_actor_id)
        chart.create_account(AccountSpec("4100", "Sales", AccountType.INCOME), test_actor_id)
        TemplateService(session).create_template(template_data(), test_actor_id)
        session.commit()
    return file_session_factory


# =============================================================================
# Serial counters
# =============================================================================


class TestSerialsAcrossSessions:
    def test_sessions_continue_each_others_counter(self, file_session_factory):
        values = []
        for _ in range(3):
            with file_session_factory() as session:
                values.append(SequenceService(session).next_value("journal"))
                session.commit()
        assert values == [1, 2, 3]

    def test_rolled_back_allocation_is_not_kept(self, file_session_factory):
        with file_session_factory() as session:
            assert SequenceService(session).next_value("journal") == 1
            session.rollback()

        with file_session_factory() as session:
            assert SequenceService(session).next_value("journal") == 1

    def test_dispatches_from_separate_sessions(self, seeded, test_actor_id):
        references = []
        for _ in range(3):
            with seeded() as session:
                dispatcher = Dispatcher(session, clock=DeterministicClock(NOW))
                try:
                    references.append(
                        dispatcher.dispatch("INVOICE", PAYLOAD, test_actor_id).reference
                    )
                    session.commit()
                finally:
                    dispatcher.close()

        assert references == ["INV-000001", "INV-000002", "INV-000003"]


# =============================================================================
# Schedule claims
# =============================================================================


class TestCompetingSchedulers:
    @pytest.fixture
    def schedule(self, seeded, test_actor_id):
        with seeded() as session:
            dto = RecurrenceService(session).create(
                "INVOICE",
                {"type": "daily", "time": "09:00"},
                PAYLOAD,
                datetime(2024, 1, 15, tzinfo=timezone.utc),
                test_actor_id,
            )
            session.commit()
        return dto

    def test_worker_with_stale_read_skips(self, seeded, schedule):
        worker_a = RecurrenceScheduler(seeded, clock=DeterministicClock(NOW))
        worker_b = RecurrenceScheduler(seeded, clock=DeterministicClock(NOW))

        with seeded() as session:
            stale = worker_b.due_schedules(session, NOW)
        assert [s.id for s in stale] == [schedule.id]

        assert worker_a.tick().fired == (schedule.id,)

        with seeded() as session:
            claimed, _ = worker_b.claim(session, stale[0], NOW)
            session.rollback()
        assert not claimed

    def test_each_slot_fires_once(self, seeded, schedule):
        workers = [RecurrenceScheduler(seeded, clock=DeterministicClock(NOW)) for _ in range(3)]
        fired = [worker.tick().fired for worker in workers]

        assert fired == [(schedule.id,), (), ()]
        with seeded() as session:
            instances = EventSelector(session).list_instances(schedule_id=schedule.id)
        assert len(instances) == 1
