"""ledger_batch.services -- recurring schedule CRUD and the polling scheduler."""

from ledger_batch.services.recurrence_service import RecurrenceService
from ledger_batch.services.scheduler import RecurrenceScheduler

__all__ = ["RecurrenceScheduler", "RecurrenceService"]
