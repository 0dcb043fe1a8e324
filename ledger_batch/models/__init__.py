"""
ledger_batch.models -- ORM models for recurring dispatch.

Architecture: ledger_batch/models. Imports from ledger_kernel.db.base only.
"""

from ledger_batch.models.recurring import RecurringSchedule

__all__ = ["RecurringSchedule"]
