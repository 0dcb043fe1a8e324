"""
BaseService -- shared constructor and write helpers for kernel services.

Every service receives the caller's Session and works inside the caller's
transaction: it flushes, it never commits or rolls back.  The CLI, the
scheduler tick or the test harness owns the transaction boundary.  Work
that must fail independently of its neighbours (bulk post, one dispatch
step) runs in a SAVEPOINT from ``session.begin_nested()``.
"""

from abc import ABC
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.db.base import Base, TrackedBase

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Base class for services that write ``ModelType`` rows.

    Read-only queries belong in ``ledger_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def _touch(model: TrackedBase, actor_id: UUID) -> None:
        """Record who changed a row; updated_at is set by the database."""
        model.updated_by_id = actor_id

    @classmethod
    def _bump_version(cls, model: TrackedBase, actor_id: UUID) -> None:
        """Advance an optimistic-lock version and record the actor."""
        model.version += 1
        cls._touch(model, actor_id)
