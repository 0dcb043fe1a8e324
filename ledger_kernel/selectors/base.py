"""
Shared base for the read side: AccountSelector, JournalSelector and
EventSelector.

Selectors query through the caller's Session and hand back frozen DTOs or
computed values.  They never add, delete, flush or commit.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from ledger_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500


class BaseSelector(ABC, Generic[ModelType]):
    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def _page_bounds(page: int, limit: int) -> tuple[int, int]:
        """(offset, limit) for a 1-based ``page``; limit is clamped to 1..MAX_PAGE_SIZE."""
        size = min(max(limit, 1), MAX_PAGE_SIZE)
        return (max(page, 1) - 1) * size, size
