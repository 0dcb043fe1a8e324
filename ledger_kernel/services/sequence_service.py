"""
SequenceService -- serial numbers for ``incrementor`` references.

Each template has its own counter row (``reference:<ORCHID>``).  The row is
read ``FOR UPDATE`` and bumped in the caller's transaction, so two
dispatches of the same template serialize on it and the value becomes
visible only when the caller commits.  A rolled-back dispatch therefore
returns its number; serials are never derived from existing references.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.serial_counter import SerialCounter
from ledger_kernel.services.base import BaseService

logger = get_logger("services.sequence")


def reference_counter_name(orchid: str) -> str:
    return f"reference:{orchid.upper()}"


class SequenceService(BaseService[SerialCounter]):
    def _find(self, name: str, *, lock: bool) -> SerialCounter | None:
        query = select(SerialCounter).where(SerialCounter.name == name)
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        return self.session.scalars(query).one_or_none()

    def _create(self, name: str, value: int) -> SerialCounter:
        """
        Insert a counter row, or lock the one a concurrent worker just
        inserted under the same name.
        """
        try:
            with self.session.begin_nested():
                counter = SerialCounter(name=name, current_value=value)
                self.session.add(counter)
            return counter
        except IntegrityError:
            logger.debug("serial_counter_race_retry", extra={"counter_name": name})
            counter = self._find(name, lock=True)
            if counter is None:
                raise
            return counter

    def next_value(self, name: str) -> int:
        """Allocate the next value for ``name``; the first value is 1."""
        counter = self._find(name, lock=True)
        if counter is None:
            counter = self._create(name, 0)
        counter.current_value += 1
        self.session.flush()
        logger.debug(
            "serial_allocated", extra={"counter_name": name, "value": counter.current_value}
        )
        return counter.current_value

    def next_reference_serial(self, orchid: str) -> int:
        return self.next_value(reference_counter_name(orchid))

    def current_value(self, name: str) -> int | None:
        counter = self._find(name, lock=False)
        return None if counter is None else counter.current_value

    def reset(self, name: str, value: int = 0) -> None:
        """Set a counter outright. Tests and data repair only."""
        counter = self._find(name, lock=True) or self._create(name, value)
        counter.current_value = value
        self.session.flush()
