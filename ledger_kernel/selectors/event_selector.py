"""
Module: ledger_kernel.selectors.event_selector
Responsibility: Read-only access to event instances (dispatch outcomes).
Architecture position: Kernel > Selectors.
"""

from uuid import UUID

from sqlalchemy import func, select

from ledger_kernel.domain.dtos import EventInstanceInfo, InstanceStatus
from ledger_kernel.exceptions import EventInstanceNotFoundError
from ledger_kernel.models.event_instance import EventInstance
from ledger_kernel.selectors.base import DEFAULT_PAGE_SIZE, BaseSelector


class EventSelector(BaseSelector[EventInstance]):
    """Read side of dispatch history, newest first."""

    def get(self, instance_id: UUID) -> EventInstanceInfo:
        instance = self.session.get(EventInstance, instance_id)
        if instance is None:
            raise EventInstanceNotFoundError(str(instance_id))
        return EventInstanceInfo.from_model(instance)

    def find_by_reference(self, reference: str) -> EventInstanceInfo | None:
        instance = self.session.execute(
            select(EventInstance).where(EventInstance.reference == reference)
        ).scalar_one_or_none()
        return EventInstanceInfo.from_model(instance) if instance else None

    def list_instances(
        self,
        status: InstanceStatus | None = None,
        template_orchid: str | None = None,
        schedule_id: UUID | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> list[EventInstanceInfo]:
        query = select(EventInstance)
        if status is not None:
            query = query.where(EventInstance.status == InstanceStatus(status).value)
        if template_orchid:
            query = query.where(
                EventInstance.template_orchid == template_orchid.strip().upper()
            )
        if schedule_id is not None:
            query = query.where(EventInstance.schedule_id == schedule_id)

        offset, limit = self._page_bounds(page, limit)
        query = (
            query.order_by(EventInstance.created_at.desc(), EventInstance.id)
            .offset(offset)
            .limit(limit)
        )
        return [EventInstanceInfo.from_model(i) for i in self.session.scalars(query)]

    def count_by_status(self) -> dict[str, int]:
        rows = self.session.execute(
            select(EventInstance.status, func.count(EventInstance.id)).group_by(
                EventInstance.status
            )
        ).all()
        return {status: count for status, count in rows}
