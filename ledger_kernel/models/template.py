"""
Module: ledger_kernel.models.template
Responsibility: event_templates.
Architecture position: Kernel > Models.

The whole TemplateDefinition (reference config, input schema, line rules,
plugins) lives in one JSON column and is replaced wholesale on every
change.  orchid, name, is_active, is_system and version are copied into
columns so they can be filtered on; where the two disagree the columns win.
"""

from typing import Any

from sqlalchemy import JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase
from ledger_kernel.db.types import Label, ShortCode
from ledger_kernel.domain.template import TemplateDefinition

_COLUMN_FIELDS = ("orchid", "name", "is_active", "is_system", "version")


class EventTemplate(TrackedBase):
    __tablename__ = "event_templates"
    __table_args__ = (UniqueConstraint("orchid", name="uq_event_template_orchid"),)

    # Stored upper-case
    orchid: Mapped[ShortCode]
    name: Mapped[Label]
    definition: Mapped[dict[str, Any]] = mapped_column(JSON)
    is_active: Mapped[bool] = mapped_column(default=True)
    is_system: Mapped[bool] = mapped_column(default=False)
    version: Mapped[int] = mapped_column(default=1)

    def __repr__(self) -> str:
        return f"<EventTemplate {self.orchid} v{self.version}>"

    def to_definition(self) -> TemplateDefinition:
        stored = TemplateDefinition.from_dict(self.definition)
        return stored.with_changes(**{f: getattr(self, f) for f in _COLUMN_FIELDS})

    def apply_definition(self, definition: TemplateDefinition) -> None:
        """Overwrite the row from an already validated definition."""
        for field in _COLUMN_FIELDS:
            setattr(self, field, getattr(definition, field))
        self.definition = definition.to_dict()
