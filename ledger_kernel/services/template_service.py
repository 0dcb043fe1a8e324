"""
TemplateService -- authoring and lifecycle of event templates.

Responsibility:
    Create, replace, patch, activate/deactivate, delete and list templates.
    Every write validates the complete definition first; templates change
    only by whole-definition replacement and each replacement bumps version.

Architecture position:
    Kernel > Services.  Pure validation lives in domain/template.py; this
    service adds the checks that need the database (account existence,
    duplicate orchids).

Invariants enforced:
    - A stored template always passes validate_template_definition().
    - Every line-rule account code resolves to an existing account.
    - orchid is unique and upper-case.
    - System templates cannot be deleted.

Failure modes:
    - TemplateDefinitionError with every problem found.
    - TemplateAlreadyExistsError / TemplateNotFoundError.
"""

from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.dtos import SYSTEM_ACTOR_ID
from ledger_kernel.domain.template import (
    TemplateDefinition,
    TemplatePatch,
    validate_template_definition,
)
from ledger_kernel.exceptions import (
    SystemTemplateError,
    TemplateAlreadyExistsError,
    TemplateDefinitionError,
    TemplateNotFoundError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.template import EventTemplate
from ledger_kernel.selectors.account_selector import AccountSelector
from ledger_kernel.services.base import BaseService

logger = get_logger("services.template")


class TemplateService(BaseService[EventTemplate]):
    """Write side of event templates."""

    def __init__(self, session: Session):
        super().__init__(session)
        self._accounts = AccountSelector(session)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, definition: TemplateDefinition) -> list[str]:
        """All definition problems, including unknown account codes."""
        errors = validate_template_definition(definition)
        codes = [rule.account_code for rule in definition.line_rules if rule.account_code]
        known = self._accounts.ids_by_code(codes)
        for index, rule in enumerate(definition.line_rules):
            if rule.account_code and rule.account_code not in known:
                errors.append(
                    f"line {index + 1}: account '{rule.account_code}' does not exist"
                )
        return errors

    def _require_valid(self, definition: TemplateDefinition) -> None:
        errors = self.validate(definition)
        if errors:
            logger.warning(
                "template_definition_rejected",
                extra={"template_code": definition.orchid, "errors": errors},
            )
            raise TemplateDefinitionError(definition.orchid, errors)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _find(self, orchid: str) -> EventTemplate | None:
        return self.session.execute(
            select(EventTemplate).where(EventTemplate.orchid == orchid.strip().upper())
        ).scalar_one_or_none()

    def _get_model(self, orchid: str) -> EventTemplate:
        template = self._find(orchid)
        if template is None:
            raise TemplateNotFoundError(orchid.strip().upper())
        return template

    def get(self, orchid: str) -> TemplateDefinition:
        return self._get_model(orchid).to_definition()

    def find(self, orchid: str) -> TemplateDefinition | None:
        template = self._find(orchid)
        return template.to_definition() if template else None

    def list_templates(
        self,
        is_active: bool | None = None,
        name: str | None = None,
    ) -> list[TemplateDefinition]:
        query = select(EventTemplate).order_by(EventTemplate.orchid)
        if is_active is not None:
            query = query.where(EventTemplate.is_active == is_active)
        if name:
            query = query.where(EventTemplate.name.ilike(f"%{name}%"))
        return [t.to_definition() for t in self.session.scalars(query)]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_template(
        self,
        definition: TemplateDefinition | dict[str, Any],
        actor_id: UUID,
    ) -> TemplateDefinition:
        if isinstance(definition, dict):
            definition = TemplateDefinition.from_dict(definition)
        definition = definition.with_changes(
            orchid=definition.orchid.strip().upper(), version=1
        )
        if self._find(definition.orchid) is not None:
            raise TemplateAlreadyExistsError(definition.orchid)
        self._require_valid(definition)

        template = EventTemplate(created_by_id=actor_id)
        template.apply_definition(definition)
        self.session.add(template)
        self.session.flush()

        logger.info(
            "template_created",
            extra={"template_code": definition.orchid, "rule_count": len(definition.line_rules)},
        )
        return template.to_definition()

    def replace_template(
        self,
        orchid: str,
        definition: TemplateDefinition | dict[str, Any],
        actor_id: UUID,
    ) -> TemplateDefinition:
        """Swap in a complete new definition; version increments."""
        template = self._get_model(orchid)
        if isinstance(definition, dict):
            definition = TemplateDefinition.from_dict(definition)
        definition = definition.with_changes(
            orchid=template.orchid,
            is_system=template.is_system,
            version=template.version + 1,
        )
        return self._store(template, definition, actor_id)

    def patch_template(
        self,
        orchid: str,
        patch: TemplatePatch,
        actor_id: UUID,
    ) -> TemplateDefinition:
        """Merge a partial change into the current definition and re-validate."""
        template = self._get_model(orchid)
        current = template.to_definition()
        definition = patch.apply(current).with_changes(version=current.version + 1)
        return self._store(template, definition, actor_id)

    def set_active(self, orchid: str, is_active: bool, actor_id: UUID) -> TemplateDefinition:
        template = self._get_model(orchid)
        if template.is_active == is_active:
            return template.to_definition()
        definition = template.to_definition().with_changes(
            is_active=is_active, version=template.version + 1
        )
        return self._store(template, definition, actor_id)

    def activate(self, orchid: str, actor_id: UUID) -> TemplateDefinition:
        return self.set_active(orchid, True, actor_id)

    def deactivate(self, orchid: str, actor_id: UUID) -> TemplateDefinition:
        return self.set_active(orchid, False, actor_id)

    def delete_template(self, orchid: str) -> None:
        template = self._get_model(orchid)
        if template.is_system:
            raise SystemTemplateError(template.orchid)
        self.session.delete(template)
        self.session.flush()
        logger.info("template_deleted", extra={"template_code": template.orchid})

    def load_system_templates(
        self,
        definitions: Iterable[TemplateDefinition] | None = None,
        actor_id: UUID | None = None,
    ) -> list[TemplateDefinition]:
        """
        Install system templates that are not yet present.

        Defaults to ``sets/templates/system.yaml`` from ledger_config.
        Existing orchids are left untouched.
        """
        if definitions is None:
            from ledger_config import load_system_templates

            definitions = load_system_templates()
        actor = actor_id or SYSTEM_ACTOR_ID

        installed: list[TemplateDefinition] = []
        for definition in definitions:
            if self._find(definition.orchid) is not None:
                continue
            installed.append(
                self.create_template(definition.with_changes(is_system=True), actor)
            )
        logger.info(
            "system_templates_loaded",
            extra={"installed": [d.orchid for d in installed]},
        )
        return installed

    def _store(
        self,
        template: EventTemplate,
        definition: TemplateDefinition,
        actor_id: UUID,
    ) -> TemplateDefinition:
        self._require_valid(definition)
        template.apply_definition(definition)
        self._touch(template, actor_id)
        self.session.flush()
        logger.info(
            "template_replaced",
            extra={"template_code": template.orchid, "version": template.version},
        )
        return template.to_definition()

