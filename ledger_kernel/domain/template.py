"""
Event template definitions -- the declarative recipe behind every dispatch.

Responsibility:
    Immutable value objects for an EventTemplate (reference config, input
    schema, line rules, amount formulas), conversion from/to plain mappings,
    and definition-time validation.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Account existence is NOT checked here (that needs the database); the
    TemplateService adds that check on top of validate_template_definition().

Invariants enforced:
    - Every narration placeholder (template-level and line-level) names a
      required input field.  ``%reference%`` is reserved and always allowed.
    - Every amount formula's source_field is a required input field.
    - Operators other than ``direct`` carry a numeric operand.
    - At least one debit rule and one credit rule.
    - plugins include "journal".

Failure modes:
    - ValueError from from_dict() on structurally malformed input
      (unknown operator, unknown direction, missing keys).
    - validate_template_definition() returns a list of human-readable
      problems; callers raise TemplateDefinitionError when it is non-empty.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from ledger_kernel.db.types import MAX_AMOUNT

JOURNAL_PLUGIN = "journal"

# Placeholder substituted with the generated reference, never a payload field
REFERENCE_PLACEHOLDER = "reference"

DEFAULT_REFERENCE_LENGTH = 6
MAX_REFERENCE_LENGTH = 32

_PLACEHOLDER_RE = re.compile(r"%([A-Za-z_][A-Za-z0-9_]*)%")


class SerialMethod(str, Enum):
    INCREMENTOR = "incrementor"
    RANDOM_HEX = "randomHex"


class Direction(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class FormulaOperator(str, Enum):
    """
    Closed set of amount operators.

    The rule engine evaluates these with an explicit switch; there is no
    expression interpreter.
    """

    DIRECT = "direct"
    PERCENT = "%"
    ADD = "+"
    SUBTRACT = "-"
    MULTIPLY = "*"


@dataclass(frozen=True)
class ReferenceConfig:
    prefix: str
    serial_method: SerialMethod = SerialMethod.INCREMENTOR
    length: int = DEFAULT_REFERENCE_LENGTH


@dataclass(frozen=True)
class AmountFormula:
    source_field: str
    operator: FormulaOperator = FormulaOperator.DIRECT
    operand: Decimal | None = None


@dataclass(frozen=True)
class LineRule:
    """
    Recipe for one journal line.

    Accounts are referenced by code; the dispatcher resolves codes to
    account ids at posting time.
    """

    account_code: str
    direction: Direction
    amount_formula: AmountFormula
    narration_template: tuple[str, ...] = ()


@dataclass(frozen=True)
class TemplateDefinition:
    """
    A complete, immutable template definition.

    Contract:
        orchid is stored upper-case.  Definitions are replaced wholesale;
        there is no in-place mutation (use with_changes()).
    """

    orchid: str
    name: str
    reference_config: ReferenceConfig
    line_rules: tuple[LineRule, ...]
    required_fields: tuple[str, ...] = ()
    narration_template: str | None = None
    plugins: tuple[str, ...] = (JOURNAL_PLUGIN,)
    is_active: bool = True
    is_system: bool = False
    version: int = 1

    @property
    def input_schema(self) -> dict[str, list[str]]:
        return {"required": list(self.required_fields)}

    def with_changes(self, **changes: Any) -> TemplateDefinition:
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Plain mapping suitable for JSON storage."""
        return {
            "orchid": self.orchid,
            "name": self.name,
            "reference_config": {
                "prefix": self.reference_config.prefix,
                "serial_method": self.reference_config.serial_method.value,
                "length": self.reference_config.length,
            },
            "narration_template": self.narration_template,
            "input_schema": self.input_schema,
            "line_rules": [
                {
                    "account_code": rule.account_code,
                    "direction": rule.direction.value,
                    "amount_formula": {
                        "source_field": rule.amount_formula.source_field,
                        "operator": rule.amount_formula.operator.value,
                        "operand": (
                            str(rule.amount_formula.operand)
                            if rule.amount_formula.operand is not None
                            else None
                        ),
                    },
                    "narration_template": list(rule.narration_template),
                }
                for rule in self.line_rules
            ],
            "plugins": list(self.plugins),
            "is_active": self.is_active,
            "is_system": self.is_system,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TemplateDefinition:
        """
        Build from a plain mapping.

        Accepts snake_case keys and the camelCase keys used by the product's
        JSON API (``referenceConfig``, ``linesRule``, ``amountConfig``, ...).

        Raises:
            ValueError: On unknown enum values or missing keys.
        """
        try:
            orchid = str(_pick(data, "orchid", "code")).strip().upper()
            ref_data = _pick(data, "reference_config", "referenceConfig")
            reference_config = ReferenceConfig(
                prefix=str(ref_data["prefix"]).strip(),
                serial_method=SerialMethod(
                    _pick(
                        ref_data,
                        "serial_method",
                        "serialMethod",
                        default=SerialMethod.INCREMENTOR.value,
                    )
                ),
                length=int(
                    _pick(ref_data, "length", default=DEFAULT_REFERENCE_LENGTH)
                ),
            )

            schema = _pick(data, "input_schema", "inputSchema", default=None) or {}
            required = tuple(str(f) for f in schema.get("required", ()))

            rules_data = _pick(data, "line_rules", "linesRule", "lineRules")
            line_rules = tuple(_line_rule_from_dict(r) for r in rules_data)

            plugins = tuple(
                _pick(data, "plugins", default=None) or (JOURNAL_PLUGIN,)
            )
        except KeyError as exc:
            raise ValueError(f"Template definition missing key: {exc}") from exc

        return cls(
            orchid=orchid,
            name=str(data.get("name") or orchid),
            reference_config=reference_config,
            line_rules=line_rules,
            required_fields=required,
            narration_template=(
                _pick(data, "narration_template", "narrationConfig", default=None)
                or None
            ),
            plugins=plugins,
            is_active=bool(_pick(data, "is_active", "isActive", default=True)),
            is_system=bool(
                _pick(data, "is_system", "isSystemGenerated", default=False)
            ),
            version=int(data.get("version", 1)),
        )


def _pick(data: dict[str, Any], *keys: str, **kwargs: Any) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    if "default" in kwargs:
        return kwargs["default"]
    raise KeyError(keys[0])


def _line_rule_from_dict(data: dict[str, Any]) -> LineRule:
    formula_data = _pick(data, "amount_formula", "amountConfig")
    operand = formula_data.get("operand")
    narration = _pick(
        data, "narration_template", "narrationConfig", default=None
    ) or ()
    if isinstance(narration, str):
        narration = (narration,)
    return LineRule(
        account_code=str(_pick(data, "account_code", "accountCode", "accountId")),
        direction=Direction(str(data["direction"]).lower()),
        amount_formula=AmountFormula(
            source_field=str(_pick(formula_data, "source_field", "field")),
            operator=FormulaOperator(
                str(formula_data.get("operator", FormulaOperator.DIRECT.value))
            ),
            operand=_operand(operand),
        ),
        narration_template=tuple(str(n) for n in narration),
    )


def _operand(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Operand must be numeric: {value!r}")
    try:
        operand = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Operand must be numeric: {value!r}") from exc
    if not _operand_in_range(operand):
        raise ValueError(f"Operand out of range: {value!r}")
    return operand


def _operand_in_range(operand: Decimal) -> bool:
    return operand.is_finite() and abs(operand) < MAX_AMOUNT


def extract_placeholders(text: str | None) -> list[str]:
    """Return every ``%name%`` placeholder in text, in order of appearance."""
    if not text:
        return []
    return _PLACEHOLDER_RE.findall(text)


def validate_template_definition(definition: TemplateDefinition) -> list[str]:
    """
    Definition-time checks that need no database access.

    Returns:
        A list of problems; empty when the definition is valid.
    """
    errors: list[str] = []
    required = set(definition.required_fields)
    allowed_placeholders = required | {REFERENCE_PLACEHOLDER}

    if not definition.orchid:
        errors.append("orchid is required")
    if not definition.reference_config.prefix:
        errors.append("reference prefix is required")
    length = definition.reference_config.length
    if length < 1 or length > MAX_REFERENCE_LENGTH:
        errors.append(
            f"reference length must be between 1 and {MAX_REFERENCE_LENGTH}, got {length}"
        )
    if JOURNAL_PLUGIN not in definition.plugins:
        errors.append(f"plugins must include '{JOURNAL_PLUGIN}'")

    for placeholder in extract_placeholders(definition.narration_template):
        if placeholder not in allowed_placeholders:
            errors.append(
                f"narration placeholder %{placeholder}% is not a required field"
            )

    if not definition.line_rules:
        errors.append("at least one line rule is required")

    directions = {rule.direction for rule in definition.line_rules}
    if definition.line_rules and Direction.DEBIT not in directions:
        errors.append("at least one debit line rule is required")
    if definition.line_rules and Direction.CREDIT not in directions:
        errors.append("at least one credit line rule is required")

    for index, rule in enumerate(definition.line_rules):
        prefix = f"line {index + 1}"
        if not rule.account_code:
            errors.append(f"{prefix}: account is required")
        formula = rule.amount_formula
        if formula.source_field not in required:
            errors.append(
                f"{prefix}: source field '{formula.source_field}' is not a required field"
            )
        if formula.operator != FormulaOperator.DIRECT and formula.operand is None:
            errors.append(
                f"{prefix}: operator '{formula.operator.value}' requires an operand"
            )
        if formula.operand is not None and not _operand_in_range(formula.operand):
            errors.append(f"{prefix}: operand {formula.operand} is not a finite amount")
        for fragment in rule.narration_template:
            for placeholder in extract_placeholders(fragment):
                if placeholder not in allowed_placeholders:
                    errors.append(
                        f"{prefix}: narration placeholder %{placeholder}% "
                        f"is not a required field"
                    )

    return errors


@dataclass(frozen=True)
class TemplatePatch:
    """
    Partial update for TemplateService.patch_template.

    Unset fields (None) keep the current definition's value; the merged
    result is re-validated as a whole.
    """

    name: str | None = None
    reference_config: ReferenceConfig | None = None
    narration_template: str | None = None
    required_fields: tuple[str, ...] | None = None
    line_rules: tuple[LineRule, ...] | None = None
    plugins: tuple[str, ...] | None = None
    is_active: bool | None = None

    def apply(self, definition: TemplateDefinition) -> TemplateDefinition:
        changes = {
            name: value
            for name, value in (
                ("name", self.name),
                ("reference_config", self.reference_config),
                ("narration_template", self.narration_template),
                ("required_fields", self.required_fields),
                ("line_rules", self.line_rules),
                ("plugins", self.plugins),
                ("is_active", self.is_active),
            )
            if value is not None
        }
        return definition.with_changes(**changes)
