"""
Template Rule Engine -- pure evaluation of a template against a payload.

Responsibility:
    Given a TemplateDefinition, a payload and an already-allocated serial,
    produce the reference, the entry narration and the balanced journal
    lines.  No I/O: serial allocation, account resolution and persistence
    belong to the Dispatcher.

Architecture position:
    Kernel > Domain -- pure functional core.

Invariants enforced:
    - Amounts are computed by a switch over the closed FormulaOperator enum.
    - Every computed amount is strictly positive and quantized to the minor
      unit.
    - Sum of debits == sum of credits, exactly; an imbalance is a template
      defect and is never rounded away.
    - A narration placeholder with no payload value fails loudly.

Failure modes:
    - FormulaError: non-numeric source value or operand, non-positive result.
    - NarrationPlaceholderError: placeholder has no payload value.
    - TemplateImbalanceError: debits != credits after evaluating all rules.
    - ValueError: serial does not fit the reference config.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

from ledger_kernel.db.types import MAX_AMOUNT, ZERO, round_money, to_decimal
from ledger_kernel.domain.template import (
    REFERENCE_PLACEHOLDER,
    AmountFormula,
    Direction,
    FormulaOperator,
    ReferenceConfig,
    SerialMethod,
    TemplateDefinition,
)
from ledger_kernel.exceptions import (
    FormulaError,
    NarrationPlaceholderError,
    TemplateImbalanceError,
)

REFERENCE_SEPARATOR = "-"

_HEX_RE = re.compile(r"^[0-9a-f]+$")
_PLACEHOLDER_RE = re.compile(r"%([A-Za-z_][A-Za-z0-9_]*)%")


@dataclass(frozen=True)
class EvaluatedLine:
    account_code: str
    debit: Decimal
    credit: Decimal
    narration: str | None = None


@dataclass(frozen=True)
class RuleEvaluation:
    reference: str
    narration: str | None
    lines: tuple[EvaluatedLine, ...]

    @property
    def total_debits(self) -> Decimal:
        return sum((line.debit for line in self.lines), ZERO)

    @property
    def total_credits(self) -> Decimal:
        return sum((line.credit for line in self.lines), ZERO)


def format_reference(
    config: ReferenceConfig,
    serial: int | str,
    separator: str = REFERENCE_SEPARATOR,
) -> str:
    """
    Build ``prefix + separator + serial``.

    incrementor: serial is the counter value, zero-padded to ``length``
    digits (wider values are kept whole, never truncated).
    randomHex: serial is a lowercase hex string of exactly ``length`` chars.
    """
    if config.serial_method == SerialMethod.INCREMENTOR:
        if isinstance(serial, bool) or not isinstance(serial, int) or serial < 1:
            raise ValueError(f"Incrementor serial must be a positive int, got {serial!r}")
        suffix = str(serial).zfill(config.length)
    else:
        suffix = str(serial).lower()
        if len(suffix) != config.length or not _HEX_RE.match(suffix):
            raise ValueError(
                f"randomHex serial must be {config.length} hex characters, got {serial!r}"
            )
    return f"{config.prefix}{separator}{suffix}"


def render_narration(
    text: str,
    payload: Mapping[str, Any],
    reference: str | None = None,
) -> str:
    """Replace every ``%field%`` token with the stringified payload value."""

    def _substitute(match: re.Match) -> str:
        name = match.group(1)
        if name == REFERENCE_PLACEHOLDER and reference is not None:
            return reference
        value = payload.get(name)
        if value is None:
            raise NarrationPlaceholderError(placeholder=name)
        return _stringify(value)

    return _PLACEHOLDER_RE.sub(_substitute, text)


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return repr(value)
    return str(value)


def evaluate_formula(formula: AmountFormula, payload: Mapping[str, Any]) -> Decimal:
    """
    Compute one line amount.

    Raises:
        FormulaError: If the source value or operand is not numeric, or the
            result is zero or negative.
    """
    operator = formula.operator
    raw = payload.get(formula.source_field)
    try:
        value = to_decimal(raw)
    except ValueError as exc:
        raise FormulaError(
            source_field=formula.source_field,
            operator=operator.value,
            reason=f"value {raw!r} is not numeric",
        ) from exc

    if operator != FormulaOperator.DIRECT:
        if formula.operand is None:
            raise FormulaError(
                source_field=formula.source_field,
                operator=operator.value,
                reason="operand is required",
            )
        operand = formula.operand
        if not operand.is_finite() or abs(operand) >= MAX_AMOUNT:
            raise FormulaError(
                source_field=formula.source_field,
                operator=operator.value,
                reason=f"operand {operand} is out of range",
            )

    if operator == FormulaOperator.DIRECT:
        amount = value
    elif operator == FormulaOperator.PERCENT:
        amount = value * operand / Decimal("100")
    elif operator == FormulaOperator.ADD:
        amount = value + operand
    elif operator == FormulaOperator.SUBTRACT:
        amount = value - operand
    elif operator == FormulaOperator.MULTIPLY:
        amount = value * operand
    else:
        raise FormulaError(
            source_field=formula.source_field,
            operator=str(operator),
            reason="unsupported operator",
        )

    try:
        amount = round_money(amount)
    except ValueError as exc:
        raise FormulaError(
            source_field=formula.source_field,
            operator=operator.value,
            reason=str(exc),
        ) from exc
    if amount <= ZERO:
        raise FormulaError(
            source_field=formula.source_field,
            operator=operator.value,
            reason=f"computed amount {amount} must be positive",
        )
    return amount


def evaluate(
    template: TemplateDefinition,
    payload: Mapping[str, Any],
    serial: int | str,
    separator: str = REFERENCE_SEPARATOR,
) -> RuleEvaluation:
    """
    Evaluate a template against a payload.

    Preconditions:
        Required-field validation has already happened (Dispatcher step 2).

    Returns:
        RuleEvaluation with balanced lines in line-rule order.
    """
    reference = format_reference(template.reference_config, serial, separator)

    narration = None
    if template.narration_template:
        narration = render_narration(template.narration_template, payload, reference)

    lines: list[EvaluatedLine] = []
    for rule in template.line_rules:
        amount = evaluate_formula(rule.amount_formula, payload)
        line_narration = None
        if rule.narration_template:
            line_narration = " ".join(
                render_narration(fragment, payload, reference)
                for fragment in rule.narration_template
            )
        if rule.direction == Direction.DEBIT:
            lines.append(EvaluatedLine(rule.account_code, amount, ZERO, line_narration))
        else:
            lines.append(EvaluatedLine(rule.account_code, ZERO, amount, line_narration))

    evaluation = RuleEvaluation(reference=reference, narration=narration, lines=tuple(lines))
    if evaluation.total_debits != evaluation.total_credits:
        raise TemplateImbalanceError(
            template_code=template.orchid,
            debits=str(evaluation.total_debits),
            credits=str(evaluation.total_credits),
        )
    return evaluation
