"""
Tests for the template rule engine.

The rule engine is pure: these tests build TemplateDefinitions in memory and
never touch the database.
"""

from decimal import Decimal

import pytest

from ledger_kernel.domain.rule_engine import (
    evaluate,
    evaluate_formula,
    format_reference,
    render_narration,
)
from ledger_kernel.domain.template import (
    AmountFormula,
    Direction,
    FormulaOperator,
    LineRule,
    ReferenceConfig,
    SerialMethod,
    TemplateDefinition,
)
from ledger_kernel.exceptions import (
    FormulaError,
    NarrationPlaceholderError,
    TemplateImbalanceError,
)


def _rule(code, direction, field="amount", operator=FormulaOperator.DIRECT, operand=None, narration=()):
    return LineRule(
        account_code=code,
        direction=direction,
        amount_formula=AmountFormula(field, operator, operand),
        narration_template=narration,
    )


def _template(rules, required=("customer", "amount"), narration=None, **ref):
    return TemplateDefinition(
        orchid="INVOICE",
        name="Invoice",
        reference_config=ReferenceConfig(prefix="INV", **ref),
        line_rules=tuple(rules),
        required_fields=tuple(required),
        narration_template=narration,
    )


# =============================================================================
# References
# =============================================================================


class TestFormatReference:
    def test_incrementor_zero_pads_to_length(self):
        config = ReferenceConfig(prefix="INV", length=6)
        assert format_reference(config, 42) == "INV-000042"

    def test_incrementor_wider_than_length_is_not_truncated(self):
        config = ReferenceConfig(prefix="INV", length=3)
        assert format_reference(config, 12345) == "INV-12345"

    def test_custom_separator(self):
        config = ReferenceConfig(prefix="INV", length=4)
        assert format_reference(config, 7, separator="/") == "INV/0007"

    def test_incrementor_rejects_non_positive(self):
        config = ReferenceConfig(prefix="INV")
        with pytest.raises(ValueError):
            format_reference(config, 0)

    def test_random_hex_accepts_exact_length(self):
        config = ReferenceConfig(prefix="EXP", serial_method=SerialMethod.RANDOM_HEX, length=8)
        assert format_reference(config, "00ff10ab") == "EXP-00ff10ab"

    def test_random_hex_is_lowercased(self):
        config = ReferenceConfig(prefix="EXP", serial_method=SerialMethod.RANDOM_HEX, length=4)
        assert format_reference(config, "ABCD") == "EXP-abcd"

    def test_random_hex_rejects_wrong_length(self):
        config = ReferenceConfig(prefix="EXP", serial_method=SerialMethod.RANDOM_HEX, length=8)
        with pytest.raises(ValueError):
            format_reference(config, "abc")

    def test_random_hex_rejects_non_hex(self):
        config = ReferenceConfig(prefix="EXP", serial_method=SerialMethod.RANDOM_HEX, length=4)
        with pytest.raises(ValueError):
            format_reference(config, "zzzz")


# =============================================================================
# Narration
# =============================================================================


class TestRenderNarration:
    def test_substitutes_payload_fields(self):
        assert render_narration("Paid %vendor%", {"vendor": "Acme"}) == "Paid Acme"

    def test_reference_placeholder_uses_reference(self):
        text = render_narration("Invoice %reference%", {}, reference="INV-000001")
        assert text == "Invoice INV-000001"

    def test_numbers_and_booleans_are_stringified(self):
        text = render_narration("%qty% units, taxable=%taxable%", {"qty": 3, "taxable": True})
        assert text == "3 units, taxable=true"

    def test_missing_value_fails_loudly(self):
        with pytest.raises(NarrationPlaceholderError) as exc_info:
            render_narration("Paid %vendor%", {})
        assert exc_info.value.placeholder == "vendor"

    def test_text_without_placeholders_is_unchanged(self):
        assert render_narration("Monthly rent", {"x": 1}) == "Monthly rent"


# =============================================================================
# Amount formulas
# =============================================================================


class TestEvaluateFormula:
    @pytest.mark.parametrize(
        "operator, operand, expected",
        [
            (FormulaOperator.DIRECT, None, Decimal("200.00")),
            (FormulaOperator.PERCENT, Decimal("10"), Decimal("20.00")),
            (FormulaOperator.ADD, Decimal("5"), Decimal("205.00")),
            (FormulaOperator.SUBTRACT, Decimal("50"), Decimal("150.00")),
            (FormulaOperator.MULTIPLY, Decimal("1.5"), Decimal("300.00")),
        ],
    )
    def test_operators(self, operator, operand, expected):
        formula = AmountFormula("amount", operator, operand)
        assert evaluate_formula(formula, {"amount": "200"}) == expected

    def test_result_is_rounded_half_up(self):
        formula = AmountFormula("amount", FormulaOperator.PERCENT, Decimal("7.5"))
        # 10.10 * 7.5% = 0.7575
        assert evaluate_formula(formula, {"amount": "10.10"}) == Decimal("0.76")

    def test_float_payload_uses_shortest_repr(self):
        formula = AmountFormula("amount")
        assert evaluate_formula(formula, {"amount": 100.1}) == Decimal("100.10")

    def test_non_numeric_value(self):
        with pytest.raises(FormulaError):
            evaluate_formula(AmountFormula("amount"), {"amount": "lots"})

    def test_boolean_value_is_not_numeric(self):
        with pytest.raises(FormulaError):
            evaluate_formula(AmountFormula("amount"), {"amount": True})

    def test_zero_result_is_rejected(self):
        formula = AmountFormula("amount", FormulaOperator.SUBTRACT, Decimal("100"))
        with pytest.raises(FormulaError):
            evaluate_formula(formula, {"amount": "100"})

    def test_negative_value_is_rejected(self):
        with pytest.raises(FormulaError):
            evaluate_formula(AmountFormula("amount"), {"amount": "-5"})

    def test_missing_operand(self):
        formula = AmountFormula("amount", FormulaOperator.MULTIPLY, None)
        with pytest.raises(FormulaError):
            evaluate_formula(formula, {"amount": "5"})

    @pytest.mark.parametrize("operand", ["Infinity", "NaN"])
    def test_non_finite_operand(self, operand):
        formula = AmountFormula("amount", FormulaOperator.MULTIPLY, Decimal(operand))
        with pytest.raises(FormulaError, match="out of range"):
            evaluate_formula(formula, {"amount": "0"})

    def test_overflowing_result(self):
        formula = AmountFormula("amount", FormulaOperator.MULTIPLY, Decimal("1e17"))
        with pytest.raises(FormulaError, match="out of range"):
            evaluate_formula(formula, {"amount": "500"})


# =============================================================================
# Whole-template evaluation
# =============================================================================


class TestEvaluate:
    def test_simple_invoice(self):
        template = _template(
            [_rule("1100", Direction.DEBIT), _rule("4100", Direction.CREDIT)],
            narration="Invoice %reference% for %customer%",
        )
        result = evaluate(template, {"customer": "Acme", "amount": "120"}, 1)

        assert result.reference == "INV-000001"
        assert result.narration == "Invoice INV-000001 for Acme"
        assert [line.account_code for line in result.lines] == ["1100", "4100"]
        assert result.lines[0].debit == Decimal("120.00")
        assert result.lines[0].credit == Decimal("0")
        assert result.lines[1].credit == Decimal("120.00")
        assert result.total_debits == result.total_credits

    def test_split_with_tax(self):
        template = _template(
            [
                _rule("1100", Direction.DEBIT, operator=FormulaOperator.PERCENT, operand=Decimal("110")),
                _rule("4100", Direction.CREDIT),
                _rule("2200", Direction.CREDIT, operator=FormulaOperator.PERCENT, operand=Decimal("10")),
            ]
        )
        result = evaluate(template, {"customer": "Acme", "amount": "200"}, 3)

        assert result.total_debits == Decimal("220.00")
        assert result.total_credits == Decimal("220.00")

    def test_imbalance_is_an_error(self):
        template = _template(
            [
                _rule("1100", Direction.DEBIT),
                _rule("4100", Direction.CREDIT, operator=FormulaOperator.PERCENT, operand=Decimal("90")),
            ]
        )
        with pytest.raises(TemplateImbalanceError) as exc_info:
            evaluate(template, {"customer": "Acme", "amount": "100"}, 1)
        assert exc_info.value.template_code == "INVOICE"

    def test_rounding_never_hides_an_imbalance(self):
        # 33.335 and 66.665 both round up, giving 100.01 against 100.00
        template = _template(
            [
                _rule("6300", Direction.DEBIT, operator=FormulaOperator.PERCENT, operand=Decimal("33.335")),
                _rule("6300", Direction.DEBIT, operator=FormulaOperator.PERCENT, operand=Decimal("66.665")),
                _rule("2100", Direction.CREDIT),
            ]
        )
        with pytest.raises(TemplateImbalanceError):
            evaluate(template, {"customer": "x", "amount": "100"}, 1)

    def test_line_narration_fragments_are_joined(self):
        template = _template(
            [
                _rule("1100", Direction.DEBIT, narration=("Due from", "%customer%")),
                _rule("4100", Direction.CREDIT, narration=("%reference%",)),
            ]
        )
        result = evaluate(template, {"customer": "Acme", "amount": "1"}, 9)
        assert result.lines[0].narration == "Due from Acme"
        assert result.lines[1].narration == "INV-000009"

    def test_no_narration_template(self):
        template = _template([_rule("1100", Direction.DEBIT), _rule("4100", Direction.CREDIT)])
        result = evaluate(template, {"customer": "Acme", "amount": "1"}, 1)
        assert result.narration is None
        assert result.lines[0].narration is None

    def test_evaluation_is_deterministic(self):
        template = _template([_rule("1100", Direction.DEBIT), _rule("4100", Direction.CREDIT)])
        payload = {"customer": "Acme", "amount": "10.005"}
        assert evaluate(template, payload, 5) == evaluate(template, payload, 5)
