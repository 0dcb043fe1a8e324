"""
Tests for TemplateDefinition parsing and definition-time validation.
"""

from decimal import Decimal

import pytest

from ledger_kernel.domain.template import (
    MAX_REFERENCE_LENGTH,
    AmountFormula,
    Direction,
    FormulaOperator,
    LineRule,
    ReferenceConfig,
    SerialMethod,
    TemplateDefinition,
    TemplatePatch,
    extract_placeholders,
    validate_template_definition,
)


def _valid(**changes) -> TemplateDefinition:
    definition = TemplateDefinition(
        orchid="EXPENSE",
        name="Expense",
        reference_config=ReferenceConfig(prefix="EXP"),
        line_rules=(
            LineRule("6300", Direction.DEBIT, AmountFormula("amount")),
            LineRule("2100", Direction.CREDIT, AmountFormula("amount")),
        ),
        required_fields=("vendor", "amount"),
        narration_template="Bill %reference% from %vendor%",
    )
    return definition.with_changes(**changes)


# =============================================================================
# Parsing
# =============================================================================


class TestFromDict:
    def test_camel_case_payload(self, template_data):
        definition = TemplateDefinition.from_dict(template_data("invoice"))

        assert definition.orchid == "INVOICE"
        assert definition.reference_config.prefix == "INV"
        assert definition.reference_config.serial_method == SerialMethod.INCREMENTOR
        assert definition.required_fields == ("customer", "amount")
        assert definition.line_rules[0].account_code == "1100"
        assert definition.line_rules[0].direction == Direction.DEBIT
        assert definition.line_rules[1].amount_formula.source_field == "amount"
        assert definition.plugins == ("journal",)

    def test_snake_case_round_trip(self):
        original = _valid()
        assert TemplateDefinition.from_dict(original.to_dict()) == original

    def test_operand_parsed_as_decimal(self, template_data):
        data = template_data(
            linesRule=[
                {
                    "accountCode": "1100",
                    "direction": "DEBIT",
                    "amountConfig": {"field": "amount", "operator": "%", "operand": 110},
                },
                {"accountCode": "4100", "direction": "credit", "amountConfig": {"field": "amount"}},
            ]
        )
        definition = TemplateDefinition.from_dict(data)
        rule = definition.line_rules[0]
        assert rule.direction == Direction.DEBIT
        assert rule.amount_formula.operator == FormulaOperator.PERCENT
        assert rule.amount_formula.operand == Decimal("110")

    def test_string_line_narration_becomes_tuple(self, template_data):
        data = template_data()
        data["linesRule"][0]["narrationConfig"] = "Due from %customer%"
        definition = TemplateDefinition.from_dict(data)
        assert definition.line_rules[0].narration_template == ("Due from %customer%",)

    def test_unknown_operator(self, template_data):
        data = template_data()
        data["linesRule"][0]["amountConfig"]["operator"] = "^"
        with pytest.raises(ValueError):
            TemplateDefinition.from_dict(data)

    def test_non_numeric_operand(self, template_data):
        data = template_data()
        data["linesRule"][0]["amountConfig"].update(operator="*", operand="two")
        with pytest.raises(ValueError):
            TemplateDefinition.from_dict(data)

    @pytest.mark.parametrize("operand", ["NaN", "Infinity", "-Infinity", "1e30"])
    def test_non_finite_operand(self, template_data, operand):
        data = template_data()
        data["linesRule"][0]["amountConfig"].update(operator="*", operand=operand)
        with pytest.raises(ValueError, match="out of range"):
            TemplateDefinition.from_dict(data)

    def test_missing_lines(self, template_data):
        data = template_data()
        del data["linesRule"]
        with pytest.raises(ValueError, match="missing key"):
            TemplateDefinition.from_dict(data)


# =============================================================================
# Validation
# =============================================================================


class TestValidateTemplateDefinition:
    def test_valid_definition_has_no_errors(self):
        assert validate_template_definition(_valid()) == []

    def test_reference_placeholder_is_always_allowed(self):
        definition = _valid(narration_template="%reference%")
        assert validate_template_definition(definition) == []

    def test_unknown_narration_placeholder(self):
        errors = validate_template_definition(_valid(narration_template="For %customer%"))
        assert any("%customer%" in e for e in errors)

    def test_unknown_line_narration_placeholder(self):
        rules = (
            LineRule("6300", Direction.DEBIT, AmountFormula("amount"), ("%memo%",)),
            LineRule("2100", Direction.CREDIT, AmountFormula("amount")),
        )
        errors = validate_template_definition(_valid(line_rules=rules))
        assert any(e.startswith("line 1") and "%memo%" in e for e in errors)

    def test_source_field_must_be_required(self):
        rules = (
            LineRule("6300", Direction.DEBIT, AmountFormula("total")),
            LineRule("2100", Direction.CREDIT, AmountFormula("amount")),
        )
        errors = validate_template_definition(_valid(line_rules=rules))
        assert any("'total'" in e for e in errors)

    def test_operator_needs_operand(self):
        rules = (
            LineRule("6300", Direction.DEBIT, AmountFormula("amount", FormulaOperator.ADD)),
            LineRule("2100", Direction.CREDIT, AmountFormula("amount")),
        )
        errors = validate_template_definition(_valid(line_rules=rules))
        assert any("requires an operand" in e for e in errors)

    @pytest.mark.parametrize("operand", ["NaN", "Infinity", "1e30"])
    def test_operand_must_be_finite(self, operand):
        formula = AmountFormula("amount", FormulaOperator.MULTIPLY, Decimal(operand))
        rules = (
            LineRule("6300", Direction.DEBIT, formula),
            LineRule("2100", Direction.CREDIT, AmountFormula("amount")),
        )
        errors = validate_template_definition(_valid(line_rules=rules))
        assert any(e.startswith("line 1") and "not a finite amount" in e for e in errors)

    def test_needs_both_directions(self):
        rules = (
            LineRule("6300", Direction.DEBIT, AmountFormula("amount")),
            LineRule("6300", Direction.DEBIT, AmountFormula("amount")),
        )
        errors = validate_template_definition(_valid(line_rules=rules))
        assert "at least one credit line rule is required" in errors

    def test_no_rules(self):
        errors = validate_template_definition(_valid(line_rules=()))
        assert "at least one line rule is required" in errors

    def test_journal_plugin_is_mandatory(self):
        errors = validate_template_definition(_valid(plugins=("stock",)))
        assert any("journal" in e for e in errors)

    @pytest.mark.parametrize("length", [0, MAX_REFERENCE_LENGTH + 1])
    def test_reference_length_bounds(self, length):
        config = ReferenceConfig(prefix="EXP", length=length)
        errors = validate_template_definition(_valid(reference_config=config))
        assert any("reference length" in e for e in errors)

    def test_prefix_required(self):
        errors = validate_template_definition(
            _valid(reference_config=ReferenceConfig(prefix=""))
        )
        assert "reference prefix is required" in errors

    def test_reports_every_problem(self):
        rules = (LineRule("", Direction.DEBIT, AmountFormula("nope", FormulaOperator.MULTIPLY)),)
        errors = validate_template_definition(_valid(line_rules=rules, orchid=""))
        assert len(errors) >= 4


class TestExtractPlaceholders:
    def test_order_of_appearance(self):
        assert extract_placeholders("%a% and %b_2% then %a%") == ["a", "b_2", "a"]

    def test_none(self):
        assert extract_placeholders(None) == []

    def test_lone_percent_signs_are_ignored(self):
        assert extract_placeholders("10% off, 5 %") == []


class TestTemplatePatch:
    def test_unset_fields_are_kept(self):
        patched = TemplatePatch(name="Vendor bill").apply(_valid())
        assert patched.name == "Vendor bill"
        assert patched.line_rules == _valid().line_rules

    def test_is_active_false_is_applied(self):
        assert TemplatePatch(is_active=False).apply(_valid()).is_active is False
