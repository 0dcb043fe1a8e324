"""
Tests for TemplateService: authoring, versioning and lifecycle.
"""

import pytest

from ledger_kernel.domain.template import ReferenceConfig, TemplatePatch
from ledger_kernel.exceptions import (
    SystemTemplateError,
    TemplateAlreadyExistsError,
    TemplateDefinitionError,
    TemplateNotFoundError,
)


class TestCreateTemplate:
    def test_create_from_camel_case(self, make_template):
        definition = make_template("invoice")
        assert definition.orchid == "INVOICE"
        assert definition.version == 1
        assert definition.is_active

    def test_duplicate_orchid(self, make_template):
        make_template()
        with pytest.raises(TemplateAlreadyExistsError):
            make_template()

    def test_unknown_account_code(self, template_service, standard_accounts, template_data, test_actor_id):
        data = template_data()
        data["linesRule"][1]["accountCode"] = "9999"
        with pytest.raises(TemplateDefinitionError) as exc_info:
            template_service.create_template(data, test_actor_id)
        assert any("'9999' does not exist" in e for e in exc_info.value.errors)

    def test_invalid_placeholder(self, template_service, standard_accounts, template_data, test_actor_id):
        data = template_data(narrationConfig="Invoice for %client%")
        with pytest.raises(TemplateDefinitionError):
            template_service.create_template(data, test_actor_id)

    def test_rejected_template_is_logged(
        self, template_service, standard_accounts, template_data, test_actor_id, captured_logs
    ):
        data = template_data(plugins=["stock"])
        with pytest.raises(TemplateDefinitionError):
            template_service.create_template(data, test_actor_id)
        rejected = [r for r in captured_logs() if r["message"] == "template_definition_rejected"]
        assert rejected and rejected[0]["template_code"] == "INVOICE"


class TestReplaceAndPatch:
    def test_replace_bumps_version(self, template_service, make_template, template_data, test_actor_id):
        make_template()
        replaced = template_service.replace_template(
            "invoice", template_data(name="Invoice v2"), test_actor_id
        )
        assert replaced.version == 2
        assert replaced.name == "Invoice v2"

    def test_replace_keeps_orchid(self, template_service, make_template, template_data, test_actor_id):
        make_template()
        replaced = template_service.replace_template(
            "INVOICE", template_data(orchid="OTHER"), test_actor_id
        )
        assert replaced.orchid == "INVOICE"
        assert template_service.find("OTHER") is None

    def test_invalid_replacement_leaves_template_unchanged(
        self, template_service, make_template, template_data, test_actor_id
    ):
        make_template()
        with pytest.raises(TemplateDefinitionError):
            template_service.replace_template(
                "INVOICE", template_data(inputSchema={"required": ["customer"]}), test_actor_id
            )
        current = template_service.get("INVOICE")
        assert current.version == 1
        assert current.required_fields == ("customer", "amount")

    def test_patch_merges_and_validates(self, template_service, make_template, test_actor_id):
        make_template()
        patched = template_service.patch_template(
            "INVOICE",
            TemplatePatch(reference_config=ReferenceConfig(prefix="SI", length=4)),
            test_actor_id,
        )
        assert patched.reference_config.prefix == "SI"
        assert patched.line_rules == template_service.get("INVOICE").line_rules
        assert patched.version == 2

    def test_patch_unknown(self, template_service, test_actor_id):
        with pytest.raises(TemplateNotFoundError):
            template_service.patch_template("NOPE", TemplatePatch(name="x"), test_actor_id)


class TestLifecycle:
    def test_deactivate_and_activate(self, template_service, make_template, test_actor_id):
        make_template()
        assert not template_service.deactivate("INVOICE", test_actor_id).is_active
        assert template_service.activate("INVOICE", test_actor_id).is_active

    def test_set_active_without_change_keeps_version(self, template_service, make_template, test_actor_id):
        make_template()
        assert template_service.activate("INVOICE", test_actor_id).version == 1

    def test_list_filters(self, template_service, make_template, test_actor_id):
        make_template("INVOICE")
        make_template("REFUND", name="Customer refund")
        template_service.deactivate("REFUND", test_actor_id)

        assert [t.orchid for t in template_service.list_templates()] == ["INVOICE", "REFUND"]
        assert [t.orchid for t in template_service.list_templates(is_active=True)] == ["INVOICE"]
        assert [t.orchid for t in template_service.list_templates(name="refund")] == ["REFUND"]

    def test_delete(self, template_service, make_template):
        make_template()
        template_service.delete_template("invoice")
        assert template_service.find("INVOICE") is None

    def test_delete_unknown(self, template_service):
        with pytest.raises(TemplateNotFoundError):
            template_service.delete_template("NOPE")


class TestSystemTemplates:
    def test_load_packaged_system_templates(self, template_service, chart_service, test_actor_id):
        chart_service.create_from_template("general", test_actor_id)

        installed = template_service.load_system_templates()

        orchids = {d.orchid for d in installed}
        assert {"INVOICE", "EXPENSE"} <= orchids
        assert all(d.is_system for d in installed)

    def test_loading_twice_installs_nothing(self, template_service, chart_service, test_actor_id):
        chart_service.create_from_template("general", test_actor_id)
        template_service.load_system_templates()
        assert template_service.load_system_templates() == []

    def test_system_template_cannot_be_deleted(self, template_service, chart_service, test_actor_id):
        chart_service.create_from_template("general", test_actor_id)
        template_service.load_system_templates()
        with pytest.raises(SystemTemplateError):
            template_service.delete_template("INVOICE")
