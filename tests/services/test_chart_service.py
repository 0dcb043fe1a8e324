"""
Tests for ChartOfAccountsService.

Covers creation rules (normal balance, hierarchy), industry templates,
running balances, structural edits and deletion protection.
"""

from decimal import Decimal

import pytest

from ledger_kernel.domain.dtos import AccountSpec, AccountType, NormalBalance
from ledger_kernel.exceptions import (
    AccountHierarchyError,
    AccountNotFoundError,
    AccountReferencedError,
    DuplicateAccountCodeError,
    InvalidAccountError,
    ParentAccountNotFoundError,
    SystemAccountError,
)

# =============================================================================
# Creation
# =============================================================================


class TestCreateAccount:
    def test_normal_balance_derived_from_type(self, chart_service, test_actor_id):
        cash = chart_service.create_account(
            AccountSpec("1010", "Cash", AccountType.ASSET), test_actor_id
        )
        revenue = chart_service.create_account(
            AccountSpec("4100", "Revenue", AccountType.INCOME), test_actor_id
        )
        assert cash.normal_balance == NormalBalance.DEBIT
        assert revenue.normal_balance == NormalBalance.CREDIT

    def test_opening_balance_becomes_current_balance(self, create_account):
        account = create_account("1010", "Cash", AccountType.ASSET, opening_balance="250.555")
        assert account.opening_balance == Decimal("250.56")
        assert account.current_balance == Decimal("250.56")

    @pytest.mark.parametrize("opening", ["1e30", "NaN"])
    def test_unusable_opening_balance(self, create_account, opening):
        with pytest.raises(InvalidAccountError, match="opening balance"):
            create_account("1010", "Cash", AccountType.ASSET, opening_balance=opening)

    def test_conflicting_normal_balance_is_rejected(self, chart_service, test_actor_id):
        spec = AccountSpec(
            "1010", "Cash", AccountType.ASSET, normal_balance=NormalBalance.CREDIT
        )
        with pytest.raises(InvalidAccountError):
            chart_service.create_account(spec, test_actor_id)

    def test_duplicate_code(self, create_account):
        create_account("1010", "Cash", AccountType.ASSET)
        with pytest.raises(DuplicateAccountCodeError):
            create_account("1010", "Cash again", AccountType.ASSET)

    def test_blank_name(self, create_account):
        with pytest.raises(InvalidAccountError):
            create_account("1010", "  ", AccountType.ASSET)

    def test_unknown_parent(self, create_account):
        with pytest.raises(ParentAccountNotFoundError):
            create_account("1010", "Cash", AccountType.ASSET, parent_code="9999")

    def test_mixed_parent_rejected_by_default(self, create_account):
        create_account("1000", "Assets", AccountType.ASSET)
        with pytest.raises(AccountHierarchyError):
            create_account("1090", "Allowance", AccountType.LIABILITY, parent_code="1000")

    def test_mixed_parent_allowed_on_request(self, chart_service, create_account, test_actor_id):
        create_account("1000", "Assets", AccountType.ASSET)
        contra = chart_service.create_account(
            AccountSpec("1090", "Allowance", AccountType.LIABILITY, parent_code="1000"),
            test_actor_id,
            allow_mixed_parent=True,
        )
        assert contra.parent_code == "1000"


class TestCreateFromTemplate:
    def test_children_listed_before_parents(self, chart_service, test_actor_id):
        specs = [
            AccountSpec("1010", "Cash", AccountType.ASSET, parent_code="1000"),
            AccountSpec("1000", "Assets", AccountType.ASSET),
        ]
        created = chart_service.create_from_template("custom", test_actor_id, specs)
        assert [a.code for a in created] == ["1000", "1010"]

    def test_seeding_twice_is_harmless(self, chart_service, test_actor_id):
        specs = [AccountSpec("1000", "Assets", AccountType.ASSET)]
        chart_service.create_from_template("custom", test_actor_id, specs)
        assert chart_service.create_from_template("custom", test_actor_id, specs) == []

    def test_cyclic_parents(self, chart_service, test_actor_id):
        specs = [
            AccountSpec("1000", "A", AccountType.ASSET, parent_code="1010"),
            AccountSpec("1010", "B", AccountType.ASSET, parent_code="1000"),
        ]
        with pytest.raises(AccountHierarchyError):
            chart_service.create_from_template("custom", test_actor_id, specs)

    def test_packaged_general_chart(self, chart_service, account_selector, test_actor_id):
        created = chart_service.create_from_template("general", test_actor_id)
        assert len(created) == account_selector.count()
        assert account_selector.get_by_code("1100").parent_code == "1000"
        assert account_selector.get_by_code("4100").account_type == AccountType.INCOME


# =============================================================================
# Balances and tree
# =============================================================================


class TestBalances:
    def test_apply_line_debit_normal(self, chart_service, standard_accounts):
        cash = standard_accounts["1010"]
        chart_service.apply_line(cash.id, Decimal("100"), Decimal("0"))
        assert chart_service.apply_line(cash.id, Decimal("0"), Decimal("30")) == Decimal("70.00")

    def test_apply_line_credit_normal(self, chart_service, standard_accounts):
        revenue = standard_accounts["4100"]
        assert chart_service.apply_line(revenue.id, Decimal("0"), Decimal("55")) == Decimal("55.00")

    def test_apply_line_past_the_amount_bound(self, chart_service, standard_accounts):
        cash = standard_accounts["1010"]
        near_limit = Decimal("999999999999999999")
        chart_service.apply_line(cash.id, near_limit, Decimal("0"))
        with pytest.raises(InvalidAccountError, match="balance"):
            chart_service.apply_line(cash.id, near_limit, Decimal("0"))

    def test_apply_line_unknown_account(self, chart_service):
        from uuid import uuid4

        with pytest.raises(AccountNotFoundError):
            chart_service.apply_line(uuid4(), Decimal("1"), Decimal("0"))

    def test_tree_rolls_up_children(self, chart_service, standard_accounts):
        chart_service.apply_line(standard_accounts["1010"].id, Decimal("40"), Decimal("0"))
        chart_service.apply_line(standard_accounts["1100"].id, Decimal("60"), Decimal("0"))

        roots = {node.code: node for node in chart_service.get_tree()}
        assert set(roots) == {"1000", "2000", "3000", "4000", "6000"}
        assets = roots["1000"]
        assert [child.code for child in assets.children] == ["1010", "1100"]
        assert assets.rolled_up_balance == Decimal("100.00")


# =============================================================================
# Structural edits
# =============================================================================


class TestUpdateAndMove:
    def test_rename(self, chart_service, standard_accounts, test_actor_id):
        updated = chart_service.update_account(
            standard_accounts["1010"].id, test_actor_id, name="Petty Cash"
        )
        assert updated.name == "Petty Cash"

    def test_code_change_repoints_children(
        self, chart_service, account_selector, standard_accounts, test_actor_id
    ):
        chart_service.update_account(standard_accounts["1000"].id, test_actor_id, code="1001")
        assert account_selector.get_by_code("1010").parent_code == "1001"

    def test_type_change_updates_normal_balance(
        self, chart_service, standard_accounts, test_actor_id
    ):
        updated = chart_service.update_account(
            standard_accounts["3000"].id, test_actor_id, account_type=AccountType.ASSET
        )
        assert updated.normal_balance == NormalBalance.DEBIT

    def test_code_locked_after_posting(
        self, chart_service, journal_engine, make_entry, standard_accounts, test_actor_id
    ):
        entry = make_entry()
        journal_engine.post_entry(entry.id, test_actor_id)
        with pytest.raises(AccountReferencedError):
            chart_service.update_account(standard_accounts["1010"].id, test_actor_id, code="1011")

    def test_move(self, chart_service, standard_accounts, test_actor_id):
        moved = chart_service.move_account(standard_accounts["1010"].id, None, test_actor_id)
        assert moved.parent_code is None

    def test_move_under_descendant_is_a_cycle(
        self, chart_service, create_account, standard_accounts, test_actor_id
    ):
        create_account("1011", "Till", AccountType.ASSET, parent_code="1010")
        with pytest.raises(AccountHierarchyError, match="cycle"):
            chart_service.move_account(standard_accounts["1000"].id, "1011", test_actor_id)

    def test_move_under_self(self, chart_service, standard_accounts, test_actor_id):
        with pytest.raises(AccountHierarchyError):
            chart_service.move_account(standard_accounts["1010"].id, "1010", test_actor_id)

    def test_move_under_mixed_parent(self, chart_service, standard_accounts, test_actor_id):
        with pytest.raises(AccountHierarchyError):
            chart_service.move_account(standard_accounts["1010"].id, "2000", test_actor_id)


# =============================================================================
# Deletion
# =============================================================================


class TestDeleteAccount:
    def test_delete_unused_leaf(self, chart_service, account_selector, standard_accounts):
        chart_service.delete_account(standard_accounts["2200"].id)
        assert account_selector.find_by_code("2200") is None

    def test_delete_parent_with_children(self, chart_service, standard_accounts):
        with pytest.raises(AccountReferencedError):
            chart_service.delete_account(standard_accounts["1000"].id)

    def test_delete_system_account(self, chart_service, create_account):
        account = create_account("9999", "Suspense", AccountType.ASSET, is_system=True)
        with pytest.raises(SystemAccountError):
            chart_service.delete_account(account.id)

    def test_delete_account_with_draft_lines(self, chart_service, make_entry, standard_accounts):
        make_entry()
        with pytest.raises(AccountReferencedError):
            chart_service.delete_account(standard_accounts["1010"].id)

    def test_delete_account_with_posted_lines(
        self, chart_service, journal_engine, make_entry, standard_accounts, test_actor_id
    ):
        journal_engine.post_entry(make_entry().id, test_actor_id)
        with pytest.raises(AccountReferencedError):
            chart_service.delete_account(standard_accounts["4100"].id)
