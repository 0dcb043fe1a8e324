"""Tests for AccountSelector hierarchy and listing reads."""

from decimal import Decimal

import pytest

from ledger_kernel.domain.dtos import AccountType
from ledger_kernel.exceptions import AccountNotFoundError


class TestLookups:
    def test_get_by_code(self, account_selector, standard_accounts):
        assert account_selector.get_by_code("1010") == standard_accounts["1010"]
        assert account_selector.find_by_code("9999") is None
        with pytest.raises(AccountNotFoundError):
            account_selector.get_by_code("9999")

    def test_ids_by_code_skips_unknown(self, account_selector, standard_accounts):
        ids = account_selector.ids_by_code(["1010", "9999"])
        assert ids == {"1010": standard_accounts["1010"].id}

    def test_list_filters(self, account_selector, standard_accounts):
        liabilities = account_selector.list_accounts(account_type=AccountType.LIABILITY)
        assert [a.code for a in liabilities] == ["2000", "2100", "2200"]
        assert [a.code for a in account_selector.list_accounts(parent_code="1000")] == [
            "1010",
            "1100",
        ]
        assert [a.code for a in account_selector.list_accounts(search="sales")] == [
            "2200",
            "4100",
        ]

    def test_list_paging(self, account_selector, standard_accounts):
        second = account_selector.list_accounts(page=2, limit=4)
        assert [a.code for a in second] == ["2100", "2200", "3000", "4000"]
        assert account_selector.count() == 11


class TestHierarchy:
    def test_roots_and_leaves(self, account_selector, standard_accounts):
        assert [a.code for a in account_selector.get_roots()] == [
            "1000",
            "2000",
            "3000",
            "4000",
            "6000",
        ]
        assert [a.code for a in account_selector.get_leaves()] == [
            "1010",
            "1100",
            "2100",
            "2200",
            "3000",
            "4100",
            "6300",
        ]

    def test_children_and_descendants(self, account_selector, standard_accounts):
        assert [a.code for a in account_selector.get_children("2000")] == ["2100", "2200"]
        assert [a.code for a in account_selector.get_descendants("1000")] == ["1010", "1100"]
        assert account_selector.get_descendants("1010") == []

    def test_path_and_level(self, account_selector, create_account, standard_accounts):
        create_account("1011", "Petty Cash", AccountType.ASSET, parent_code="1010")

        assert account_selector.get_path("1011") == ["1000", "1010", "1011"]
        assert [a.code for a in account_selector.get_ancestors("1011")] == ["1000", "1010"]
        assert account_selector.get_level("1011") == 2
        assert account_selector.get_level("1000") == 0

    def test_unknown_code(self, account_selector, standard_accounts):
        with pytest.raises(AccountNotFoundError):
            account_selector.get_children("9999")

    def test_rolled_up_balance(self, account_selector, create_account, standard_accounts):
        create_account("1200", "Inventory", AccountType.ASSET, parent_code="1000", opening_balance="40")
        create_account("1201", "Raw Materials", AccountType.ASSET, parent_code="1200", opening_balance="2.50")

        assert account_selector.rolled_up_balance("1000") == Decimal("42.50")
        assert account_selector.rolled_up_balance("1201") == Decimal("2.50")

    def test_statistics(self, account_selector, standard_accounts):
        stats = account_selector.get_statistics()
        assert stats.total == 11
        assert stats.by_type == {
            "asset": 3,
            "liability": 3,
            "equity": 1,
            "income": 2,
            "expense": 2,
        }
        assert stats.root_count == 5
        assert stats.leaf_count == 7
