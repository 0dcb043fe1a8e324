"""
Pure domain layer.

This module contains pure data transfer objects and domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

The rule engine, template definitions and account sign rules live here so
they can be tested without a session.
"""

from ledger_kernel.domain.account_rules import balance_delta, normal_balance_for
from ledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ledger_kernel.domain.dtos import (
    AccountInfo,
    AccountNode,
    AccountSpec,
    AccountType,
    BatchFailure,
    BatchResult,
    EntrySpec,
    EntryStatus,
    JournalEntryInfo,
    LineSpec,
    LineValidationReport,
    NormalBalance,
)
from ledger_kernel.domain.rule_engine import RuleEvaluation, evaluate
from ledger_kernel.domain.template import (
    FormulaOperator,
    LineRule,
    TemplateDefinition,
    validate_template_definition,
)

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "AccountType",
    "NormalBalance",
    "EntryStatus",
    "AccountSpec",
    "AccountInfo",
    "AccountNode",
    "EntrySpec",
    "LineSpec",
    "LineValidationReport",
    "JournalEntryInfo",
    "BatchFailure",
    "BatchResult",
    "normal_balance_for",
    "balance_delta",
    "FormulaOperator",
    "LineRule",
    "TemplateDefinition",
    "validate_template_definition",
    "RuleEvaluation",
    "evaluate",
]
