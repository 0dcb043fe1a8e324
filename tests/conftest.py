"""
Pytest fixtures for the ledger engine test suite.

Provides:
- In-memory SQLite sessions for single-session tests
- File-backed SQLite session factories for scheduler and concurrency tests
  (the in-memory engine shares one connection, so two open transactions
  cannot coexist on it)
- A standard chart of accounts and a template factory
- Structured log capture
"""

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from ledger_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from ledger_kernel.db.immutability import register_immutability_listeners
from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.domain.dtos import AccountSpec, AccountType, EntrySpec, LineSpec
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from ledger_kernel.selectors.account_selector import AccountSelector
from ledger_kernel.selectors.event_selector import EventSelector
from ledger_kernel.selectors.journal_selector import JournalSelector
from ledger_kernel.services.chart_service import ChartOfAccountsService
from ledger_kernel.services.dispatcher import Dispatcher
from ledger_kernel.services.journal_service import JournalEngine
from ledger_kernel.services.sequence_service import SequenceService
from ledger_kernel.services.template_service import TemplateService

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


class JsonRecordHandler(logging.Handler):
    """Keeps every ledger_kernel record as the JSON object it renders to."""

    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.setFormatter(StructuredFormatter())
        self.records: list[dict] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(json.loads(self.format(record)))


@pytest.fixture(scope="session", autouse=True)
def _json_logging():
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _fresh_log_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Call the fixture value to get the records logged so far::

        rejected = [r for r in captured_logs() if r["message"] == "..."]
    """
    handler = JsonRecordHandler()
    package_logger = logging.getLogger("ledger_kernel")
    package_logger.addHandler(handler)
    yield lambda: list(handler.records)
    package_logger.removeHandler(handler)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session", autouse=True)
def _immutability_listeners():
    register_immutability_listeners()
    yield


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    eng = init_engine_from_url("sqlite:///:memory:")
    create_tables()
    yield eng
    drop_tables()
    reset_engine()


@pytest.fixture
def session(engine):
    sess = get_session()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def file_session_factory(tmp_path):
    """
    Session factory over a SQLite file.

    Each session gets its own connection, so a test can hold one session
    while the scheduler opens another.  Commit setup data before handing
    control to code that opens its own session.
    """
    init_engine_from_url(f"sqlite:///{tmp_path / 'ledger.db'}")
    create_tables()
    yield get_session_factory()
    drop_tables()
    reset_engine()


# ---------------------------------------------------------------------------
# Actors and time
# ---------------------------------------------------------------------------


@pytest.fixture
def test_actor_id() -> UUID:
    return uuid4()


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc))


# ---------------------------------------------------------------------------
# Services and selectors
# ---------------------------------------------------------------------------


@pytest.fixture
def chart_service(session) -> ChartOfAccountsService:
    return ChartOfAccountsService(session)


@pytest.fixture
def journal_engine(session, deterministic_clock) -> JournalEngine:
    return JournalEngine(session, clock=deterministic_clock)


@pytest.fixture
def template_service(session) -> TemplateService:
    return TemplateService(session)


@pytest.fixture
def sequence_service(session) -> SequenceService:
    return SequenceService(session)


@pytest.fixture
def dispatcher(session, deterministic_clock):
    disp = Dispatcher(session, clock=deterministic_clock, plugin_timeout_seconds=1.0)
    yield disp
    disp.close()


@pytest.fixture
def account_selector(session) -> AccountSelector:
    return AccountSelector(session)


@pytest.fixture
def journal_selector(session) -> JournalSelector:
    return JournalSelector(session)


@pytest.fixture
def event_selector(session) -> EventSelector:
    return EventSelector(session)


# ---------------------------------------------------------------------------
# Chart of accounts
# ---------------------------------------------------------------------------

STANDARD_ACCOUNTS = [
    AccountSpec("1000", "Assets", AccountType.ASSET),
    AccountSpec("1010", "Cash", AccountType.ASSET, parent_code="1000"),
    AccountSpec("1100", "Accounts Receivable", AccountType.ASSET, parent_code="1000"),
    AccountSpec("2000", "Liabilities", AccountType.LIABILITY),
    AccountSpec("2100", "Accounts Payable", AccountType.LIABILITY, parent_code="2000"),
    AccountSpec("2200", "Sales Tax Payable", AccountType.LIABILITY, parent_code="2000"),
    AccountSpec("3000", "Equity", AccountType.EQUITY),
    AccountSpec("4000", "Income", AccountType.INCOME),
    AccountSpec("4100", "Sales Revenue", AccountType.INCOME, parent_code="4000"),
    AccountSpec("6000", "Expenses", AccountType.EXPENSE),
    AccountSpec("6300", "General Expenses", AccountType.EXPENSE, parent_code="6000"),
]


@pytest.fixture
def standard_accounts(chart_service, test_actor_id, session) -> dict:
    """Create the standard chart; returns {code: AccountInfo}."""
    accounts = {
        spec.code: chart_service.create_account(spec, test_actor_id)
        for spec in STANDARD_ACCOUNTS
    }
    session.flush()
    return accounts


@pytest.fixture
def create_account(chart_service, test_actor_id):
    """Factory: create_account("1500", "Inventory", AccountType.ASSET)."""

    def _create(code, name, account_type, parent_code=None, opening_balance="0", **kw):
        return chart_service.create_account(
            AccountSpec(
                code=code,
                name=name,
                account_type=account_type,
                parent_code=parent_code,
                opening_balance=Decimal(opening_balance),
                **kw,
            ),
            test_actor_id,
        )

    return _create


# ---------------------------------------------------------------------------
# Journal helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def make_entry(journal_engine, standard_accounts, test_actor_id):
    """
    Factory for a two-line DRAFT entry.

    make_entry("100.00") debits Cash and credits Sales Revenue.
    """

    def _make(
        amount="100.00",
        debit_code="1010",
        credit_code="4100",
        entry_date=date(2024, 1, 15),
        reference=None,
        description=None,
    ):
        value = Decimal(amount)
        return journal_engine.create(
            EntrySpec(
                entry_date=entry_date,
                lines=(
                    LineSpec(account_id=standard_accounts[debit_code].id, debit=value),
                    LineSpec(account_id=standard_accounts[credit_code].id, credit=value),
                ),
                reference=reference,
                description=description,
            ),
            test_actor_id,
        )

    return _make


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def invoice_template_dict(orchid="INVOICE", **overrides) -> dict:
    """Camel-case template payload in the product's JSON shape."""
    data = {
        "orchid": orchid,
        "name": "Sales Invoice",
        "referenceConfig": {"prefix": "INV", "serialMethod": "incrementor", "length": 6},
        "narrationConfig": "Invoice %reference% for %customer%",
        "inputSchema": {"required": ["customer", "amount"]},
        "linesRule": [
            {
                "accountCode": "1100",
                "direction": "debit",
                "amountConfig": {"field": "amount", "operator": "direct"},
            },
            {
                "accountCode": "4100",
                "direction": "credit",
                "amountConfig": {"field": "amount", "operator": "direct"},
            },
        ],
        "plugins": ["journal"],
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_template(template_service, standard_accounts, test_actor_id):
    """Factory: store a template built from invoice_template_dict(**overrides)."""

    def _make(orchid="INVOICE", **overrides):
        return template_service.create_template(
            invoice_template_dict(orchid, **overrides), test_actor_id
        )

    return _make


@pytest.fixture
def template_data():
    """The invoice_template_dict builder, for tests that need raw payloads."""
    return invoice_template_dict
