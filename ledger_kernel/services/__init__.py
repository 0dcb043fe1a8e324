"""Services for the ledger kernel (write side)."""

from ledger_kernel.services.chart_service import ChartOfAccountsService
from ledger_kernel.services.dispatcher import (
    DispatchPlugin,
    Dispatcher,
    JournalPlugin,
    PluginContext,
)
from ledger_kernel.services.journal_service import JournalEngine
from ledger_kernel.services.sequence_service import SequenceService
from ledger_kernel.services.template_service import TemplateService

__all__ = [
    "ChartOfAccountsService",
    "DispatchPlugin",
    "Dispatcher",
    "JournalEngine",
    "JournalPlugin",
    "PluginContext",
    "SequenceService",
    "TemplateService",
]
