"""
Engine settings schema.

Frozen dataclasses parsed from ``sets/settings.yaml`` by the loader.  The
kernel never reads settings files; callers pass these values into the
services that need them (Dispatcher.from_settings, RecurrenceScheduler).
"""

from __future__ import annotations

from dataclasses import dataclass

from ledger_batch.domain.types import MonthEndPolicy


@dataclass(frozen=True)
class EngineSettings:
    """Runtime knobs for the ledger engine."""

    database_url: str
    currency_places: int = 2
    max_reference_attempts: int = 5
    plugin_timeout_seconds: float = 5.0
    scheduler_tick_seconds: float = 60.0
    month_end_policy: MonthEndPolicy = MonthEndPolicy.CLAMP
    reference_separator: str = "-"

    def __post_init__(self) -> None:
        if not self.database_url:
            raise ValueError("database_url is required")
        if self.currency_places < 0:
            raise ValueError("currency_places must be >= 0")
        if self.max_reference_attempts < 1:
            raise ValueError("max_reference_attempts must be >= 1")
        if self.plugin_timeout_seconds <= 0:
            raise ValueError("plugin_timeout_seconds must be positive")
        if self.scheduler_tick_seconds <= 0:
            raise ValueError("scheduler_tick_seconds must be positive")
