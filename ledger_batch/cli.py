"""
Ledger engine command line.

Usage:
    ledger init-db
    ledger seed-coa --industry retail
    ledger load-templates
    ledger dispatch INVOICE --payload '{"customer": "Acme", "amount": "120.00"}'
    ledger tick
    ledger run-scheduler

Installed as the ``ledger`` console script; ``python -m ledger_batch.cli`` runs
the same entry point.

The database URL comes from --database-url, else LEDGER_DATABASE_URL, else
ledger_config/sets/settings.yaml.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from dataclasses import replace
from pathlib import Path

from ledger_batch.services.scheduler import RecurrenceScheduler
from ledger_config import EngineSettings, get_active_settings
from ledger_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from ledger_kernel.db.immutability import register_immutability_listeners
from ledger_kernel.domain.dtos import SYSTEM_ACTOR_ID
from ledger_kernel.exceptions import LedgerKernelError
from ledger_kernel.logging_config import configure_logging, get_logger
from ledger_kernel.services.chart_service import ChartOfAccountsService
from ledger_kernel.services.dispatcher import Dispatcher
from ledger_kernel.services.template_service import TemplateService

logger = get_logger("cli")


def _settings(args: argparse.Namespace) -> EngineSettings:
    settings = get_active_settings(Path(args.settings) if args.settings else None)
    if args.database_url:
        settings = replace(settings, database_url=args.database_url)
    return settings


def cmd_init_db(args: argparse.Namespace, settings: EngineSettings) -> int:
    create_tables()
    print("Tables created.")
    return 0


def cmd_seed_coa(args: argparse.Namespace, settings: EngineSettings) -> int:
    with session_scope() as session:
        created = ChartOfAccountsService(session).create_from_template(
            args.industry, SYSTEM_ACTOR_ID
        )
    print(f"Created {len(created)} account(s) from the '{args.industry}' chart.")
    return 0


def cmd_load_templates(args: argparse.Namespace, settings: EngineSettings) -> int:
    with session_scope() as session:
        installed = TemplateService(session).load_system_templates()
    names = ", ".join(d.orchid for d in installed) or "none (already installed)"
    print(f"Installed templates: {names}")
    return 0


def cmd_dispatch(args: argparse.Namespace, settings: EngineSettings) -> int:
    try:
        payload = json.loads(args.payload)
    except json.JSONDecodeError as exc:
        print(f"--payload is not valid JSON: {exc}", file=sys.stderr)
        return 2
    if not isinstance(payload, dict):
        print("--payload must be a JSON object", file=sys.stderr)
        return 2

    with session_scope() as session:
        dispatcher = Dispatcher.from_settings(session, settings)
        try:
            instance = dispatcher.dispatch(args.orchid, payload, SYSTEM_ACTOR_ID)
        finally:
            dispatcher.close()

    print(
        json.dumps(
            {
                "instance_id": str(instance.id),
                "reference": instance.reference,
                "status": instance.status.value,
                "journal_entry_id": (
                    str(instance.journal_entry_id) if instance.journal_entry_id else None
                ),
                "error_code": instance.error_code,
                "error_message": instance.error_message,
            },
            indent=2,
        )
    )
    return 0 if instance.is_processed else 1


def _scheduler(settings: EngineSettings) -> RecurrenceScheduler:
    return RecurrenceScheduler(
        session_factory=get_session_factory(),
        dispatcher_factory=lambda session: Dispatcher.from_settings(session, settings),
        tick_interval_seconds=settings.scheduler_tick_seconds,
        month_end_policy=settings.month_end_policy,
    )


def cmd_tick(args: argparse.Namespace, settings: EngineSettings) -> int:
    result = _scheduler(settings).tick()
    print(
        f"Fired {result.fired_count}, lost claims {len(result.skipped)}, "
        f"failed {len(result.failed)}, disabled {len(result.disabled)}."
    )
    return 0


def cmd_run_scheduler(args: argparse.Namespace, settings: EngineSettings) -> int:
    scheduler = _scheduler(settings)
    scheduler.start()
    print(f"Scheduler running every {settings.scheduler_tick_seconds}s. Ctrl-C to stop.")
    try:
        while scheduler.is_running:
            time.sleep(1.0)
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ledger automation engine")
    parser.add_argument("--database-url", help="Override the configured database URL")
    parser.add_argument("--settings", help="Path to a settings.yaml file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create all tables").set_defaults(func=cmd_init_db)

    seed = sub.add_parser("seed-coa", help="Create a starter chart of accounts")
    seed.add_argument("--industry", default="general", help="Chart name (default: general)")
    seed.set_defaults(func=cmd_seed_coa)

    sub.add_parser(
        "load-templates", help="Install the system event templates"
    ).set_defaults(func=cmd_load_templates)

    dispatch = sub.add_parser("dispatch", help="Dispatch one event through a template")
    dispatch.add_argument("orchid", help="Template code, e.g. INVOICE")
    dispatch.add_argument("--payload", required=True, help="Event payload as a JSON object")
    dispatch.set_defaults(func=cmd_dispatch)

    sub.add_parser("tick", help="Fire due recurring schedules once").set_defaults(
        func=cmd_tick
    )
    sub.add_parser(
        "run-scheduler", help="Run the recurring scheduler until interrupted"
    ).set_defaults(func=cmd_run_scheduler)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO)
    settings = _settings(args)
    init_engine_from_url(settings.database_url)
    register_immutability_listeners()

    try:
        return args.func(args, settings)
    except (LedgerKernelError, FileNotFoundError, ValueError) as exc:
        logger.error("cli_command_failed", extra={"command": args.command})
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
