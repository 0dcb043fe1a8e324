"""
Dispatcher -- one business event in, one EventInstance out.

Responsibility:
    Loads the template, validates the payload, allocates a reference serial,
    runs the rule engine, creates and posts the journal entry, runs the
    remaining template plugins and records the outcome of every step on an
    EventInstance.

Architecture position:
    Kernel > Services -- the orchestration point between the pure rule
    engine and the journal engine.  Called by API handlers, the recurrence
    scheduler and the CLI.

Flow:

    dispatch(orchid, payload)
        |
        +-- template missing / inactive ------> TemplateNotFoundError /
        |                                       TemplateInactiveError
        +-- required fields missing ----------> MissingFieldsError
        |       (nothing is written for these three, unless the dispatch
        |        comes from a schedule: then a FAILED instance with no
        |        reference is recorded and returned instead)
        |
        +-- allocate serial, format reference
        |       reference already used? -> new serial (bounded attempts)
        +-- rule engine fails ----------------> FAILED instance returned
        +-- PENDING instance
        +-- [SAVEPOINT] journal create + post
        +-- other plugins (thread pool, bounded timeout, non-fatal)
        +-- terminal write: PROCESSED iff the journal step succeeded

Invariants enforced:
    - Every dispatch that gets past payload validation, and every scheduled
      dispatch, leaves exactly one EventInstance, successful or not.
    - A failed journal step leaves no journal entry and no balance change.
    - Template-generated references are unique across journal entries and
      event instances.
    - Plugin failures and timeouts never flip a PROCESSED instance to
      FAILED and never undo the posted entry.
"""

from __future__ import annotations

import secrets
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Mapping, Protocol
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.db.types import json_safe
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    EntrySpec,
    EventInstanceInfo,
    InstanceStatus,
    LineSpec,
    PluginResult,
)
from ledger_kernel.domain.rule_engine import (
    REFERENCE_SEPARATOR,
    RuleEvaluation,
    evaluate,
    format_reference,
)
from ledger_kernel.domain.template import (
    JOURNAL_PLUGIN,
    SerialMethod,
    TemplateDefinition,
)
from ledger_kernel.exceptions import (
    AccountNotFoundError,
    LedgerKernelError,
    MissingFieldsError,
    ReferenceCollisionError,
    TemplateInactiveError,
    TemplateNotFoundError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.event_instance import EventInstance
from ledger_kernel.models.journal import JournalEntry
from ledger_kernel.selectors.account_selector import AccountSelector
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.journal_service import JournalEngine
from ledger_kernel.services.sequence_service import SequenceService
from ledger_kernel.services.template_service import TemplateService

logger = get_logger("services.dispatcher")

DEFAULT_MAX_REFERENCE_ATTEMPTS = 5
DEFAULT_PLUGIN_TIMEOUT_SECONDS = 5.0


# ---------------------------------------------------------------------------
# Plugins
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PluginContext:
    """
    Everything a downstream plugin may see.

    Plugins run on a worker thread and must not use the dispatcher's
    session; they get plain values only.
    """

    template_code: str
    instance_id: UUID
    reference: str
    payload: Mapping[str, Any]
    evaluation: RuleEvaluation
    journal_entry_id: UUID | None
    actor_id: UUID


class DispatchPlugin(Protocol):
    """A downstream step named in a template's ``plugins`` list."""

    name: str

    def run(self, context: PluginContext) -> str | None:
        """Perform the side effect; return an id for the result, if any."""
        ...


class JournalPlugin:
    """
    The built-in ledger step: create a DRAFT entry and post it.

    Runs synchronously on the dispatcher's session, inside a SAVEPOINT
    owned by the dispatcher.
    """

    name = JOURNAL_PLUGIN

    def __init__(self, session: Session, journal: JournalEngine, clock: Clock):
        self._session = session
        self._journal = journal
        self._clock = clock
        self._accounts = AccountSelector(session)

    def run(
        self,
        evaluation: RuleEvaluation,
        payload: Mapping[str, Any],
        instance_id: UUID,
        actor_id: UUID,
    ) -> UUID:
        account_ids = self._accounts.ids_by_code([ln.account_code for ln in evaluation.lines])
        lines = []
        for line in evaluation.lines:
            if line.account_code not in account_ids:
                raise AccountNotFoundError(line.account_code)
            lines.append(
                LineSpec(
                    account_id=account_ids[line.account_code],
                    debit=line.debit,
                    credit=line.credit,
                    narration=line.narration,
                )
            )
        entry = self._journal.create(
            EntrySpec(
                entry_date=_entry_date(payload, self._clock),
                lines=tuple(lines),
                reference=evaluation.reference,
                description=evaluation.narration,
                source_instance_id=instance_id,
            ),
            actor_id,
        )
        self._journal.post_entry(entry.id, actor_id)
        return entry.id


def _entry_date(payload: Mapping[str, Any], clock: Clock) -> date:
    """Payload ``entry_date`` / ``date`` (ISO string or date), else today."""
    raw = payload.get("entry_date") or payload.get("date")
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str):
        try:
            return date.fromisoformat(raw[:10])
        except ValueError:
            pass
    return clock.now().date()


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class Dispatcher(BaseService[EventInstance]):
    """
    Template dispatch.

    Contract:
        dispatch() raises only for template lookup and payload validation
        failures, and only when no schedule_id is given.  Every other
        failure is recorded on the returned EventInstanceInfo (status
        FAILED).

    Non-goals:
        - Does NOT commit; the caller's transaction makes the instance,
          entry and balance changes durable together.
        - Does NOT retry journal failures other than reference collisions.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        plugins: Mapping[str, DispatchPlugin] | None = None,
        max_reference_attempts: int = DEFAULT_MAX_REFERENCE_ATTEMPTS,
        plugin_timeout_seconds: float = DEFAULT_PLUGIN_TIMEOUT_SECONDS,
        reference_separator: str = REFERENCE_SEPARATOR,
        journal: JournalEngine | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._plugins = dict(plugins or {})
        self._max_attempts = max(1, max_reference_attempts)
        self._plugin_timeout = plugin_timeout_seconds
        self._separator = reference_separator
        self._templates = TemplateService(session)
        self._sequences = SequenceService(session)
        self._journal = journal or JournalEngine(session, clock=self._clock)
        self._journal_plugin = JournalPlugin(session, self._journal, self._clock)
        self._executor: ThreadPoolExecutor | None = None

    @classmethod
    def from_settings(cls, session: Session, settings, **kwargs) -> Dispatcher:
        """Build from ledger_config.EngineSettings."""
        return cls(
            session,
            max_reference_attempts=settings.max_reference_attempts,
            plugin_timeout_seconds=settings.plugin_timeout_seconds,
            reference_separator=settings.reference_separator,
            **kwargs,
        )

    def register_plugin(self, plugin: DispatchPlugin) -> None:
        if plugin.name == JOURNAL_PLUGIN:
            raise ValueError("The journal step is built in and cannot be replaced")
        self._plugins[plugin.name] = plugin

    def close(self) -> None:
        """Release the plugin thread pool without waiting on hung plugins."""
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(
        self,
        orchid: str,
        payload: Mapping[str, Any],
        actor_id: UUID,
        schedule_id: UUID | None = None,
    ) -> EventInstanceInfo:
        code = orchid.strip().upper()
        with LogContext.bind(
            template_code=code, actor_id=actor_id, schedule_id=schedule_id
        ):
            template: TemplateDefinition | None = None
            try:
                template = self._load_template(code)
                self._check_required(template, payload)
            except (TemplateNotFoundError, TemplateInactiveError, MissingFieldsError) as exc:
                if schedule_id is None:
                    raise
                event_type = template.name if template is not None else code
                return self._record_failure(
                    code, event_type, payload, None, exc, actor_id, schedule_id
                )

            logger.info("dispatch_started")
            last_reference: str | None = None
            for attempt in range(1, self._max_attempts + 1):
                serial, reference = self._next_reference(template)
                last_reference = reference
                if self._reference_taken(reference):
                    logger.warning(
                        "reference_collision_retry",
                        extra={"reference": reference, "attempt": attempt},
                    )
                    continue

                try:
                    evaluation = evaluate(template, payload, serial, self._separator)
                except LedgerKernelError as exc:
                    return self._record_failure(
                        template.orchid, template.name, payload, reference,
                        exc, actor_id, schedule_id,
                    )

                instance = self._open_instance(
                    template, payload, reference, actor_id, schedule_id
                )
                if instance is None:
                    logger.warning(
                        "reference_collision_retry",
                        extra={"reference": reference, "attempt": attempt},
                    )
                    continue

                return self._complete(template, payload, evaluation, instance, actor_id)

            failure = ReferenceCollisionError(last_reference or "", self._max_attempts)
            return self._record_failure(
                template.orchid, template.name, payload, None,
                failure, actor_id, schedule_id,
            )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _load_template(self, code: str) -> TemplateDefinition:
        template = self._templates.find(code)
        if template is None:
            raise TemplateNotFoundError(code)
        if not template.is_active:
            raise TemplateInactiveError(code)
        return template

    @staticmethod
    def _check_required(template: TemplateDefinition, payload: Mapping[str, Any]) -> None:
        missing = [
            name
            for name in template.required_fields
            if payload.get(name) is None or payload.get(name) == ""
        ]
        if missing:
            raise MissingFieldsError(template.orchid, missing)

    def _next_reference(self, template: TemplateDefinition) -> tuple[int | str, str]:
        """Allocate a serial; every call consumes one, used or not."""
        config = template.reference_config
        if config.serial_method == SerialMethod.INCREMENTOR:
            serial: int | str = self._sequences.next_reference_serial(template.orchid)
        else:
            serial = secrets.token_hex((config.length + 1) // 2)[: config.length]
        return serial, format_reference(config, serial, self._separator)

    def _reference_taken(self, reference: str) -> bool:
        return bool(
            self.session.execute(
                select(
                    exists().where(JournalEntry.reference == reference)
                    | exists().where(EventInstance.reference == reference)
                )
            ).scalar()
        )

    def _open_instance(
        self,
        template: TemplateDefinition,
        payload: Mapping[str, Any],
        reference: str,
        actor_id: UUID,
        schedule_id: UUID | None,
    ) -> EventInstance | None:
        """Insert the PENDING instance; None when a concurrent writer took the reference."""
        savepoint = self.session.begin_nested()
        try:
            instance = EventInstance(
                template_orchid=template.orchid,
                event_type=template.name,
                reference=reference,
                payload=json_safe(payload),
                status=InstanceStatus.PENDING.value,
                results=[],
                schedule_id=schedule_id,
                created_by_id=actor_id,
            )
            self.session.add(instance)
            self.session.flush()
            savepoint.commit()
            return instance
        except IntegrityError:
            savepoint.rollback()
            return None

    def _record_failure(
        self,
        orchid: str,
        event_type: str,
        payload: Mapping[str, Any],
        reference: str | None,
        exc: LedgerKernelError,
        actor_id: UUID,
        schedule_id: UUID | None,
    ) -> EventInstanceInfo:
        instance = EventInstance(
            template_orchid=orchid,
            event_type=event_type,
            reference=reference,
            payload=json_safe(payload),
            status=InstanceStatus.FAILED.value,
            processed_at=self._clock.now(),
            error_code=exc.code,
            error_message=str(exc),
            results=[PluginResult(JOURNAL_PLUGIN, False, error=str(exc)).to_dict()],
            schedule_id=schedule_id,
            created_by_id=actor_id,
        )
        self.session.add(instance)
        self.session.flush()

        with LogContext.bind(instance_id=instance.id):
            logger.warning(
                "dispatch_failed",
                extra={
                    "reference": reference,
                    "error_code": exc.code,
                    "error_message": str(exc),
                },
            )
        return EventInstanceInfo.from_model(instance)

    def _complete(
        self,
        template: TemplateDefinition,
        payload: Mapping[str, Any],
        evaluation: RuleEvaluation,
        instance: EventInstance,
        actor_id: UUID,
    ) -> EventInstanceInfo:
        with LogContext.bind(instance_id=instance.id):
            journal_result, journal_error = self._run_journal(
                evaluation, payload, instance, actor_id
            )
            results = [journal_result]

            context = PluginContext(
                template_code=template.orchid,
                instance_id=instance.id,
                reference=evaluation.reference,
                payload=dict(payload),
                evaluation=evaluation,
                journal_entry_id=instance.journal_entry_id,
                actor_id=actor_id,
            )
            for name in template.plugins:
                if name == JOURNAL_PLUGIN:
                    continue
                if not journal_result.success:
                    results.append(
                        PluginResult(name, False, error="skipped: journal step failed")
                    )
                    continue
                results.append(self._run_plugin(name, context))

            instance.results = [r.to_dict() for r in results]
            instance.processed_at = self._clock.now()
            if journal_result.success:
                instance.status = InstanceStatus.PROCESSED.value
            else:
                instance.status = InstanceStatus.FAILED.value
                instance.error_code = journal_error.code
                instance.error_message = str(journal_error)
            self.session.flush()

            logger.info(
                "dispatch_completed",
                extra={
                    "reference": instance.reference,
                    "status": instance.status,
                    "journal_entry_id": (
                        str(instance.journal_entry_id) if instance.journal_entry_id else None
                    ),
                    "failed_steps": [r.step for r in results if not r.success],
                },
            )
            return EventInstanceInfo.from_model(instance)

    def _run_journal(
        self,
        evaluation: RuleEvaluation,
        payload: Mapping[str, Any],
        instance: EventInstance,
        actor_id: UUID,
    ) -> tuple[PluginResult, LedgerKernelError | None]:
        savepoint = self.session.begin_nested()
        try:
            entry_id = self._journal_plugin.run(evaluation, payload, instance.id, actor_id)
            savepoint.commit()
        except LedgerKernelError as exc:
            savepoint.rollback()
            logger.warning(
                "journal_step_failed",
                extra={"error_code": exc.code, "error_message": str(exc)},
            )
            return PluginResult(JOURNAL_PLUGIN, False, error=str(exc)), exc

        instance.journal_entry_id = entry_id
        return PluginResult(JOURNAL_PLUGIN, True, result_id=str(entry_id)), None

    def _run_plugin(self, name: str, context: PluginContext) -> PluginResult:
        plugin = self._plugins.get(name)
        if plugin is None:
            logger.warning("plugin_not_registered", extra={"plugin": name})
            return PluginResult(name, False, error="plugin not registered")

        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=4, thread_name_prefix="dispatch-plugin"
            )
        future = self._executor.submit(plugin.run, context)
        try:
            result_id = future.result(timeout=self._plugin_timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(
                "plugin_timed_out",
                extra={"plugin": name, "timeout_seconds": self._plugin_timeout},
            )
            return PluginResult(
                name, False, error=f"timed out after {self._plugin_timeout}s"
            )
        except Exception as exc:
            logger.warning(
                "plugin_failed",
                extra={"plugin": name, "error_message": str(exc)},
                exc_info=True,
            )
            return PluginResult(name, False, error=str(exc))

        return PluginResult(
            name, True, result_id=str(result_id) if result_id is not None else None
        )
