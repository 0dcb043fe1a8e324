"""
ledger_batch -- Recurring template dispatch.

Stores recurring schedules, computes their next run times and fires the
Dispatcher for every due schedule from an in-process polling loop.

Architecture:
    ledger_batch/ is a top-level package on top of ledger_kernel.  Nothing
    in ledger_kernel imports from ledger_batch except db.engine, which
    imports the models so that create_tables() sees every table.

Invariants:
    - Schedule evaluation (domain/schedule.py) is pure; every timestamp
      comes from an injected Clock.
    - A due schedule is claimed with an optimistic version check before it
      is dispatched; a lost claim is skipped, so two workers never
      double-advance the same schedule.
    - Every claimed run advances last_run, run_count and next_run whatever
      the dispatch outcome.
"""
