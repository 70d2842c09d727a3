"""Dispatch worker tasks."""

from __future__ import annotations

from workers.dispatch_worker.worker import (
    AutoAssignRunResult,
    DispatchWorkerSettings,
    load_settings,
    run_sweep_with_retries,
)


def auto_assign_tick(settings: DispatchWorkerSettings | None = None) -> AutoAssignRunResult:
    """Run one auto-assignment sweep, for cron-style schedulers."""
    return run_sweep_with_retries(settings or load_settings())
