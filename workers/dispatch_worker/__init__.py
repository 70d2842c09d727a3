"""Dispatch worker module exports."""

from .worker import (
    AutoAssignRunResult,
    DispatchWorkerSettings,
    load_settings,
    run_forever,
    run_sweep_once,
    run_sweep_with_retries,
)

__all__ = [
    "AutoAssignRunResult",
    "DispatchWorkerSettings",
    "load_settings",
    "run_forever",
    "run_sweep_once",
    "run_sweep_with_retries",
]
