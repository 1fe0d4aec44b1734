"""Background workers for async processing tasks."""

from vidgenie.workers.reconciliation_worker import run_reconciliation_worker, sweep_stuck_jobs

__all__ = [
    "run_reconciliation_worker",
    "sweep_stuck_jobs",
]
