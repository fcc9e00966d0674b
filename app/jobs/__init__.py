"""
Background Jobs Module

Handles scheduled tasks for:
- Overdue invoice sweep
"""

from app.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler, get_job_status
from app.jobs.overdue_invoices import run_overdue_sweep_job

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "get_job_status",
    "run_overdue_sweep_job",
]
