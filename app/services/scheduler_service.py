"""
Scheduler Service — registry and runner for periodic jobs.

Jobs are plain functions registered with ``@register_job``; an external
trigger (cron calling ``flask run-job``, or the site-admin API) runs them
inside the Flask app context. The last run of each job is kept in memory
for the status listing.

Architecture:
    - register_job: decorator adding a function to the registry
    - SchedulerService.run_job: timed execution with failure capture
    - SchedulerService.list_jobs: registry + last-run summary
"""

from __future__ import annotations

import logging
import time
from contextlib import nullcontext
from typing import Callable

from flask import Flask, current_app, has_app_context

from app.models import db
from app.utils.helpers import iso, utcnow

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str, schedule: str = ""):
    """Decorator to register a job function.

    Usage:
        @register_job("reminder_processor", schedule="*/15 * * * *")
        def process_due_reminders(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        fn.schedule = schedule
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    """Return all registered job functions."""
    return dict(_job_registry)


class SchedulerService:
    """
    Lightweight scheduler service.

    Runs registered jobs within the Flask app context and remembers the
    outcome of the last run per job.
    """

    _app: Flask | None = None
    _last_runs: dict[str, dict] = {}

    @classmethod
    def init_app(cls, app: Flask) -> None:
        """Bind the scheduler to the app."""
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs", len(_job_registry))

    @classmethod
    def _context(cls):
        if has_app_context():
            return nullcontext()
        return cls._app.app_context()

    @classmethod
    def run_job(cls, job_name: str) -> dict | None:
        """
        Execute a single job by name.

        Returns:
            Dict with status, duration_ms, result or error; None for an
            unknown job.
        """
        fn = _job_registry.get(job_name)
        if fn is None:
            return None
        if cls._app is None and not has_app_context():
            raise RuntimeError("Scheduler not initialized")

        started_at = utcnow()
        start = time.monotonic()
        result = None
        error = None
        status = "success"

        with cls._context():
            try:
                result = fn(current_app._get_current_object())
            except Exception as exc:
                status = "failed"
                error = str(exc)
                logger.exception("Job %s failed: %s", job_name, exc)
                db.session.rollback()

        run = {
            "job_name": job_name,
            "status": status,
            "started_at": iso(started_at),
            "duration_ms": int((time.monotonic() - start) * 1000),
            "result": result,
            "error": error,
        }
        cls._last_runs[job_name] = run
        logger.info("Job %s finished: %s in %dms", job_name, status, run["duration_ms"])
        return run

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """List all registered jobs with their last run."""
        return [
            {
                "job_name": name,
                "description": (fn.__doc__ or "").strip().splitlines()[0] if fn.__doc__ else "",
                "schedule": getattr(fn, "schedule", ""),
                "last_run": cls._last_runs.get(name),
            }
            for name, fn in sorted(_job_registry.items())
        ]
