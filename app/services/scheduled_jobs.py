"""
Scheduled Jobs — concrete jobs run by the scheduler.

Jobs:
    - reminder_processor: queues due date reminders and sends pending notifications
    - overdue_task_scanner: flags open tasks whose due date has passed
"""

from __future__ import annotations

import logging
from typing import Any

from app.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Reminder processor
# ═══════════════════════════════════════════════════════════════════════════

@register_job("reminder_processor", schedule="*/15 * * * *")
def process_due_reminders(app) -> dict[str, Any]:
    """Queue due date reminders and deliver pending notifications."""
    from app.services.reminder_service import process_reminders

    results = process_reminders()
    logger.info("Reminder processor: %s", results)
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Overdue task scanner
# ═══════════════════════════════════════════════════════════════════════════

@register_job("overdue_task_scanner", schedule="0 * * * *")
def scan_overdue_tasks(app) -> dict[str, Any]:
    """Flag open tasks whose due date has passed."""
    from app.services.job_task_service import mark_overdue_tasks

    return {"tasks_marked_overdue": mark_overdue_tasks()}
