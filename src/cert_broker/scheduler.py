"""
Scheduler — periodic lease-expiry sweep.

Infrastructure layer — uses APScheduler (3.x) BackgroundScheduler driven by
a standard 5-field cron expression, so the sweep runs beside the HTTP
server in the same process.

The job runs inside a LoggingExecutionContext for timing and outcome
logging; a failing or crashing sweep never stops the scheduler.
"""

from __future__ import annotations

from collections.abc import Callable

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from railway import LoggingExecutionContext
from railway.result import Result

log = structlog.get_logger()

JOB_ID = "lease_expiry_sweep"


def create_scheduler(
    sweep_fn: Callable[[], Result[int]],
    cron: str = "*/15 * * * *",
) -> BackgroundScheduler:
    """
    Create a scheduler that runs the lease sweep on a cron schedule.

    Args:
        sweep_fn: Zero-argument callable returning Result[int] (certificates revoked).
        cron: Standard 5-field cron expression (minute hour dom month dow).

    Returns:
        A configured, not yet started BackgroundScheduler.
    """
    scheduler = BackgroundScheduler()
    ctx = LoggingExecutionContext(operation="LeaseExpirySweep")

    def _job() -> None:
        result = ctx.execute(sweep_fn)
        if result.is_success():
            log.info("scheduler.sweep_completed", revoked=result.value())
        else:
            log.error("scheduler.sweep_failed", failure=str(result.error()))

    minute, hour, dom, month, dow = cron.split()
    scheduler.add_job(
        _job,
        trigger=CronTrigger(
            minute=minute,
            hour=hour,
            day=dom,
            month=month,
            day_of_week=dow,
        ),
        id=JOB_ID,
        name="Lease expiry sweep",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    return scheduler
