import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.ext.asyncio import AsyncSession

from clearstack.modules.governance.domain.security.audit_log import sweep_audit_retention
from clearstack.modules.notifications.domain.alerts import AlertScheduler
from clearstack.modules.notifications.domain.dispatch import sweep_old_notifications
from clearstack.modules.privacy.domain.deletion_queue import sweep_deletion_queue
from clearstack.modules.privacy.domain.purge import PurgeEngine
from clearstack.shared.core.config import get_settings
from clearstack.shared.core.ops_metrics import SCHEDULER_JOB_DURATION, SCHEDULER_JOB_RUNS

logger = structlog.get_logger()


@dataclass(frozen=True)
class JobSpec:
    """A named recurring job: when it fires and what it runs."""

    name: str
    trigger: BaseTrigger
    handler: Callable[[], Awaitable[Any]]


class SchedulerOrchestrator:
    """Manages APScheduler and the compliance/notification job registry."""

    def __init__(
        self,
        session_maker: Callable[[], AsyncSession],
        *,
        purge_engine: Optional[PurgeEngine] = None,
        alert_scheduler: Optional[AlertScheduler] = None,
        timezone_name: Optional[str] = None,
    ) -> None:
        self.timezone_name = timezone_name or get_settings().SCHEDULER_TIMEZONE
        self.scheduler = AsyncIOScheduler(timezone=self.timezone_name)
        self.session_maker = session_maker
        self.purge_engine = purge_engine or PurgeEngine(session_maker)
        self.alert_scheduler = alert_scheduler or AlertScheduler(session_maker)
        self._jobs: Dict[str, JobSpec] = {}
        self._last_runs: Dict[str, Dict[str, Any]] = {}
        for spec in self.default_jobs():
            self.register(spec)

    def _cron(self, **fields: Any) -> CronTrigger:
        return CronTrigger(timezone=self.timezone_name, **fields)

    def default_jobs(self) -> list[JobSpec]:
        return [
            # Erasure: daily 02:30, queue housekeeping right after
            JobSpec("gdpr_purge", self._cron(hour=2, minute=30), self.gdpr_purge_job),
            JobSpec(
                "deletion_queue_cleanup",
                self._cron(hour=2, minute=45),
                self.deletion_queue_cleanup_job,
            ),
            # Alerts: daily 08:00, digest Friday 08:00
            JobSpec("daily_alerts", self._cron(hour=8, minute=0), self.daily_alerts_job),
            JobSpec(
                "weekly_digest",
                self._cron(day_of_week="fri", hour=8, minute=0),
                self.weekly_digest_job,
            ),
            # Retention: Sunday nights
            JobSpec(
                "notification_cleanup",
                self._cron(day_of_week="sun", hour=2, minute=0),
                self.notification_cleanup_job,
            ),
            JobSpec(
                "audit_retention",
                self._cron(day_of_week="sun", hour=3, minute=0),
                self.audit_retention_job,
            ),
        ]

    def register(self, spec: JobSpec) -> None:
        self._jobs[spec.name] = spec

    @property
    def jobs(self) -> Dict[str, JobSpec]:
        return dict(self._jobs)

    # --- Job handlers ------------------------------------------------------

    async def gdpr_purge_job(self) -> Dict[str, Any]:
        report = await self.purge_engine.run()
        return report.to_dict()

    async def deletion_queue_cleanup_job(self) -> int:
        async with self.session_maker() as db:
            return await sweep_deletion_queue(db)

    async def daily_alerts_job(self) -> Dict[str, Any]:
        reports = await self.alert_scheduler.send_daily_alerts()
        return {name: report.to_dict() for name, report in reports.items()}

    async def weekly_digest_job(self) -> int:
        return await self.alert_scheduler.send_weekly_digest()

    async def notification_cleanup_job(self) -> int:
        async with self.session_maker() as db:
            return await sweep_old_notifications(db)

    async def audit_retention_job(self) -> int:
        async with self.session_maker() as db:
            return await sweep_audit_retention(db)

    # --- Execution -----------------------------------------------------------

    async def _execute(self, spec: JobSpec) -> Any:
        """
        Run one job with metrics and containment. A failing job is logged and
        counted; it never propagates into APScheduler or later fires.
        """
        started = time.perf_counter()
        started_at = datetime.now(timezone.utc).isoformat()
        logger.info("scheduler_job_started", job=spec.name)
        try:
            result = await spec.handler()
        except Exception as exc:
            SCHEDULER_JOB_RUNS.labels(job_name=spec.name, status="failure").inc()
            self._last_runs[spec.name] = {
                "success": False,
                "started_at": started_at,
                "error": str(exc),
            }
            logger.error("scheduler_job_failed", job=spec.name, error=str(exc), exc_info=True)
            return None
        finally:
            SCHEDULER_JOB_DURATION.labels(job_name=spec.name).observe(
                time.perf_counter() - started
            )

        SCHEDULER_JOB_RUNS.labels(job_name=spec.name, status="success").inc()
        self._last_runs[spec.name] = {"success": True, "started_at": started_at}
        logger.info(
            "scheduler_job_completed",
            job=spec.name,
            duration_seconds=round(time.perf_counter() - started, 3),
        )
        return result

    async def run_job(self, name: str) -> Any:
        """Invoke a registered job now, through the same path as a scheduled fire."""
        spec = self._jobs.get(name)
        if spec is None:
            raise KeyError(f"Unknown job: {name}")
        return await self._execute(spec)

    def start(self) -> None:
        """Registers every job with APScheduler and starts it."""
        for spec in self._jobs.values():
            self.scheduler.add_job(
                self._execute,
                trigger=spec.trigger,
                args=[spec],
                id=spec.name,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=3600,
            )
        self.scheduler.start()
        logger.info("scheduler_started", jobs=sorted(self._jobs), timezone=self.timezone_name)

    def stop(self) -> None:
        if not self.scheduler.running:
            logger.debug("scheduler_stop_skipped_not_running")
            return
        self.scheduler.shutdown(wait=True)

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self.scheduler.running,
            "timezone": self.timezone_name,
            "jobs": [str(job.id) for job in self.scheduler.get_jobs()],
            "last_runs": dict(self._last_runs),
        }
