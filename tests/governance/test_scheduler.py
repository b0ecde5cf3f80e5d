"""
Tests for SchedulerOrchestrator

Tests cover:
- Job registry and triggers
- Failure containment and metrics
- Manual runs through the scheduled path
- Start / stop lifecycle and status
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from prometheus_client import REGISTRY

from clearstack.modules.governance.domain.scheduler import JobSpec, SchedulerOrchestrator
from clearstack.modules.notifications.domain.alerts import AlertPassReport
from clearstack.modules.privacy.domain.purge import PurgeReport

EXPECTED_JOBS = {
    "gdpr_purge",
    "deletion_queue_cleanup",
    "daily_alerts",
    "weekly_digest",
    "notification_cleanup",
    "audit_retention",
}


def create_mock_session_maker() -> MagicMock:
    """Create a mock session maker for testing."""
    mock_session = AsyncMock()
    mock_session_maker = MagicMock()
    mock_cm = AsyncMock()
    mock_cm.__aenter__.return_value = mock_session
    mock_cm.__aexit__.return_value = None
    mock_session_maker.return_value = mock_cm
    return mock_session_maker


def _job_runs(job_name: str, status: str) -> float:
    return (
        REGISTRY.get_sample_value(
            "clearstack_scheduler_job_runs_total", {"job_name": job_name, "status": status}
        )
        or 0.0
    )


def _cron_fields(spec: JobSpec) -> dict:
    return {
        field.name: str(field)
        for field in spec.trigger.fields
        if not field.is_default
    }


@pytest.fixture
def orchestrator() -> SchedulerOrchestrator:
    purge_engine = MagicMock()
    purge_engine.run = AsyncMock(return_value=PurgeReport(due=1, purged=1))
    alert_scheduler = MagicMock()
    alert_scheduler.send_daily_alerts = AsyncMock(
        return_value={"contracts": AlertPassReport(due=2, dispatched=2), "tasks": AlertPassReport()}
    )
    alert_scheduler.send_weekly_digest = AsyncMock(return_value=3)
    return SchedulerOrchestrator(
        create_mock_session_maker(),
        purge_engine=purge_engine,
        alert_scheduler=alert_scheduler,
        timezone_name="Europe/Paris",
    )


class TestJobRegistry:
    """Tests for the default job set."""

    def test_registers_every_job(self, orchestrator: SchedulerOrchestrator) -> None:
        assert set(orchestrator.jobs) == EXPECTED_JOBS

    def test_triggers(self, orchestrator: SchedulerOrchestrator) -> None:
        jobs = orchestrator.jobs
        assert _cron_fields(jobs["gdpr_purge"]) == {"hour": "2", "minute": "30"}
        assert _cron_fields(jobs["deletion_queue_cleanup"]) == {"hour": "2", "minute": "45"}
        assert _cron_fields(jobs["daily_alerts"]) == {"hour": "8", "minute": "0"}
        assert _cron_fields(jobs["weekly_digest"]) == {
            "day_of_week": "fri",
            "hour": "8",
            "minute": "0",
        }
        assert _cron_fields(jobs["notification_cleanup"])["day_of_week"] == "sun"
        assert _cron_fields(jobs["audit_retention"]) == {
            "day_of_week": "sun",
            "hour": "3",
            "minute": "0",
        }

    def test_triggers_fire_in_scheduler_timezone(self, orchestrator: SchedulerOrchestrator) -> None:
        trigger = orchestrator.jobs["gdpr_purge"].trigger
        # 02:30 Paris summer time is 00:30 UTC
        now = datetime(2026, 6, 1, 0, 0, tzinfo=timezone.utc)
        fire = trigger.get_next_fire_time(None, now)
        assert fire.astimezone(timezone.utc) == now + timedelta(minutes=30)

    def test_register_replaces_by_name(self, orchestrator: SchedulerOrchestrator) -> None:
        handler = AsyncMock()
        original = orchestrator.jobs["daily_alerts"]
        orchestrator.register(JobSpec("daily_alerts", original.trigger, handler))
        assert orchestrator.jobs["daily_alerts"].handler is handler
        assert len(orchestrator.jobs) == len(EXPECTED_JOBS)


@pytest.mark.asyncio
class TestJobExecution:
    """Tests for run_job() and failure containment."""

    async def test_run_job_returns_handler_result(self, orchestrator: SchedulerOrchestrator) -> None:
        before = _job_runs("gdpr_purge", "success")

        result = await orchestrator.run_job("gdpr_purge")

        assert result["purged"] == 1
        assert _job_runs("gdpr_purge", "success") == before + 1
        assert orchestrator.get_status()["last_runs"]["gdpr_purge"]["success"] is True

    async def test_daily_alerts_job_serialises_reports(
        self, orchestrator: SchedulerOrchestrator
    ) -> None:
        result = await orchestrator.run_job("daily_alerts")
        assert result["contracts"]["dispatched"] == 2
        assert result["tasks"] == AlertPassReport().to_dict()

    async def test_failing_job_is_contained(self, orchestrator: SchedulerOrchestrator) -> None:
        orchestrator.alert_scheduler.send_weekly_digest = AsyncMock(
            side_effect=RuntimeError("smtp down")
        )
        before = _job_runs("weekly_digest", "failure")

        result = await orchestrator.run_job("weekly_digest")

        assert result is None
        assert _job_runs("weekly_digest", "failure") == before + 1
        last = orchestrator.get_status()["last_runs"]["weekly_digest"]
        assert last["success"] is False
        assert last["error"] == "smtp down"

        # The next fire runs normally.
        orchestrator.alert_scheduler.send_weekly_digest = AsyncMock(return_value=5)
        assert await orchestrator.run_job("weekly_digest") == 5

    async def test_unknown_job(self, orchestrator: SchedulerOrchestrator) -> None:
        with pytest.raises(KeyError):
            await orchestrator.run_job("reticulate_splines")

    async def test_cleanup_jobs_against_real_database(self, session_maker) -> None:
        orchestrator = SchedulerOrchestrator(session_maker, timezone_name="Europe/Paris")

        assert await orchestrator.run_job("deletion_queue_cleanup") == 0
        assert await orchestrator.run_job("notification_cleanup") == 0
        assert await orchestrator.run_job("audit_retention") == 0
        purge = await orchestrator.run_job("gdpr_purge")
        assert purge["due"] == 0


@pytest.mark.asyncio
class TestSchedulerLifecycle:
    """Tests for start() / stop() / get_status()."""

    async def test_start_registers_jobs_and_runs(self, orchestrator: SchedulerOrchestrator) -> None:
        orchestrator.start()
        try:
            status = orchestrator.get_status()
            assert status["running"] is True
            assert set(status["jobs"]) == EXPECTED_JOBS
            job = orchestrator.scheduler.get_job("gdpr_purge")
            assert job.max_instances == 1
            assert job.coalesce is True
            assert job.misfire_grace_time == 3600
        finally:
            orchestrator.stop()

        assert orchestrator.scheduler.running is False


class TestSchedulerStatus:
    """Tests for get_status() before start()."""

    def test_status_before_start(self, orchestrator: SchedulerOrchestrator) -> None:
        status = orchestrator.get_status()
        assert status == {
            "running": False,
            "timezone": "Europe/Paris",
            "jobs": [],
            "last_runs": {},
        }

    def test_stop_when_not_running_is_noop(self, orchestrator: SchedulerOrchestrator) -> None:
        orchestrator.stop()
        assert orchestrator.scheduler.running is False
