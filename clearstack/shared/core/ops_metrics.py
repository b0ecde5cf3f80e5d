"""
Operational metrics for the compliance core.

Scheduler health, purge outcomes, audit sink health and alert volume are
exported through Prometheus so operators can alert on failure rates.
"""

from prometheus_client import Counter, Histogram

# --- Scheduling ---
SCHEDULER_JOB_RUNS = Counter(
    "clearstack_scheduler_job_runs_total",
    "Total number of scheduled job runs",
    ["job_name", "status"],  # status: success, failure
)

SCHEDULER_JOB_DURATION = Histogram(
    "clearstack_scheduler_job_duration_seconds",
    "Duration of scheduled jobs in seconds",
    ["job_name"],
    buckets=(1, 5, 10, 30, 60, 120, 300, 600, 1800),
)

# --- Compliance ---
PURGE_ENTRIES_PROCESSED = Counter(
    "clearstack_purge_entries_total",
    "Deletion-queue entries processed by the purge engine",
    ["scope", "status"],  # scope: user, tenant; status: purged, failed, skipped
)

AUDIT_WRITE_FAILURES = Counter(
    "clearstack_audit_write_failures_total",
    "Audit records that could not be persisted",
    ["action"],
)

RETENTION_ROWS_DELETED = Counter(
    "clearstack_retention_rows_deleted_total",
    "Rows removed by retention sweeps",
    ["target"],  # audit_logs, deletion_queue, notifications
)

# --- Notifications ---
ALERTS_DISPATCHED = Counter(
    "clearstack_alerts_dispatched_total",
    "Notifications dispatched by scheduled passes",
    ["notification_type"],
)

ALERTS_SUPPRESSED = Counter(
    "clearstack_alerts_suppressed_total",
    "Alerts skipped because a same-day dispatch marker exists",
    ["notification_type"],
)

ALERT_EVALUATION_FAILURES = Counter(
    "clearstack_alert_evaluation_failures_total",
    "Per-item failures during alert passes",
    ["pass_name"],
)
