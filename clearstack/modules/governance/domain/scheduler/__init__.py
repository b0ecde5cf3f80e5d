"""
Scheduler Service - Package Entry Point

Exports the scheduler orchestrator and the job registry type.
"""

from .orchestrator import JobSpec, SchedulerOrchestrator

__all__ = [
    "JobSpec",
    "SchedulerOrchestrator",
]
