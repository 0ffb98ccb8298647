"""Scheduling subsystem -- one-shot and CRON message jobs.

Public API:
- Scheduler: Plant, feuert, listet und bricht Jobs ab
- JobStore: In-Memory-Registry der lebenden Jobs

Types:
- OnceJob / RecurringJob: Die beiden Job-Varianten
"""

from whatsched.scheduling.cron import build_cron_trigger, is_valid_cron, parse_cron_fields
from whatsched.scheduling.jobs import Job, JobStore, OnceJob, RecurringJob
from whatsched.scheduling.scheduler import Scheduler

__all__ = [
    "Job",
    "JobStore",
    "OnceJob",
    "RecurringJob",
    "Scheduler",
    "build_cron_trigger",
    "is_valid_cron",
    "parse_cron_fields",
]
