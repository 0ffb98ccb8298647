"""Job-Typen und In-Memory-JobStore.

Ein Job ist entweder ein ``OnceJob`` (feuert einmal zu ``fires_at``) oder
ein ``RecurringJob`` (feuert nach CRON-``pattern``). Beide besitzen genau
ein Trigger-Handle (APScheduler-Job), das nur der Scheduler stoppt.

Der JobStore hält ausschließlich lebende Jobs. Es gibt keine Persistenz:
beim Prozessende gehen alle geplanten Nachrichten verloren.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, ClassVar

from whatsched.models import JobKind, JobSummary

if TYPE_CHECKING:
    from datetime import datetime

    from apscheduler.job import Job as TriggerHandle


def new_job_id() -> str:
    """Neue, kollisionsfreie Job-ID (opaker String)."""
    return uuid.uuid4().hex


@dataclass(frozen=True, slots=True)
class OnceJob:
    """Einmalige Nachricht zu einem absoluten Zeitpunkt."""

    kind: ClassVar[JobKind] = JobKind.ONCE

    id: str
    recipient: str
    body: str
    fires_at: datetime
    handle: TriggerHandle = field(repr=False, compare=False)

    def summary(self) -> JobSummary:
        return JobSummary(
            id=self.id,
            recipient=self.recipient,
            body=self.body,
            kind=self.kind,
            fires_at=self.fires_at.isoformat(),
        )


@dataclass(frozen=True, slots=True)
class RecurringJob:
    """Wiederkehrende Nachricht nach CRON-Ausdruck."""

    kind: ClassVar[JobKind] = JobKind.RECURRING

    id: str
    recipient: str
    body: str
    pattern: str
    handle: TriggerHandle = field(repr=False, compare=False)

    def summary(self) -> JobSummary:
        return JobSummary(
            id=self.id,
            recipient=self.recipient,
            body=self.body,
            kind=self.kind,
            pattern=self.pattern,
        )


Job = OnceJob | RecurringJob


class JobStore:
    """Registry der lebenden Jobs, indexiert nach ID.

    Die Einfügereihenfolge bleibt erhalten (= Erstellungsreihenfolge).
    Das Stoppen der Trigger-Handles übernimmt der Scheduler, der Store
    kennt nur die Einträge.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}

    def put(self, job: Job) -> None:
        """Registriert einen Job. Die ID muss frisch sein."""
        self._jobs[job.id] = job

    def remove(self, job_id: str) -> bool:
        """Entfernt einen Job.

        Returns:
            True wenn der Job existierte.
        """
        return self._jobs.pop(job_id, None) is not None

    def get(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    def list(self) -> list[Job]:
        """Snapshot aller lebenden Jobs in Erstellungsreihenfolge."""
        return list(self._jobs.values())

    def clear(self) -> int:
        """Vergisst alle Jobs (z.B. beim Shutdown). Gibt die Anzahl zurück."""
        count = len(self._jobs)
        self._jobs.clear()
        return count

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs
