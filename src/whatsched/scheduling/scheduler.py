"""Scheduler: macht aus Schedule-Anfragen selbstauslösende Jobs.

Nutzt APScheduler 3.x (AsyncIOScheduler). Einmalige Nachrichten laufen
über einen DateTrigger, wiederkehrende über einen CronTrigger. Jeder
Trigger ruft beim Feuern den Messaging-Channel auf; die Zustellung läuft
als eigener Task im Event-Loop und meldet Fehler nie an den Aufrufer
von ``schedule`` zurück.

Regeln:
  - Ein gefeuerter OnceJob ist verbraucht, auch wenn das Senden fehlschlägt.
  - Ein verspäteter OnceJob feuert trotzdem; ein verpasster wird als Fehler gemerkt.
  - Ein RecurringJob feuert weiter, bis er abgebrochen wird.
  - Zustellfehler werden geloggt und gemerkt, aber nie wiederholt.
"""

from __future__ import annotations

import contextlib
from collections import deque
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from apscheduler.events import EVENT_JOB_MISSED, JobExecutionEvent
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from whatsched.core.errors import InvalidScheduleError, WhatschedError
from whatsched.models import DeliveryFailure, JobKind, JobSummary, StatusReport
from whatsched.scheduling.cron import build_cron_trigger
from whatsched.scheduling.jobs import Job, JobStore, OnceJob, RecurringJob, new_job_id
from whatsched.utils.logging import get_logger

if TYPE_CHECKING:
    from whatsched.channels.base import MessageChannel

log = get_logger(__name__)


class Scheduler:
    """Plant, feuert, listet und bricht Nachrichten-Jobs ab.

    Attributes:
        store: JobStore mit allen lebenden Jobs.
        running: Ob der APScheduler läuft.
    """

    def __init__(
        self,
        channel: MessageChannel,
        *,
        store: JobStore | None = None,
        timezone: str = "UTC",
        misfire_grace_seconds: int = 30,
        max_failures_kept: int = 50,
    ) -> None:
        """Initialisiert den Scheduler.

        Args:
            channel: Messaging-Channel für die Zustellung.
            store: Optionaler JobStore (Default: neuer, leerer Store).
            timezone: IANA-Zeitzone für CRON-Ausdrücke und naive Zeitpunkte.
            misfire_grace_seconds: Wie spät ein CRON-Trigger noch feuern darf.
                Einmalige Jobs feuern immer, auch verspätet.
            max_failures_kept: Anzahl gemerkter Zustellfehler.
        """
        self._channel = channel
        self.store = store if store is not None else JobStore()
        self._timezone = timezone
        self._tz = ZoneInfo(timezone)
        self._misfire_grace = misfire_grace_seconds
        self._scheduler: AsyncIOScheduler | None = None
        self._failures: deque[DeliveryFailure] = deque(maxlen=max_failures_kept)

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    async def start(self) -> None:
        """Startet den APScheduler im laufenden Event-Loop."""
        if self._scheduler is not None:
            log.warning("scheduler_already_running")
            return
        self._scheduler = AsyncIOScheduler(timezone=self._timezone)
        self._scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)
        self._scheduler.start()
        log.info("scheduler_started", timezone=self._timezone)

    async def stop(self) -> None:
        """Stoppt den Scheduler ohne auf laufende Zustellungen zu warten.

        Alle noch geplanten Jobs gehen verloren (keine Persistenz).
        """
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        abandoned = self.store.clear()
        log.info("scheduler_stopped", abandoned_jobs=abandoned)

    # === Öffentliche API ===

    def schedule(
        self,
        recipient: str,
        body: str,
        mode: JobKind | str,
        time_spec: datetime | str,
    ) -> str:
        """Plant eine Nachricht.

        Args:
            recipient: Empfängeradresse (Telefonnummer).
            body: Nachrichtentext.
            mode: ``once`` oder ``recurring``.
            time_spec: Zukünftiger Zeitpunkt (once) oder CRON-Ausdruck (recurring).

        Returns:
            Opake Job-ID für ``cancel``.

        Raises:
            InvalidScheduleError: Bei ungültiger Anfrage. Es wird kein Job angelegt.
        """
        try:
            kind = JobKind(mode)
        except ValueError:
            msg = f"Unknown mode: {mode!r}"
            raise InvalidScheduleError(msg, details={"mode": str(mode)}) from None

        match kind:
            case JobKind.ONCE:
                if not isinstance(time_spec, datetime):
                    msg = "One-time messages need a point in time"
                    raise InvalidScheduleError(msg)
                return self.schedule_once(recipient, body, time_spec)
            case JobKind.RECURRING:
                if not isinstance(time_spec, str):
                    msg = "Recurring messages need a CRON expression"
                    raise InvalidScheduleError(msg)
                return self.schedule_recurring(recipient, body, time_spec)

    def schedule_once(self, recipient: str, body: str, fires_at: datetime) -> str:
        """Plant eine einmalige Nachricht zu ``fires_at``.

        Naive Zeitpunkte werden in der konfigurierten Zeitzone interpretiert.
        """
        _validate_message(recipient, body)
        if fires_at.tzinfo is None:
            fires_at = fires_at.replace(tzinfo=self._tz)

        delay = (fires_at - datetime.now(UTC)).total_seconds()
        if delay <= 0:
            raise InvalidScheduleError(
                "Time must be in the future",
                details={"fires_at": fires_at.isoformat(), "delay_seconds": delay},
            )

        scheduler = self._require_running()
        job_id = new_job_id()
        handle = scheduler.add_job(
            self._fire_once,
            trigger=DateTrigger(run_date=fires_at),
            args=[job_id],
            id=job_id,
            name=f"once:{recipient}",
            # Verspätet feuern statt verwerfen
            misfire_grace_time=None,
        )
        self.store.put(
            OnceJob(id=job_id, recipient=recipient, body=body, fires_at=fires_at, handle=handle)
        )
        log.info(
            "job_scheduled",
            job_id=job_id,
            kind=JobKind.ONCE.value,
            recipient=recipient,
            fires_at=fires_at.isoformat(),
            delay_seconds=round(delay, 3),
            live_jobs=len(self.store),
        )
        return job_id

    def schedule_recurring(self, recipient: str, body: str, pattern: str) -> str:
        """Plant eine wiederkehrende Nachricht nach CRON-Ausdruck."""
        _validate_message(recipient, body)
        # Validierung vor jedem Trigger-Aufbau
        trigger = build_cron_trigger(pattern, timezone=self._timezone)

        scheduler = self._require_running()
        job_id = new_job_id()
        handle = scheduler.add_job(
            self._fire_recurring,
            trigger=trigger,
            args=[job_id],
            id=job_id,
            name=f"recurring:{recipient}",
            misfire_grace_time=self._misfire_grace,
            coalesce=True,
        )
        self.store.put(
            RecurringJob(id=job_id, recipient=recipient, body=body, pattern=pattern, handle=handle)
        )
        log.info(
            "job_scheduled",
            job_id=job_id,
            kind=JobKind.RECURRING.value,
            recipient=recipient,
            pattern=pattern,
            next_run=str(handle.next_run_time),
            live_jobs=len(self.store),
        )
        return job_id

    def cancel(self, job_id: str) -> bool:
        """Bricht einen lebenden Job ab.

        Returns:
            True wenn der Job existierte, False sonst (kein Fehler).
        """
        job = self.store.get(job_id)
        if job is None:
            return False

        match job:
            case OnceJob():
                # Bereits gefeuerter Timer: Zustellung läuft ggf. noch
                with contextlib.suppress(JobLookupError):
                    job.handle.remove()
            case RecurringJob():
                try:
                    job.handle.remove()
                except JobLookupError:
                    log.warning("recurring_trigger_missing", job_id=job_id)

        self.store.remove(job_id)
        log.info("job_cancelled", job_id=job_id, kind=job.kind.value)
        return True

    def list(self) -> list[JobSummary]:
        """Alle lebenden Jobs in Erstellungsreihenfolge."""
        return [job.summary() for job in self.store.list()]

    @property
    def failures(self) -> list[DeliveryFailure]:
        """Zuletzt fehlgeschlagene Zustellungen, neueste zuerst."""
        return list(self._failures)

    def status(self) -> StatusReport:
        """Verbindungsstatus + Identität des Channels und alle lebenden Jobs."""
        return StatusReport(
            status=self._channel.connection_status(),
            me=self._channel.current_user(),
            scheduled=self.list(),
            recent_failures=self.failures,
        )

    # === Trigger-Callbacks ===

    async def _fire_once(self, job_id: str) -> None:
        job = self.store.get(job_id)
        if job is None:
            log.debug("fired_job_gone", job_id=job_id)
            return
        try:
            await self._deliver(job)
        finally:
            self.store.remove(job_id)

    async def _fire_recurring(self, job_id: str) -> None:
        job = self.store.get(job_id)
        if job is None:
            log.debug("fired_job_gone", job_id=job_id)
            return
        await self._deliver(job)

    def _on_job_missed(self, event: JobExecutionEvent) -> None:
        """Ein OnceJob, dessen Timer verfallen ist, darf nicht als lebend gelistet bleiben."""
        job = self.store.get(event.job_id)
        if job is None:
            return
        if isinstance(job, RecurringJob):
            log.warning("recurring_run_missed", job_id=job.id)
            return
        self.store.remove(job.id)
        log.error("job_missed", job_id=job.id, scheduled=str(event.scheduled_run_time))
        self._failures.appendleft(
            DeliveryFailure(
                job_id=job.id,
                recipient=job.recipient,
                kind=job.kind,
                error="Missed scheduled time",
            )
        )

    async def _deliver(self, job: Job) -> None:
        log.info("job_fired", job_id=job.id, kind=job.kind.value, recipient=job.recipient)
        try:
            await self._channel.send_text(job.recipient, job.body)
        except Exception as exc:
            log.exception(
                "delivery_failed",
                job_id=job.id,
                kind=job.kind.value,
                recipient=job.recipient,
            )
            self._failures.appendleft(
                DeliveryFailure(
                    job_id=job.id,
                    recipient=job.recipient,
                    kind=job.kind,
                    error=str(exc) or type(exc).__name__,
                )
            )
            return
        log.info("message_sent", job_id=job.id, kind=job.kind.value, recipient=job.recipient)

    def _require_running(self) -> AsyncIOScheduler:
        if self._scheduler is None:
            raise WhatschedError("Scheduler is not running", error_code="SCHEDULER_NOT_RUNNING")
        return self._scheduler


def _validate_message(recipient: str, body: str) -> None:
    if not isinstance(recipient, str) or not recipient.strip():
        raise InvalidScheduleError("Recipient is required", details={"field": "recipient"})
    if not isinstance(body, str) or not body.strip():
        raise InvalidScheduleError("Message text is required", details={"field": "body"})
