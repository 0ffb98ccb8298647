"""Tests für den Scheduler.

Testet Schedule-Validierung, Feuern (einmalig + CRON), Abbrechen,
Zustellfehler und den Status-Report.
"""

from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from unittest.mock import MagicMock
from zoneinfo import ZoneInfo

import pytest
from apscheduler.events import EVENT_JOB_MISSED, JobExecutionEvent
from apscheduler.jobstores.base import JobLookupError

from whatsched.core.errors import InvalidScheduleError, WhatschedError
from whatsched.models import JobKind
from whatsched.scheduling.jobs import JobStore, OnceJob, RecurringJob
from whatsched.scheduling.scheduler import Scheduler

if TYPE_CHECKING:
    from tests.conftest import FakeChannel


def _in(seconds: float) -> datetime:
    return datetime.now(UTC) + timedelta(seconds=seconds)


# ============================================================================
# Lifecycle
# ============================================================================


class TestSchedulerLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        assert not sched.running
        await sched.start()
        assert sched.running
        await sched.stop()
        assert not sched.running

    @pytest.mark.asyncio
    async def test_double_start_warns(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        await sched.start()
        await sched.start()  # Should warn but not crash
        assert sched.running
        await sched.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        await sched.stop()  # Should not crash

    @pytest.mark.asyncio
    async def test_stop_forgets_pending_jobs(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        await sched.start()
        sched.schedule("1555000111", "later", "once", _in(3600))
        sched.schedule("1555000111", "tick", "recurring", "0 9 * * *")
        await sched.stop()
        assert sched.list() == []

    def test_schedule_requires_running_scheduler(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        with pytest.raises(WhatschedError) as exc_info:
            sched.schedule("1555000111", "hi", "once", _in(60))
        assert exc_info.value.error_code == "SCHEDULER_NOT_RUNNING"
        assert str(exc_info.value) == "Scheduler is not running"
        assert sched.list() == []

    def test_isolated_stores(self, channel: FakeChannel) -> None:
        a = Scheduler(channel)
        b = Scheduler(channel)
        assert a.store is not b.store

    def test_explicit_store_is_used(self, channel: FakeChannel) -> None:
        store = JobStore()
        assert Scheduler(channel, store=store).store is store


# ============================================================================
# Validierung
# ============================================================================


class TestScheduleValidation:
    @pytest.mark.asyncio
    async def test_empty_recipient(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        await sched.start()
        with pytest.raises(InvalidScheduleError, match="Recipient is required"):
            sched.schedule("  ", "hi", "once", _in(60))
        assert sched.list() == []
        await sched.stop()

    @pytest.mark.asyncio
    async def test_empty_body(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        await sched.start()
        with pytest.raises(InvalidScheduleError, match="Message text is required"):
            sched.schedule("1555000111", "", "recurring", "* * * * *")
        assert sched.list() == []
        await sched.stop()

    @pytest.mark.asyncio
    async def test_past_time_rejected(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        await sched.start()
        with pytest.raises(InvalidScheduleError, match="Time must be in the future"):
            sched.schedule("1555000111", "hi", JobKind.ONCE, _in(-5))
        assert sched.list() == []
        await sched.stop()

    @pytest.mark.asyncio
    async def test_invalid_cron_creates_no_job(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        await sched.start()
        with pytest.raises(InvalidScheduleError):
            sched.schedule("1555000111", "hi", "recurring", "61 * * * *")
        assert sched.list() == []
        assert sched._scheduler.get_jobs() == []
        await sched.stop()

    @pytest.mark.asyncio
    async def test_unknown_mode(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        await sched.start()
        with pytest.raises(InvalidScheduleError, match="Unknown mode"):
            sched.schedule("1555000111", "hi", "weekly", "* * * * *")
        await sched.stop()

    @pytest.mark.asyncio
    async def test_mode_time_spec_mismatch(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        await sched.start()
        with pytest.raises(InvalidScheduleError):
            sched.schedule("1555000111", "hi", "once", "* * * * *")
        with pytest.raises(InvalidScheduleError):
            sched.schedule("1555000111", "hi", "recurring", _in(60))
        assert sched.list() == []
        await sched.stop()

    @pytest.mark.asyncio
    async def test_naive_time_uses_configured_timezone(self, channel: FakeChannel) -> None:
        tz = ZoneInfo("Europe/Berlin")
        sched = Scheduler(channel, timezone="Europe/Berlin")
        await sched.start()
        naive = (datetime.now(tz) + timedelta(hours=1)).replace(tzinfo=None)
        job_id = sched.schedule("1555000111", "hi", "once", naive)
        job = sched.store.get(job_id)
        assert isinstance(job, OnceJob)
        assert job.fires_at.tzinfo == tz
        await sched.stop()


# ============================================================================
# Einmalige Jobs
# ============================================================================


class TestOnceJobs:
    @pytest.mark.asyncio
    async def test_schedule_lists_job(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        await sched.start()
        fires_at = _in(60)
        job_id = sched.schedule("1555000111", "hello", "once", fires_at)

        summaries = sched.list()
        assert len(summaries) == 1
        s = summaries[0]
        assert s.id == job_id
        assert s.recipient == "1555000111"
        assert s.body == "hello"
        assert s.kind == JobKind.ONCE
        assert s.fires_at == fires_at.isoformat()
        assert s.pattern is None
        await sched.stop()

    @pytest.mark.asyncio
    async def test_fires_and_disappears(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        await sched.start()
        sched.schedule("1555000111", "hello", "once", _in(0.2))
        await asyncio.sleep(0.8)

        assert channel.sent == [("1555000111", "hello")]
        assert sched.list() == []
        await sched.stop()

    @pytest.mark.asyncio
    async def test_failed_send_still_consumes_job(self, channel: FakeChannel) -> None:
        channel.fail_with = "network down"
        sched = Scheduler(channel)
        await sched.start()
        job_id = sched.schedule("1555000111", "hello", "once", _in(0.2))
        await asyncio.sleep(0.8)

        assert channel.sent == []
        assert sched.list() == []
        assert len(sched.failures) == 1
        failure = sched.failures[0]
        assert failure.job_id == job_id
        assert failure.kind == JobKind.ONCE
        assert failure.error == "network down"
        await sched.stop()

    @pytest.mark.asyncio
    async def test_cancel_before_fire(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        await sched.start()
        job_id = sched.schedule("1555000111", "hello", "once", _in(0.3))
        assert sched.cancel(job_id) is True
        assert sched._scheduler.get_job(job_id) is None

        await asyncio.sleep(0.6)
        assert channel.sent == []
        assert sched.list() == []
        await sched.stop()

    @pytest.mark.asyncio
    async def test_cancel_after_trigger_gone(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        handle = MagicMock()
        handle.remove.side_effect = JobLookupError("gone")
        sched.store.put(
            OnceJob(id="x", recipient="1555000111", body="b", fires_at=_in(1), handle=handle)
        )
        assert sched.cancel("x") is True
        assert sched.list() == []

    @pytest.mark.asyncio
    async def test_fire_for_cancelled_job_is_noop(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        await sched._fire_once("missing")
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_ids_unique_in_same_tick(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        await sched.start()
        when = _in(3600)
        ids = [sched.schedule("1555000111", f"m{i}", "once", when) for i in range(50)]
        assert len(set(ids)) == 50
        assert len(sched.list()) == 50
        await sched.stop()

    @pytest.mark.asyncio
    async def test_late_timer_still_fires(self, channel: FakeChannel) -> None:
        """Blockierter Event-Loop: die Nachricht geht verspätet raus, statt verloren zu gehen."""
        sched = Scheduler(channel, misfire_grace_seconds=1)
        await sched.start()
        job_id = sched.schedule("1555000111", "late", "once", _in(0.1))

        time.sleep(2.0)  # blockiert den Loop länger als die Grace-Zeit
        await asyncio.sleep(0.5)

        assert channel.sent == [("1555000111", "late")]
        assert sched.list() == []
        assert sched.cancel(job_id) is False
        assert sched.failures == []
        await sched.stop()

    @pytest.mark.asyncio
    async def test_missed_run_drops_job_and_records_failure(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        await sched.start()
        job_id = sched.schedule("1555000111", "hello", "once", _in(3600))

        sched._on_job_missed(
            JobExecutionEvent(EVENT_JOB_MISSED, job_id, "default", datetime.now(UTC))
        )

        assert sched.list() == []
        assert sched.cancel(job_id) is False
        assert [f.job_id for f in sched.failures] == [job_id]
        assert sched.failures[0].kind == JobKind.ONCE
        await sched.stop()

    @pytest.mark.asyncio
    async def test_missed_recurring_run_keeps_job(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        await sched.start()
        job_id = sched.schedule("1555000111", "tick", "recurring", "0 9 * * *")

        sched._on_job_missed(
            JobExecutionEvent(EVENT_JOB_MISSED, job_id, "default", datetime.now(UTC))
        )

        assert [s.id for s in sched.list()] == [job_id]
        assert sched.failures == []
        await sched.stop()


# ============================================================================
# Wiederkehrende Jobs
# ============================================================================


class TestRecurringJobs:
    @pytest.mark.asyncio
    async def test_schedule_and_cancel_twice(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        await sched.start()
        job_id = sched.schedule("1555000111", "daily", "recurring", "0 9 * * *")

        summary = sched.list()[0]
        assert summary.kind == JobKind.RECURRING
        assert summary.pattern == "0 9 * * *"
        assert summary.fires_at is None

        assert sched.cancel(job_id) is True
        assert sched.list() == []
        assert sched.cancel(job_id) is False
        await sched.stop()

    @pytest.mark.asyncio
    async def test_cancel_stops_trigger(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        await sched.start()
        job_id = sched.schedule("1555000111", "tick", "recurring", "*/5 * * * *")
        assert sched._scheduler.get_job(job_id) is not None
        sched.cancel(job_id)
        assert sched._scheduler.get_job(job_id) is None
        await sched.stop()

    @pytest.mark.asyncio
    async def test_trigger_fires_and_job_stays_listed(self, channel: FakeChannel) -> None:
        """Der echte CronTrigger ruft den Callback; der Job bleibt danach lebend."""
        sched = Scheduler(channel)
        await sched.start()
        job_id = sched.schedule("1555000111", "tick", "recurring", "0 9 * * *")

        for _ in range(2):
            sched._scheduler.modify_job(job_id, next_run_time=datetime.now(UTC))
            await asyncio.sleep(0.5)

        assert channel.sent == [("1555000111", "tick"), ("1555000111", "tick")]
        assert [s.id for s in sched.list()] == [job_id]
        assert sched._scheduler.get_job(job_id) is not None
        await sched.stop()

    @pytest.mark.asyncio
    async def test_fires_repeatedly_and_stays_listed(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        await sched.start()
        job_id = sched.schedule("1555000111", "tick", "recurring", "* * * * *")

        await sched._fire_recurring(job_id)
        await sched._fire_recurring(job_id)

        assert channel.sent == [("1555000111", "tick"), ("1555000111", "tick")]
        assert [s.id for s in sched.list()] == [job_id]
        await sched.stop()

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_recurring(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        await sched.start()
        job_id = sched.schedule("1555000111", "tick", "recurring", "* * * * *")

        channel.fail_with = "rate limited"
        await sched._fire_recurring(job_id)
        channel.fail_with = None
        await sched._fire_recurring(job_id)

        assert channel.sent == [("1555000111", "tick")]
        assert len(sched.list()) == 1
        assert sched.failures[0].kind == JobKind.RECURRING
        await sched.stop()

    @pytest.mark.asyncio
    async def test_cancel_with_missing_trigger(self, channel: FakeChannel) -> None:
        sched = Scheduler(channel)
        handle = MagicMock()
        handle.remove.side_effect = JobLookupError("gone")
        sched.store.put(
            RecurringJob(id="r", recipient="1555000111", body="b", pattern="* * * * *", handle=handle)
        )
        assert sched.cancel("r") is True
        assert "r" not in sched.store

    def test_cancel_unknown(self, channel: FakeChannel) -> None:
        assert Scheduler(channel).cancel("does-not-exist") is False


# ============================================================================
# Status / Fehler-Historie
# ============================================================================


class TestStatus:
    @pytest.mark.asyncio
    async def test_status_report(self, channel: FakeChannel) -> None:
        await channel.start()
        sched = Scheduler(channel)
        await sched.start()
        sched.schedule("1555000111", "a", "once", _in(3600))
        sched.schedule("1555000222", "b", "recurring", "0 9 * * 1-5")

        report = sched.status()
        assert report.status == "connected"
        assert report.me == {"id": "15550001111", "name": "Test"}
        assert [s.body for s in report.scheduled] == ["a", "b"]
        assert report.recent_failures == []

        data = report.model_dump(mode="json")
        assert data["scheduled"][1]["kind"] == "recurring"
        await sched.stop()

    def test_status_when_disconnected(self, channel: FakeChannel) -> None:
        report = Scheduler(channel).status()
        assert report.status == "disconnected"
        assert report.me is None

    @pytest.mark.asyncio
    async def test_failures_bounded_newest_first(self, channel: FakeChannel) -> None:
        channel.fail_with = "nope"
        sched = Scheduler(channel, max_failures_kept=2)
        for job_id in ("j1", "j2", "j3"):
            sched.store.put(
                RecurringJob(
                    id=job_id, recipient="1", body="b", pattern="* * * * *", handle=MagicMock()
                )
            )
            await sched._fire_recurring(job_id)

        assert [f.job_id for f in sched.failures] == ["j3", "j2"]
