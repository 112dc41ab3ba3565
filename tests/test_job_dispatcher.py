"""Durable queue: idempotent enqueue, retry/backoff, stats and retention."""

import asyncio
import time
from datetime import timedelta

import pytest

from app.errors import UnknownQueueError
from app.models.analysis_job import JobStatus
from app.repositories.analysis_job_repository import AnalysisJobRepository
from app.schemas.queue import JobPayload
from app.services.job_dispatcher import JobDispatcher, idempotency_key_for, job_id_for
from app.utils.time import utc_now
from tests.conftest import make_settings


def _payload(tenant_id: str, call_id: str = "c1") -> JobPayload:
    return JobPayload(call_event_id=call_id, tenant_id=tenant_id, assistant_id="asst-1")


async def _get_job(database, job_id):
    async with database.session() as session:
        return await AnalysisJobRepository(session).get(job_id)


async def _jobs_for(database, tenant_id, call_id):
    async with database.session() as session:
        return await AnalysisJobRepository(session).list_for_call_event(tenant_id, call_id)


@pytest.mark.unit
def test_job_identity_is_deterministic():
    payload = _payload("t1")
    instant = utc_now()
    assert job_id_for(payload, instant) == job_id_for(payload, instant)
    assert job_id_for(payload, instant) != job_id_for(payload, instant + timedelta(microseconds=1))
    assert idempotency_key_for(payload) == "t1:c1"


@pytest.mark.unit
def test_backoff_doubles_from_base(settings):
    dispatcher = JobDispatcher(database=None, settings=settings)
    assert [dispatcher.backoff_seconds(n) for n in (1, 2, 3)] == [5, 10, 20]


@pytest.mark.db
@pytest.mark.asyncio
async def test_enqueue_creates_waiting_job(dispatcher, database, tenants):
    job_id = await dispatcher.enqueue(_payload(tenants["acme"]))

    job = await _get_job(database, job_id)
    assert job.status == JobStatus.WAITING
    assert job.queue_name == "ai-processing"
    assert job.job_name == "process-call"
    assert job.attempt_count == 0
    assert job.max_attempts == 3
    assert job.payload == {"callEventId": "c1", "tenantId": tenants["acme"], "assistantId": "asst-1"}


@pytest.mark.db
@pytest.mark.asyncio
async def test_enqueue_twice_keeps_one_live_job(dispatcher, database, tenants):
    first = await dispatcher.enqueue(_payload(tenants["acme"]))
    second = await dispatcher.enqueue(_payload(tenants["acme"]))

    assert first == second
    assert len(await _jobs_for(database, tenants["acme"], "c1")) == 1


@pytest.mark.db
@pytest.mark.asyncio
async def test_same_call_id_in_other_tenant_is_separate(dispatcher, tenants):
    acme = await dispatcher.enqueue(_payload(tenants["acme"]))
    smile = await dispatcher.enqueue(_payload(tenants["smile"]))
    assert acme != smile


@pytest.mark.db
@pytest.mark.asyncio
async def test_enqueue_after_completion_creates_new_job(dispatcher, database, tenants):
    first = await dispatcher.enqueue(_payload(tenants["acme"]))
    job = await dispatcher.claim_next("w1")
    assert await dispatcher.complete(job.id, worker_id="w1")

    second = await dispatcher.enqueue(_payload(tenants["acme"]))
    assert second != first
    assert len(await _jobs_for(database, tenants["acme"], "c1")) == 2


@pytest.mark.db
@pytest.mark.asyncio
async def test_unknown_queue_rejected(dispatcher, tenants):
    with pytest.raises(UnknownQueueError):
        await dispatcher.enqueue(_payload(tenants["acme"]), queue_name="emails")


@pytest.mark.db
@pytest.mark.asyncio
async def test_claim_marks_active_with_lease(dispatcher, tenants):
    job_id = await dispatcher.enqueue(_payload(tenants["acme"]))

    job = await dispatcher.claim_next("w1")
    assert job.id == job_id
    assert job.status == JobStatus.ACTIVE
    assert job.attempt_count == 1
    assert job.locked_by == "w1"
    assert job.lease_expires_at is not None

    assert await dispatcher.claim_next("w2") is None


@pytest.mark.db
@pytest.mark.asyncio
async def test_complete_requires_lease_owner(dispatcher, tenants):
    await dispatcher.enqueue(_payload(tenants["acme"]))
    job = await dispatcher.claim_next("w1")

    assert await dispatcher.complete(job.id, worker_id="someone-else") is False
    assert await dispatcher.complete(job.id, worker_id="w1") is True
    assert await dispatcher.complete(job.id, worker_id="w1") is False


@pytest.mark.db
@pytest.mark.asyncio
async def test_failed_attempt_is_delayed_then_retried(dispatcher, tenants):
    await dispatcher.enqueue(_payload(tenants["acme"]))
    job = await dispatcher.claim_next("w1")

    outcome = await dispatcher.fail(job.id, "model timeout", worker_id="w1")
    assert outcome.terminal is False
    assert outcome.retry_at is not None

    stats = await dispatcher.stats()
    assert stats.delayed == 1
    assert stats.waiting == 0
    assert stats.active == 0

    # not due yet
    assert await dispatcher.claim_next("w1") is None
    retried = await dispatcher.claim_next("w1", now=utc_now() + timedelta(seconds=6))
    assert retried.id == job.id
    assert retried.attempt_count == 2


@pytest.mark.db
@pytest.mark.asyncio
async def test_three_failures_reach_terminal_failed(dispatcher, database, tenants):
    job_id = await dispatcher.enqueue(_payload(tenants["acme"]))

    later = utc_now()
    for attempt in (1, 2, 3):
        later += timedelta(minutes=5)
        job = await dispatcher.claim_next("w1", now=later)
        assert job.id == job_id
        assert job.attempt_count == attempt
        outcome = await dispatcher.fail(job.id, f"boom {attempt}", worker_id="w1")
        assert outcome.terminal is (attempt == 3)

    job = await _get_job(database, job_id)
    assert job.status == JobStatus.FAILED
    assert job.last_error == "boom 3"
    assert job.finished_at is not None

    stats = await dispatcher.stats()
    assert stats.failed == 1
    assert stats.waiting == 0
    assert stats.active == 0
    assert stats.delayed == 0
    assert stats.total == 1

    assert await dispatcher.claim_next("w1", now=later + timedelta(hours=1)) is None


@pytest.mark.db
@pytest.mark.asyncio
async def test_non_retryable_failure_is_terminal(dispatcher, tenants):
    await dispatcher.enqueue(_payload(tenants["acme"]))
    job = await dispatcher.claim_next("w1")

    outcome = await dispatcher.fail(job.id, "call_event_not_found", worker_id="w1", retryable=False)
    assert outcome.terminal is True
    assert (await dispatcher.stats()).failed == 1


@pytest.mark.db
@pytest.mark.asyncio
async def test_terminal_failure_frees_the_live_key(dispatcher, tenants):
    first = await dispatcher.enqueue(_payload(tenants["acme"]))
    job = await dispatcher.claim_next("w1")
    await dispatcher.fail(job.id, "bad", worker_id="w1", retryable=False)

    second = await dispatcher.enqueue(_payload(tenants["acme"]))
    assert second != first


@pytest.mark.db
@pytest.mark.asyncio
async def test_recover_stalled_requeues_expired_lease(dispatcher, database, tenants):
    job_id = await dispatcher.enqueue(_payload(tenants["acme"]))
    start = utc_now()
    await dispatcher.claim_next("crashed-worker", now=start)

    # lease still valid
    report = await dispatcher.recover_stalled(now=start + timedelta(seconds=30))
    assert report.requeued == []

    report = await dispatcher.recover_stalled(now=start + timedelta(minutes=10))
    assert report.requeued == [job_id]
    assert report.failed == []

    job = await _get_job(database, job_id)
    assert job.status == JobStatus.WAITING
    assert job.locked_by is None
    assert "lease expired" in job.last_error


@pytest.mark.db
@pytest.mark.asyncio
async def test_recover_stalled_fails_when_attempts_exhausted(database, tenants):
    dispatcher = JobDispatcher(database, make_settings(JOB_MAX_ATTEMPTS=1))
    job_id = await dispatcher.enqueue(_payload(tenants["acme"]))
    start = utc_now()
    await dispatcher.claim_next("crashed-worker", now=start)

    report = await dispatcher.recover_stalled(now=start + timedelta(minutes=10))
    assert [job.id for job in report.failed] == [job_id]
    assert (await dispatcher.stats()).failed == 1


@pytest.mark.db
@pytest.mark.asyncio
async def test_stats_counts_by_state(dispatcher, tenants):
    for call_id in ("c1", "c2", "c3"):
        await dispatcher.enqueue(_payload(tenants["acme"], call_id))

    job = await dispatcher.claim_next("w1")
    await dispatcher.complete(job.id, worker_id="w1")
    await dispatcher.claim_next("w1")

    stats = await dispatcher.stats()
    assert (stats.waiting, stats.active, stats.completed, stats.failed, stats.delayed) == (1, 1, 1, 0, 0)
    assert stats.total == 3


@pytest.mark.db
@pytest.mark.asyncio
async def test_stats_timeout_returns_none(dispatcher, monkeypatch):
    async def hang():
        await asyncio.sleep(10)

    monkeypatch.setattr(dispatcher, "_collect_stats", hang)
    dispatcher.stats_timeout = 0.05

    started = time.perf_counter()
    assert await dispatcher.stats() is None
    assert time.perf_counter() - started < 1.0


@pytest.mark.db
@pytest.mark.asyncio
async def test_stats_unreachable_store_returns_none(dispatcher, database):
    await database.dispose()
    assert await dispatcher.stats() is None


@pytest.mark.db
@pytest.mark.asyncio
async def test_clean_completed_keeps_newest_and_failed(dispatcher, tenants):
    for call_id in ("c1", "c2", "c3"):
        await dispatcher.enqueue(_payload(tenants["acme"], call_id))
        job = await dispatcher.claim_next("w1")
        await dispatcher.complete(job.id, worker_id="w1")

    await dispatcher.enqueue(_payload(tenants["acme"], "c4"))
    job = await dispatcher.claim_next("w1")
    await dispatcher.fail(job.id, "bad", worker_id="w1", retryable=False)

    deleted = await dispatcher.clean_completed(max_count=1)
    assert deleted == 2

    stats = await dispatcher.stats()
    assert stats.completed == 1
    assert stats.failed == 1


@pytest.mark.db
@pytest.mark.asyncio
async def test_clean_completed_by_age(dispatcher, tenants):
    await dispatcher.enqueue(_payload(tenants["acme"]))
    job = await dispatcher.claim_next("w1")
    await dispatcher.complete(job.id, worker_id="w1")

    assert await dispatcher.clean_completed(now=utc_now() + timedelta(hours=1)) == 0
    assert await dispatcher.clean_completed(now=utc_now() + timedelta(days=2)) == 1
    assert (await dispatcher.stats()).completed == 0


@pytest.mark.db
@pytest.mark.asyncio
async def test_purge_failed(dispatcher, tenants):
    await dispatcher.enqueue(_payload(tenants["acme"]))
    job = await dispatcher.claim_next("w1")
    await dispatcher.fail(job.id, "bad", worker_id="w1", retryable=False)

    assert await dispatcher.purge_failed() == 1
    assert (await dispatcher.stats()).failed == 0
