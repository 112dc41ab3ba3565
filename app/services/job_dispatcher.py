"""
Job Dispatcher - durable queue for deferred call analysis.

Jobs live in the analysis_jobs table. Retry policy: up to JOB_MAX_ATTEMPTS
attempts with exponential backoff starting at JOB_BACKOFF_BASE_SECONDS
(5s, 10s, 20s, ...). Terminal-failed jobs are kept for inspection;
completed jobs are trimmed to an age and count window.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import AsyncGenerator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.db.session import Database
from app.errors import QueueUnavailableError, UnknownQueueError
from app.models.analysis_job import AnalysisJob, JobStatus
from app.repositories.analysis_job_repository import AnalysisJobRepository
from app.schemas.queue import JobPayload, QueueStats
from app.utils.time import utc_now

logger = logging.getLogger(__name__)

JOB_NAME = "process-call"
JOB_ID_NAMESPACE = uuid.UUID("6f1c3f0e-4b7a-5d2e-9c1a-2b8e4d7f6a10")


def idempotency_key_for(payload: JobPayload) -> str:
    """At most one live job per (tenant, call event)."""
    return f"{payload.tenant_id}:{payload.call_event_id}"


def job_id_for(payload: JobPayload, enqueued_at: datetime) -> str:
    """Deterministic job id from tenant, call event and enqueue instant."""
    name = f"{payload.tenant_id}:{payload.call_event_id}:{enqueued_at.isoformat()}"
    return str(uuid.uuid5(JOB_ID_NAMESPACE, name))


@dataclass
class FailureOutcome:
    job_id: str
    terminal: bool
    attempt_count: int
    retry_at: Optional[datetime] = None


@dataclass
class RecoveryReport:
    requeued: list[str] = field(default_factory=list)
    failed: list[AnalysisJob] = field(default_factory=list)


class JobDispatcher:
    """Enqueue, claim, transition and count analysis jobs."""

    def __init__(self, database: Database, settings: Settings):
        self.database = database
        self.settings = settings
        self.queue_name = settings.QUEUE_NAME
        self.max_attempts = settings.JOB_MAX_ATTEMPTS
        self.backoff_base_seconds = settings.JOB_BACKOFF_BASE_SECONDS
        self.lease_seconds = settings.JOB_LEASE_SECONDS
        self.stats_timeout = settings.QUEUE_STATS_TIMEOUT_SECONDS

    @asynccontextmanager
    async def _session(self, session: Optional[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
        """Join the caller's transaction when given one, otherwise open our own."""
        if session is not None:
            yield session
            return
        async with self.database.session() as own:
            yield own

    def backoff_seconds(self, attempt: int) -> int:
        """Exponential backoff for the given (1-based) attempt number."""
        return self.backoff_base_seconds * (2 ** max(0, attempt - 1))

    async def enqueue(
        self,
        payload: JobPayload,
        queue_name: Optional[str] = None,
        priority: int = 1,
        session: Optional[AsyncSession] = None,
    ) -> str:
        """
        Publish an analysis job and return its id.

        If a live (waiting or active) job already exists for the same call
        event, no new job is created and the existing job's id is returned.
        """
        if queue_name and queue_name != self.queue_name:
            raise UnknownQueueError(queue_name)

        now = utc_now()
        key = idempotency_key_for(payload)
        values = {
            "id": job_id_for(payload, now),
            "tenant_id": payload.tenant_id,
            "call_event_id": payload.call_event_id,
            "queue_name": self.queue_name,
            "job_name": JOB_NAME,
            "idempotency_key": key,
            "payload": payload.to_json(),
            "status": JobStatus.WAITING,
            "priority": priority,
            "attempt_count": 0,
            "max_attempts": self.max_attempts,
            "run_at": now,
            "enqueued_at": now,
        }

        async with self._session(session) as db:
            repo = AnalysisJobRepository(db)
            job_id = await repo.insert_live(values)
            if job_id:
                logger.info("[Queue] Published job %s to %s", job_id, self.queue_name)
                return job_id

            existing = await repo.get_live_by_key(key)
            if existing is None:
                # the live job finished between the insert and the lookup
                job_id = await repo.insert_live(values)
                if job_id:
                    logger.info("[Queue] Published job %s to %s", job_id, self.queue_name)
                    return job_id
                existing = await repo.get_live_by_key(key)
                if existing is None:
                    raise QueueUnavailableError(f"Could not enqueue job for {key}")

            logger.info("[Queue] Live job %s already exists for %s", existing.id, key)
            return existing.id

    async def claim_next(self, worker_id: str, now: Optional[datetime] = None) -> Optional[AnalysisJob]:
        """Claim one due job under a lease of JOB_LEASE_SECONDS."""
        now = now or utc_now()
        async with self.database.session() as db:
            job = await AnalysisJobRepository(db).claim_next(
                self.queue_name,
                worker_id,
                now=now,
                lease_expires_at=now + timedelta(seconds=self.lease_seconds),
            )
        if job:
            logger.info("Worker %s claimed job %s (attempt %s/%s)", worker_id, job.id, job.attempt_count, job.max_attempts)
        return job

    async def complete(
        self,
        job_id: str,
        worker_id: Optional[str] = None,
        session: Optional[AsyncSession] = None,
    ) -> bool:
        """active -> completed. Returns False if the job is no longer ours."""
        async with self._session(session) as db:
            job = await AnalysisJobRepository(db).get(job_id)
            if not self._owned_and_active(job, worker_id):
                logger.warning("Job %s is not active for worker %s; completion ignored", job_id, worker_id)
                return False

            now = utc_now()
            job.status = JobStatus.COMPLETED
            job.finished_at = now
            job.locked_at = None
            job.locked_by = None
            job.lease_expires_at = None
            job.last_error = None
            await db.flush()
        return True

    async def fail(
        self,
        job_id: str,
        error: str,
        worker_id: Optional[str] = None,
        retryable: bool = True,
        session: Optional[AsyncSession] = None,
    ) -> Optional[FailureOutcome]:
        """
        active -> waiting (retry with backoff) or active -> failed (terminal).

        Returns None when the job is no longer active for this worker.
        """
        async with self._session(session) as db:
            job = await AnalysisJobRepository(db).get(job_id)
            if not self._owned_and_active(job, worker_id):
                logger.warning("Job %s is not active for worker %s; failure ignored", job_id, worker_id)
                return None
            outcome = self._apply_failure(job, error, retryable=retryable, now=utc_now())
            await db.flush()
        return outcome

    async def recover_stalled(self, now: Optional[datetime] = None, session: Optional[AsyncSession] = None) -> RecoveryReport:
        """
        Return jobs whose lease expired (crashed or hung worker) to waiting,
        or fail them when their attempts are used up.
        """
        now = now or utc_now()
        report = RecoveryReport()
        async with self._session(session) as db:
            stalled = await AnalysisJobRepository(db).list_expired_leases(self.queue_name, now)
            for job in stalled:
                outcome = self._apply_failure(job, f"lease expired (worker {job.locked_by})", retryable=True, now=now)
                if outcome.terminal:
                    report.failed.append(job)
                else:
                    report.requeued.append(job.id)
            await db.flush()

        if stalled:
            logger.warning(
                "Recovered %d stalled jobs (%d requeued, %d failed)",
                len(stalled),
                len(report.requeued),
                len(report.failed),
            )
        return report

    def _owned_and_active(self, job: Optional[AnalysisJob], worker_id: Optional[str]) -> bool:
        if job is None or job.status != JobStatus.ACTIVE:
            return False
        return worker_id is None or job.locked_by == worker_id

    def _apply_failure(self, job: AnalysisJob, error: str, retryable: bool, now: datetime) -> FailureOutcome:
        job.last_error = error[:2000]
        job.locked_at = None
        job.locked_by = None
        job.lease_expires_at = None

        if not retryable or job.attempt_count >= job.max_attempts:
            job.status = JobStatus.FAILED
            job.finished_at = now
            logger.error("Job %s failed permanently after %s attempts: %s", job.id, job.attempt_count, error)
            return FailureOutcome(job_id=job.id, terminal=True, attempt_count=job.attempt_count)

        delay = self.backoff_seconds(job.attempt_count)
        job.status = JobStatus.WAITING
        job.run_at = now + timedelta(seconds=delay)
        logger.warning(
            "Job %s attempt %s/%s failed, retrying in %ss: %s",
            job.id,
            job.attempt_count,
            job.max_attempts,
            delay,
            error,
        )
        return FailureOutcome(job_id=job.id, terminal=False, attempt_count=job.attempt_count, retry_at=job.run_at)

    async def stats(self) -> Optional[QueueStats]:
        """
        Job counts by state, or None when the queue store is unreachable or
        does not answer within QUEUE_STATS_TIMEOUT_SECONDS.
        """
        try:
            return await asyncio.wait_for(self._collect_stats(), timeout=self.stats_timeout)
        except asyncio.TimeoutError:
            logger.warning("[Queue] Stats timed out after %ss", self.stats_timeout)
        except QueueUnavailableError as exc:
            logger.warning("[Queue] Stats unavailable: %s", exc)
        return None

    async def _collect_stats(self) -> QueueStats:
        try:
            async with self.database.session() as db:
                counts = await AnalysisJobRepository(db).count_by_state(self.queue_name, utc_now())
        except (SQLAlchemyError, OSError, RuntimeError) as exc:
            raise QueueUnavailableError(str(exc)) from exc

        stats = QueueStats(
            waiting=counts.get(JobStatus.WAITING, 0),
            active=counts.get(JobStatus.ACTIVE, 0),
            completed=counts.get(JobStatus.COMPLETED, 0),
            failed=counts.get(JobStatus.FAILED, 0),
            delayed=counts.get("delayed", 0),
        )
        stats.total = stats.waiting + stats.active + stats.completed + stats.failed + stats.delayed
        return stats

    async def clean_completed(
        self,
        max_age_seconds: Optional[int] = None,
        max_count: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """Trim completed jobs to the retention window. Failed jobs are untouched."""
        max_age_seconds = self.settings.COMPLETED_RETENTION_SECONDS if max_age_seconds is None else max_age_seconds
        max_count = self.settings.COMPLETED_RETENTION_COUNT if max_count is None else max_count
        now = now or utc_now()

        async with self.database.session() as db:
            repo = AnalysisJobRepository(db)
            deleted = await repo.delete_completed_before(self.queue_name, now - timedelta(seconds=max_age_seconds))
            deleted += await repo.delete_completed_beyond(self.queue_name, max_count)

        if deleted:
            logger.info("[Queue] Cleaned up %d old jobs", deleted)
        return deleted

    async def purge_failed(self, before: Optional[datetime] = None) -> int:
        """Explicit cleanup of terminal-failed jobs kept for inspection."""
        async with self.database.session() as db:
            deleted = await AnalysisJobRepository(db).delete_failed(self.queue_name, before=before)
        logger.info("[Queue] Purged %d failed jobs", deleted)
        return deleted
