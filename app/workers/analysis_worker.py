"""
Analysis worker - drains the ai-processing queue.

Per iteration: recover expired leases, claim one job, load the tenant's
call event, run the analyzer outside any transaction, then write the
analysis and complete the job in a single transaction.

Usage:
    python -m app.workers.analysis_worker --once
    python -m app.workers.analysis_worker --loop --sleep 2
    python -m app.workers.analysis_worker --backfill 500
    python -m app.workers.analysis_worker --reanalyze-failed 50
"""

import argparse
import asyncio
import logging
import os
import signal
import socket
import time
from datetime import datetime
from typing import Optional

from app.core.config import Settings, get_settings
from app.core.logging_config import configure_logging
from app.db.session import Database
from app.models.analysis_job import AnalysisJob
from app.models.call_event import AnalysisStatus
from app.repositories.call_event_repository import CallEventRepository
from app.repositories.tenant_repository import TenantRepository
from app.schemas.queue import JobPayload
from app.services.call_analyzer import BatchItem, CallAnalyzer, batch_analyze, get_call_analyzer
from app.services.job_dispatcher import JobDispatcher

logger = logging.getLogger(__name__)


class JobOutcome:
    COMPLETED = "completed"
    RETRY = "retry"
    FAILED = "failed"
    SKIPPED = "skipped"


class AnalysisWorker:
    """Single-job-at-a-time consumer; run several processes to scale out."""

    def __init__(
        self,
        database: Database,
        dispatcher: JobDispatcher,
        analyzer: CallAnalyzer,
        settings: Settings,
        worker_id: Optional[str] = None,
    ):
        self.database = database
        self.dispatcher = dispatcher
        self.analyzer = analyzer
        self.settings = settings
        self.worker_id = worker_id or f"{socket.gethostname()}:{os.getpid()}"
        self.shutdown_event = asyncio.Event()
        self._last_cleanup: Optional[float] = None

    def setup_signal_handlers(self) -> None:
        """Graceful shutdown on SIGTERM/SIGINT: finish the current job, then stop."""
        def signal_handler(signum, frame):
            logger.info("Worker %s received signal %s, shutting down gracefully...", self.worker_id, signum)
            self.shutdown_event.set()

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

    async def recover_stalled(self, now: Optional[datetime] = None) -> int:
        async with self.database.session() as session:
            report = await self.dispatcher.recover_stalled(now=now, session=session)
            calls = CallEventRepository(session)
            for job in report.failed:
                await calls.mark_analysis_failed(job.tenant_id, job.call_event_id, job.last_error or "lease expired")
        return len(report.requeued) + len(report.failed)

    async def _fail(self, job: AnalysisJob, error: str, retryable: bool = True) -> str:
        async with self.database.session() as session:
            outcome = await self.dispatcher.fail(
                job.id,
                error,
                worker_id=self.worker_id,
                retryable=retryable,
                session=session,
            )
            if outcome is None:
                return JobOutcome.SKIPPED
            if outcome.terminal:
                await CallEventRepository(session).mark_analysis_failed(job.tenant_id, job.call_event_id, error)
                return JobOutcome.FAILED
        return JobOutcome.RETRY

    async def process_job(self, job: AnalysisJob) -> str:
        logger.info("Processing job %s for call %s (attempt %s)", job.id, job.call_event_id, job.attempt_count)

        async with self.database.session() as session:
            call = await CallEventRepository(session).get_by_id(job.tenant_id, job.call_event_id)
            tenant = await TenantRepository(session).get_by_id(job.tenant_id)

        if call is None or tenant is None:
            logger.error("Job %s references a missing call event %s", job.id, job.call_event_id)
            return await self._fail(job, "call_event_not_found", retryable=False)

        if call.analysis_status != AnalysisStatus.PENDING:
            logger.info("Call %s already %s; completing job %s", call.id, call.analysis_status, job.id)
            await self.dispatcher.complete(job.id, worker_id=self.worker_id)
            return JobOutcome.SKIPPED

        try:
            analysis = await self.analyzer.analyze(call.transcript or "", tenant.business_type)
        except Exception as exc:  # noqa: BLE001
            logger.error("Analysis of call %s failed: %s", call.id, exc, exc_info=True)
            return await self._fail(job, str(exc) or exc.__class__.__name__)

        async with self.database.session() as session:
            written = await CallEventRepository(session).apply_analysis(
                job.tenant_id,
                call.id,
                analysis,
                version=self.settings.ANALYSIS_VERSION,
            )
            completed = await self.dispatcher.complete(job.id, worker_id=self.worker_id, session=session)

        if not written:
            logger.info("Call %s was analyzed by another job; result discarded", call.id)
        if not completed:
            logger.warning("Job %s lease was lost before completion", job.id)
            return JobOutcome.SKIPPED

        logger.info(
            "Job %s completed: call %s sentiment=%s opportunity=%s",
            job.id,
            call.id,
            analysis.sentiment_label,
            analysis.opportunity_value,
        )
        return JobOutcome.COMPLETED

    async def run_once(self, now: Optional[datetime] = None) -> Optional[str]:
        """Recover stalled leases, then claim and process at most one job."""
        await self.recover_stalled(now=now)
        job = await self.dispatcher.claim_next(self.worker_id, now=now)
        if job is None:
            return None
        return await self.process_job(job)

    async def maybe_cleanup(self) -> int:
        now = time.monotonic()
        if self._last_cleanup is not None and now - self._last_cleanup < self.settings.WORKER_CLEANUP_INTERVAL_SECONDS:
            return 0
        self._last_cleanup = now
        return await self.dispatcher.clean_completed()

    async def run(self, loop: bool = True, sleep_seconds: Optional[float] = None) -> int:
        sleep_seconds = self.settings.WORKER_POLL_INTERVAL_SECONDS if sleep_seconds is None else sleep_seconds
        logger.info("Worker %s starting job polling (interval: %ss)", self.worker_id, sleep_seconds)

        while not self.shutdown_event.is_set():
            try:
                await self.maybe_cleanup()
                outcome = await self.run_once()
            except Exception:  # noqa: BLE001
                logger.exception("Worker loop error")
                outcome = None

            if not loop:
                break
            if outcome is not None:
                # more work may be waiting
                continue

            try:
                await asyncio.wait_for(self.shutdown_event.wait(), timeout=sleep_seconds)
            except asyncio.TimeoutError:
                pass

        logger.info("Worker %s stopped", self.worker_id)
        return 0


async def backfill_pending_jobs(database: Database, dispatcher: JobDispatcher, limit: int = 100) -> int:
    """
    Enqueue analysis for call events still pending, e.g. after an enqueue
    failure at ingestion. Events with a live job keep that job.
    """
    async with database.session() as session:
        pending = await CallEventRepository(session).list_pending(limit=limit)

    queued = 0
    for call in pending:
        payload = JobPayload(call_event_id=call.id, tenant_id=call.tenant_id, assistant_id=call.assistant_id)
        await dispatcher.enqueue(payload)
        queued += 1

    logger.info("Backfill enqueued %d pending call events", queued)
    return queued


async def reanalyze_failed_calls(
    database: Database,
    analyzer: CallAnalyzer,
    version: str,
    limit: int = 100,
    concurrency: int = 5,
    pause_seconds: float = 1.0,
) -> int:
    """
    Re-run analysis for calls whose jobs failed permanently, in small batches.

    Calls the analyzer still cannot handle stay failed. Returns the number of
    calls moved to done.
    """
    async with database.session() as session:
        calls = await CallEventRepository(session).list_by_analysis_status(AnalysisStatus.FAILED, limit=limit)
        tenants = TenantRepository(session)
        business_types: dict[str, str] = {}
        for call in calls:
            if call.tenant_id not in business_types:
                tenant = await tenants.get_by_id(call.tenant_id)
                business_types[call.tenant_id] = tenant.business_type if tenant else "general"

    owners = {call.id: call.tenant_id for call in calls}
    items = [
        BatchItem(id=call.id, transcript=call.transcript or "", business_type=business_types[call.tenant_id])
        for call in calls
    ]
    results = await batch_analyze(analyzer, items, concurrency=concurrency, pause_seconds=pause_seconds)

    written = 0
    async with database.session() as session:
        repo = CallEventRepository(session)
        for result in results:
            if result.error:
                continue
            if await repo.apply_analysis(
                owners[result.id],
                result.id,
                result.analysis,
                version=version,
                from_status=AnalysisStatus.FAILED,
            ):
                written += 1

    logger.info("Reanalyzed %d of %d failed call events", written, len(calls))
    return written


async def run_worker(
    loop: bool,
    sleep_seconds: float,
    backfill: int = 0,
    reanalyze: int = 0,
    settings: Optional[Settings] = None,
) -> int:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    database = Database(settings.DATABASE_URL, echo=settings.DEBUG).connect()
    dispatcher = JobDispatcher(database, settings)
    try:
        if backfill:
            await backfill_pending_jobs(database, dispatcher, limit=backfill)
            return 0
        if reanalyze:
            await reanalyze_failed_calls(
                database,
                get_call_analyzer(settings),
                version=settings.ANALYSIS_VERSION,
                limit=reanalyze,
            )
            return 0

        worker = AnalysisWorker(database, dispatcher, get_call_analyzer(settings), settings)
        if loop:
            worker.setup_signal_handlers()
        return await worker.run(loop=loop, sleep_seconds=sleep_seconds)
    finally:
        await database.dispose()


def main() -> int:
    parser = argparse.ArgumentParser(description="Call analysis worker")
    parser.add_argument("--once", action="store_true", help="Process a single job and exit")
    parser.add_argument("--loop", action="store_true", help="Run continuously")
    parser.add_argument("--sleep", type=float, default=None, help="Sleep seconds between polls when looping")
    parser.add_argument("--backfill", type=int, default=0, metavar="N", help="Enqueue up to N pending call events and exit")
    parser.add_argument(
        "--reanalyze-failed",
        type=int,
        default=0,
        metavar="N",
        help="Re-run analysis for up to N failed call events and exit",
    )
    args = parser.parse_args()

    loop_mode = args.loop and not args.once
    return asyncio.run(
        run_worker(
            loop=loop_mode,
            sleep_seconds=args.sleep,
            backfill=args.backfill,
            reanalyze=args.reanalyze_failed,
        )
    )


if __name__ == "__main__":
    raise SystemExit(main())
